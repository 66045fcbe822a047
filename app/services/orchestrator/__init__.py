"""Conversation orchestration core.

Imports are not eagerly loaded here. Use explicit imports:
    from app.services.orchestrator.orchestrator import ConversationOrchestrator
    from app.services.orchestrator.registry import OrchestratorState
"""
