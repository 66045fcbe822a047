"""Prompt templates and fixed customer-facing messages."""

from __future__ import annotations

from app.core.config import settings
from app.services.orchestrator.types import Classification, LiveSession

_SYSTEM_PROMPT_TEMPLATE = """You are {assistant_name}, an AI assistant for WhatsApp customer service. You are currently helping {customer_name}.

Customer Context:
- Name: {customer_name}
- Phone: {customer_phone}
- Language: {language}
- Conversation Mode: {mode}
- Previous Interactions: {message_count} messages

Current Message Analysis:
- Priority: {priority}
- Sentiment: {sentiment}
- Intent: {intent}
- Category: {category}
- Urgency Score: {urgency_score}/10

Guidelines:
1. Be conversational, empathetic, and helpful
2. Keep responses concise and actionable for {mode} mode
3. Use the customer's preferred language: {language}
4. Address their specific intent: {intent}
5. Match their emotional tone while staying professional
6. If urgency is high (8+), prioritize quick resolution or escalation"""

CLASSIFICATION_SYSTEM_PROMPT = """You are an expert message classifier for a WhatsApp CRM system.

Categories: acquisition, engagement, retention, support, general
Priority: urgent (9-10), high (7-8), medium (4-6), low (1-3)
Sentiment: positive, neutral, negative
Intent: a short snake_case purpose, e.g. order_inquiry, shipping_issue, product_support, complaint, general_query
Urgency score: integer 0-10. Confidence: 0-1.

Respond ONLY with JSON:
{"category": "...", "priority": "...", "urgency_score": 0, "sentiment": "...", "intent": "...", "confidence": 0.0, "keywords_matched": []}"""

CLASSIFICATION_PROMPT_TEMPLATE = """Context:
{context}

Recent history:
{history}

Classify this message: "{message}\""""

APOLOGY_MESSAGE = (
    "I apologize, but I'm having trouble processing your request right now. "
    "Let me connect you with a human agent."
)

DEFAULT_REPLY = "I'm here to help you with your inquiry."

FAREWELL_MESSAGE = (
    "Thank you for reaching out! If you need further assistance, "
    "feel free to message us anytime. Have a great day!"
)


def build_system_prompt(session: LiveSession, classification: Classification) -> str:
    """System prompt seeded with the customer and the current classification."""
    return _SYSTEM_PROMPT_TEMPLATE.format(
        assistant_name=settings.assistant_name,
        customer_name=session.customer_name,
        customer_phone=session.customer_phone,
        language=session.language,
        mode=session.mode.value,
        message_count=session.message_count,
        priority=classification.priority,
        sentiment=classification.sentiment,
        intent=classification.intent,
        category=classification.category,
        urgency_score=classification.urgency_score,
    )


def welcome_message(session: LiveSession) -> str:
    return (
        f"Hello {session.customer_name}! I'm {settings.assistant_name}, your AI assistant. "
        "I'm here to help with any questions or concerns you might have. "
        "You can chat with me via text or voice, whatever works best for you!"
    )


def transfer_message(agent_name: str) -> str:
    return (
        f"I'm connecting you with {agent_name} who can better assist you with this issue. "
        "They'll be with you shortly."
    )
