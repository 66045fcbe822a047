"""Conversation session endpoints.

Every route is tenant-scoped: a session owned by another tenant is
reported as not found.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends

from app.api.deps import get_current_tenant, get_orchestrator
from app.core.exceptions import (
    ProcessingError,
    SessionInactiveError,
    SessionNotFoundError,
)
from app.models import Tenant
from app.schemas.message import MessageRequest, MessageResponse
from app.schemas.session import (
    DrainResponse,
    SessionActionResponse,
    SessionEndRequest,
    SessionListResponse,
    SessionResponse,
    SessionStartRequest,
)
from app.services.orchestrator.orchestrator import ConversationOrchestrator
from app.services.orchestrator.types import LiveSession, SessionStatus

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/sessions", tags=["sessions"])


async def _owned_session(
    orchestrator: ConversationOrchestrator, session_id: str, tenant: Tenant
) -> LiveSession:
    session = await orchestrator.get_session(session_id)
    if session is None or session.tenant_id != str(tenant.id):
        raise SessionNotFoundError()
    return session


@router.post("", response_model=SessionResponse, status_code=201)
async def start_session(
    body: SessionStartRequest,
    tenant: Tenant = Depends(get_current_tenant),
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
) -> SessionResponse:
    """Start a conversation session for one of the tenant's customers."""
    session = await orchestrator.start_session(
        tenant_id=str(tenant.id),
        customer_id=str(body.customer_id),
        customer_phone=body.customer_phone,
        mode=body.mode,
        voice_config_overrides=(
            body.voice_config.model_dump(exclude_none=True) if body.voice_config else None
        ),
        conversation_id=body.conversation_id,
    )
    return SessionResponse.from_live(session)


@router.get("", response_model=SessionListResponse)
async def list_sessions(
    tenant: Tenant = Depends(get_current_tenant),
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
) -> SessionListResponse:
    sessions = await orchestrator.get_active_sessions(str(tenant.id))
    return SessionListResponse(sessions=[SessionResponse.from_live(s) for s in sessions])


@router.get("/{session_id}", response_model=SessionResponse)
async def get_session(
    session_id: str,
    tenant: Tenant = Depends(get_current_tenant),
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
) -> SessionResponse:
    return SessionResponse.from_live(await _owned_session(orchestrator, session_id, tenant))


@router.post("/{session_id}/messages", response_model=MessageResponse)
async def post_message(
    session_id: str,
    body: MessageRequest,
    tenant: Tenant = Depends(get_current_tenant),
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
) -> MessageResponse:
    """Run one inbound customer message through the orchestrator."""
    await _owned_session(orchestrator, session_id, tenant)

    result = await orchestrator.process_message(
        session_id, body.content, body.message_type, audio_data=body.audio_bytes()
    )
    if not result.success or result.response is None:
        raise result.error or ProcessingError()
    return MessageResponse.from_result(result.response, result.commands)


@router.post("/{session_id}/end", response_model=SessionActionResponse)
async def end_session(
    session_id: str,
    body: SessionEndRequest | None = None,
    tenant: Tenant = Depends(get_current_tenant),
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
) -> SessionActionResponse:
    await _owned_session(orchestrator, session_id, tenant)
    ended = await orchestrator.end_session(session_id, reason=body.reason if body else None)
    if not ended:
        raise ProcessingError("Session could not be ended")
    return SessionActionResponse(session_id=session_id, status=SessionStatus.ENDED.value)


@router.post("/{session_id}/resume", response_model=SessionActionResponse)
async def resume_session(
    session_id: str,
    tenant: Tenant = Depends(get_current_tenant),
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
) -> SessionActionResponse:
    session = await _owned_session(orchestrator, session_id, tenant)
    if session.status != SessionStatus.PAUSED:
        raise SessionInactiveError(f"Session {session_id} is {session.status.value}, not paused")
    if not await orchestrator.resume_session(session_id):
        raise ProcessingError("Session could not be resumed")
    return SessionActionResponse(session_id=session_id, status=SessionStatus.ACTIVE.value)


@router.post("/{session_id}/commands/drain", response_model=DrainResponse)
async def drain_commands(
    session_id: str,
    tenant: Tenant = Depends(get_current_tenant),
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
) -> DrainResponse:
    """Run the session's due queued commands now instead of waiting for the scheduler."""
    await _owned_session(orchestrator, session_id, tenant)
    executed = await orchestrator.process_queued_commands(session_id)
    logger.info("queue_drained_on_request", session_id=session_id, executed=executed)
    return DrainResponse(session_id=session_id, executed=executed)
