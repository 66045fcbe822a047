"""Shared FastAPI dependencies: auth, database sessions, service injection.

The ConversationOrchestrator and everything it composes are created once
during the FastAPI lifespan and stored on app.state. Route handlers
retrieve them via Depends(), never by direct import.
"""

from fastapi import Depends, Header, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import InvalidAPIKeyError, TenantInactiveError
from app.core.security import hash_api_key
from app.db.postgres import get_async_session
from app.models import Tenant
from app.services.orchestrator.orchestrator import ConversationOrchestrator


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

async def get_db(
    session: AsyncSession = Depends(get_async_session),
) -> AsyncSession:
    """Yield an async database session."""
    return session


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------

async def get_current_tenant(
    x_api_key: str = Header(..., alias="X-API-Key"),
    db: AsyncSession = Depends(get_db),
) -> Tenant:
    """Authenticate and return the current tenant from the API key header."""
    if not x_api_key:
        raise InvalidAPIKeyError()

    key_hash = hash_api_key(x_api_key)
    result = await db.execute(
        select(Tenant).where(Tenant.api_key_hash == key_hash)
    )
    tenant = result.scalar_one_or_none()

    if tenant is None:
        raise InvalidAPIKeyError()

    if not tenant.is_active:
        raise TenantInactiveError()

    return tenant


# ---------------------------------------------------------------------------
# Service singleton: retrieved from app.state (set during lifespan)
# ---------------------------------------------------------------------------

def get_orchestrator(request: Request) -> ConversationOrchestrator:
    """Return the process-wide orchestrator from app state."""
    return request.app.state.orchestrator
