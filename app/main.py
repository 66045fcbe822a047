"""FastAPI application entrypoint.

All routes prefixed /v1. Auto-generated OpenAPI docs at /docs.

The ConversationOrchestrator and its collaborators (LLM provider with
fallback, classifier, generator, ElevenLabs voice, WhatsApp sender, team
assignment, customer directory, session store) are created once during
the lifespan and stored on app.state for injection via Depends().
Queued commands are drained by APScheduler every
COMMAND_DRAIN_INTERVAL_SECONDS.
"""

from contextlib import asynccontextmanager
import logging
from typing import AsyncGenerator

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.v1.health import router as health_router
from app.api.v1.sessions import router as sessions_router
from app.core.config import settings
from app.core.exceptions import OrchestratorError
from app.db.postgres import async_session_factory, close_postgres
from app.db.redis import close_redis, get_redis
from app.services.channels.voice import ElevenLabsSynthesizer
from app.services.channels.whatsapp import WhatsAppSender
from app.services.customers import CustomerDirectory
from app.services.llm.fallback import FallbackLLMProvider
from app.services.llm.openai_provider import OpenAIProvider
from app.services.orchestrator.classifier import MessageClassifier
from app.services.orchestrator.generator import ResponseGenerator
from app.services.orchestrator.history import ConversationHistory
from app.services.orchestrator.orchestrator import ConversationOrchestrator
from app.services.orchestrator.registry import (
    OrchestratorState,
    RedisCommandQueue,
    RedisSessionRegistry,
)
from app.services.orchestrator.store import SessionStore
from app.services.team.assignment import TeamAssignmentService


def _configure_logging() -> None:
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


_configure_logging()

logger = structlog.get_logger(__name__)


async def _build_state() -> OrchestratorState:
    if settings.registry_backend == "redis":
        redis = await get_redis()
        ttl = settings.session_state_ttl_minutes * 60
        return OrchestratorState(
            sessions=RedisSessionRegistry(redis, ttl),
            queues=RedisCommandQueue(redis, ttl),
        )
    logger.warning(
        "command_queue_in_memory",
        detail="queued medium/low priority commands are lost on restart",
    )
    return OrchestratorState()


async def _build_orchestrator() -> ConversationOrchestrator:
    llm = FallbackLLMProvider(
        primary=OpenAIProvider(
            api_key=settings.openai_api_key,
            model=settings.llm_model,
            base_url=settings.openai_base_url,
        ),
        secondary=OpenAIProvider(
            api_key=settings.openai_api_key,
            model=settings.llm_fallback_model,
            base_url=settings.openai_base_url,
        ),
    )
    return ConversationOrchestrator(
        state=await _build_state(),
        customers=CustomerDirectory(async_session_factory),
        classifier=MessageClassifier(llm),
        generator=ResponseGenerator(llm),
        voice=ElevenLabsSynthesizer(
            api_key=settings.elevenlabs_api_key,
            default_voice_id=settings.elevenlabs_default_voice_id,
            model_id=settings.elevenlabs_model_id,
        ),
        sender=WhatsAppSender(
            api_url=settings.whatsapp_api_url,
            access_token=settings.whatsapp_access_token,
            phone_number_id=settings.whatsapp_phone_number_id,
        ),
        team=TeamAssignmentService(async_session_factory),
        store=SessionStore(async_session_factory),
        history=ConversationHistory(
            await get_redis(), window_size=settings.history_window
        ),
    )


async def _drain_command_queues(orchestrator: ConversationOrchestrator) -> None:
    """Run due queued commands for every live session. Called by APScheduler."""
    try:
        await orchestrator.process_all_queued_commands()
    except Exception as e:
        logger.error("command_drain_job_failed", error=str(e))


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application startup and shutdown lifecycle."""
    # --- Startup ---
    logger.info(
        "app_startup", env=settings.app_env, registry_backend=settings.registry_backend
    )

    orchestrator = await _build_orchestrator()
    app.state.orchestrator = orchestrator
    app.state.registry_backend = settings.registry_backend

    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        _drain_command_queues,
        "interval",
        seconds=settings.command_drain_interval_seconds,
        args=[orchestrator],
        id="command_queue_drain",
        max_instances=1,
        coalesce=True,
    )
    scheduler.start()
    app.state.scheduler = scheduler

    logger.info("app_providers_ready")
    yield

    # --- Shutdown ---
    logger.info("app_shutdown")

    scheduler.shutdown(wait=False)

    await close_redis()
    await close_postgres()


app = FastAPI(
    title="Conversation Orchestrator API",
    description="Multi-tenant customer conversation orchestration: classify, reply, escalate, follow up.",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS: permissive for development, locked down in production
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if not settings.is_production else [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(OrchestratorError)
async def orchestrator_error_handler(request: Request, exc: OrchestratorError) -> JSONResponse:
    """Structured error response for all orchestrator exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
    )


# Mount all v1 routers
app.include_router(health_router, prefix="/v1")
app.include_router(sessions_router, prefix="/v1")
