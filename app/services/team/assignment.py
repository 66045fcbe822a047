"""Team agent auto-assignment.

Scoring per candidate (higher wins):
    (1 - utilization) * 50        capacity 50 for AI agents, 10 for humans
  + 20 per specialization containing a hint (case-insensitive)
  + max(0, 300 - avg_response_s) / 300 * 20
  + 10 for a human when "technical" is requested
Agents at or over capacity are never picked.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models import AgentAssignment, TeamAgent

logger = structlog.get_logger(__name__)

AVAILABLE_STATUSES = ("active", "online")

_CAPACITY = {"ai_agent": 50, "human": 10}
_DEFAULT_RESPONSE_SECONDS = 300


@dataclass
class AssignmentResult:
    success: bool
    agent_id: str | None = None
    agent_name: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class AgentScore:
    agent: TeamAgent
    score: float
    utilization: float


def score_agent(agent: TeamAgent, specialization_hints: list[str] | None) -> AgentScore:
    capacity = _CAPACITY.get(agent.agent_type, _CAPACITY["human"])
    utilization = (agent.active_conversations or 0) / capacity
    score = (1 - utilization) * 50

    hints = [h.lower() for h in specialization_hints or [] if h]
    if hints:
        matches = [
            tag
            for tag in agent.specialization or []
            if any(h in tag.lower() for h in hints)
        ]
        score += len(matches) * 20

    response_seconds = agent.avg_response_time_seconds or _DEFAULT_RESPONSE_SECONDS
    score += max(0, 300 - response_seconds) / 300 * 20

    if "technical" in hints and agent.agent_type == "human":
        score += 10

    return AgentScore(agent=agent, score=score, utilization=utilization)


def pick_agent(
    agents: list[TeamAgent],
    specialization_hints: list[str] | None = None,
    preferred_agent_id: str | None = None,
) -> TeamAgent | None:
    """Best available agent, or None when everyone is at capacity."""
    scored = [
        s
        for s in (score_agent(a, specialization_hints) for a in agents)
        if s.utilization < 1
    ]
    if not scored:
        return None
    if preferred_agent_id:
        for s in scored:
            if str(s.agent.id) == preferred_agent_id:
                return s.agent
    return max(scored, key=lambda s: s.score).agent


class TeamAssignmentService:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def auto_assign(
        self,
        conversation_id: str,
        tenant_id: str,
        preferred_agent_id: str | None = None,
        specialization_hints: list[str] | None = None,
    ) -> AssignmentResult:
        """Assign the conversation to the best available agent. Never raises."""
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(TeamAgent).where(
                        TeamAgent.tenant_id == uuid.UUID(tenant_id),
                        TeamAgent.status.in_(AVAILABLE_STATUSES),
                    )
                )
                agents = list(result.scalars().all())
                if not agents:
                    return AssignmentResult(success=False, error="No available agents found")

                agent = pick_agent(agents, specialization_hints, preferred_agent_id)
                if agent is None:
                    return AssignmentResult(
                        success=False, error="All agents are currently overloaded"
                    )

                db.add(
                    AgentAssignment(
                        tenant_id=agent.tenant_id,
                        agent_id=agent.id,
                        conversation_id=conversation_id,
                        reason=", ".join(specialization_hints or []) or None,
                    )
                )
                await db.execute(
                    update(TeamAgent)
                    .where(TeamAgent.id == agent.id)
                    .values(active_conversations=TeamAgent.active_conversations + 1)
                )
                await db.commit()
        except (SQLAlchemyError, ValueError) as e:
            logger.error(
                "agent_assignment_failed",
                conversation_id=conversation_id,
                tenant_id=tenant_id,
                error=str(e),
            )
            return AssignmentResult(success=False, error="Internal error during assignment")

        logger.info(
            "agent_assigned",
            conversation_id=conversation_id,
            agent_id=str(agent.id),
            agent_type=agent.agent_type,
        )
        return AssignmentResult(success=True, agent_id=str(agent.id), agent_name=agent.name)
