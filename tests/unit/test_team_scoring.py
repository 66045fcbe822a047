"""Unit tests for team agent scoring and selection."""

from __future__ import annotations

import uuid

import pytest

from app.models import TeamAgent
from app.services.team.assignment import pick_agent, score_agent

_TENANT = uuid.UUID("00000000-0000-0000-0000-000000000001")


def _agent(
    name: str,
    agent_type: str = "human",
    active: int = 0,
    specialization: list[str] | None = None,
    avg_response: int | None = None,
) -> TeamAgent:
    return TeamAgent(
        id=uuid.uuid4(),
        tenant_id=_TENANT,
        name=name,
        agent_type=agent_type,
        status="online",
        specialization=specialization or [],
        active_conversations=active,
        avg_response_time_seconds=avg_response,
    )


class TestScoreAgent:
    def test_idle_ai_agent_scores_availability_only(self) -> None:
        result = score_agent(_agent("bot", agent_type="ai_agent"), None)
        assert result.utilization == 0
        assert result.score == pytest.approx(50)

    def test_human_with_load_speed_and_technical_match(self) -> None:
        agent = _agent("Arjun", active=5, specialization=["Technical Support"], avg_response=60)
        result = score_agent(agent, ["technical"])
        # 25 availability + 20 specialization + 16 speed + 10 human-technical
        assert result.utilization == pytest.approx(0.5)
        assert result.score == pytest.approx(71)

    def test_ai_agent_gets_no_technical_bonus(self) -> None:
        agent = _agent("bot", agent_type="ai_agent", specialization=["technical"])
        assert score_agent(agent, ["technical"]).score == pytest.approx(70)

    def test_capacity_depends_on_agent_type(self) -> None:
        assert score_agent(_agent("h", active=10), None).utilization == pytest.approx(1.0)
        assert score_agent(_agent("a", agent_type="ai_agent", active=10), None).utilization == pytest.approx(0.2)


class TestPickAgent:
    def test_best_score_wins(self) -> None:
        slow = _agent("slow", avg_response=290)
        billing = _agent("billing", specialization=["billing"], avg_response=120)
        assert pick_agent([slow, billing], ["billing"]) is billing

    def test_agents_at_capacity_are_skipped(self) -> None:
        full = _agent("full", active=10, specialization=["billing"])
        free = _agent("free", active=9)
        assert pick_agent([full, free], ["billing"]) is free

    def test_everyone_overloaded_returns_none(self) -> None:
        assert pick_agent([_agent("a", active=10), _agent("b", active=12)]) is None

    def test_preferred_agent_taken_when_available(self) -> None:
        strong = _agent("strong", specialization=["billing"], avg_response=10)
        preferred = _agent("preferred", active=3)
        assert pick_agent([strong, preferred], ["billing"], str(preferred.id)) is preferred

    def test_preferred_agent_at_capacity_is_ignored(self) -> None:
        strong = _agent("strong")
        preferred = _agent("preferred", active=10)
        assert pick_agent([strong, preferred], None, str(preferred.id)) is strong
