"""Response strategy selection.

An ordered rule table evaluated top to bottom; the first matching rule
wins. Adding an intent that needs special handling means adding a row
here, never another string comparison inside the orchestrator.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from app.core.config import settings
from app.services.orchestrator.types import (
    Classification,
    LiveSession,
    ResponseStrategy,
    SessionMode,
)

ESCALATION_INTENTS = frozenset({"complaint"})


@dataclass(frozen=True)
class StrategyRule:
    name: str
    matches: Callable[[LiveSession, Classification], bool]
    strategy: ResponseStrategy


def _needs_escalation(session: LiveSession, classification: Classification) -> bool:
    return (
        classification.urgency_score >= settings.escalation_urgency_threshold
        or classification.intent in ESCALATION_INTENTS
    )


STRATEGY_RULES: tuple[StrategyRule, ...] = (
    StrategyRule("escalation", _needs_escalation, ResponseStrategy.ESCALATE),
    StrategyRule(
        "voice_mode",
        lambda session, _: session.mode == SessionMode.VOICE,
        ResponseStrategy.VOICE_ONLY,
    ),
    StrategyRule(
        "chat_mode",
        lambda session, _: session.mode == SessionMode.CHAT,
        ResponseStrategy.TEXT_ONLY,
    ),
    StrategyRule("hybrid_mode", lambda *_: True, ResponseStrategy.VOICE_WITH_TEXT),
)


def determine_strategy(
    session: LiveSession,
    classification: Classification,
    rules: tuple[StrategyRule, ...] = STRATEGY_RULES,
) -> ResponseStrategy:
    """Return the strategy of the first rule that matches."""
    for rule in rules:
        if rule.matches(session, classification):
            return rule.strategy
    # The table ends in a catch-all; an empty custom table lands here.
    return ResponseStrategy.TEXT_ONLY


def wants_voice(strategy: ResponseStrategy) -> bool:
    return strategy in (ResponseStrategy.VOICE_ONLY, ResponseStrategy.VOICE_WITH_TEXT)
