"""Command generation rules.

Each rule looks at the classification on its own; several can fire for
the same message. Thresholds come from settings so they match the
strategy table.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from app.core.config import settings
from app.services.orchestrator.types import (
    Classification,
    Command,
    CommandPriority,
    CommandType,
    LiveSession,
)

TASK_INTENTS = frozenset({"order_inquiry", "shipping_issue", "product_support"})


def partition_by_priority(
    commands: list[Command],
) -> tuple[list[Command], list[Command]]:
    """Split into (run now, queue for later), preserving order."""
    immediate = [c for c in commands if c.priority == CommandPriority.HIGH]
    deferred = [c for c in commands if c.priority != CommandPriority.HIGH]
    return immediate, deferred


def generate_commands(
    session: LiveSession,
    classification: Classification,
    now: datetime | None = None,
) -> list[Command]:
    """Translate a classification into follow-up commands."""
    now = now or datetime.now(timezone.utc)
    commands: list[Command] = []

    if classification.urgency_score >= settings.escalation_urgency_threshold:
        commands.append(
            Command(
                type=CommandType.TRANSFER_AGENT,
                payload={
                    "reason": "High urgency issue",
                    "specialization": [classification.category],
                    "priority": "high",
                    "classification": classification.to_dict(),
                },
                priority=CommandPriority.HIGH,
            )
        )

    if classification.intent in TASK_INTENTS:
        due = now + timedelta(hours=settings.task_due_hours)
        commands.append(
            Command(
                type=CommandType.CREATE_TASK,
                payload={
                    "title": f"Follow up on {classification.intent}",
                    "description": (
                        f"Customer {session.customer_name} needs follow-up on: "
                        f"{classification.intent}"
                    ),
                    "due_date": due.isoformat(),
                    "customer_id": session.customer_id,
                },
                priority=CommandPriority.MEDIUM,
            )
        )

    if (
        classification.urgency_score >= settings.callback_urgency_threshold
        and classification.category == "support"
    ):
        commands.append(
            Command(
                type=CommandType.SCHEDULE_CALLBACK,
                payload={
                    "customer_id": session.customer_id,
                    "reason": "Complex support issue follow-up",
                    "preferred_time": "business_hours",
                },
                priority=CommandPriority.MEDIUM,
            )
        )

    return commands
