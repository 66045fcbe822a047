"""SQLAlchemy ORM models.

Individual models should be imported explicitly:
    from app.models.session import ConversationSession

All models are imported here so Alembic can detect them during migration
autogenerate. This module is imported by alembic/env.py.
"""

from app.models.agent import AgentAssignment, TeamAgent
from app.models.customer import Customer
from app.models.session import ConversationSession
from app.models.task import Callback, FollowUpTask
from app.models.tenant import Tenant

__all__ = [
    "Tenant",
    "Customer",
    "ConversationSession",
    "FollowUpTask",
    "Callback",
    "TeamAgent",
    "AgentAssignment",
]
