"""Message classification: runs before any response is generated.

Keyword rules always run first (fast, deterministic). An LLM pass then
refines the result; its JSON is validated with pydantic and merged with
the keyword result. Any LLM failure leaves the keyword result in place,
so classify() never raises.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from app.services.llm.base import LLMProvider
from app.services.orchestrator.prompts import (
    CLASSIFICATION_PROMPT_TEMPLATE,
    CLASSIFICATION_SYSTEM_PROMPT,
)
from app.services.orchestrator.types import Classification

logger = structlog.get_logger(__name__)

_URGENT_WEIGHTS = {
    "emergency": 3,
    "urgent": 2,
    "asap": 1,
    "critical": 1,
    "help me": 1,
    "stuck": 1,
    "broken": 1,
    "not working": 1,
    "immediate": 1,
}

_CATEGORY_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("acquisition", ("price", "cost", "buy", "purchase", "quote", "demo", "trial", "pricing", "discount", "offer")),
    ("support", ("bug", "error", "problem", "issue", "broken", "fix", "help", "trouble", "support")),
    ("retention", ("cancel", "unsubscribe", "stop", "quit", "leave", "refund", "return")),
    ("engagement", ("how", "when", "where", "what", "why", "learn", "understand", "explain")),
)

_POSITIVE = ("thank", "great", "awesome", "love", "perfect", "excellent", "amazing", "happy")
_NEGATIVE = ("hate", "terrible", "awful", "bad", "worst", "angry", "frustrated", "disappointed", "unacceptable")

# Checked in order; first hit overrides the category-derived intent.
_INTENT_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("complaint", ("unacceptable", "complaint", "complain", "worst service")),
    ("shipping_issue", ("shipping", "delivery", "never arrived", "not arrived", "tracking")),
    ("order_inquiry", ("my order", "order status", "order number")),
)

_CATEGORY_INTENTS = {
    "acquisition": "sales_inquiry",
    "support": "technical_support",
    "retention": "cancellation_request",
}

_VALID_CATEGORIES = {"acquisition", "engagement", "retention", "support", "general"}

# LLM category/priority only replace the keyword result above this confidence.
_LLM_TRUST_THRESHOLD = 0.8


@dataclass
class ClassificationContext:
    """Hints passed to the classifier alongside the raw text."""

    history: list[str] = field(default_factory=list)
    conversation_id: str | None = None
    session_context: dict[str, Any] = field(default_factory=dict)


class _LLMClassification(BaseModel):
    """Shape the LLM is asked to return. Unknown keys are ignored."""

    model_config = ConfigDict(extra="ignore")

    category: str | None = None
    priority: str | None = None
    urgency_score: int = Field(default=0, ge=0, le=10)
    sentiment: str | None = None
    intent: str | None = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    keywords_matched: list[str] = Field(default_factory=list)


def priority_for_urgency(urgency: int) -> str:
    if urgency >= 8:
        return "urgent"
    if urgency >= 5:
        return "high"
    if urgency >= 2:
        return "medium"
    return "low"


def rule_based_classification(content: str) -> Classification:
    """Keyword classification. Deterministic and dependency free."""
    text = content.lower()
    urgency = 0
    matched: list[str] = []

    for keyword, weight in _URGENT_WEIGHTS.items():
        if keyword in text:
            urgency += weight
            matched.append(keyword)

    category = "general"
    confidence = 0.6
    for name, keywords in _CATEGORY_KEYWORDS:
        if any(k in text for k in keywords):
            category = name
            break
    if category == "acquisition":
        confidence = 0.7
    elif category in ("support", "retention"):
        confidence = 0.8
    if category == "retention":
        urgency = max(urgency, 7)

    sentiment = "neutral"
    if any(k in text for k in _POSITIVE):
        sentiment = "positive"
    elif any(k in text for k in _NEGATIVE):
        sentiment = "negative"
        urgency += 1

    intent = _CATEGORY_INTENTS.get(category, "general_inquiry")
    for name, keywords in _INTENT_KEYWORDS:
        if any(k in text for k in keywords):
            intent = name
            break

    urgency = min(urgency, 10)
    return Classification(
        intent=intent,
        sentiment=sentiment,
        urgency_score=urgency,
        category=category,
        priority=priority_for_urgency(urgency),
        confidence=confidence,
        keywords_matched=tuple(matched),
    )


def _strip_code_fence(raw: str) -> str:
    cleaned = raw.strip()
    if cleaned.startswith("```"):
        cleaned = cleaned.strip("`")
        if cleaned.lower().startswith("json"):
            cleaned = cleaned[4:]
    return cleaned.strip()


def merge_classifications(
    rule_based: Classification, llm: _LLMClassification
) -> Classification:
    """Combine keyword and LLM results.

    Category/priority come from the LLM only when it is confident;
    urgency is the max of both so the LLM can never downgrade an alarm.
    """
    trusted = llm.confidence > _LLM_TRUST_THRESHOLD
    category = rule_based.category
    if trusted and llm.category in _VALID_CATEGORIES:
        category = llm.category
    urgency = min(max(llm.urgency_score, rule_based.urgency_score), 10)
    priority = llm.priority if trusted and llm.priority else priority_for_urgency(urgency)
    keywords = tuple(dict.fromkeys([*llm.keywords_matched, *rule_based.keywords_matched]))
    return Classification(
        intent=(llm.intent or rule_based.intent).strip().lower(),
        sentiment=llm.sentiment or rule_based.sentiment,
        urgency_score=urgency,
        category=category,
        priority=priority,
        confidence=max(llm.confidence, rule_based.confidence),
        keywords_matched=keywords,
    )


class MessageClassifier:
    """Classifies inbound messages into intent, sentiment, urgency and category."""

    def __init__(self, llm: LLMProvider | None = None) -> None:
        self._llm = llm

    async def classify(
        self,
        message: str,
        context: ClassificationContext | None = None,
    ) -> Classification:
        """Classify a message. Never raises.

        Returns the keyword result when no LLM is configured or the LLM
        call/parse fails.
        """
        rule_based = rule_based_classification(message)
        if self._llm is None:
            return rule_based

        context = context or ClassificationContext()
        prompt = CLASSIFICATION_PROMPT_TEMPLATE.format(
            context=json.dumps(context.session_context, default=str),
            history="\n".join(context.history[-10:]) or "(none)",
            message=message,
        )
        try:
            result = await self._llm.generate(
                prompt=prompt,
                system_prompt=CLASSIFICATION_SYSTEM_PROMPT,
                max_tokens=300,
                temperature=0.3,
            )
            parsed = _LLMClassification.model_validate_json(
                _strip_code_fence(result.text)
            )
        except ValidationError as e:
            logger.warning(
                "classification_llm_output_invalid",
                error=str(e),
                message_len=len(message),
                conversation_id=context.conversation_id,
            )
            return rule_based
        except Exception as e:
            logger.warning(
                "classification_llm_failed",
                error=str(e),
                message_len=len(message),
                conversation_id=context.conversation_id,
            )
            return rule_based

        classification = merge_classifications(rule_based, parsed)
        logger.debug(
            "message_classified",
            intent=classification.intent,
            category=classification.category,
            urgency_score=classification.urgency_score,
            conversation_id=context.conversation_id,
        )
        return classification
