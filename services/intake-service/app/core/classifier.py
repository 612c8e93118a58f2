from __future__ import annotations

import json
import logging
import re
from enum import Enum
from typing import Any, Optional

from app.core.completion import MODE_CLASSIFICATION, CompletionClient
from app.core.metrics import metrics
from app.core.session import Session

logger = logging.getLogger(__name__)

_NON_TIER_CHARS = re.compile(r"[^A-Z_]")


class Tier(str, Enum):
    SIMPLE = "SIMPLE"
    COMPLEX = "COMPLEX"
    VERY_COMPLEX = "VERY_COMPLEX"


def normalize_tier(raw: Any) -> Optional[Tier]:
    if not isinstance(raw, str):
        return None
    cleaned = _NON_TIER_CHARS.sub("", raw.upper())
    try:
        return Tier(cleaned)
    except ValueError:
        return None


def build_classification_prompt(message: str, session: Session) -> str:
    summary = session.summary or "First message"
    return f"""Classify this customer request as SIMPLE, COMPLEX, or VERY_COMPLEX.

CLASSIFICATION RULES:

SIMPLE - Choose this for:
- Factual questions about services, pricing, or timelines
- Requests for definitions or explanations of concepts
- General questions about AI consulting or implementation
- Straightforward comparisons (DIY vs professional help)

COMPLEX - Choose this for:
- Strategic planning questions requiring multi-step reasoning
- Technical architecture decisions with multiple considerations
- Implementation approaches that need nuanced judgment
- Questions involving compliance, regulations, or risk assessment
- Comparing multiple approaches with tradeoffs
- Follow-up questions that build on complex previous topics

VERY_COMPLEX - Choose this for:
- Custom multi-year roadmaps with financial modeling
- Major business decisions (acquisitions, large investments, partnerships)
- Highly specific industry expertise beyond general consulting
- Legal or regulatory advice requiring attorney review
- Enterprise proposals requiring extensive custom scoping
- Questions explicitly requesting deliverables like "create a complete plan"

CONTEXT:
Conversation turn: {session.count + 1}
Previous context: {summary}

USER REQUEST:
{message}

Respond with valid JSON only:
{{
  "classification": "SIMPLE" | "COMPLEX" | "VERY_COMPLEX",
  "reasoning": "Brief explanation of why"
}}"""


class ModelRouter:
    """Maps classification tiers to completion models."""

    def __init__(self, classification_model: str, simple_model: str, complex_model: str) -> None:
        self.classification_model = classification_model
        self.simple_model = simple_model
        self.complex_model = complex_model

    def for_tier(self, tier: Tier) -> str:
        if tier == Tier.COMPLEX:
            return self.complex_model
        return self.simple_model


class Classifier:
    def __init__(self, client: CompletionClient, router: ModelRouter) -> None:
        self._client = client
        self._router = router

    async def classify(self, message: str, session: Session) -> Tier:
        """Bucket a message into a tier; any failure yields SIMPLE."""
        prompt = build_classification_prompt(message, session)
        try:
            raw = await self._client.complete(prompt, self._router.classification_model, MODE_CLASSIFICATION)
            parsed = json.loads(raw)
        except Exception as exc:
            logger.warning("classification failed, defaulting to SIMPLE: %s", exc)
            metrics.inc("intake_classification_total", {"tier": Tier.SIMPLE.value, "fallback": "error"})
            return Tier.SIMPLE

        if not isinstance(parsed, dict):
            logger.warning("classification payload is not an object: %r", parsed)
            metrics.inc("intake_classification_total", {"tier": Tier.SIMPLE.value, "fallback": "invalid"})
            return Tier.SIMPLE

        tier = normalize_tier(parsed.get("classification"))
        if tier is None:
            logger.warning("invalid classification: %r", parsed)
            metrics.inc("intake_classification_total", {"tier": Tier.SIMPLE.value, "fallback": "invalid"})
            return Tier.SIMPLE

        logger.info("classification: %s - %s", tier.value, parsed.get("reasoning") or "no reason")
        metrics.inc("intake_classification_total", {"tier": tier.value, "fallback": "none"})
        return tier
