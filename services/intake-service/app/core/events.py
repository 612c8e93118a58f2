from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict

from app.core.cache import CacheClient
from app.core.metrics import metrics

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"[a-zA-Z0-9._%+\-]+@[a-zA-Z0-9.\-]+\.[a-zA-Z]{2,}")
_PHONE_RE = re.compile(r"(\+?1[-.]?)?\(?([0-9]{3})\)?[-.]?([0-9]{3})[-.]?([0-9]{4})")
_SSN_RE = re.compile(r"\b\d{3}-\d{2}-\d{4}\b")
_CARD_RE = re.compile(r"\b\d{4}[\s-]?\d{4}[\s-]?\d{4}[\s-]?\d{4}\b")

# Events that also keep a daily aggregate in the store.
_AGGREGATED_EVENTS = {"query_classification", "llm_call"}


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def today() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d")


def mask_pii(text: str) -> str:
    # Card numbers go first so the phone pattern cannot eat their digits.
    masked = str(text or "")
    masked = _EMAIL_RE.sub("[EMAIL]", masked)
    masked = _CARD_RE.sub("[CC]", masked)
    masked = _SSN_RE.sub("[SSN]", masked)
    masked = _PHONE_RE.sub("[PHONE]", masked)
    return masked


def metrics_key(event_type: str, day: str | None = None) -> str:
    return f"metrics:{event_type}:{day or today()}"


class EventLog:
    def __init__(self, cache: CacheClient, ttl_sec: int) -> None:
        self._cache = cache
        self._ttl_sec = ttl_sec

    def log(self, event_type: str, data: Dict[str, Any]) -> None:
        entry = {"timestamp": now_iso(), **data}
        logger.info("[%s] %s", event_type, json.dumps(entry, ensure_ascii=False, default=str))
        metrics.inc("intake_events_total", {"event": event_type})
        if event_type in _AGGREGATED_EVENTS:
            try:
                self._aggregate(event_type, data)
            except Exception as exc:
                logger.warning("daily metrics update failed for %s: %s", event_type, exc)

    def daily(self, event_type: str, day: str | None = None) -> Dict[str, Any]:
        record = self._cache.get_json(metrics_key(event_type, day))
        if not isinstance(record, dict):
            return {"count": 0, "breakdown": {}}
        return record

    def _aggregate(self, event_type: str, data: Dict[str, Any]) -> None:
        key = metrics_key(event_type)
        record = self.daily(event_type)
        breakdown = record.get("breakdown") if isinstance(record.get("breakdown"), dict) else {}
        record = {"count": int(record.get("count") or 0) + 1, "breakdown": dict(breakdown)}
        for field in ("classification", "model_used"):
            label = data.get(field)
            if label:
                record["breakdown"][str(label)] = int(record["breakdown"].get(str(label)) or 0) + 1
        self._cache.set_json(key, record, self._ttl_sec)
