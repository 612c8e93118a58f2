from __future__ import annotations

import logging
import time
from typing import Optional

from app.core.cache import CacheClient
from app.core.metrics import metrics
from app.core.session import SessionManager

logger = logging.getLogger(__name__)

BUCKET_SEC = 3600


def hour_bucket(now: float) -> int:
    return int(now // BUCKET_SEC)


def ip_key(ip: str, bucket: int) -> str:
    return f"rl:ip:{ip}:{bucket}"


class RateLimiter:
    """Per-IP hourly and per-session lifetime caps.

    Counters are plain reads followed by writes, so concurrent requests can
    overshoot a cap by the number of requests in flight.
    """

    def __init__(
        self,
        cache: CacheClient,
        sessions: SessionManager,
        ip_hourly_limit: int = 20,
        session_turn_limit: int = 12,
    ) -> None:
        self._cache = cache
        self._sessions = sessions
        self.ip_hourly_limit = max(1, ip_hourly_limit)
        self.session_turn_limit = max(1, session_turn_limit)

    def ip_count(self, ip: str, now: Optional[float] = None) -> int:
        bucket = hour_bucket(time.time() if now is None else now)
        raw = self._cache.get(ip_key(ip, bucket))
        try:
            return int(raw or 0)
        except (TypeError, ValueError):
            return 0

    def admit(self, ip: str, session_id: str, now: Optional[float] = None) -> bool:
        now = time.time() if now is None else now
        key = ip_key(ip, hour_bucket(now))
        if self.ip_count(ip, now) >= self.ip_hourly_limit:
            metrics.inc("intake_rate_limited_total", {"scope": "ip"})
            logger.info("rate limit hit for ip bucket %s", key)
            return False

        self._cache.incr(key, ttl=BUCKET_SEC)

        session = self._sessions.load(session_id)
        if session.count >= self.session_turn_limit:
            metrics.inc("intake_rate_limited_total", {"scope": "session"})
            logger.info("session turn limit hit (count=%s)", session.count)
            return False
        return True
