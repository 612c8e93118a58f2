from __future__ import annotations

from typing import Any, Dict, Optional


class IntakeError(Exception):
    """Base error carrying the HTTP status and public error string."""

    status_code = 500
    error = "Internal error"

    def __init__(self, error: str | None = None, *, extra: Optional[Dict[str, Any]] = None) -> None:
        if error:
            self.error = error
        super().__init__(self.error)
        self.extra = extra or {}

    def to_payload(self) -> Dict[str, Any]:
        return {"ok": False, "error": self.error, **self.extra}


class InvalidRequest(IntakeError):
    status_code = 400
    error = "Invalid request"


class RateLimited(IntakeError):
    status_code = 429
    error = "RATE_LIMIT"


class AlreadyProcessed(IntakeError):
    status_code = 429
    error = "Already sent"


class UpstreamFailure(IntakeError):
    status_code = 502
    error = "Upstream failed"


class CompletionFailed(UpstreamFailure):
    error = "Completion failed"


class DeliveryFailed(UpstreamFailure):
    error = "Email failed"


class InternalError(IntakeError):
    status_code = 500
    error = "Internal error"


__all__ = [
    "IntakeError",
    "InvalidRequest",
    "RateLimited",
    "AlreadyProcessed",
    "UpstreamFailure",
    "CompletionFailed",
    "DeliveryFailed",
    "InternalError",
]
