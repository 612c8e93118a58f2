from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from app.core.metrics import metrics

logger = logging.getLogger(__name__)

DEFAULT_SUBJECT = "New AI Chat Lead"


class EmailDispatcher:
    """Sends html mail through a Resend-compatible HTTP API.

    `send` reports delivery as a boolean and never raises; callers decide
    whether a failed delivery matters.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        sender: str,
        default_to: str,
        timeout_sec: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.sender = sender
        self.default_to = default_to
        self.timeout_sec = timeout_sec
        self.transport = transport

    def build_payload(
        self,
        html: str,
        subject: Optional[str] = None,
        reply_to: Optional[str] = None,
        to: Optional[List[str]] = None,
        text: Optional[str] = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "from": self.sender,
            "to": to or [self.default_to],
            "subject": subject or DEFAULT_SUBJECT,
            "html": html,
        }
        if text:
            payload["text"] = text
        if reply_to:
            payload["reply_to"] = reply_to
        return payload

    async def send(
        self,
        html: str,
        subject: Optional[str] = None,
        reply_to: Optional[str] = None,
        to: Optional[List[str]] = None,
        text: Optional[str] = None,
    ) -> bool:
        headers = {"content-type": "application/json", "authorization": f"Bearer {self.api_key}"}
        payload = self.build_payload(html, subject, reply_to, to, text)
        try:
            async with httpx.AsyncClient(timeout=self.timeout_sec, transport=self.transport) as client:
                response = await client.post(f"{self.base_url}/emails", json=payload, headers=headers)
        except httpx.HTTPError as exc:
            logger.error("email send error: %s", exc)
            metrics.inc("intake_email_send_total", {"result": "error"})
            return False

        if response.status_code >= 400:
            logger.error("email API error: %s %s", response.status_code, response.text[:500])
            metrics.inc("intake_email_send_total", {"result": f"http_{response.status_code}"})
            return False

        try:
            message_id = response.json().get("id")
        except (ValueError, AttributeError):
            message_id = None
        logger.info("email sent successfully: %s", message_id)
        metrics.inc("intake_email_send_total", {"result": "ok"})
        return True
