from __future__ import annotations

import html
import re
from dataclasses import dataclass
from typing import Any

from app.core.errors import DeliveryFailed, InvalidRequest
from app.core.mailer import EmailDispatcher

NAME_MAX = 120
EMAIL_MAX = 200
MESSAGE_MAX = 8000

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


@dataclass(frozen=True)
class Inquiry:
    name: str
    email: str
    message: str


def _clip(value: Any, limit: int) -> str:
    if value is None:
        return ""
    return str(value)[:limit]


def parse_inquiry(body: Any) -> Inquiry:
    if not isinstance(body, dict):
        raise InvalidRequest("Invalid input")
    inquiry = Inquiry(
        name=_clip(body.get("name"), NAME_MAX),
        email=_clip(body.get("email"), EMAIL_MAX),
        message=_clip(body.get("message"), MESSAGE_MAX),
    )
    if not inquiry.name or not inquiry.email or not _EMAIL_RE.match(inquiry.email):
        raise InvalidRequest("Invalid input")
    return inquiry


class ContactHandler:
    def __init__(self, mailer: EmailDispatcher, studio_inbox: str) -> None:
        self._mailer = mailer
        self._studio_inbox = studio_inbox

    async def submit(self, inquiry: Inquiry) -> None:
        name = html.escape(inquiry.name)
        email = html.escape(inquiry.email)
        body_html = f"<p><b>From:</b> {name} &lt;{email}&gt;</p><pre>{html.escape(inquiry.message)}</pre>"
        body_text = f"From: {inquiry.name} <{inquiry.email}>\n\n{inquiry.message}"
        delivered = await self._mailer.send(
            body_html,
            subject=f"New inquiry from {inquiry.name}",
            reply_to=inquiry.email,
            to=[self._studio_inbox],
            text=body_text,
        )
        if not delivered:
            raise DeliveryFailed("Mail send failed")
