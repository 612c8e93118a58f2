from __future__ import annotations

import html
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from app.core.cache import CacheClient
from app.core.errors import AlreadyProcessed, DeliveryFailed, InvalidRequest
from app.core.events import EventLog
from app.core.mailer import EmailDispatcher
from app.core.session import Session, transcript_of

logger = logging.getLogger(__name__)

TICKET_PREFIX = "LC"


@dataclass(frozen=True)
class EscalationTemplate:
    emoji: str
    title: str
    hook: str


ESCALATION_TEMPLATES = (
    EscalationTemplate(
        emoji="🚨",
        title="This one's above my pay grade!",
        hook="Don't worry, we'll bring coffee and way too many sticky notes. 😉",
    ),
    EscalationTemplate(
        emoji="🎯",
        title="You've unlocked: Human Expert Mode!",
        hook="Our team loves these kinds of challenges, consider them caffeinated and ready. ☕",
    ),
    EscalationTemplate(
        emoji="🚀",
        title="Houston, we need a human!",
        hook="Your question deserves the full Limbo Studio brain trust (Post-its included). 📝",
    ),
)


def escalation_key(session_id: str) -> str:
    return f"escalation:sent:{session_id}"


def transcript_key(session_id: str) -> str:
    return f"email:sent:{session_id}"


def _now_ms() -> int:
    return int(time.time() * 1000)


def select_template(now_ms: Optional[int] = None) -> EscalationTemplate:
    stamp = _now_ms() if now_ms is None else int(now_ms)
    return ESCALATION_TEMPLATES[stamp % len(ESCALATION_TEMPLATES)]


def build_escalation_response(now_ms: Optional[int] = None, contact_email: str = "contact@thelimbostudio.com") -> str:
    variant = select_template(now_ms)
    return f"""{variant.emoji} {variant.title}

I can guide you on many things, but this request is best handled by a human at Limbo Studio. Your question requires the kind of deep expertise and custom judgment that goes beyond what I can provide in this chat.

**Good news**: I've automatically sent this conversation to our team at {contact_email}, so they already have all the context.

Someone will reach out within 24 hours to dive into this with you personally.

{variant.hook}

In the meantime, is there anything else I can help you explore?"""


def ticket_id(session_id: str, now: Optional[datetime] = None) -> str:
    day = (now or datetime.now(timezone.utc)).strftime("%Y-%m-%d")
    return f"{TICKET_PREFIX}-{day}-{session_id[-6:]}"


def _escape(value: Any) -> str:
    if value is None:
        return ""
    return html.escape(str(value), quote=True)


def _transcript_html(transcript: List[Dict[str, Any]]) -> str:
    blocks: List[str] = []
    for item in transcript:
        if not isinstance(item, dict):
            continue
        is_user = item.get("role") == "user"
        role = "Visitor" if is_user else "AI Assistant"
        background = "#f0f8ff" if is_user else "#f5f5f5"
        border = "#5bb3ff" if is_user else "#a58cff"
        content = _escape(item.get("content")).replace("\n", "<br/>")
        blocks.append(
            f'<div style="margin: 16px 0; padding: 12px; background: {background}; border-left: 3px solid {border};">'
            f"<strong>{role}:</strong><br/>{content}</div>"
        )
    return "".join(blocks)


def _plan_html(plan: Optional[Dict[str, Any]]) -> str:
    if not isinstance(plan, dict):
        return ""
    diy = plan.get("diy_option") if isinstance(plan.get("diy_option"), dict) else {}
    limbo = plan.get("limbo_option") if isinstance(plan.get("limbo_option"), dict) else {}
    tools = diy.get("tools") if isinstance(diy.get("tools"), list) else []
    tools_text = ", ".join(str(tool) for tool in tools) or "N/A"
    problem = plan.get("problem_statement")
    problem_html = f"<p><strong>Problem:</strong> {_escape(problem)}</p>" if problem else ""
    return (
        "<h2>Generated Plan</h2>"
        '<div style="background: #f9f9f9; padding: 20px; border-radius: 8px;">'
        f"{problem_html}"
        "<h3>DIY Option</h3>"
        f"<p><strong>Tools:</strong> {_escape(tools_text)}</p>"
        f"<p><strong>Effort:</strong> {_escape(diy.get('effort_hours') or 0)} hours</p>"
        "<h3>Limbo Studio Option</h3>"
        f"<p><strong>Timeline:</strong> {_escape(limbo.get('timeline_weeks_total') or 0)} weeks</p>"
        f"<p><strong>Price Band:</strong> {_escape(limbo.get('price_band_usd') or 'TBD')}</p>"
        "</div>"
    )


def format_escalation_email(transcript: List[Dict[str, Any]], session_id: str, session: Session) -> str:
    escalated_at = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
    return f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>High-Value Escalation</title></head>
<body style="font-family: Inter, sans-serif; line-height: 1.6; color: #333; max-width: 700px; margin: 0 auto; padding: 20px;">
  <div style="background: linear-gradient(135deg, #dc3545, #c82333); padding: 30px; text-align: center; border-radius: 12px 12px 0 0;">
    <h1 style="margin: 0; color: white;">🚨 High-Value Lead: Escalated Chat</h1>
  </div>
  <div style="background: white; padding: 30px; border: 1px solid #e0e0e0; border-radius: 0 0 12px 12px;">
    <div style="background: #fff9e6; padding: 16px; border-radius: 8px; margin: 20px 0;">
      <h3 style="margin-top: 0;">⚡ Metadata</h3>
      <p><strong>Session ID:</strong> {_escape(session_id)}</p>
      <p><strong>Total Turns:</strong> {session.count}</p>
      <p><strong>Escalated:</strong> {escalated_at}</p>
    </div>
    <h2>Full Conversation</h2>
    {_transcript_html(transcript)}
    <div style="background: #e6f7ff; padding: 16px; border-radius: 8px; margin-top: 24px;">
      <h3 style="margin-top: 0;">📋 Next Steps</h3>
      <ul>
        <li>Review conversation and assess complexity</li>
        <li>Reach out within 24 hours</li>
        <li>Prepare custom proposal if needed</li>
      </ul>
    </div>
  </div>
</body>
</html>"""


def format_transcript_email(
    transcript: List[Dict[str, Any]],
    plan: Optional[Dict[str, Any]],
    visitor_email: Optional[str],
    additional_request: Optional[str] = None,
) -> str:
    sent_at = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
    from_html = (
        f'<p style="margin: 8px 0 0;"><strong>From:</strong> {_escape(visitor_email)}</p>' if visitor_email else ""
    )
    request_html = ""
    if additional_request:
        request_html = (
            "<h2>Additional Request</h2>"
            f'<p style="white-space: pre-wrap;">{_escape(additional_request)}</p>'
        )
    return f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>New Chat Lead</title></head>
<body style="font-family: Inter, sans-serif; line-height: 1.6; color: #333; max-width: 700px; margin: 0 auto; padding: 20px;">
  <div style="background: linear-gradient(135deg, #8ecbff, #a58cff); padding: 30px; text-align: center; border-radius: 12px 12px 0 0;">
    <h1 style="margin: 0; color: #0b0f14;">🤖 New AI Chat Lead</h1>
    {from_html}
  </div>
  <div style="background: white; padding: 30px; border: 1px solid #e0e0e0; border-radius: 0 0 12px 12px;">
    <h2>Conversation Transcript</h2>
    {_transcript_html(transcript)}
    {_plan_html(plan)}
    {request_html}
    <p style="margin-top: 24px; font-size: 14px; color: #666;">
      <strong>Timestamp:</strong> {sent_at}
    </p>
  </div>
</body>
</html>"""


class EscalationHandler:
    def __init__(self, cache: CacheClient, mailer: EmailDispatcher, events: EventLog, marker_ttl_sec: int) -> None:
        self._cache = cache
        self._mailer = mailer
        self._events = events
        self._marker_ttl_sec = marker_ttl_sec

    def already_sent(self, session_id: str) -> bool:
        return self._cache.get(escalation_key(session_id)) is not None

    async def maybe_escalate(
        self,
        session_id: str,
        session: Session,
        message: str,
        reply: str,
        history: Optional[List[Dict[str, str]]] = None,
    ) -> bool:
        """Email the conversation to the studio once per marker window.

        `history` is the turn list as it was before the triggering message;
        it defaults to the session turns. Returns whether an email went out.
        Delivery problems are logged, never raised.
        """
        if self.already_sent(session_id):
            logger.info("escalation already sent for session, skipping email")
            return False

        transcript = transcript_of(session.turns if history is None else history)
        transcript.append({"role": "user", "content": message})
        transcript.append({"role": "assistant", "content": reply})
        body = format_escalation_email(transcript, session_id, session)
        subject = f"🚨 High-Value Lead: Escalated Chat [{session_id[-6:]}]"

        try:
            delivered = await self._mailer.send(body, subject=subject)
        except Exception:
            logger.exception("escalation email error")
            return False
        if not delivered:
            logger.error("failed to send escalation email")
            return False

        self._cache.set(escalation_key(session_id), str(_now_ms()), self._marker_ttl_sec)
        self._events.log("auto_escalation_sent", {"session_id": session_id})
        return True


class TranscriptHandler:
    def __init__(self, cache: CacheClient, mailer: EmailDispatcher, events: EventLog, marker_ttl_sec: int) -> None:
        self._cache = cache
        self._mailer = mailer
        self._events = events
        self._marker_ttl_sec = marker_ttl_sec

    async def send_transcript(
        self,
        session_id: str,
        visitor_email: Optional[str],
        consent: bool,
        transcript: Any,
        plan: Optional[Dict[str, Any]] = None,
        additional_request: Optional[str] = None,
    ) -> str:
        if not session_id or consent is not True or not isinstance(transcript, list) or not transcript:
            raise InvalidRequest()

        if self._cache.get(transcript_key(session_id)) is not None:
            raise AlreadyProcessed(extra={"message": "Transcript already sent for this session"})

        body = format_transcript_email(transcript, plan, visitor_email, additional_request)
        if not await self._mailer.send(body, reply_to=visitor_email or None):
            raise DeliveryFailed()

        self._cache.set(transcript_key(session_id), str(_now_ms()), self._marker_ttl_sec)
        self._events.log(
            "transcript_sent",
            {"session_id": session_id, "has_visitor_email": bool(visitor_email)},
        )
        return ticket_id(session_id)
