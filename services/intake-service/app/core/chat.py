from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from app.core.cache import CacheClient
from app.core.classifier import Classifier, ModelRouter, Tier
from app.core.completion import MODE_CHAT, CompletionClient
from app.core.contact import ContactHandler
from app.core.errors import InvalidRequest, RateLimited
from app.core.escalation import EscalationHandler, TranscriptHandler, build_escalation_response
from app.core.events import EventLog, mask_pii
from app.core.limiter import RateLimiter
from app.core.mailer import EmailDispatcher
from app.core.metrics import metrics
from app.core.prompting import build_prompt, parse_completion, sanitize_input, starter_message
from app.core.retrieval import KeywordRetriever
from app.core.session import SessionManager
from app.core.settings import Settings

logger = logging.getLogger(__name__)

MAX_MESSAGE_CHARS = 1000


def rate_limit_reply(contact_email: str) -> str:
    return f"You've reached the rate limit. Please try again in an hour or email us at {contact_email}"


def failure_reply(contact_email: str) -> str:
    return f"Sorry, something went wrong. Please try again or contact us at {contact_email}"


class ChatOrchestrator:
    """Runs one chat turn end to end.

    Steps run strictly in order: admit, load session, retrieve, classify,
    generate (or escalate), save, then the escalation email. Nothing is
    retried; retrieval and classification degrade to safe defaults, a failed
    completion propagates to the caller.
    """

    def __init__(
        self,
        sessions: SessionManager,
        limiter: RateLimiter,
        retriever: KeywordRetriever,
        classifier: Classifier,
        router: ModelRouter,
        completion: CompletionClient,
        escalation: EscalationHandler,
        events: EventLog,
        contact_email: str,
    ) -> None:
        self.sessions = sessions
        self.limiter = limiter
        self.retriever = retriever
        self.classifier = classifier
        self.router = router
        self.completion = completion
        self.escalation = escalation
        self.events = events
        self.contact_email = contact_email

    def resolve_message(self, message: Optional[str], starter: Optional[str]) -> str:
        if not message and not starter:
            raise InvalidRequest()
        text = sanitize_input(starter_message(starter) if starter else message)
        if not text:
            raise InvalidRequest()
        if len(text) > MAX_MESSAGE_CHARS:
            raise InvalidRequest("Message too long")
        return text

    async def run_chat(
        self,
        session_id: str,
        message: Optional[str],
        starter: Optional[str],
        ip: str,
    ) -> Dict[str, Any]:
        if not session_id:
            raise InvalidRequest()
        user_message = self.resolve_message(message, starter)

        if not self.limiter.admit(ip, session_id):
            raise RateLimited(extra={"reply_markdown": rate_limit_reply(self.contact_email)})

        session = self.sessions.load(session_id)
        history = list(session.turns)
        self.sessions.record_user_turn(session, user_message)

        kb_context = await self.retriever.retrieve(user_message, starter)
        prompt = build_prompt(session, user_message, kb_context)

        tier = await self.classifier.classify(user_message, session)
        self.events.log(
            "query_classification",
            {"classification": tier.value, "message_preview": mask_pii(user_message[:100])},
        )

        is_escalation = tier == Tier.VERY_COMPLEX
        if is_escalation:
            completion = build_escalation_response(contact_email=self.contact_email)
        else:
            model = self.router.for_tier(tier)
            completion = await self.completion.complete(prompt, model, MODE_CHAT)
            self.events.log(
                "llm_call",
                {"classification": tier.value, "model_used": model, "session_count": session.count},
            )

        parsed = parse_completion(completion, is_escalation)

        self.sessions.record_assistant_turn(session, parsed.reply_markdown)
        self.sessions.save(session_id, session)

        if is_escalation:
            await self.escalation.maybe_escalate(session_id, session, user_message, completion, history=history)

        self.events.log("chat_turn", {"session_id": session_id, "step": parsed.step})
        metrics.inc("intake_chat_turn_total", {"tier": tier.value, "step": parsed.step})
        return {
            "ok": True,
            "reply_markdown": parsed.reply_markdown,
            "plan": parsed.plan,
            "is_final": parsed.is_final,
            "step": parsed.step,
        }


@dataclass
class Services:
    settings: Settings
    cache: CacheClient
    events: EventLog
    chat: ChatOrchestrator
    transcripts: TranscriptHandler
    contact: ContactHandler


def build_services(
    settings: Settings,
    cache: CacheClient,
    *,
    completion: Optional[CompletionClient] = None,
    mailer: Optional[EmailDispatcher] = None,
    retriever: Optional[KeywordRetriever] = None,
) -> Services:
    completion = completion or CompletionClient(settings.llm_base_url, settings.llm_api_key, settings.llm_timeout_sec)
    mailer = mailer or EmailDispatcher(
        settings.email_base_url,
        settings.email_api_key,
        settings.email_from,
        settings.email_to,
        settings.email_timeout_sec,
    )
    retriever = retriever or KeywordRetriever(settings.kb_url, settings.kb_timeout_sec)

    events = EventLog(cache, settings.metrics_ttl_sec)
    sessions = SessionManager(cache, settings.session_ttl_sec)
    limiter = RateLimiter(cache, sessions, settings.ip_hourly_limit, settings.session_turn_limit)
    router = ModelRouter(settings.model_classification, settings.model_simple, settings.model_complex)
    chat = ChatOrchestrator(
        sessions=sessions,
        limiter=limiter,
        retriever=retriever,
        classifier=Classifier(completion, router),
        router=router,
        completion=completion,
        escalation=EscalationHandler(cache, mailer, events, settings.escalation_marker_ttl_sec),
        events=events,
        contact_email=settings.contact_email,
    )
    return Services(
        settings=settings,
        cache=cache,
        events=events,
        chat=chat,
        transcripts=TranscriptHandler(cache, mailer, events, settings.transcript_marker_ttl_sec),
        contact=ContactHandler(mailer, settings.email_to),
    )
