import json
import time

from fastapi.testclient import TestClient

from app.api import routes
from app.core.cache import CacheClient
from app.core.chat import build_services
from app.core.errors import CompletionFailed
from app.core.escalation import escalation_key, transcript_key
from app.core.limiter import hour_bucket, ip_key
from app.core.metrics import metrics
from app.core.session import Session, session_key
from app.core.settings import SETTINGS
from app.main import app


class FakeCompletion:
    def __init__(self, tier="SIMPLE", reply="We build AI chatbots, automations and more.", fail=False):
        self.tier = tier
        self.reply = reply
        self.fail = fail
        self.calls = []

    async def complete(self, prompt, model, mode="chat"):
        self.calls.append({"prompt": prompt, "model": model, "mode": mode})
        if mode == "classification":
            return json.dumps({"classification": self.tier, "reasoning": "test"})
        if self.fail:
            raise CompletionFailed()
        return self.reply


class FakeMailer:
    def __init__(self, delivered=True):
        self.delivered = delivered
        self.sent = []

    async def send(self, html, subject=None, reply_to=None, to=None, text=None):
        self.sent.append({"html": html, "subject": subject, "reply_to": reply_to, "to": to, "text": text})
        return self.delivered


class FakeRetriever:
    def __init__(self, context=""):
        self.context = context

    async def retrieve(self, message, starter=None):
        return self.context


def _install(monkeypatch, completion=None, mailer=None, retriever=None):
    metrics.reset()
    services = build_services(
        SETTINGS,
        CacheClient(None),
        completion=completion or FakeCompletion(),
        mailer=mailer or FakeMailer(),
        retriever=retriever or FakeRetriever(),
    )
    monkeypatch.setattr(routes, "services", services)
    return services


def test_health_reports_service():
    response = TestClient(app).get("/api/health")
    assert response.status_code == 200
    payload = response.json()
    assert payload["ok"] is True
    assert payload["service"] == SETTINGS.service_name
    assert isinstance(payload["timestamp"], int)


def test_simple_question_gets_clarifying_reply(monkeypatch):
    completion = FakeCompletion(tier="SIMPLE")
    services = _install(monkeypatch, completion=completion)

    response = TestClient(app).post(
        "/api/chat",
        json={"session_id": "sess-simple", "message": "What services do you offer?"},
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload == {
        "ok": True,
        "reply_markdown": "We build AI chatbots, automations and more.",
        "plan": None,
        "is_final": False,
        "step": "ask",
    }
    assert [call["mode"] for call in completion.calls] == ["classification", "chat"]
    assert completion.calls[1]["model"] == SETTINGS.model_simple

    session = services.cache.get_json(session_key("sess-simple"))
    assert session["count"] == 1
    assert session["turns"][0] == {"u": "What services do you offer?"}
    assert services.events.daily("query_classification")["breakdown"]["SIMPLE"] == 1
    assert services.events.daily("llm_call")["count"] == 1


def test_complex_question_routes_to_complex_model(monkeypatch):
    completion = FakeCompletion(tier="COMPLEX")
    _install(monkeypatch, completion=completion)

    response = TestClient(app).post(
        "/api/chat",
        json={"session_id": "sess-complex", "message": "Compare RAG architectures for compliance"},
    )

    assert response.status_code == 200
    assert completion.calls[1]["model"] == SETTINGS.model_complex


def test_recommendation_with_plan_is_final(monkeypatch):
    reply = 'Here is a plan.\n```json\n{"step": "recommend", "plan": {"problem_statement": "Slow support"}}\n```'
    _install(monkeypatch, completion=FakeCompletion(reply=reply))

    response = TestClient(app).post("/api/chat", json={"session_id": "sess-plan", "starter": "site-bot"})

    payload = response.json()
    assert payload["reply_markdown"] == "Here is a plan."
    assert payload["plan"] == {"problem_statement": "Slow support"}
    assert payload["is_final"] is True
    assert payload["step"] == "recommend"


def test_ip_over_hourly_limit_is_rate_limited(monkeypatch):
    completion = FakeCompletion()
    services = _install(monkeypatch, completion=completion)
    services.cache.set(ip_key("1.2.3.4", hour_bucket(time.time())), "20", 3600)

    response = TestClient(app).post(
        "/api/chat",
        headers={"CF-Connecting-IP": "1.2.3.4"},
        json={"session_id": "sess-limited", "message": "hello"},
    )

    assert response.status_code == 429
    payload = response.json()
    assert payload["ok"] is False
    assert payload["error"] == "RATE_LIMIT"
    assert "rate limit" in payload["reply_markdown"]
    assert completion.calls == []
    assert services.cache.get_json(session_key("sess-limited")) is None


def test_session_turn_cap_is_rate_limited(monkeypatch):
    services = _install(monkeypatch)
    services.cache.set_json(session_key("sess-long"), Session(count=12).to_record(), 3600)

    response = TestClient(app).post("/api/chat", json={"session_id": "sess-long", "message": "one more"})

    assert response.status_code == 429
    assert response.json()["error"] == "RATE_LIMIT"


def test_very_complex_request_escalates_once(monkeypatch):
    completion = FakeCompletion(tier="VERY_COMPLEX")
    mailer = FakeMailer()
    services = _install(monkeypatch, completion=completion, mailer=mailer)
    client = TestClient(app)

    first = client.post(
        "/api/chat",
        json={"session_id": "sess-escalate-42", "message": "Create a complete five-year roadmap with financials"},
    )
    second = client.post(
        "/api/chat",
        json={"session_id": "sess-escalate-42", "message": "Also plan our acquisition strategy"},
    )

    assert first.status_code == 200
    payload = first.json()
    assert payload["step"] == "escalation"
    assert payload["plan"] is None
    assert payload["is_final"] is False
    assert "human at Limbo Studio" in payload["reply_markdown"]
    assert [call["mode"] for call in completion.calls] == ["classification", "classification"]

    assert second.json()["step"] == "escalation"
    assert len(mailer.sent) == 1
    assert mailer.sent[0]["subject"].endswith("[ate-42]")
    assert services.cache.get_json(session_key("sess-escalate-42"))["count"] == 2
    assert services.cache.get(escalation_key("sess-escalate-42")) is not None


def test_missing_session_id_is_invalid(monkeypatch):
    _install(monkeypatch)
    response = TestClient(app).post("/api/chat", json={"message": "hi"})
    assert response.status_code == 400
    assert response.json() == {"ok": False, "error": "Invalid request"}


def test_missing_message_and_starter_is_invalid(monkeypatch):
    _install(monkeypatch)
    response = TestClient(app).post("/api/chat", json={"session_id": "sess"})
    assert response.status_code == 400


def test_malformed_json_is_invalid(monkeypatch):
    _install(monkeypatch)
    response = TestClient(app).post(
        "/api/chat",
        content="{invalid",
        headers={"content-type": "application/json"},
    )
    assert response.status_code == 400
    assert response.json()["error"] == "Invalid request"


def test_overlong_message_is_rejected(monkeypatch):
    _install(monkeypatch)
    response = TestClient(app).post("/api/chat", json={"session_id": "sess", "message": "x" * 1001})
    assert response.status_code == 400
    assert response.json()["error"] == "Message too long"


def test_completion_failure_returns_fallback_reply(monkeypatch):
    services = _install(monkeypatch, completion=FakeCompletion(fail=True))

    response = TestClient(app).post("/api/chat", json={"session_id": "sess-fail", "message": "hello"})

    assert response.status_code == 500
    payload = response.json()
    assert payload["ok"] is False
    assert payload["error"] == "Internal error"
    assert SETTINGS.contact_email in payload["reply_markdown"]
    assert services.cache.get_json(session_key("sess-fail")) is None


def test_send_transcript_flow(monkeypatch):
    mailer = FakeMailer()
    _install(monkeypatch, mailer=mailer)
    client = TestClient(app)
    body = {
        "session_id": "sess-transcript-1",
        "visitor_email": "visitor@example.com",
        "consent": True,
        "transcript": [{"role": "user", "content": "hello"}],
        "plan": {"problem_statement": "Slow support"},
    }

    first = client.post("/api/send-transcript", json=body)
    second = client.post("/api/send-transcript", json=body)

    assert first.status_code == 200
    assert first.json()["ok"] is True
    assert first.json()["ticket_id"].endswith("ript-1")
    assert second.status_code == 429
    assert second.json()["error"] == "Already sent"
    assert len(mailer.sent) == 1


def test_send_transcript_requires_boolean_consent(monkeypatch):
    _install(monkeypatch)
    response = TestClient(app).post(
        "/api/send-transcript",
        json={"session_id": "sess", "consent": "true", "transcript": [{"role": "user", "content": "hi"}]},
    )
    assert response.status_code == 400


def test_send_transcript_delivery_failure(monkeypatch):
    _install(monkeypatch, mailer=FakeMailer(delivered=False))
    response = TestClient(app).post(
        "/api/send-transcript",
        json={"session_id": "sess", "consent": True, "transcript": [{"role": "user", "content": "hi"}]},
    )
    assert response.status_code == 502
    assert response.json()["error"] == "Email failed"


def test_contact_form_sends_inquiry(monkeypatch):
    mailer = FakeMailer()
    _install(monkeypatch, mailer=mailer)

    response = TestClient(app).post(
        "/api/contact",
        json={"name": "Ada", "email": "ada@example.com", "message": "Let's talk"},
    )

    assert response.status_code == 200
    assert response.json() == {"ok": True}
    assert mailer.sent[0]["subject"] == "New inquiry from Ada"
    assert mailer.sent[0]["reply_to"] == "ada@example.com"


def test_contact_form_rejects_bad_email(monkeypatch):
    _install(monkeypatch)
    response = TestClient(app).post("/api/contact", json={"name": "Ada", "email": "nope", "message": "hi"})
    assert response.status_code == 400
    assert response.json()["error"] == "Invalid input"


def test_contact_form_reports_mail_failure(monkeypatch):
    _install(monkeypatch, mailer=FakeMailer(delivered=False))
    response = TestClient(app).post(
        "/api/contact",
        json={"name": "Ada", "email": "ada@example.com", "message": "hi"},
    )
    assert response.status_code == 502
    assert response.json()["error"] == "Mail send failed"


def test_preflight_returns_cors_headers():
    response = TestClient(app).options("/api/chat")
    assert response.status_code == 204
    assert response.headers["access-control-allow-origin"] == SETTINGS.cors_allow_origin
    assert "POST" in response.headers["access-control-allow-methods"]


def test_unknown_route_is_not_found_with_cors():
    response = TestClient(app).get("/api/nope")
    assert response.status_code == 404
    assert response.text == "Not found"
    assert response.headers["access-control-allow-origin"] == SETTINGS.cors_allow_origin


def test_metrics_endpoint_exposes_counters(monkeypatch):
    _install(monkeypatch)
    client = TestClient(app)
    client.post("/api/chat", json={"session_id": "sess-metrics", "message": "hello"})

    snapshot = client.get("/api/metrics").json()
    assert snapshot["intake_chat_turn_total{step=ask,tier=SIMPLE}"] == 1


def test_send_transcript_without_consent_writes_no_marker(monkeypatch):
    mailer = FakeMailer()
    services = _install(monkeypatch, mailer=mailer)

    response = TestClient(app).post(
        "/api/send-transcript",
        json={"session_id": "sess-noconsent", "consent": False, "transcript": [{"role": "user", "content": "hi"}]},
    )

    assert response.status_code == 400
    assert response.json() == {"ok": False, "error": "Invalid request"}
    assert services.cache.get(transcript_key("sess-noconsent")) is None
    assert mailer.sent == []


def test_forwarded_for_header_does_not_reset_ip_quota(monkeypatch):
    completion = FakeCompletion()
    services = _install(monkeypatch, completion=completion)
    services.cache.set(ip_key("testclient", hour_bucket(time.time())), "20", 3600)
    client = TestClient(app)

    for forwarded in ("10.0.0.1", "10.0.0.2"):
        response = client.post(
            "/api/chat",
            headers={"X-Forwarded-For": forwarded},
            json={"session_id": "sess-rotate", "message": "hello"},
        )
        assert response.status_code == 429
    assert completion.calls == []
