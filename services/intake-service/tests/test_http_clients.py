import asyncio
import json

import httpx
import pytest

from app.core.completion import MODE_CLASSIFICATION, CompletionClient
from app.core.errors import CompletionFailed
from app.core.mailer import EmailDispatcher
from app.core.retrieval import KeywordRetriever

KB = {
    "documents": [
        {"id": "kb-1", "title": "Chatbots", "tags": ["chatbot"], "keywords": [], "body_md": "Support bots."},
    ]
}


def _transport(status=200, json_body=None, text=None, captured=None):
    def handler(request):
        if captured is not None:
            captured.append(request)
        if json_body is not None:
            return httpx.Response(status, json=json_body)
        return httpx.Response(status, text=text or "")

    return httpx.MockTransport(handler)


def _failing_transport():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    return httpx.MockTransport(handler)


def test_retriever_reads_corpus_over_http():
    captured = []
    retriever = KeywordRetriever("http://kb.local/kb.json", transport=_transport(json_body=KB, captured=captured))

    context = asyncio.run(retriever.retrieve("need a chatbot", None))

    assert context == "[Chatbots]\nSupport bots."
    assert str(captured[0].url) == "http://kb.local/kb.json"


def test_retriever_non_2xx_degrades_to_empty():
    retriever = KeywordRetriever("http://kb.local/kb.json", transport=_transport(status=503, text="down"))

    with pytest.raises(httpx.HTTPStatusError):
        asyncio.run(retriever.fetch_corpus())
    assert asyncio.run(retriever.retrieve("need a chatbot", None)) == ""


def test_completion_posts_openai_payload():
    captured = []
    body = {"choices": [{"message": {"content": '{"classification": "SIMPLE"}'}}]}
    client = CompletionClient("http://llm.local/v1/", "sk-test", transport=_transport(json_body=body, captured=captured))

    content = asyncio.run(client.complete("classify me", "mini", MODE_CLASSIFICATION))

    assert content == '{"classification": "SIMPLE"}'
    request = captured[0]
    assert str(request.url) == "http://llm.local/v1/chat/completions"
    assert request.headers["authorization"] == "Bearer sk-test"
    sent = json.loads(request.content)
    assert sent["model"] == "mini"
    assert sent["response_format"] == {"type": "json_object"}


def test_completion_http_error_raises():
    client = CompletionClient("http://llm.local/v1", "sk", transport=_transport(status=500, text="boom"))
    with pytest.raises(CompletionFailed):
        asyncio.run(client.complete("hi", "mini"))


def test_completion_invalid_json_raises():
    client = CompletionClient("http://llm.local/v1", "sk", transport=_transport(status=200, text="<html>"))
    with pytest.raises(CompletionFailed):
        asyncio.run(client.complete("hi", "mini"))


def test_completion_transport_error_raises():
    client = CompletionClient("http://llm.local/v1", "sk", transport=_failing_transport())
    with pytest.raises(CompletionFailed):
        asyncio.run(client.complete("hi", "mini"))


def _dispatcher(transport):
    return EmailDispatcher(
        "http://mail.local",
        "re-key",
        "Chat <noreply@example.com>",
        "team@example.com",
        transport=transport,
    )


def test_mailer_sends_without_reply_to():
    captured = []
    mailer = _dispatcher(_transport(json_body={"id": "msg-1"}, captured=captured))

    assert asyncio.run(mailer.send("<p>hi</p>", subject="Lead")) is True

    request = captured[0]
    assert str(request.url) == "http://mail.local/emails"
    assert request.headers["authorization"] == "Bearer re-key"
    sent = json.loads(request.content)
    assert sent == {
        "from": "Chat <noreply@example.com>",
        "to": ["team@example.com"],
        "subject": "Lead",
        "html": "<p>hi</p>",
    }


def test_mailer_includes_reply_to_when_given():
    captured = []
    mailer = _dispatcher(_transport(json_body={"id": "msg-2"}, captured=captured))

    asyncio.run(mailer.send("<p>hi</p>", reply_to="visitor@example.com"))

    assert json.loads(captured[0].content)["reply_to"] == "visitor@example.com"


def test_mailer_non_2xx_returns_false():
    mailer = _dispatcher(_transport(status=422, json_body={"message": "invalid from"}))
    assert asyncio.run(mailer.send("<p>hi</p>")) is False


def test_mailer_transport_error_returns_false():
    assert asyncio.run(_dispatcher(_failing_transport()).send("<p>hi</p>")) is False
