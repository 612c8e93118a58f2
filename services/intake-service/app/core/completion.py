from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional

import httpx

from app.core.errors import CompletionFailed
from app.core.metrics import metrics

logger = logging.getLogger(__name__)

MODE_CHAT = "chat"
MODE_CLASSIFICATION = "classification"

_SYSTEM_PROMPTS = {
    MODE_CHAT: "You are a helpful AI assistant for The Limbo Studio, a bespoke AI consultancy.",
    MODE_CLASSIFICATION: "You are a classification system. Return only valid JSON with classification and reasoning fields.",
}


def build_messages(prompt: str, mode: str) -> List[Dict[str, str]]:
    return [
        {"role": "system", "content": _SYSTEM_PROMPTS.get(mode, _SYSTEM_PROMPTS[MODE_CHAT])},
        {"role": "user", "content": prompt},
    ]


def build_payload(prompt: str, model: str, mode: str) -> Dict[str, Any]:
    classification = mode == MODE_CLASSIFICATION
    body: Dict[str, Any] = {
        "model": model,
        "max_tokens": 100 if classification else 2000,
        "temperature": 0 if classification else 0.7,
        "messages": build_messages(prompt, mode),
    }
    if classification:
        body["response_format"] = {"type": "json_object"}
    return body


def extract_content(data: Any) -> str:
    if not isinstance(data, dict):
        return ""
    choices = data.get("choices")
    if isinstance(choices, list) and choices:
        choice = choices[0]
        if isinstance(choice, dict):
            message = choice.get("message")
            if isinstance(message, dict) and message.get("content") is not None:
                return str(message.get("content"))
            if choice.get("text") is not None:
                return str(choice.get("text"))
    return ""


class CompletionClient:
    """OpenAI-compatible chat completion client."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout_sec: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout_sec = timeout_sec
        self.transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {"content-type": "application/json"}
        if self.api_key:
            headers["authorization"] = f"Bearer {self.api_key}"
        return headers

    async def complete(self, prompt: str, model: str, mode: str = MODE_CHAT) -> str:
        started = time.perf_counter()
        try:
            async with httpx.AsyncClient(timeout=self.timeout_sec, transport=self.transport) as client:
                response = await client.post(
                    f"{self.base_url}/chat/completions",
                    json=build_payload(prompt, model, mode),
                    headers=self._headers(),
                )
        except httpx.HTTPError as exc:
            metrics.inc("intake_llm_call_total", {"mode": mode, "result": "error"})
            logger.error("completion request failed: %s", exc)
            raise CompletionFailed() from exc

        if response.status_code >= 400:
            metrics.inc("intake_llm_call_total", {"mode": mode, "result": f"http_{response.status_code}"})
            logger.error("completion API error: %s %s", response.status_code, response.text[:500])
            raise CompletionFailed()

        try:
            data = response.json()
        except ValueError as exc:
            metrics.inc("intake_llm_call_total", {"mode": mode, "result": "invalid_json"})
            logger.error("completion API returned invalid json")
            raise CompletionFailed() from exc

        metrics.inc("intake_llm_call_total", {"mode": mode, "result": "ok"})
        took_ms = int((time.perf_counter() - started) * 1000)
        logger.debug("completion model=%s mode=%s took_ms=%s", model, mode, took_ms)
        return extract_content(data)
