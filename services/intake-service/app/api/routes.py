import logging
import time
from typing import Any, Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from app.api.schemas import ChatRequest, ChatResponse, HealthResponse, TranscriptRequest, TranscriptResponse
from app.core.cache import get_cache
from app.core.chat import build_services, failure_reply
from app.core.contact import parse_inquiry
from app.core.errors import CompletionFailed, IntakeError, InvalidRequest
from app.core.metrics import metrics
from app.core.settings import SETTINGS

router = APIRouter(prefix="/api")
logger = logging.getLogger(__name__)

services = build_services(SETTINGS, get_cache())


@router.get("/health")
def health():
    payload = HealthResponse(service=services.settings.service_name, timestamp=int(time.time() * 1000))
    return payload.model_dump()


@router.get("/metrics")
def metrics_endpoint():
    return metrics.snapshot()


@router.post("/chat")
async def chat(request: Request):
    try:
        body = await _read_json(request)
        payload = ChatRequest.model_validate(body)
        result = await services.chat.run_chat(
            payload.session_id,
            payload.message,
            payload.starter,
            client_ip(request),
        )
    except ValidationError:
        return _error_response(InvalidRequest())
    except CompletionFailed:
        return _internal_error(reply=True)
    except IntakeError as exc:
        return _error_response(exc)
    except Exception:
        logger.exception("chat error")
        return _internal_error(reply=True)
    return ChatResponse(**result).model_dump()


@router.post("/send-transcript")
async def send_transcript(request: Request):
    try:
        body = await _read_json(request)
        payload = TranscriptRequest.model_validate(body)
        ticket_id = await services.transcripts.send_transcript(
            payload.session_id,
            payload.visitor_email,
            payload.consent,
            payload.transcript,
            payload.plan,
            payload.additional_request,
        )
    except ValidationError:
        return _error_response(InvalidRequest())
    except IntakeError as exc:
        return _error_response(exc)
    except Exception:
        logger.exception("send transcript error")
        return _internal_error(reply=False)
    return TranscriptResponse(ticket_id=ticket_id).model_dump()


@router.post("/contact")
async def contact(request: Request):
    try:
        body = await _read_json(request, error="Invalid input")
        await services.contact.submit(parse_inquiry(body))
    except IntakeError as exc:
        return _error_response(exc)
    except Exception:
        logger.exception("contact error")
        return _internal_error(reply=False)
    return {"ok": True}


def client_ip(request: Request) -> str:
    # X-Forwarded-For is client-controlled and is not used for rate limiting.
    connecting = request.headers.get("cf-connecting-ip")
    if connecting and connecting.strip():
        return connecting.strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


async def _read_json(request: Request, error: Optional[str] = None) -> Any:
    try:
        body = await request.json()
    except Exception:
        raise InvalidRequest(error)
    if not isinstance(body, dict):
        raise InvalidRequest(error)
    return body


def _error_response(exc: IntakeError) -> JSONResponse:
    metrics.inc("intake_request_error_total", {"error": exc.error})
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


def _internal_error(reply: bool) -> JSONResponse:
    content = {"ok": False, "error": "Internal error"}
    if reply:
        content["reply_markdown"] = failure_reply(services.settings.contact_email)
    metrics.inc("intake_request_error_total", {"error": "Internal error"})
    return JSONResponse(status_code=500, content=content)
