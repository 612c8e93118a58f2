from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, StrictBool


class ChatRequest(BaseModel):
    session_id: str = Field(min_length=1)
    message: Optional[str] = None
    starter: Optional[str] = None
    client_ts: Optional[Any] = None


class TranscriptRequest(BaseModel):
    session_id: str = Field(min_length=1)
    visitor_email: Optional[str] = None
    consent: StrictBool = False
    transcript: List[Dict[str, Any]] = []
    plan: Optional[Dict[str, Any]] = None
    additional_request: Optional[str] = None


class ChatResponse(BaseModel):
    ok: bool = True
    reply_markdown: str
    plan: Optional[Dict[str, Any]] = None
    is_final: bool
    step: str


class TranscriptResponse(BaseModel):
    ok: bool = True
    ticket_id: str


class HealthResponse(BaseModel):
    ok: bool = True
    service: str
    timestamp: int
