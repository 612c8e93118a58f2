from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from app.core.cache import CacheClient

MAX_TURNS = 4
FRAGMENT_MAX_CHARS = 200
SUMMARY_MAX_CHARS = 300


def _now_ms() -> int:
    return int(time.time() * 1000)


def truncate(text: Optional[str], max_len: int) -> str:
    if not text:
        return ""
    return text[:max_len] + "..." if len(text) > max_len else text


def session_key(session_id: str) -> str:
    return f"chat:sessions:{session_id}"


@dataclass
class Session:
    turns: List[Dict[str, str]] = field(default_factory=list)
    count: int = 0
    summary: str = ""
    createdAt: int = field(default_factory=_now_ms)
    lastAt: int = field(default_factory=_now_ms)

    @classmethod
    def from_record(cls, record: Any) -> "Session":
        if not isinstance(record, dict):
            return cls()
        turns: List[Dict[str, str]] = []
        raw_turns = record.get("turns")
        if isinstance(raw_turns, list):
            for item in raw_turns:
                if not isinstance(item, dict):
                    continue
                if isinstance(item.get("u"), str):
                    turns.append({"u": item["u"]})
                elif isinstance(item.get("a"), str):
                    turns.append({"a": item["a"]})
        session = cls(turns=turns)
        try:
            session.count = max(0, int(record.get("count") or 0))
        except (TypeError, ValueError):
            session.count = 0
        session.summary = str(record.get("summary") or "")
        for name in ("createdAt", "lastAt"):
            value = record.get(name)
            if isinstance(value, (int, float)):
                setattr(session, name, int(value))
        return session

    def to_record(self) -> Dict[str, Any]:
        return asdict(self)


def fragment_text(turn: Dict[str, str]) -> str:
    return turn.get("u") or turn.get("a") or ""


def build_summary(session: Session) -> str:
    recent = " ".join(fragment_text(turn) for turn in session.turns[-MAX_TURNS:])
    return f"[{session.count} turns] {recent[:SUMMARY_MAX_CHARS]}"


def transcript_of(turns: List[Dict[str, str]]) -> List[Dict[str, str]]:
    transcript: List[Dict[str, str]] = []
    for turn in turns:
        if turn.get("u"):
            transcript.append({"role": "user", "content": turn["u"]})
        if turn.get("a"):
            transcript.append({"role": "assistant", "content": turn["a"]})
    return transcript


class SessionManager:
    """Loads and saves bounded conversation records.

    Saves always overwrite; concurrent turns for one session id resolve as
    last writer wins. An expired record silently starts a fresh session.
    """

    def __init__(self, cache: CacheClient, ttl_sec: int) -> None:
        self._cache = cache
        self._ttl_sec = ttl_sec

    def load(self, session_id: str) -> Session:
        record = self._cache.get_json(session_key(session_id))
        if record is None:
            return Session()
        return Session.from_record(record)

    def save(self, session_id: str, session: Session) -> None:
        if len(session.turns) > MAX_TURNS:
            session.turns = session.turns[-MAX_TURNS:]
        self._cache.set_json(session_key(session_id), session.to_record(), self._ttl_sec)

    def record_user_turn(self, session: Session, text: str) -> None:
        session.turns.append({"u": truncate(text, FRAGMENT_MAX_CHARS)})
        session.count += 1
        session.lastAt = _now_ms()

    def record_assistant_turn(self, session: Session, text: str) -> None:
        session.turns.append({"a": truncate(text, FRAGMENT_MAX_CHARS)})
        if len(session.turns) > MAX_TURNS:
            session.turns = session.turns[-MAX_TURNS:]
        session.summary = build_summary(session)

    def record_turn(self, session: Session, user_text: str, assistant_text: str) -> None:
        self.record_user_turn(session, user_text)
        self.record_assistant_turn(session, assistant_text)
