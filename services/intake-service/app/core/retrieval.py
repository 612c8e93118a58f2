from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

import httpx

from app.core.metrics import metrics

logger = logging.getLogger(__name__)

TOP_DOCS = 2
BODY_SNIPPET_CHARS = 400
CONTEXT_SEPARATOR = "\n\n---\n\n"

STARTER_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    "describe": ("discovery", "planning", "roadmap"),
    "doc-chaos": ("document", "workflow", "automation", "routing"),
    "site-bot": ("chatbot", "website", "support", "customer"),
    "ai-site": ("website", "web", "development", "platform"),
    "schedule": ("scheduling", "calendar", "assistant", "automation"),
}

DOMAIN_TERMS: Tuple[str, ...] = (
    "chatbot",
    "website",
    "document",
    "schedule",
    "automation",
    "support",
    "customer",
    "workflow",
    "dashboard",
    "training",
    "rag",
    "llm",
    "ai",
    "pilot",
    "architecture",
)


@dataclass(frozen=True)
class KnowledgeDocument:
    id: str
    title: str
    tags: Tuple[str, ...]
    keywords: Tuple[str, ...]
    category: str
    body: str
    time_band_weeks: Optional[str] = None
    price_band_usd: Optional[str] = None

    @classmethod
    def from_dict(cls, raw: Any) -> Optional["KnowledgeDocument"]:
        if not isinstance(raw, dict):
            return None
        body = raw.get("body_md")
        if not isinstance(body, str):
            body = raw.get("body")
        title = raw.get("title")
        if not isinstance(title, str) or not isinstance(body, str):
            return None
        band_weeks = raw.get("time_band_weeks")
        band_price = raw.get("price_band_usd")
        return cls(
            id=str(raw.get("id") or ""),
            title=title,
            tags=_string_tuple(raw.get("tags")),
            keywords=_string_tuple(raw.get("keywords")),
            category=str(raw.get("category") or ""),
            body=body,
            time_band_weeks=str(band_weeks) if band_weeks is not None else None,
            price_band_usd=str(band_price) if band_price is not None else None,
        )

    def search_text(self) -> str:
        return f"{self.title} {' '.join(self.tags)} {' '.join(self.keywords)} {self.body}".lower()


def _string_tuple(value: Any) -> Tuple[str, ...]:
    if not isinstance(value, list):
        return ()
    return tuple(str(item) for item in value if item is not None)


def extract_keywords(message: Optional[str], starter: Optional[str] = None) -> List[str]:
    text = (message or "").lower()
    keywords: List[str] = []
    if starter:
        for keyword in STARTER_KEYWORDS.get(starter, ()):
            if keyword not in keywords:
                keywords.append(keyword)
    for term in DOMAIN_TERMS:
        if term in text and term not in keywords:
            keywords.append(term)
    return keywords


def score_document(doc: KnowledgeDocument, keywords: Iterable[str]) -> int:
    haystack = doc.search_text()
    return sum(1 for keyword in keywords if keyword in haystack)


def rank_documents(
    docs: List[KnowledgeDocument], keywords: List[str], top_k: int = TOP_DOCS
) -> List[Tuple[KnowledgeDocument, int]]:
    scored = [(doc, score_document(doc, keywords)) for doc in docs]
    # Stable sort: ties keep corpus order.
    scored.sort(key=lambda item: item[1], reverse=True)
    return [(doc, score) for doc, score in scored[:top_k] if score > 0]


def format_context(ranked: List[Tuple[KnowledgeDocument, int]]) -> str:
    return CONTEXT_SEPARATOR.join(f"[{doc.title}]\n{doc.body[:BODY_SNIPPET_CHARS]}" for doc, _ in ranked)


def parse_corpus(payload: Any) -> List[KnowledgeDocument]:
    raw_docs = payload.get("documents") if isinstance(payload, dict) else payload
    if not isinstance(raw_docs, list):
        return []
    docs: List[KnowledgeDocument] = []
    for item in raw_docs:
        doc = KnowledgeDocument.from_dict(item)
        if doc is not None:
            docs.append(doc)
    return docs


class KeywordRetriever:
    def __init__(
        self,
        kb_url: str,
        timeout_sec: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.kb_url = kb_url
        self.timeout_sec = timeout_sec
        self.transport = transport

    async def fetch_corpus(self) -> List[KnowledgeDocument]:
        async with httpx.AsyncClient(timeout=self.timeout_sec, transport=self.transport) as client:
            response = await client.get(self.kb_url)
            response.raise_for_status()
            return parse_corpus(response.json())

    async def retrieve(self, message: Optional[str], starter: Optional[str] = None) -> str:
        try:
            docs = await self.fetch_corpus()
            ranked = rank_documents(docs, extract_keywords(message, starter))
            metrics.inc("intake_kb_retrieve_total", {"hits": str(len(ranked))})
            return format_context(ranked)
        except Exception as exc:
            logger.warning("KB retrieval failed: %s", exc)
            metrics.inc("intake_kb_retrieve_error_total")
            return ""
