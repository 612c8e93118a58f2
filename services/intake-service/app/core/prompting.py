from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

from app.core.plan import coerce_plan
from app.core.session import MAX_TURNS, Session

logger = logging.getLogger(__name__)

STEP_ASK = "ask"
STEP_RECOMMEND = "recommend"
STEP_FINAL = "final"
STEP_ESCALATION = "escalation"

MAX_INPUT_CHARS = 2000

STARTER_MESSAGES: Dict[str, str] = {
    "describe": "I need help describing my project and figuring out what AI solutions would work",
    "doc-chaos": "Our document handling is chaotic. Can Limbo help us automate and organize it?",
    "site-bot": "What would it cost to add an AI chatbot to handle customer questions on our website?",
    "ai-site": "I want to build a website with AI capabilities - personalization, recommendations, etc.",
    "schedule": "I need an AI system to manage my schedule and handle meeting requests automatically",
}

_FENCED_JSON_RE = re.compile(r"```json\s*([\s\S]*?)\s*```")
_FENCED_BLOCK_RE = re.compile(r"```json[\s\S]*?```")
_ANGLE_RE = re.compile(r"[<>]")
_JS_SCHEME_RE = re.compile(r"javascript:", flags=re.IGNORECASE)
_EVENT_HANDLER_RE = re.compile(r"on\w+=", flags=re.IGNORECASE)

_NO_KB_MATCH = "No specific KB articles matched."
_NEW_CONVERSATION = "New conversation."


@dataclass
class ParsedCompletion:
    reply_markdown: str
    plan: Optional[Dict[str, Any]]
    step: str
    is_final: bool


def starter_message(starter: Optional[str]) -> str:
    if not starter:
        return ""
    return STARTER_MESSAGES.get(starter, starter)


def sanitize_input(raw: Any) -> str:
    if not isinstance(raw, str) or not raw:
        return ""
    text = _ANGLE_RE.sub("", raw)
    text = _JS_SCHEME_RE.sub("", text)
    text = _EVENT_HANDLER_RE.sub("", text)
    return text.strip()[:MAX_INPUT_CHARS]


def build_prompt(session: Session, message: str, kb_context: str) -> str:
    recent_turns = json.dumps(session.turns[-MAX_TURNS:], ensure_ascii=False)
    return f"""You are an AI assistant for The Limbo Studio, a bespoke AI consultancy. Your role is to:

1. Ask clarifying questions (max 2 at a time, max 4 total) to understand the user's project
2. Provide a structured plan comparing DIY, Hybrid, and Limbo Studio options
3. Stay strictly within Limbo Studio's service scope:
   - AI Readiness & Roadmap audits
   - System Architecture & Prototyping
   - Implementation & Training
   - Document automation & workflows
   - Chatbots & customer support AI
   - Dashboards & analytics
   - Governance & compliance

IMPORTANT RULES:
- Keep responses conversational and helpful, not salesy
- If asked about something outside our scope, politely redirect
- Use the knowledge base context provided to ground your responses
- When ready to recommend, output BOTH readable text AND a JSON plan

PRICING BANDS (reference only, confirm in discovery):
- Readiness: 1-2 weeks, $1.5-3k
- Architecture: 1-3 weeks, $2.5-6k
- Implementation (light): 2-4 weeks, $4-8k
- Implementation (complex): 4-8 weeks, $8-18k

KNOWLEDGE BASE CONTEXT:
{kb_context or _NO_KB_MATCH}

---

CONVERSATION HISTORY:
{session.summary or _NEW_CONVERSATION}
Recent turns: {recent_turns}

USER MESSAGE: {message}

Respond naturally. If you're ready to provide a recommendation, include a JSON block at the end with this structure:
```json
{{
  "step": "ask|recommend|final",
  "plan": {{
    "problem_statement": "...",
    "diy_option": {{
      "tools": ["..."],
      "effort_hours": 0,
      "est_cost_usd_monthly": 0
    }},
    "limbo_option": {{
      "timeline_weeks_total": 0,
      "price_band_usd": "X-Yk"
    }}
  }}
}}
```"""


def parse_completion(completion: str, is_escalation: bool = False) -> ParsedCompletion:
    if is_escalation:
        return ParsedCompletion(reply_markdown=completion, plan=None, step=STEP_ESCALATION, is_final=False)

    reply = completion or ""
    plan = None
    step = STEP_ASK

    match = _FENCED_JSON_RE.search(reply)
    if match:
        try:
            parsed = json.loads(match.group(1))
        except ValueError as exc:
            logger.warning("plan block is not valid json: %s", exc)
        else:
            step = STEP_RECOMMEND
            if isinstance(parsed, dict):
                plan = coerce_plan(parsed.get("plan"))
                raw_step = parsed.get("step")
                if isinstance(raw_step, str) and raw_step:
                    step = raw_step
            reply = _FENCED_BLOCK_RE.sub("", reply, count=1).strip()

    is_final = step == STEP_FINAL or (step == STEP_RECOMMEND and plan is not None)
    return ParsedCompletion(reply_markdown=reply, plan=plan, step=step, is_final=is_final)
