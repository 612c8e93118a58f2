import os
from dataclasses import dataclass


def _env_str(name: str, default: str) -> str:
    value = os.getenv(name, "").strip()
    return value or default


@dataclass(frozen=True)
class Settings:
    service_name: str
    log_level: str
    redis_url: str
    cors_allow_origin: str
    kb_url: str
    kb_timeout_sec: float
    llm_base_url: str
    llm_api_key: str
    model_classification: str
    model_simple: str
    model_complex: str
    llm_timeout_sec: float
    email_base_url: str
    email_api_key: str
    email_to: str
    email_from: str
    email_timeout_sec: float
    ip_hourly_limit: int
    session_turn_limit: int
    session_ttl_sec: int
    escalation_marker_ttl_sec: int
    transcript_marker_ttl_sec: int
    metrics_ttl_sec: int
    contact_email: str


def load_settings() -> Settings:
    return Settings(
        service_name=_env_str("INTAKE_SERVICE_NAME", "limbo-chat"),
        log_level=_env_str("INTAKE_LOG_LEVEL", "INFO").upper(),
        redis_url=os.getenv("REDIS_URL", "").strip(),
        cors_allow_origin=_env_str("CORS_ALLOW_ORIGIN", "https://thelimbostudio.com"),
        kb_url=_env_str("INTAKE_KB_URL", "https://thelimbostudio.com/data/kb.json"),
        kb_timeout_sec=float(os.getenv("INTAKE_KB_TIMEOUT_SEC", "5.0")),
        llm_base_url=_env_str("OPENAI_BASE_URL", "https://api.openai.com/v1").rstrip("/"),
        llm_api_key=os.getenv("OPENAI_API_KEY", ""),
        model_classification=_env_str("INTAKE_MODEL_CLASSIFICATION", "gpt-4o-mini"),
        model_simple=_env_str("INTAKE_MODEL_SIMPLE", "gpt-4o-mini"),
        model_complex=_env_str("INTAKE_MODEL_COMPLEX", "gpt-4-turbo-2024-04-09"),
        llm_timeout_sec=float(os.getenv("INTAKE_LLM_TIMEOUT_SEC", "30.0")),
        email_base_url=_env_str("RESEND_BASE_URL", "https://api.resend.com").rstrip("/"),
        email_api_key=os.getenv("RESEND_API_KEY", ""),
        email_to=_env_str("EMAIL_TO", "contact@thelimbostudio.com"),
        email_from=_env_str("EMAIL_FROM", "Limbo Studio Chat <noreply@thelimbostudio.com>"),
        email_timeout_sec=float(os.getenv("INTAKE_EMAIL_TIMEOUT_SEC", "10.0")),
        ip_hourly_limit=max(1, int(os.getenv("INTAKE_IP_HOURLY_LIMIT", "20"))),
        session_turn_limit=max(1, int(os.getenv("INTAKE_SESSION_TURN_LIMIT", "12"))),
        session_ttl_sec=max(60, int(os.getenv("INTAKE_SESSION_TTL_SEC", "86400"))),
        escalation_marker_ttl_sec=max(60, int(os.getenv("INTAKE_ESCALATION_MARKER_TTL_SEC", "604800"))),
        transcript_marker_ttl_sec=max(60, int(os.getenv("INTAKE_TRANSCRIPT_MARKER_TTL_SEC", "86400"))),
        metrics_ttl_sec=max(60, int(os.getenv("INTAKE_METRICS_TTL_SEC", "604800"))),
        contact_email=_env_str("INTAKE_CONTACT_EMAIL", "contact@thelimbostudio.com"),
    )


SETTINGS = load_settings()
