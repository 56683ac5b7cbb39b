import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _get_env(name: str, default: Optional[str] = None) -> str:
    val = os.getenv(name, default)
    if val is None or val.strip() == "":
        raise RuntimeError(f"Missing required environment variable: {name}")
    return val.strip()


def _parse_origins(raw: str) -> list[str]:
    raw = (raw or "").strip()
    if not raw or raw == "*":
        return ["*"]
    return [o.strip() for o in raw.split(",") if o.strip()]


@dataclass(frozen=True)
class Settings:
    database_url: str
    course_service_url: str
    collaborator_timeout: float
    cors_origins: list[str]
    log_level: str
    question_gen_api_key: str
    question_gen_base_url: str
    question_gen_model: str


def load_settings() -> Settings:
    return Settings(
        database_url=_get_env("DATABASE_URL", "sqlite:///./assessment.db"),
        course_service_url=_get_env("COURSE_SERVICE_URL", "http://course-service:8003").rstrip("/"),
        collaborator_timeout=float(_get_env("COLLABORATOR_TIMEOUT", "5")),
        cors_origins=_parse_origins(os.getenv("CORS_ORIGINS", "*")),
        log_level=_get_env("LOG_LEVEL", "INFO").upper(),
        # optional: generation endpoint answers 503 when no key is configured
        question_gen_api_key=(os.getenv("QUESTION_GEN_API_KEY") or "").strip(),
        question_gen_base_url=_get_env("QUESTION_GEN_BASE_URL", "https://api.groq.com/openai/v1"),
        question_gen_model=_get_env("QUESTION_GEN_MODEL", "llama-3.3-70b-versatile"),
    )
