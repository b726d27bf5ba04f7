import os
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv


DEFAULT_MODEL_NAME = "gpt-4o-mini"

DEFAULT_SYSTEM_PROMPT = """
You are a careful medical assistant helping a patient understand a prescription.

- Explain medications, dosages and instructions in plain language.
- When a prescription analysis is provided, treat it as the primary context.
- Never diagnose, and never change a prescribed dosage.
- Remind the user to confirm anything important with a pharmacist or doctor.
""".strip()

DEFAULT_ANALYSIS_PROMPT = (
    "Analyze this prescription image and provide detailed information about "
    "medications, dosages, and instructions."
)


# ----------------------------
# Settings
# ----------------------------

@dataclass(frozen=True)
class Settings:
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    model_name: str = DEFAULT_MODEL_NAME
    temperature: float = 0.7
    max_output_tokens: int = 2048
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    analysis_prompt: str = DEFAULT_ANALYSIS_PROMPT
    pre_call_delay: float = 1.0
    fallback_word_delay: float = 0.05
    stream_timeout: float = 120.0
    request_timeout: float = 60.0
    max_history_messages: int = 50
    allowed_origins: List[str] = field(default_factory=lambda: ["*"])
    log_level: str = "INFO"

    @property
    def model_configured(self) -> bool:
        return bool(self.api_key)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _parse_origins(raw: str) -> List[str]:
    if raw.strip() == "*":
        return ["*"]
    return [o.strip() for o in raw.split(",") if o.strip()]


def load_settings() -> Settings:
    """
    Read the environment once (after .env) and freeze it.

    A missing OPENAI_API_KEY is not an error: the gateway answers with the
    local fallback instead of calling the model.
    """
    load_dotenv()

    api_key = (os.getenv("OPENAI_API_KEY") or "").strip() or None

    return Settings(
        api_key=api_key,
        base_url=(os.getenv("OPENAI_BASE_URL") or "").strip() or None,
        model_name=os.getenv("MODEL_NAME", DEFAULT_MODEL_NAME),
        temperature=_env_float("TEMPERATURE", 0.7),
        max_output_tokens=_env_int("MAX_OUTPUT_TOKENS", 2048),
        system_prompt=os.getenv("SYSTEM_PROMPT", DEFAULT_SYSTEM_PROMPT),
        analysis_prompt=os.getenv("ANALYSIS_PROMPT") or DEFAULT_ANALYSIS_PROMPT,
        pre_call_delay=_env_float("PRE_CALL_DELAY_SECONDS", 1.0),
        fallback_word_delay=_env_float("FALLBACK_WORD_DELAY_SECONDS", 0.05),
        stream_timeout=_env_float("STREAM_TIMEOUT_SECONDS", 120.0),
        request_timeout=_env_float("REQUEST_TIMEOUT_SECONDS", 60.0),
        max_history_messages=_env_int("MAX_HISTORY_MESSAGES", 50),
        allowed_origins=_parse_origins(os.getenv("ALLOWED_ORIGINS", "*")),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
