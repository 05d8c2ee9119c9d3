"""Runtime settings read from the environment (and an optional .env file)."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

REPO_ROOT = Path(__file__).resolve().parents[1]
DEFAULT_DB_PATH = REPO_ROOT / "data" / "readings.db"
PARALLEL_THRESHOLD = 6


class Settings(BaseModel):
    openai_api_key: Optional[str] = None
    model: str = "gpt-4o-mini"
    temperature: float = Field(0.7, ge=0.0, le=2.0)
    llm_timeout: float = 60.0
    structured_output: bool = True
    parallel_threshold: int = Field(PARALLEL_THRESHOLD, ge=1)

    db_path: str = str(DEFAULT_DB_PATH)

    entropy: Literal["quantum", "system"] = "quantum"
    quantum_api_key: Optional[str] = None
    entropy_timeout: float = 5.0

    log_level: str = "INFO"
    log_json: bool = False


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def load_settings() -> Settings:
    load_dotenv(REPO_ROOT / ".env")

    api_key = (os.getenv("OPENAI_API_KEY") or "").strip() or None
    quantum_key = (os.getenv("QUANTUM_API_KEY") or "").strip() or None
    if quantum_key == "your_quantum_api_key_here":
        quantum_key = None

    return Settings(
        openai_api_key=api_key,
        model=os.getenv("ARCANA_MODEL", "gpt-4o-mini"),
        temperature=float(os.getenv("ARCANA_TEMPERATURE", "0.7")),
        llm_timeout=float(os.getenv("ARCANA_LLM_TIMEOUT", "60")),
        structured_output=_env_bool("ARCANA_STRUCTURED_OUTPUT", True),
        parallel_threshold=int(os.getenv("ARCANA_PARALLEL_THRESHOLD", str(PARALLEL_THRESHOLD))),
        db_path=os.getenv("ARCANA_DB_PATH", str(DEFAULT_DB_PATH)),
        entropy=os.getenv("ARCANA_ENTROPY", "quantum").lower(),
        quantum_api_key=quantum_key,
        entropy_timeout=float(os.getenv("ARCANA_ENTROPY_TIMEOUT", "5")),
        log_level=os.getenv("ARCANA_LOG_LEVEL", "INFO").upper(),
        log_json=_env_bool("ARCANA_LOG_JSON", False),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()
