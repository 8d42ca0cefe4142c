from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv


# .env first, then .env.local overrides it (credentials usually live there)
load_dotenv()
load_dotenv(".env.local", override=True)


def _optional_float(name: str) -> Optional[float]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    return float(raw)


class Settings:
    """Application settings loaded from environment variables.

    Keep all credentials and config centralized here.
    """

    def __init__(self) -> None:
        self.app_env: str = os.getenv("APP_ENV", "development")
        self.api_key: Optional[str] = os.getenv("GEMINI_API_KEY") or os.getenv("API_KEY") or None
        self.gemini_model: str = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")
        self.gemini_backend: str = os.getenv("GEMINI_BACKEND", "auto").strip().lower()
        self.temperature: Optional[float] = _optional_float("MODEL_TEMPERATURE")
        self.top_p: Optional[float] = _optional_float("MODEL_TOP_P")
        self.host: str = os.getenv("HOST", "0.0.0.0")
        self.port: int = int(os.getenv("PORT") or 3000)
        self.port_attempts: int = int(os.getenv("PORT_ATTEMPTS") or 5)
        self.cors_origins: List[str] = [
            origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()
        ]
        self.max_body_bytes: int = int(os.getenv("MAX_BODY_BYTES") or 2 * 1024 * 1024)
        self.public_dir: Path = Path(os.getenv("PUBLIC_DIR", "public"))
        self.log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()
        self.relay_url: str = os.getenv("CHAT_RELAY_URL", "http://localhost:3000")

    @property
    def has_key(self) -> bool:
        return bool(self.api_key)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
