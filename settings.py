from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except Exception:
        return default


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except Exception:
        return default


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name, "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    openai_api_key: str = ""
    openai_model: str = "gpt-4.1"
    request_timeout_s: float = 40.0
    temperature: Optional[float] = 0.7
    reasoning_effort: Optional[str] = None  # low | medium | high
    enable_web_search: bool = False
    default_profile: str = "standard"
    profiles_path: str = "profiles.yaml"
    access_password: str = ""
    access_token_secret: str = ""
    require_access_token: bool = False
    access_token_ttl_s: int = 7 * 24 * 60 * 60
    page_fetch_timeout_s: float = 12.0
    page_fetch_max_chars: int = 12000

    @staticmethod
    def load() -> "Settings":
        # Load .env from the service directory (where this file is located)
        service_dir = os.path.dirname(os.path.abspath(__file__))
        load_dotenv(dotenv_path=os.path.join(service_dir, '.env'))
        effort = os.getenv("OPENAI_REASONING_EFFORT", "").strip().lower() or None
        return Settings(
            openai_api_key=os.getenv("OPENAI_API_KEY", "").strip(),
            openai_model=os.getenv("OPENAI_MODEL", "gpt-4.1").strip() or "gpt-4.1",
            request_timeout_s=_env_float("OPENAI_TIMEOUT_S", 40.0),
            # reasoning models reject temperature; effort wins when both are set
            temperature=None if effort else _env_float("OPENAI_TEMPERATURE", 0.7),
            reasoning_effort=effort,
            enable_web_search=_env_flag("ENABLE_WEB_SEARCH"),
            default_profile=os.getenv("LISTING_PROFILE", "standard").strip() or "standard",
            profiles_path=os.getenv("LISTING_PROFILES_PATH", "profiles.yaml"),
            access_password=os.getenv("ACCESS_PASSWORD", ""),
            access_token_secret=os.getenv("ACCESS_TOKEN_SECRET", ""),
            require_access_token=_env_flag("REQUIRE_ACCESS_TOKEN"),
            access_token_ttl_s=_env_int("ACCESS_TOKEN_TTL_S", 7 * 24 * 60 * 60),
            page_fetch_timeout_s=_env_float("PAGE_FETCH_TIMEOUT_S", 12.0),
            page_fetch_max_chars=_env_int("PAGE_FETCH_MAX_CHARS", 12000),
        )
