"""Application configuration via pydantic settings."""

from __future__ import annotations

from functools import lru_cache
from typing import Dict, Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "upi-linker"
    app_version: str = "1.0.0"
    app_env: str = "development"

    store_backend: Literal["memory", "firestore"] = "memory"
    auth_backend: Literal["static", "firebase"] = "static"
    dev_tokens: Dict[str, str] = {}

    firebase_project_id: Optional[str] = None
    firebase_credentials_file: Optional[str] = None

    qr_api_base: str = "https://api.qrserver.com/v1/create-qr-code/"
    qr_size: int = 256
    qr_timeout_seconds: float = 10.0

    default_locale: str = "en"
    public_base_url: str = "http://localhost:8000"
    session_cookie_name: str = "__session"
    display_timezone: str = "Asia/Kolkata"
    stream_keepalive_seconds: float = 15.0

    log_level: str = "INFO"
    log_json: bool = True

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
