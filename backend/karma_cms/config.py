"""Application configuration."""
from collections import Counter
from functools import lru_cache
import math
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # App
    app_name: str = "Karma Training CMS"
    debug: bool = False
    environment: Literal["development", "production"] = "production"
    log_level: str = "INFO"
    cors_origins: list[str] = ["http://localhost:3000"]

    # Database
    database_url: str = "sqlite:///./data/karma_cms.db"

    # Signed session tokens
    secret_key: str
    algorithm: str = "HS256"
    token_issuer: str = "karma-training-cms"
    token_audience: str = "admin-panel"

    # Sessions
    session_cookie_name: str = "admin_token"
    session_cookie_path: str = "/"
    session_ttl_seconds: int = 2 * 60 * 60
    session_renew_threshold_seconds: int = 30 * 60
    session_max_age_seconds: int = 24 * 60 * 60
    session_security_level: Literal["strict", "standard", "relaxed"] = "strict"

    # CSRF
    csrf_header_name: str = "X-CSRF-Token"
    csrf_token_ttl_seconds: int = 60 * 60

    # Lockout
    account_lockout_threshold: int = 5
    ip_lockout_threshold: int = 20
    lockout_base_seconds: int = 15 * 60
    lockout_max_seconds: int = 24 * 60 * 60
    failed_attempt_window_seconds: int = 60 * 60

    # Request handling
    admin_path: str = "/admin"
    admin_login_path: str = "/admin/login"
    trust_proxy_headers: bool = False

    # Optional first admin, created on startup when no admin exists
    bootstrap_admin_username: str | None = None
    bootstrap_admin_email: str | None = None
    bootstrap_admin_password: str | None = None

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @field_validator("secret_key")
    @classmethod
    def validate_secret_key(cls, value: str) -> str:
        """Fail closed if SECRET_KEY is weak or placeholder quality."""
        if not value:
            raise ValueError("SECRET_KEY must be set.")

        if len(value) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")

        weak_values = {"changeme", "changeme-in-production", "secret", "password", "test"}
        lowered = value.lower()
        if lowered in weak_values or "changeme" in lowered or "your-secret-key" in lowered:
            raise ValueError("SECRET_KEY must not be a placeholder value.")

        counts = Counter(value)
        entropy_per_char = -sum((count / len(value)) * math.log2(count / len(value)) for count in counts.values())
        estimated_entropy_bits = entropy_per_char * len(value)
        if estimated_entropy_bits < 100:
            raise ValueError("SECRET_KEY entropy is too low; use a cryptographically random value.")

        return value

    @field_validator("admin_login_path")
    @classmethod
    def validate_login_path(cls, value: str, info) -> str:
        """The login page must live inside the admin namespace."""
        admin_path = info.data.get("admin_path", "/admin")
        if not value.startswith(admin_path):
            raise ValueError("ADMIN_LOGIN_PATH must be inside ADMIN_PATH.")
        return value


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
