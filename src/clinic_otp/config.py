"""Clinic OTP service — configuration loaded from environment."""

from typing import Literal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application-wide settings, loaded from .env or environment variables."""

    # ── Database ──────────────────────────────────────────
    database_url: str = "sqlite+aiosqlite:///./clinic_otp.db"

    # ── OTP store ─────────────────────────────────────────
    otp_store_backend: Literal["memory", "database"] = "memory"
    otp_ttl_seconds: int = 300
    otp_email_ttl_seconds: int | None = None
    otp_delivery_timeout_seconds: float = 10.0
    otp_sweep_interval_seconds: float = 60.0

    # ── Phone normalization ───────────────────────────────
    default_country_code: str = "63"
    trunk_prefix: str = "0"

    # ── SMS (Twilio) ──────────────────────────────────────
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_phone_number: str = ""
    twilio_api_base_url: str = "https://api.twilio.com/2010-04-01"

    # ── Email (SMTP) ──────────────────────────────────────
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    email_from: str = ""

    # ── App ───────────────────────────────────────────────
    app_name: str = "Clinic OTP"
    debug: bool = True

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


# Singleton settings instance
settings = Settings()
