"""Pension Ledger — Application configuration via environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings


class PensionSettings(BaseSettings):
    """Central configuration loaded from environment / .env file."""

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_prefix": "PENSION_",
        "extra": "ignore",
    }

    # ── Authorization ──────────────────────────────────────────
    administrator_id: str = "fund-administrator"

    # ── Keyed store (both ledgers) ─────────────────────────────
    database_url: str = "sqlite:///pension_ledger.db"
    database_echo: bool = False

    # ── HTTP surface ───────────────────────────────────────────
    api_title: str = "Pension Fund Ledgers"
    api_host: str = "127.0.0.1"
    api_port: int = 8000

    # ── Logging ────────────────────────────────────────────────
    log_level: str = "INFO"
    log_format: str = "json"


settings = PensionSettings()
