"""
Configuration - Loads application settings from the environment (.env supported)
"""

import logging
import os
from dataclasses import dataclass, fields
from typing import Any, Dict, Optional

from dotenv import load_dotenv


@dataclass
class Config:
    """Application settings. Every field maps to an upper-case environment variable."""

    secret_key: str = "dev-secret-change-me"
    database_path: str = "tasks.db"
    app_url: str = "http://localhost:5000"
    app_env: str = "development"
    log_level: str = "INFO"

    # Email delivery
    email_backend: str = "smtp"
    email_from: Optional[str] = None
    smtp_host: str = "smtp.sendgrid.net"
    smtp_port: int = 587
    smtp_user: str = "apikey"
    smtp_password: Optional[str] = None
    sendgrid_api_key: Optional[str] = None
    gmail_client_id: Optional[str] = None
    gmail_client_secret: Optional[str] = None
    gmail_refresh_token: Optional[str] = None

    # Google OAuth / Calendar
    google_client_id: Optional[str] = None
    google_client_secret: Optional[str] = None
    google_refresh_token: Optional[str] = None
    google_calendar_id: Optional[str] = None

    @property
    def is_development(self) -> bool:
        return self.app_env.lower() == "development"

    @property
    def smtp_secret(self) -> Optional[str]:
        """SMTP password, falling back to the SendGrid API key for the SendGrid relay."""
        return self.smtp_password or self.sendgrid_api_key

    @property
    def google_redirect_uri(self) -> str:
        return f"{self.app_url.rstrip('/')}/api/auth/google/callback"

    @classmethod
    def from_env(cls, overrides: Optional[Dict[str, Any]] = None) -> "Config":
        """Build config from os.environ, then apply explicit overrides (used by tests)."""
        load_dotenv()
        values: Dict[str, Any] = {}
        for field in fields(cls):
            raw = os.environ.get(field.name.upper())
            if raw is None or raw == "":
                continue
            values[field.name] = int(raw) if field.type in (int, "int") else raw
        if overrides:
            values.update({k.lower(): v for k, v in overrides.items()})
        return cls(**values)


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging once for the API server and the console tools."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )
