from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from dotenv import load_dotenv


@dataclass(frozen=True)
class Settings:
    firebase_service_account_file: str | None
    firebase_service_account_json: dict[str, Any] | None
    firebase_web_api_key: str | None
    google_client_id: str | None
    cors_origins: list[str]
    env: str
    super_admin_emails: list[str]
    super_admin_departments: list[str]
    federated_email_domains: list[str]
    ticker_interval_seconds: float
    identity_toolkit_url: str
    request_timeout_seconds: float
    log_level: str
    host: str = "0.0.0.0"
    port: int = 8000


def _parse_cors(value: str | None) -> list[str]:
    if not value:
        return [
            "http://localhost:3000",
            "http://localhost:5173",
        ]
    return [origin.strip() for origin in value.split(",") if origin.strip()]


def _parse_list(value: str | None, default: list[str], *, lower: bool = False) -> list[str]:
    if value is None:
        return list(default)
    items = [item.strip() for item in value.split(",") if item.strip()]
    if lower:
        items = [item.lower() for item in items]
    return items


def _parse_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError as e:
        raise RuntimeError(f"{name} must be a number, got {raw!r}") from e
    if value <= 0:
        raise RuntimeError(f"{name} must be positive")
    return value


def _parse_port(value: str | None) -> int:
    if not value:
        return 8000
    try:
        return int(value)
    except ValueError as e:
        raise RuntimeError(f"PORT must be an integer, got {value!r}") from e


def get_settings() -> Settings:
    backend_dir = Path(__file__).resolve().parents[1]
    load_dotenv(dotenv_path=backend_dir / ".env")

    firebase_service_account_file = os.getenv("FIREBASE_SERVICE_ACCOUNT_FILE")

    firebase_service_account_json: dict[str, Any] | None = None
    firebase_service_account_json_raw = os.getenv("FIREBASE_SERVICE_ACCOUNT_JSON")
    if firebase_service_account_json_raw:
        firebase_service_account_json = json.loads(firebase_service_account_json_raw)

    # Domains are matched against the part after '@', so strip a leading '@' if given.
    domains = [
        d.lstrip("@")
        for d in _parse_list(
            os.getenv("FEDERATED_EMAIL_DOMAINS"),
            ["student.uol.edu.pk", "uol.edu.pk"],
            lower=True,
        )
    ]

    return Settings(
        firebase_service_account_file=firebase_service_account_file,
        firebase_service_account_json=firebase_service_account_json,
        firebase_web_api_key=os.getenv("FIREBASE_WEB_API_KEY"),
        google_client_id=os.getenv("GOOGLE_CLIENT_ID"),
        cors_origins=_parse_cors(os.getenv("CORS_ORIGINS")),
        env=os.getenv("ENV", "dev"),
        super_admin_emails=_parse_list(os.getenv("SUPER_ADMIN_EMAILS"), [], lower=True),
        super_admin_departments=_parse_list(
            os.getenv("SUPER_ADMIN_DEPARTMENTS"), ["Computer Science", "CS"]
        ),
        federated_email_domains=domains,
        ticker_interval_seconds=_parse_float("TICKER_INTERVAL_SECONDS", 4.0),
        identity_toolkit_url=os.getenv(
            "IDENTITY_TOOLKIT_URL", "https://identitytoolkit.googleapis.com/v1"
        ).rstrip("/"),
        request_timeout_seconds=_parse_float("REQUEST_TIMEOUT_SECONDS", 10.0),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        host=os.getenv("HOST", "0.0.0.0"),
        port=_parse_port(os.getenv("PORT")),
    )
