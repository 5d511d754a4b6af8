import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


@dataclass
class AppConfig:
    database_url: str
    secret_key: str
    log_level: str
    currency: str
    lock_timeout_seconds: float
    settings_file: Path


DEFAULT_SETTINGS_FILE = Path(__file__).resolve().parents[1] / "data" / "settings.json"


def validate_currency(value: Optional[str]) -> str:
    v = (value or "TRY").strip().upper()
    if len(v) != 3:
        raise ValueError("Invalid currency code: expected ISO4217 length 3")
    return v


def validate_lock_timeout(value) -> float:
    try:
        seconds = float(value if value not in (None, "") else 5)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid lock timeout: {value!r}") from None
    if seconds <= 0:
        raise ValueError("Lock timeout must be > 0 seconds")
    return seconds


def _load_settings_file(path: Path) -> dict:
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Settings file {path} is not valid JSON: {exc}") from exc
    return data if isinstance(data, dict) else {}


def load_env(settings_file: Optional[Path] = None) -> AppConfig:
    # data/settings.json wins over the environment; .env fills the environment
    load_dotenv()
    path = Path(settings_file or os.getenv("STOREFRONT_SETTINGS_FILE") or DEFAULT_SETTINGS_FILE)
    s = _load_settings_file(path)
    database_url = s.get("DATABASE_URL") or os.getenv("DATABASE_URL", "sqlite:///data/app.db")
    secret_key = os.getenv("SECRET_KEY", "dev_secret")
    log_level = (s.get("LOG_LEVEL") or os.getenv("LOG_LEVEL", "INFO")).upper()
    currency = validate_currency(s.get("CURRENCY") or os.getenv("CURRENCY"))
    lock_timeout = validate_lock_timeout(s.get("LOCK_TIMEOUT_SECONDS") or os.getenv("LOCK_TIMEOUT_SECONDS"))
    return AppConfig(
        database_url=database_url,
        secret_key=secret_key,
        log_level=log_level,
        currency=currency,
        lock_timeout_seconds=lock_timeout,
        settings_file=path,
    )
