"""
Configuration loader for the calendar assistant.
Reads settings from YAML file with environment variable substitution.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml


@dataclass
class RecognizerConfig:
    backend: str = "keyword"                 # "luis" | "keyword"
    endpoint: str = ""                       # e.g. https://<region>.api.cognitive.microsoft.com/luis/v2.0/apps
    app_id: str = ""
    subscription_key: str = ""
    min_confidence: float = 0.5
    timeout_seconds: float = 10.0


@dataclass
class OAuthConfig:
    client_id: str = ""
    client_secret: str = ""
    authorize_url: str = "https://accounts.google.com/o/oauth2/v2/auth"
    token_url: str = "https://oauth2.googleapis.com/token"
    redirect_uri: str = "http://localhost:3978/oauth2callback"
    scopes: list[str] = field(default_factory=lambda: [
        "https://www.googleapis.com/auth/calendar",
    ])
    token_ttl_seconds: int = 900             # correlation token lifetime
    sweep_interval_seconds: int = 60         # expiry sweep period


@dataclass
class CalendarConfig:
    base_url: str = "https://www.googleapis.com/calendar/v3"
    timeout_seconds: float = 15.0


@dataclass
class DatabaseConfig:
    url: str = "sqlite:///./calendar_bot.db"         # postgresql:// | mysql:// | sqlite://
    store_backend: str = "memory"                     # "sql" | "memory" | "file"
    store_file_dir: str = "./data"                    # directory for file backend


@dataclass
class ChatConfig:
    max_queue_size: int = 100


@dataclass
class Settings:
    app_name: str = "CalendarBot"
    debug: bool = False
    public_base_url: str = "http://localhost:3978"
    recognizer: RecognizerConfig = field(default_factory=RecognizerConfig)
    oauth: OAuthConfig = field(default_factory=OAuthConfig)
    calendar: CalendarConfig = field(default_factory=CalendarConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    chat: ChatConfig = field(default_factory=ChatConfig)


_settings: Optional[Settings] = None


def _substitute_env_vars(value: str) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""
    pattern = re.compile(r'\$\{(\w+)\}')
    def replacer(match):
        var_name = match.group(1)
        return os.environ.get(var_name, match.group(0))
    return pattern.sub(replacer, value)


def _process_values(obj: Any) -> Any:
    """Recursively substitute env vars in all string values."""
    if isinstance(obj, str):
        return _substitute_env_vars(obj)
    elif isinstance(obj, dict):
        return {k: _process_values(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_process_values(v) for v in obj]
    return obj


def load_settings(config_path: str = None) -> Settings:
    """Load settings from YAML file."""
    global _settings

    if config_path is None:
        config_path = os.environ.get(
            "CALENDAR_BOT_CONFIG",
            str(Path(__file__).parent / "settings.yaml"),
        )

    settings = Settings()

    if Path(config_path).exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
        raw = _process_values(raw)

        settings.app_name = raw.get("app_name", settings.app_name)
        settings.debug = raw.get("debug", settings.debug)
        settings.public_base_url = raw.get("public_base_url", settings.public_base_url)

        if "recognizer" in raw:
            rc = raw["recognizer"]
            defaults = RecognizerConfig()
            settings.recognizer = RecognizerConfig(
                backend=rc.get("backend", defaults.backend),
                endpoint=rc.get("endpoint", defaults.endpoint),
                app_id=rc.get("app_id", defaults.app_id),
                subscription_key=rc.get("subscription_key", defaults.subscription_key),
                min_confidence=float(rc.get("min_confidence", defaults.min_confidence)),
                timeout_seconds=float(rc.get("timeout_seconds", defaults.timeout_seconds)),
            )

        if "oauth" in raw:
            oa = raw["oauth"]
            defaults = OAuthConfig()
            settings.oauth = OAuthConfig(
                client_id=oa.get("client_id", ""),
                client_secret=oa.get("client_secret", ""),
                authorize_url=oa.get("authorize_url", defaults.authorize_url),
                token_url=oa.get("token_url", defaults.token_url),
                redirect_uri=oa.get("redirect_uri", defaults.redirect_uri),
                scopes=oa.get("scopes", defaults.scopes),
                token_ttl_seconds=int(oa.get("token_ttl_seconds", defaults.token_ttl_seconds)),
                sweep_interval_seconds=int(oa.get("sweep_interval_seconds", defaults.sweep_interval_seconds)),
            )

        if "calendar" in raw:
            cal = raw["calendar"]
            settings.calendar = CalendarConfig(
                base_url=cal.get("base_url", settings.calendar.base_url),
                timeout_seconds=float(cal.get("timeout_seconds", settings.calendar.timeout_seconds)),
            )

        if "database" in raw:
            db = raw["database"]
            settings.database = DatabaseConfig(
                url=db.get("url", settings.database.url),
                store_backend=db.get("store_backend", settings.database.store_backend),
                store_file_dir=db.get("store_file_dir", settings.database.store_file_dir),
            )

        if "chat" in raw:
            settings.chat = ChatConfig(
                max_queue_size=int(raw["chat"].get("max_queue_size", settings.chat.max_queue_size)),
            )

    _settings = settings
    return settings


def get_settings() -> Settings:
    """Return cached settings or load from default path."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Drop cached settings (for testing)."""
    global _settings
    _settings = None
