"""Default paths, the optional JSON application config, and SMTP credentials."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Protocol


DEFAULT_MAILDIR = "~/Mail"
DEFAULT_RULES_FILE = "~/.label-mail.yml"
DEFAULT_LOCAL_RULES_FILE = "~/.label-mail.local.yml"
DEFAULT_ENVIRONMENT_FILE = "~/.dotfile-environment"
DEFAULT_CONFIG_FILE = "~/.label-mail.json"
DEFAULT_RECENT_HOURS = 2.0
DEFAULT_SMTP_HOST = "smtp.gmail.com"
DEFAULT_SMTP_PORT = 587
DEFAULT_SMTP_TIMEOUT_SECONDS = 30.0
DEFAULT_FROM_NAME = "Label Mail"
ENV_USERNAME = "LABEL_MAIL_USERNAME"
ENV_PASSWORD = "LABEL_MAIL_PASSWORD"
ENV_FROM_EMAIL = "LABEL_MAIL_FROM_EMAIL"


@dataclass(frozen=True)
class SMTPConfig:
    host: str
    port: int
    timeout_seconds: float
    from_name: str
    from_email: str


@dataclass(frozen=True)
class AppConfig:
    recent_hours: float
    smtp: SMTPConfig


@dataclass(frozen=True)
class SMTPCredentials:
    username: str
    password: str


class CredentialProvider(Protocol):
    def credentials(self) -> SMTPCredentials: ...

    def from_email(self) -> str: ...


def expand_path(value: str | os.PathLike[str]) -> Path:
    return Path(value).expanduser()


def default_app_config() -> AppConfig:
    return AppConfig(
        recent_hours=DEFAULT_RECENT_HOURS,
        smtp=SMTPConfig(
            host=DEFAULT_SMTP_HOST,
            port=DEFAULT_SMTP_PORT,
            timeout_seconds=DEFAULT_SMTP_TIMEOUT_SECONDS,
            from_name=DEFAULT_FROM_NAME,
            from_email="",
        ),
    )


def parse_string_config(raw_value: object, source: str, default: str) -> str:
    if raw_value is None:
        return default
    if not isinstance(raw_value, str):
        raise ValueError(f"{source} must be a string.")
    return raw_value.strip()


def parse_nonempty_string_config(raw_value: object, source: str, default: str) -> str:
    if raw_value is None:
        return default
    cleaned = parse_string_config(raw_value, source, default)
    if not cleaned:
        raise ValueError(f"{source} cannot be empty.")
    return cleaned


def parse_positive_number_config(raw_value: object, source: str, default: float) -> float:
    if raw_value is None:
        return default
    if isinstance(raw_value, bool) or not isinstance(raw_value, (int, float)):
        raise ValueError(f"{source} must be a number.")
    value = float(raw_value)
    if value <= 0:
        raise ValueError(f"{source} must be > 0.")
    return value


def parse_port_config(raw_value: object, source: str, default: int) -> int:
    if raw_value is None:
        return default
    if isinstance(raw_value, bool) or not isinstance(raw_value, int):
        raise ValueError(f"{source} must be an integer.")
    if raw_value < 1 or raw_value > 65535:
        raise ValueError(f"{source} must be between 1 and 65535.")
    return raw_value


def load_app_config(path: Path) -> AppConfig:
    defaults = default_app_config()
    if not path.exists():
        return defaults

    try:
        with path.open("r", encoding="utf-8") as file:
            raw = json.load(file)
    except (OSError, json.JSONDecodeError) as error:
        raise ValueError(f"Could not read config file {path}: {error}") from error

    if not isinstance(raw, dict):
        raise ValueError(f"Config file {path} must contain a JSON object.")

    smtp_raw = raw.get("smtp", {})
    if smtp_raw is None:
        smtp_raw = {}
    if not isinstance(smtp_raw, dict):
        raise ValueError(f"Config file {path} has invalid smtp section.")

    smtp_defaults = defaults.smtp
    return AppConfig(
        recent_hours=parse_positive_number_config(
            raw.get("recent_hours"),
            "recent_hours",
            defaults.recent_hours,
        ),
        smtp=SMTPConfig(
            host=parse_nonempty_string_config(
                smtp_raw.get("host"),
                "smtp.host",
                smtp_defaults.host,
            ),
            port=parse_port_config(
                smtp_raw.get("port"),
                "smtp.port",
                smtp_defaults.port,
            ),
            timeout_seconds=parse_positive_number_config(
                smtp_raw.get("timeout_seconds"),
                "smtp.timeout_seconds",
                smtp_defaults.timeout_seconds,
            ),
            from_name=parse_string_config(
                smtp_raw.get("from_name"),
                "smtp.from_name",
                smtp_defaults.from_name,
            ),
            from_email=parse_string_config(
                smtp_raw.get("from_email"),
                "smtp.from_email",
                smtp_defaults.from_email,
            ),
        ),
    )


class EnvironmentCredentialProvider:
    """Read SMTP credentials from ``LABEL_MAIL_*`` environment variables."""

    def __init__(self, environ: Mapping[str, str] | None = None) -> None:
        self.environ = os.environ if environ is None else environ

    def _required(self, name: str) -> str:
        value = self.environ.get(name, "").strip()
        if not value:
            raise ValueError(f"Forwarding is enabled but {name} is not set.")
        return value

    def credentials(self) -> SMTPCredentials:
        return SMTPCredentials(
            username=self._required(ENV_USERNAME),
            password=self._required(ENV_PASSWORD),
        )

    def from_email(self) -> str:
        value = self.environ.get(ENV_FROM_EMAIL, "").strip()
        if value:
            return value
        return self._required(ENV_USERNAME)


def resolve_sender_email(smtp_config: SMTPConfig, provider: CredentialProvider) -> str:
    if smtp_config.from_email:
        return smtp_config.from_email
    return provider.from_email()
