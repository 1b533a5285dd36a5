from __future__ import annotations

import json

import pytest

from label_mail.config import (
    DEFAULT_SMTP_HOST,
    DEFAULT_SMTP_PORT,
    EnvironmentCredentialProvider,
    SMTPCredentials,
    load_app_config,
    resolve_sender_email,
)


def test_missing_config_file_uses_defaults(tmp_path) -> None:
    config = load_app_config(tmp_path / "missing.json")

    assert config.recent_hours == 2.0
    assert config.smtp.host == DEFAULT_SMTP_HOST
    assert config.smtp.port == DEFAULT_SMTP_PORT
    assert config.smtp.timeout_seconds == 30.0
    assert config.smtp.from_email == ""


def test_config_file_overrides_defaults(tmp_path) -> None:
    path = tmp_path / "label-mail.json"
    path.write_text(
        json.dumps(
            {
                "recent_hours": 6,
                "smtp": {
                    "host": "smtp.example.com",
                    "port": 2525,
                    "timeout_seconds": 12.5,
                    "from_name": "Robot",
                    "from_email": "robot@example.com",
                },
            }
        ),
        encoding="utf-8",
    )

    config = load_app_config(path)

    assert config.recent_hours == 6.0
    assert config.smtp.host == "smtp.example.com"
    assert config.smtp.port == 2525
    assert config.smtp.timeout_seconds == 12.5
    assert config.smtp.from_name == "Robot"
    assert config.smtp.from_email == "robot@example.com"


@pytest.mark.parametrize(
    ("payload", "message"),
    [
        ({"recent_hours": 0}, "recent_hours must be > 0"),
        ({"recent_hours": True}, "recent_hours must be a number"),
        ({"smtp": {"port": 70000}}, "smtp.port must be between 1 and 65535"),
        ({"smtp": {"host": "  "}}, "smtp.host cannot be empty"),
        ({"smtp": {"from_email": 42}}, "smtp.from_email must be a string"),
        ({"smtp": []}, "has invalid smtp section"),
    ],
)
def test_invalid_config_values_are_rejected(tmp_path, payload: dict[str, object], message: str) -> None:
    path = tmp_path / "label-mail.json"
    path.write_text(json.dumps(payload), encoding="utf-8")

    with pytest.raises(ValueError, match=message):
        load_app_config(path)


def test_config_file_must_hold_an_object(tmp_path) -> None:
    path = tmp_path / "label-mail.json"
    path.write_text("[1, 2]", encoding="utf-8")

    with pytest.raises(ValueError, match="must contain a JSON object"):
        load_app_config(path)


def test_environment_credentials(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LABEL_MAIL_USERNAME", "robot@example.com")
    monkeypatch.setenv("LABEL_MAIL_PASSWORD", "app-password")
    monkeypatch.delenv("LABEL_MAIL_FROM_EMAIL", raising=False)

    provider = EnvironmentCredentialProvider()

    assert provider.credentials() == SMTPCredentials(username="robot@example.com", password="app-password")
    assert provider.from_email() == "robot@example.com"


def test_missing_credentials_are_reported() -> None:
    provider = EnvironmentCredentialProvider({"LABEL_MAIL_USERNAME": "robot@example.com"})

    with pytest.raises(ValueError, match="LABEL_MAIL_PASSWORD is not set"):
        provider.credentials()


def test_sender_email_prefers_config_then_environment(tmp_path) -> None:
    provider = EnvironmentCredentialProvider(
        {"LABEL_MAIL_USERNAME": "login@example.com", "LABEL_MAIL_FROM_EMAIL": "me@example.com"}
    )
    defaults = load_app_config(tmp_path / "missing.json")

    assert resolve_sender_email(defaults.smtp, provider) == "me@example.com"
