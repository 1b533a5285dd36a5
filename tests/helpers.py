from __future__ import annotations

from pathlib import Path

from label_mail.maildir import MailDirFolder
from label_mail.message import Message
from label_mail.rules import CompiledRule, compile_rule, parse_raw_rule


def make_message_bytes(
    *,
    sender: str = "Alerts <alerts@example.com>",
    to: str = "me@example.net",
    subject: str = "Test message",
    date: str = "Mon, 16 Feb 2026 10:00:00 -0500",
    keywords: str | None = None,
    extra_headers: tuple[str, ...] = (),
    body: str = "Hello there.\n",
) -> bytes:
    headers = [
        f"From: {sender}",
        f"To: {to}",
        f"Subject: {subject}",
        f"Date: {date}",
        "Message-ID: <msg-100@example.com>",
    ]
    if keywords is not None:
        headers.append(f"Keywords: {keywords}")
    headers.extend(extra_headers)
    return ("\n".join(headers) + "\n\n" + body).encode("utf-8")


def make_maildir(root: Path, *folders: str) -> None:
    for folder in folders:
        MailDirFolder(root, folder).ensure_exists()


def write_message(
    root: Path,
    folder: str,
    key: str = "1700000000.M1P1.host",
    *,
    flags: str = "2,S",
    read_state: str = "cur",
    data: bytes | None = None,
    **fields,
) -> Path:
    MailDirFolder(root, folder).ensure_exists()
    filename = f"{key}:{flags}" if read_state == "cur" and flags else key
    path = root / folder / read_state / filename
    path.write_bytes(data if data is not None else make_message_bytes(**fields))
    return path


def load_message(root: Path, folder: str, filename: str) -> Message:
    return Message(MailDirFolder(root, folder).message(filename))


def make_rule(raw: dict[str, object]) -> CompiledRule:
    rule = compile_rule(parse_raw_rule(raw, "tests"))
    assert rule is not None
    return rule
