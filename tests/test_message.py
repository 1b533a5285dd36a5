from __future__ import annotations

from datetime import datetime, timezone

import pytest

from label_mail.maildir import MissingFolderError
from label_mail.message import (
    Message,
    ParseError,
    repair_header_block,
    rewrite_headers,
    split_keywords,
)
from tests.helpers import load_message, make_maildir, make_message_bytes, write_message


FILENAME = "1700000000.M1P1.host:2,S"


def test_split_keywords_sorts_and_removes_duplicates() -> None:
    assert split_keywords("Zeta, Alpha  Alpha,,Beta") == ["Alpha", "Beta", "Zeta"]
    assert split_keywords("") == []
    assert split_keywords(None) == []


def test_keywords_are_sorted_after_mutation(tmp_path) -> None:
    write_message(tmp_path, "INBOX", keywords="Work")
    message = load_message(tmp_path, "INBOX", FILENAME)

    message.add_keyword("Alerts", "Work", "Zed")

    assert message.keywords() == ["Alerts", "Work", "Zed"]
    assert message.dirty is True


def test_save_persists_keywords_and_preserves_body(tmp_path) -> None:
    path = write_message(tmp_path, "INBOX", body="Line one.\nLine two.\n")
    message = load_message(tmp_path, "INBOX", FILENAME)
    message.add_keyword("Alerts")

    assert message.save() is True

    reopened = load_message(tmp_path, "INBOX", FILENAME)
    assert reopened.keywords() == ["Alerts"]
    assert path.read_bytes().endswith(b"\n\nLine one.\nLine two.\n")
    assert message.dirty is False


def test_save_without_changes_does_not_rewrite(tmp_path) -> None:
    path = write_message(tmp_path, "INBOX", keywords="Alerts")
    before = path.read_bytes()
    message = load_message(tmp_path, "INBOX", FILENAME)

    message.add_keyword("Alerts")

    assert message.save() is False
    assert path.read_bytes() == before


def test_removing_last_keyword_drops_header(tmp_path) -> None:
    path = write_message(tmp_path, "INBOX", keywords="Alerts")
    message = load_message(tmp_path, "INBOX", FILENAME)

    message.remove_keyword("Alerts")
    message.save()

    assert b"Keywords" not in path.read_bytes()
    assert load_message(tmp_path, "INBOX", FILENAME).keywords() == []


def test_keyword_checks_treat_label_and_folder_names_alike(tmp_path) -> None:
    write_message(tmp_path, "INBOX", keywords="\\Starred, Alerts")
    message = load_message(tmp_path, "INBOX", FILENAME)

    assert message.has_keyword("gmail.Starred") is True
    assert message.has_keyword("\\Starred", "Alerts") is True
    assert message.missing_keyword("\\Inbox", "Junk") is True
    assert message.missing_keyword("Alerts", "Junk") is False


def test_add_keyword_stores_folder_form_of_labels(tmp_path) -> None:
    write_message(tmp_path, "INBOX")
    message = load_message(tmp_path, "INBOX", FILENAME)

    message.add_keyword("\\Inbox")

    assert message.keywords() == ["INBOX"]
    assert message.has_keyword("\\Inbox") is True


def test_cleanup_keywords_is_noop_for_canonical_header(tmp_path) -> None:
    write_message(tmp_path, "INBOX", keywords="Alerts, INBOX")
    message = load_message(tmp_path, "INBOX", FILENAME)

    assert message.has_nonconforming_keywords() is False
    message.cleanup_keywords()

    assert message.dirty is False


def test_cleanup_keywords_canonicalizes_labels(tmp_path) -> None:
    write_message(tmp_path, "INBOX", keywords="\\Inbox, Alerts")
    message = load_message(tmp_path, "INBOX", FILENAME)

    assert message.has_nonconforming_keywords() is True
    message.cleanup_keywords()

    assert message.keywords() == ["Alerts", "INBOX"]
    assert message.has_nonconforming_keywords() is False


def test_date_parses_rfc_2822_header(tmp_path) -> None:
    write_message(tmp_path, "INBOX", date="Mon, 16 Feb 2026 10:00:00 -0500")
    message = load_message(tmp_path, "INBOX", FILENAME)

    assert message.date() == datetime(2026, 2, 16, 15, 0, tzinfo=timezone.utc)


def test_date_raises_parse_error_for_garbage(tmp_path) -> None:
    write_message(tmp_path, "INBOX", date="sometime last week")
    message = load_message(tmp_path, "INBOX", FILENAME)

    with pytest.raises(ParseError):
        message.date()


def test_forwarded_header_accumulates_sorted_addresses(tmp_path) -> None:
    write_message(tmp_path, "INBOX", extra_headers=("X-Zostay-Forwarded: zed@example.com",))
    message = load_message(tmp_path, "INBOX", FILENAME)

    message.record_forwarded(["amy@example.com", "zed@example.com"])

    assert message.forwarded_to() == ["amy@example.com", "zed@example.com"]
    assert message.header("X-Zostay-Forwarded") == "amy@example.com, zed@example.com"


def test_address_list_reads_every_address(tmp_path) -> None:
    write_message(tmp_path, "INBOX", to="Amy <amy@example.com>, bob@example.org")
    message = load_message(tmp_path, "INBOX", FILENAME)

    assert [address.address for address in message.address_list("To")] == [
        "amy@example.com",
        "bob@example.org",
    ]
    assert message.address_list("Cc") == []
    with pytest.raises(ValueError, match="not an address header"):
        message.address_list("Subject")


def test_repair_header_block_fixes_known_damage() -> None:
    raw = (
        b"From: alerts@example.com\n"
        b"To: amy@example.com,\n"
        b"bob@example.org\n"
        b"content-transfer-encoding: 8-bit\n"
        b"\n"
        b"body\n"
    )

    repaired = repair_header_block(raw)

    assert b"Content-Transfer-Encoding: 8bit\n" in repaired
    assert b"\n        bob@example.org\n" in repaired
    assert repaired.endswith(b"\n\nbody\n")


def test_repaired_headers_are_readable(tmp_path) -> None:
    data = (
        b"From: alerts@example.com\n"
        b"To: amy@example.com,\n"
        b"bob@example.org\n"
        b"Subject: Wrapped\n"
        b"\n"
        b"body\n"
    )
    path = tmp_path / "wrapped.eml"
    path.write_bytes(data)

    message = Message.from_file(path)

    assert [address.address for address in message.address_list("To")] == [
        "amy@example.com",
        "bob@example.org",
    ]
    assert message.subject() == "Wrapped"


def test_rewrite_headers_replaces_folded_header_in_place() -> None:
    raw = b"From: a@example.com\r\nKeywords: One,\r\n Two\r\nSubject: s\r\n\r\nbody"

    rewritten = rewrite_headers(raw, {"Keywords": "Three"})

    assert rewritten == b"From: a@example.com\r\nKeywords: Three\r\nSubject: s\r\n\r\nbody"


def test_move_to_resolves_labels_and_slashes(tmp_path) -> None:
    make_maildir(tmp_path, "INBOX", "Projects.X", "gmail.Trash")
    write_message(tmp_path, "INBOX")
    message = load_message(tmp_path, "INBOX", FILENAME)

    message.move_to("Projects/X")
    assert message.folder() == "Projects.X"
    assert (tmp_path / "Projects.X" / "cur" / FILENAME).exists()

    message.move_to("\\Trash")
    assert message.folder() == "gmail.Trash"


def test_move_to_is_unavailable_for_plain_files(tmp_path) -> None:
    path = tmp_path / "loose.eml"
    path.write_bytes(make_message_bytes())

    with pytest.raises(MissingFolderError):
        Message.from_file(path).move_to("INBOX")
