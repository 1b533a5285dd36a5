from __future__ import annotations

import pytest

from label_mail.addresses import (
    Address,
    address_list_html,
    address_list_string,
    extract_domain,
    fallback_address,
    parse_address_list,
    parse_forward_address,
)
from label_mail.labels import folder_to_label, label_to_folder


def test_parse_address_list_reads_names_and_addresses() -> None:
    addresses = parse_address_list('"Amy Pond" <amy@example.com>, bob@example.org')

    assert addresses == [
        Address(name="Amy Pond", address="amy@example.com"),
        Address(name="", address="bob@example.org"),
    ]
    assert parse_address_list("") == []
    assert parse_address_list(None) == []


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("Bob (work account) <bob@example.com>", "bob@example.com"),
        ("reach me at bob@example.com (home)", "bob@example.com"),
        ("(outer (inner) comment) <carol@example.com>", "carol@example.com"),
    ],
)
def test_fallback_address_strips_comments(value: str, expected: str) -> None:
    address = fallback_address(value)

    assert address is not None
    assert address.address == expected


def test_fallback_address_without_any_address() -> None:
    assert fallback_address("undisclosed recipients") is None


def test_extract_domain_lowercases_domain_part() -> None:
    assert extract_domain("Alerts@Example.COM") == "example.com"
    assert extract_domain("no-domain") == ""


def test_parse_forward_address_accepts_names_and_lists() -> None:
    addresses = parse_forward_address("Me <me@home.com>, you@work.com", "rule.forward")

    assert addresses == [
        Address(name="Me", address="me@home.com"),
        Address(name="", address="you@work.com"),
    ]


def test_parse_forward_address_rejects_malformed_address() -> None:
    with pytest.raises(ValueError, match="rule.forward has invalid email address 'not-an-address'"):
        parse_forward_address("not-an-address", "rule.forward")


def test_address_rendering() -> None:
    addresses = [Address(name="Amy & Co.", address="ab@example.com"), Address(name="", address="c@example.com")]

    assert address_list_string(addresses) == '"Amy & Co." <ab@example.com>, c@example.com'
    assert address_list_html(addresses) == (
        '<strong>Amy &amp; Co.</strong> &lt;<a href="mailto:ab@example.com">ab@example.com</a>&gt;, '
        '<strong></strong> &lt;<a href="mailto:c@example.com">c@example.com</a>&gt;'
    )


@pytest.mark.parametrize(
    "name",
    ["\\Inbox", "INBOX", "\\Sent", "gmail.Sent_Mail", "\\Draft", "Alerts"],
)
def test_alias_resolution_is_idempotent(name: str) -> None:
    assert label_to_folder(label_to_folder(name)) == label_to_folder(name)
    assert folder_to_label(folder_to_label(name)) == folder_to_label(name)


def test_alias_table_pairs() -> None:
    assert label_to_folder("\\Trash") == "gmail.Trash"
    assert label_to_folder("\\Starred") == "gmail.Starred"
    assert folder_to_label("gmail.Important") == "\\Important"
    assert folder_to_label("Projects.X") == "Projects.X"
