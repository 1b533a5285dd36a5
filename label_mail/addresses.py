from __future__ import annotations

import html
import re
from dataclasses import dataclass
from email.utils import formataddr, getaddresses, parseaddr


COMMENT_PATTERN = re.compile(r"\([^()]*\)")
ANGLE_ADDRESS_PATTERN = re.compile(r"<(?P<address>[^<>]*)>")


@dataclass(frozen=True)
class Address:
    name: str
    address: str

    def __str__(self) -> str:
        return formataddr((self.name, self.address))


def extract_domain(email_address: str) -> str:
    if "@" not in email_address:
        return ""
    return email_address.rsplit("@", 1)[1].strip().lower()


def fallback_address(value: str) -> Address | None:
    # Nested comments are peeled from the inside out.
    previous = None
    while previous != value:
        previous = value
        value = COMMENT_PATTERN.sub("", value)

    match = ANGLE_ADDRESS_PATTERN.search(value)
    if match and match.group("address").strip():
        return Address(name="", address=match.group("address").strip())

    for word in value.split():
        if "@" in word:
            return Address(name="", address=word.strip("<>\"'"))
    return None


def fallback_address_list(value: str) -> list[Address]:
    addresses: list[Address] = []
    for item in value.split(","):
        address = fallback_address(item)
        if address is not None:
            addresses.append(address)
    return addresses


def parse_address_list(value: str | None) -> list[Address]:
    """Parse an address header, tolerating the oddities found in real mail.

    The standard parser handles well-formed lists. When it yields nothing
    usable, each comma-separated item is searched for an ``<...>`` address
    or a word carrying an ``@``.
    """
    if not value or not value.strip():
        return []

    addresses = [
        Address(name=name.strip(), address=address.strip())
        for name, address in getaddresses([value])
        if address.strip() and "@" in address
    ]
    if addresses:
        return addresses
    return fallback_address_list(value)


def parse_forward_address(value: str, source: str) -> list[Address]:
    addresses: list[Address] = []
    for raw_item in value.split(","):
        item = raw_item.strip()
        if not item:
            continue
        name, address = parseaddr(item)
        address = address.strip()
        local_part, _separator, domain = address.partition("@")
        if not local_part or not domain or any(char.isspace() for char in address):
            raise ValueError(f"{source} has invalid email address {item!r}.")
        addresses.append(Address(name=name.strip(), address=address))
    if not addresses:
        raise ValueError(f"{source} has an empty email address.")
    return addresses


def address_list_strings(addresses: list[Address] | tuple[Address, ...]) -> list[str]:
    return [address.address for address in addresses]


def address_list_string(addresses: list[Address] | tuple[Address, ...]) -> str:
    return ", ".join(str(address) for address in addresses)


def address_list_html(addresses: list[Address] | tuple[Address, ...]) -> str:
    rendered: list[str] = []
    for address in addresses:
        escaped_address = html.escape(address.address)
        rendered.append(
            f"<strong>{html.escape(address.name)}</strong> "
            f'&lt;<a href="mailto:{escaped_address}">{escaped_address}</a>&gt;'
        )
    return ", ".join(rendered)
