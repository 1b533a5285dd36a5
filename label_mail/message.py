"""Lazy access to a stored mail message and mediated header mutation.

Messages are parsed on first use and cached. Mutations of the ``Keywords``
and ``X-Zostay-Forwarded`` headers are kept in memory until :meth:`Message.save`
rewrites the header block of the stored bytes, leaving the body untouched.
"""

from __future__ import annotations

import logging
import os
import re
from datetime import datetime, timezone
from email import errors, policy
from email.message import EmailMessage
from email.parser import BytesParser
from email.utils import parsedate_to_datetime
from pathlib import Path

from label_mail.addresses import Address, parse_address_list
from label_mail.labels import label_to_folder
from label_mail.maildir import MailDirFolder, MailDirMessage, MessageFile, MessageSource, MissingFolderError


logger = logging.getLogger(__name__)

KEYWORDS_HEADER = "Keywords"
FORWARDED_HEADER = "X-Zostay-Forwarded"
KEYWORD_SEPARATOR_PATTERN = re.compile(r"[\s,]+")
CONFORMING_KEYWORD_PATTERN = re.compile(r"[A-Za-z0-9_./\-]+")
HEADER_NAME_PATTERN = re.compile(rb"^(?P<name>[!-9;-~]+)[ \t]*:")
HEADER_FIXES = (
    (b"content-transfer-encoding: 8-bit", b"Content-Transfer-Encoding: 8bit"),
)
ADDRESS_HEADERS = ("From", "To", "Cc", "Sender", "Delivered-To")


class ParseError(ValueError):
    pass


def split_keywords(value: str | None) -> list[str]:
    if not value:
        return []
    return sorted({token for token in KEYWORD_SEPARATOR_PATTERN.split(value) if token})


def canonical_keyword(keyword: str) -> str:
    return label_to_folder(keyword)


def format_keywords(keywords) -> str:
    return ", ".join(sorted(set(keywords)))


def split_header_block(raw: bytes) -> tuple[bytes, bytes, bytes]:
    """Split raw message bytes into header block, blank-line separator and body."""
    candidates = []
    for separator in (b"\r\n\r\n", b"\n\n"):
        index = raw.find(separator)
        if index >= 0:
            candidates.append((index, separator))
    if raw.startswith(b"\r\n"):
        return b"", b"\r\n", raw[2:]
    if raw.startswith(b"\n"):
        return b"", b"\n", raw[1:]
    if not candidates:
        return raw, b"", b""

    index, separator = min(candidates)
    newline = separator[: len(separator) // 2]
    return raw[: index + len(newline)], newline, raw[index + len(separator) :]


def header_newline(header: bytes) -> bytes:
    if b"\r\n" in header:
        return b"\r\n"
    return b"\n"


def repair_header_block(raw: bytes) -> bytes:
    """Fix header damage seen in the wild before handing bytes to the parser.

    Known-bad header spellings are corrected, and a header line with no
    colon (an address wrapped without indentation, for example) is folded
    into the header above it.
    """
    header, separator, body = split_header_block(raw)
    if not header:
        return raw

    repaired: list[bytes] = []
    for line in header.splitlines(keepends=True):
        for broken, fixed in HEADER_FIXES:
            if line.lower().startswith(broken):
                line = fixed + line[len(broken) :]
        is_continuation = line[:1] in (b" ", b"\t")
        if repaired and not is_continuation and not HEADER_NAME_PATTERN.match(line):
            line = b"        " + line
        repaired.append(line)
    return b"".join(repaired) + separator + body


def rewrite_headers(raw: bytes, updates: dict[str, str]) -> bytes:
    """Replace the named headers in ``raw``; an empty value drops the header."""
    header, separator, body = split_header_block(raw)
    newline = header_newline(header or separator or b"\n")
    wanted = {name.lower(): name for name in updates}

    entries: list[tuple[str | None, list[bytes]]] = []
    for line in header.splitlines(keepends=True):
        if line[:1] in (b" ", b"\t") and entries:
            entries[-1][1].append(line)
            continue
        match = HEADER_NAME_PATTERN.match(line)
        name = match.group("name").decode("ascii").lower() if match else None
        entries.append((name, [line]))

    output: list[bytes] = []
    inserted = False
    for name, lines in entries:
        if name in wanted:
            if not inserted:
                output.extend(_header_lines(updates, newline))
                inserted = True
            continue
        if lines and not lines[-1].endswith((b"\n", b"\r")):
            lines[-1] += newline
        output.extend(lines)
    if not inserted:
        output.extend(_header_lines(updates, newline))

    if not separator:
        separator = newline
    return b"".join(output) + separator + body


def _header_lines(updates: dict[str, str], newline: bytes) -> list[bytes]:
    return [
        f"{name}: {value}".encode("utf-8") + newline
        for name, value in updates.items()
        if value
    ]


def normalize_datetime(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Message:
    def __init__(self, source: MessageSource) -> None:
        self.source = source
        self._raw: bytes | None = None
        self._email: EmailMessage | None = None
        self._updates: dict[str, str] = {}

    @classmethod
    def from_file(cls, path: str | os.PathLike[str]) -> Message:
        return cls(MessageFile(path))

    def __repr__(self) -> str:
        return f"Message({self.source!r})"

    @property
    def path(self) -> Path:
        return self.source.path

    @property
    def dirty(self) -> bool:
        return bool(self._updates)

    def stat(self) -> os.stat_result:
        return self.source.stat()

    def raw(self) -> bytes:
        if self._raw is None:
            self._raw = self.source.read_bytes()
        return self._raw

    def email(self) -> EmailMessage:
        if self._email is None:
            try:
                self._email = BytesParser(policy=policy.default).parsebytes(
                    repair_header_block(self.raw())
                )
            except (errors.MessageError, ValueError, IndexError) as error:
                raise ParseError(f"Unable to parse message {self.path}: {error}") from error
        return self._email

    def header(self, name: str) -> str | None:
        if name in self._updates:
            return self._updates[name] or None
        try:
            values = self.email().get_all(name)
        except (errors.MessageError, ValueError, IndexError) as error:
            raise ParseError(f"Unable to read header {name} of {self.path}: {error}") from error
        if not values:
            return None
        return ", ".join(str(value) for value in values)

    def _set_header(self, name: str, value: str) -> None:
        if (self.header(name) or "") == value:
            return
        self._updates[name] = value

    def date(self) -> datetime:
        value = self.header("Date")
        if not value:
            raise ParseError(f"Message {self.path} has no Date header.")
        try:
            return normalize_datetime(parsedate_to_datetime(value))
        except (TypeError, ValueError):
            pass
        try:
            return normalize_datetime(datetime.fromisoformat(value.strip()))
        except ValueError as error:
            raise ParseError(f"Unable to parse Date header ({value}) of {self.path}.") from error

    def keywords(self) -> list[str]:
        return split_keywords(self.header(KEYWORDS_HEADER))

    def _canonical_keywords(self) -> set[str]:
        return {canonical_keyword(keyword) for keyword in self.keywords()}

    def has_keyword(self, *names: str) -> bool:
        present = self._canonical_keywords()
        return all(canonical_keyword(name) in present for name in names)

    def missing_keyword(self, *names: str) -> bool:
        present = self._canonical_keywords()
        return all(canonical_keyword(name) not in present for name in names)

    def has_nonconforming_keywords(self) -> bool:
        return any(
            not CONFORMING_KEYWORD_PATTERN.fullmatch(keyword)
            for keyword in self.keywords()
        )

    def add_keyword(self, *names: str) -> None:
        if not names:
            return
        keywords = set(self.keywords())
        keywords.update(canonical_keyword(name) for name in names)
        self._set_header(KEYWORDS_HEADER, format_keywords(keywords))

    def remove_keyword(self, *names: str) -> None:
        if not names:
            return
        removed = {canonical_keyword(name) for name in names}
        keywords = [
            keyword for keyword in self.keywords()
            if canonical_keyword(keyword) not in removed
        ]
        self._set_header(KEYWORDS_HEADER, format_keywords(keywords))

    def cleanup_keywords(self) -> None:
        self._set_header(
            KEYWORDS_HEADER,
            format_keywords(canonical_keyword(keyword) for keyword in self.keywords()),
        )

    def forwarded_to(self) -> list[str]:
        return split_keywords(self.header(FORWARDED_HEADER))

    def record_forwarded(self, addresses: list[str]) -> None:
        self._set_header(
            FORWARDED_HEADER,
            format_keywords([*self.forwarded_to(), *addresses]),
        )

    def address_list(self, name: str) -> list[Address]:
        if name not in ADDRESS_HEADERS:
            raise ValueError(f"{name} is not an address header.")
        return parse_address_list(self.header(name))

    def subject(self) -> str:
        return self.header("Subject") or ""

    def folder(self) -> str:
        return self.source.folder_name

    def save(self) -> bool:
        """Write pending header changes back to the store.

        Returns ``False`` without touching the file when nothing changed.
        """
        if not self._updates:
            return False

        updated = rewrite_headers(self.raw(), self._updates)
        with self.source.replace() as writer:
            writer.write(updated)

        self._raw = updated
        self._email = None
        self._updates = {}
        return True

    def move_to(self, name: str) -> None:
        if not isinstance(self.source, MailDirMessage):
            raise MissingFolderError(f"{self.path} is not stored in a maildir folder.")
        folder_name = label_to_folder(name.strip()).replace("/", ".")
        destination = MailDirFolder(self.source.folder.root, folder_name)
        self.source.move_to(destination)
        logger.debug("Moved %s to %s", self.source.filename, folder_name)
