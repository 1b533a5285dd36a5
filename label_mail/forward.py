"""Forwarding a stored message to other addresses over SMTP submission.

The forwarded copy is a fresh ``multipart/mixed`` wrapper holding every leaf
part of the original. The first inline ``text/plain`` and ``text/html`` parts
are prefixed with a block describing the original sender, date and subject.
"""

from __future__ import annotations

import html
import logging
import secrets
import smtplib
import ssl
import string
from datetime import datetime
from email import encoders, policy
from email.message import Message as EmailPart
from email.mime.base import MIMEBase
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import format_datetime
from typing import Callable, Sequence

from label_mail.addresses import Address, address_list_html, address_list_string
from label_mail.config import SMTPConfig, SMTPCredentials
from label_mail.message import Message, ParseError


logger = logging.getLogger(__name__)

FORWARDED_MESSAGE_PREFIX = "---------- Forwarded message ---------"
BOUNDARY_LENGTH = 30
BOUNDARY_ALPHABET = string.ascii_letters + string.digits


def random_boundary() -> str:
    return "".join(secrets.choice(BOUNDARY_ALPHABET) for _ in range(BOUNDARY_LENGTH))


def generate_boundary(existing: bytes, factory: Callable[[], str] = random_boundary) -> str:
    """Return a boundary that does not occur anywhere in ``existing``."""
    while True:
        boundary = factory()
        if boundary.encode("ascii") not in existing:
            return boundary
        logger.debug("Boundary %s collides with message content; regenerating", boundary)


def original_date(message: Message) -> str:
    try:
        return format_datetime(message.date())
    except ParseError:
        return message.header("Date") or ""


def forwarded_text_block(message: Message) -> str:
    lines = [
        FORWARDED_MESSAGE_PREFIX,
        f"From: {address_list_string(message.address_list('From'))}",
        f"Date: {original_date(message)}",
        f"Subject: {message.subject()}",
        f"To: {address_list_string(message.address_list('To'))}",
    ]
    cc = message.address_list("Cc")
    if cc:
        lines.append(f"Cc: {address_list_string(cc)}")
    return "\n".join(lines) + "\n\n"


def forwarded_html_block(message: Message) -> str:
    parts = [
        "<div><br></div><div><br><div>",
        FORWARDED_MESSAGE_PREFIX,
        f"<br>From: {address_list_html(message.address_list('From'))}",
        f"<br>Date: {html.escape(original_date(message))}",
        f"<br>Subject: {html.escape(message.subject())}",
        f"<br>To: {address_list_html(message.address_list('To'))}",
    ]
    cc = message.address_list("Cc")
    if cc:
        parts.append(f"<br>Cc: {address_list_html(cc)}")
    parts.append("<br></div><br><br>")
    return "".join(parts)


def part_text(part: EmailPart) -> str:
    payload = part.get_payload(decode=True) or b""
    charset = part.get_content_charset() or "utf-8"
    try:
        return payload.decode(charset, errors="replace")
    except LookupError:
        return payload.decode("utf-8", errors="replace")


def copy_binary_part(part: EmailPart) -> MIMEBase:
    copied = MIMEBase(part.get_content_maintype(), part.get_content_subtype(), policy=policy.SMTP)
    copied.set_payload(part.get_payload(decode=True) or b"")
    encoders.encode_base64(copied)
    disposition = part.get("Content-Disposition")
    if disposition:
        copied["Content-Disposition"] = str(disposition)
    content_id = part.get("Content-ID")
    if content_id:
        copied["Content-ID"] = str(content_id)
    return copied


def build_forward_message(
    message: Message,
    recipients: Sequence[Address],
    sender: Address,
    now: datetime,
    boundary_factory: Callable[[], str] = random_boundary,
) -> bytes:
    original = message.email()
    boundary = generate_boundary(message.raw(), boundary_factory)

    wrapper = MIMEMultipart("mixed", boundary=boundary, policy=policy.SMTP)
    wrapper["Date"] = format_datetime(now)
    wrapper["From"] = str(sender)
    wrapper["To"] = address_list_string(recipients)
    wrapper["X-Forwarded-To"] = address_list_string(recipients)
    wrapper["X-Forwarded-For"] = str(sender)
    wrapper["Subject"] = f"Fwd: {message.subject()}"

    text_prefixed = False
    html_prefixed = False
    for part in original.walk():
        if part.is_multipart():
            continue

        content_type = part.get_content_type()
        inline = part.get_content_disposition() != "attachment"
        if inline and content_type == "text/plain":
            text = part_text(part)
            if not text_prefixed:
                text = forwarded_text_block(message) + text
                text_prefixed = True
            wrapper.attach(MIMEText(text, "plain", "utf-8", policy=policy.SMTP))
        elif inline and content_type == "text/html":
            text = part_text(part)
            if not html_prefixed:
                text = forwarded_html_block(message) + text
                html_prefixed = True
            wrapper.attach(MIMEText(text, "html", "utf-8", policy=policy.SMTP))
        else:
            wrapper.attach(copy_binary_part(part))

    return wrapper.as_bytes()


def envelope_recipients(message: Message, recipients: Sequence[Address]) -> list[str]:
    """Addresses in ``recipients`` this message has not been forwarded to yet."""
    already = set(message.forwarded_to())
    envelope: list[str] = []
    for recipient in recipients:
        if recipient.address in already or recipient.address in envelope:
            continue
        envelope.append(recipient.address)
    return envelope


class Forwarder:
    def __init__(
        self,
        smtp_config: SMTPConfig,
        credentials: SMTPCredentials,
        sender: Address,
        smtp_factory: Callable[..., smtplib.SMTP] | None = None,
        boundary_factory: Callable[[], str] = random_boundary,
    ) -> None:
        self.smtp_config = smtp_config
        self.credentials = credentials
        self.sender = sender
        self.smtp_factory = smtp_factory or smtplib.SMTP
        self.boundary_factory = boundary_factory

    def send(self, envelope: list[str], data: bytes) -> None:
        context = ssl.create_default_context()
        with self.smtp_factory(
            self.smtp_config.host,
            self.smtp_config.port,
            timeout=self.smtp_config.timeout_seconds,
        ) as smtp:
            smtp.ehlo()
            smtp.starttls(context=context)
            smtp.ehlo()
            smtp.user = self.credentials.username
            smtp.password = self.credentials.password
            smtp.auth("PLAIN", smtp.auth_plain)
            smtp.sendmail(self.sender.address, envelope, data)

    def forward(self, message: Message, recipients: Sequence[Address], now: datetime) -> list[str]:
        """Send ``message`` to the recipients it has not reached yet.

        Returns the envelope actually used. SMTP and network errors propagate
        and leave the ``X-Zostay-Forwarded`` header untouched.
        """
        envelope = envelope_recipients(message, recipients)
        if not envelope:
            logger.debug("%s already forwarded to %s", message.path, ", ".join(a.address for a in recipients))
            return envelope

        data = build_forward_message(message, recipients, self.sender, now, self.boundary_factory)
        self.send(envelope, data)
        message.record_forwarded(envelope)
        return envelope
