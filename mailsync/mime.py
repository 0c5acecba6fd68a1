"""RFC 822 parser used by the IMAP adapter.

Walks the entire message to extract headers, body text, HTML and every
named part (attachments and inline parts alike; the attachment pipeline
decides which ones to keep).
"""

from __future__ import annotations

import email
import email.policy
import email.utils
from dataclasses import dataclass, field
from email.message import EmailMessage


@dataclass
class ParsedPart:
    """A named or content-id'd MIME leaf part."""

    filename: str | None
    content_type: str
    payload: bytes
    content_id: str | None = None
    disposition: str | None = None


@dataclass
class ParsedEmail:
    """Structured representation of a fully parsed message."""

    message_id: str
    subject: str
    from_address: list[tuple[str, str]]
    to_addresses: list[tuple[str, str]]
    cc_addresses: list[tuple[str, str]]
    bcc_addresses: list[tuple[str, str]]
    reply_to: list[tuple[str, str]]
    date: str
    in_reply_to: str | None
    references: str | None
    body_text: str | None
    body_html: str | None
    parts: list[ParsedPart] = field(default_factory=list)


def _address_list(header_value: object) -> list[tuple[str, str]]:
    if not header_value:
        return []
    return [(name, addr) for name, addr in email.utils.getaddresses([str(header_value)]) if addr]


def _part_bytes(part: EmailMessage) -> bytes | None:
    try:
        payload = part.get_content()
    except (KeyError, LookupError):
        payload = part.get_payload(decode=True)
    if isinstance(payload, bytes):
        return payload
    if isinstance(payload, str):
        return payload.encode("utf-8")
    if isinstance(payload, EmailMessage):
        return payload.as_bytes()
    return None


class MimeParser:
    """Stateless parser: raw RFC 822 bytes -> :class:`ParsedEmail`."""

    def parse(self, raw_bytes: bytes) -> ParsedEmail:
        msg = email.message_from_bytes(raw_bytes, policy=email.policy.default)

        body_text, body_html = self._extract_bodies(msg)

        return ParsedEmail(
            message_id=str(msg.get("Message-ID", "")).strip(),
            subject=str(msg.get("Subject", "")),
            from_address=_address_list(msg.get("From")),
            to_addresses=_address_list(msg.get("To")),
            cc_addresses=_address_list(msg.get("Cc")),
            bcc_addresses=_address_list(msg.get("Bcc")),
            reply_to=_address_list(msg.get("Reply-To")),
            date=str(msg.get("Date", "")),
            in_reply_to=msg.get("In-Reply-To"),
            references=msg.get("References"),
            body_text=body_text,
            body_html=body_html,
            parts=self._extract_parts(msg),
        )

    def _extract_bodies(self, msg: EmailMessage) -> tuple[str | None, str | None]:
        """Return ``(plain_text, html_text)`` from the first matching leaves."""
        body_text: str | None = None
        body_html: str | None = None

        for part in msg.walk():
            if part.is_multipart():
                continue
            if part.get_content_disposition() == "attachment" or part.get_filename():
                continue

            content_type = part.get_content_type()
            if content_type not in ("text/plain", "text/html"):
                continue
            try:
                payload = part.get_content()
            except (KeyError, LookupError):
                continue
            if not isinstance(payload, str):
                continue
            if content_type == "text/plain" and body_text is None:
                body_text = payload
            elif content_type == "text/html" and body_html is None:
                body_html = payload

        return body_text, body_html

    def _extract_parts(self, msg: EmailMessage) -> list[ParsedPart]:
        parts: list[ParsedPart] = []

        for part in msg.walk():
            if part.is_multipart():
                continue

            disposition = part.get_content_disposition()
            filename = part.get_filename()
            content_id = part.get("Content-ID")
            if disposition != "attachment" and not filename and not content_id:
                continue

            raw = _part_bytes(part)
            if raw is None:
                continue

            parts.append(
                ParsedPart(
                    filename=filename,
                    content_type=part.get_content_type(),
                    payload=raw,
                    content_id=str(content_id).strip("<> ") if content_id else None,
                    disposition=disposition,
                )
            )

        return parts
