"""Raw provider message -> :class:`~mailsync.models.CanonicalEmail`.

Pure functions: no I/O, no clock reads, same input gives the same output.
"""

from __future__ import annotations

import re
import uuid
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Any

from pydantic import ValidationError

from mailsync.errors import MappingError
from mailsync.models import CanonicalEmail, EmailAddress, ProviderKind
from mailsync.providers.base import RawMessage

NO_SUBJECT = "(no subject)"
DEFAULT_FOLDER = "inbox"
SNIPPET_LENGTH = 200

# Epoch values above this are milliseconds (year 5138 in seconds).
_EPOCH_MS_THRESHOLD = 100_000_000_000


def to_utc(value: Any) -> datetime | None:
    """Convert epoch seconds/millis, ISO-8601 or RFC 2822 to an aware UTC datetime.

    Returns ``None`` for empty input and raises :class:`MappingError` for
    values that cannot be interpreted.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.replace(tzinfo=UTC) if value.tzinfo is None else value.astimezone(UTC)
    if isinstance(value, bool):
        raise MappingError(f"Unsupported timestamp: {value!r}")
    if isinstance(value, (int, float)):
        seconds = value / 1000 if value > _EPOCH_MS_THRESHOLD else value
        try:
            return datetime.fromtimestamp(seconds, tz=UTC)
        except (OverflowError, OSError, ValueError) as exc:
            raise MappingError(f"Timestamp out of range: {value!r}") from exc
    if isinstance(value, str):
        text = value.strip()
        if text.isdigit():
            return to_utc(int(text))
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            try:
                parsed = parsedate_to_datetime(text)
            except (TypeError, ValueError) as exc:
                raise MappingError(f"Unparseable timestamp: {value!r}") from exc
        return to_utc(parsed)
    raise MappingError(f"Unsupported timestamp: {value!r}")


def _address(email: Any, name: Any) -> EmailAddress:
    return EmailAddress(email=str(email or ""), name=str(name or ""))


def _optional_list(items: list[EmailAddress]) -> list[EmailAddress] | None:
    return items or None


def _label_name(item: Any) -> str | None:
    if isinstance(item, dict):
        return item.get("name") or item.get("id")
    return str(item) if item else None


def _label_id(label: Any) -> str | None:
    if isinstance(label, dict):
        return label.get("id")
    return str(label) if label else None


def _pick_folder(folders: list[Any] | None, labels: list[Any] | None) -> str:
    for candidates in (folders, labels):
        if candidates:
            name = _label_name(candidates[0])
            if name:
                return name
    return DEFAULT_FOLDER


def _snippet(text: str | None) -> str:
    if not text:
        return ""
    return re.sub(r"\s+", " ", text).strip()[:SNIPPET_LENGTH]


def _require_received(value: Any, ref: str) -> datetime:
    received = to_utc(value)
    if received is None:
        raise MappingError(f"Message {ref} has no received timestamp")
    return received


# ============================================================================
# Provider A: Nylas
# ============================================================================


def _nylas_addresses(items: list[dict] | None) -> list[EmailAddress]:
    return [_address(a.get("email"), a.get("name")) for a in items or []]


def _map_nylas(raw: RawMessage, account_id: uuid.UUID) -> CanonicalEmail:
    msg = raw.payload
    senders = _nylas_addresses(msg.get("from"))
    received = _require_received(msg.get("date") or msg.get("received_at"), raw.ref)
    labels = msg.get("labels") or []

    return CanonicalEmail(
        account_id=account_id,
        provider_message_id=raw.ref,
        message_id=msg.get("message_id") or raw.ref,
        thread_id=msg.get("thread_id"),
        subject=msg.get("subject") or NO_SUBJECT,
        snippet=msg.get("snippet") or "",
        from_address=senders[0] if senders else EmailAddress(),
        to_addresses=_nylas_addresses(msg.get("to")),
        cc_addresses=_optional_list(_nylas_addresses(msg.get("cc"))),
        bcc_addresses=_optional_list(_nylas_addresses(msg.get("bcc"))),
        reply_to=_optional_list(_nylas_addresses(msg.get("reply_to"))),
        body_text=msg.get("body") or "",
        body_html=msg.get("body_html"),
        received_at=received,
        sent_at=to_utc(msg.get("date")),
        is_read=msg.get("unread") is False,
        is_starred=msg.get("starred") is True,
        is_important=msg.get("important") is True,
        is_draft=msg.get("is_draft") is True,
        has_attachments=len(msg.get("attachments") or []) > 0,
        folder_name=_pick_folder(msg.get("folders"), labels),
        label_ids=[lid for lid in (_label_id(label) for label in labels) if lid],
    )


# ============================================================================
# Provider B: Microsoft Graph
# ============================================================================


def _graph_address(recipient: dict | None) -> EmailAddress:
    inner = (recipient or {}).get("emailAddress") or {}
    return _address(inner.get("address"), inner.get("name"))


def _graph_addresses(items: list[dict] | None) -> list[EmailAddress]:
    return [_graph_address(r) for r in items or []]


def _map_graph(raw: RawMessage, account_id: uuid.UUID) -> CanonicalEmail:
    msg = raw.payload
    body = msg.get("body") or {}
    content = body.get("content") or ""
    is_html = str(body.get("contentType", "")).lower() == "html"
    attachments = msg.get("attachments")
    has_attachments = len(attachments) > 0 if attachments is not None else bool(msg.get("hasAttachments"))
    folders = [msg["parentFolderId"]] if msg.get("parentFolderId") else None
    categories = msg.get("categories") or []

    return CanonicalEmail(
        account_id=account_id,
        provider_message_id=raw.ref,
        message_id=msg.get("internetMessageId") or raw.ref,
        thread_id=msg.get("conversationId"),
        subject=msg.get("subject") or NO_SUBJECT,
        snippet=msg.get("bodyPreview") or "",
        from_address=_graph_address(msg.get("from")),
        to_addresses=_graph_addresses(msg.get("toRecipients")),
        cc_addresses=_optional_list(_graph_addresses(msg.get("ccRecipients"))),
        bcc_addresses=_optional_list(_graph_addresses(msg.get("bccRecipients"))),
        reply_to=_optional_list(_graph_addresses(msg.get("replyTo"))),
        body_text="" if is_html else content,
        body_html=content if is_html else None,
        received_at=_require_received(msg.get("receivedDateTime"), raw.ref),
        sent_at=to_utc(msg.get("sentDateTime")),
        is_read=msg.get("isRead") is True,
        is_starred=(msg.get("flag") or {}).get("flagStatus") == "flagged",
        is_important=msg.get("importance") == "high",
        is_draft=msg.get("isDraft") is True,
        has_attachments=has_attachments,
        folder_name=_pick_folder(folders, categories),
        label_ids=list(categories),
    )


# ============================================================================
# Provider C: IMAP
# ============================================================================


def _imap_addresses(pairs: list[tuple[str, str]]) -> list[EmailAddress]:
    return [_address(addr, name) for name, addr in pairs]


def _map_imap(raw: RawMessage, account_id: uuid.UUID) -> CanonicalEmail:
    msg = raw.payload
    parsed = msg["parsed"]
    flags = set(msg.get("flags") or [])
    senders = _imap_addresses(parsed.from_address)

    try:
        sent_at = to_utc(parsed.date)
    except MappingError:
        # sender-supplied header; INTERNALDATE still dates the message
        sent_at = None
    received = _require_received(msg.get("internal_date") or sent_at, raw.ref)

    mailbox = msg.get("mailbox")
    if mailbox and mailbox.upper() == "INBOX":
        mailbox = DEFAULT_FOLDER

    return CanonicalEmail(
        account_id=account_id,
        provider_message_id=raw.ref,
        message_id=parsed.message_id or raw.ref,
        thread_id=None,
        subject=parsed.subject or NO_SUBJECT,
        snippet=_snippet(parsed.body_text),
        from_address=senders[0] if senders else EmailAddress(),
        to_addresses=_imap_addresses(parsed.to_addresses),
        cc_addresses=_optional_list(_imap_addresses(parsed.cc_addresses)),
        bcc_addresses=_optional_list(_imap_addresses(parsed.bcc_addresses)),
        reply_to=_optional_list(_imap_addresses(parsed.reply_to)),
        body_text=parsed.body_text or "",
        body_html=parsed.body_html,
        received_at=received,
        sent_at=sent_at,
        is_read="\\Seen" in flags,
        is_starred="\\Flagged" in flags,
        is_important=False,
        is_draft="\\Draft" in flags,
        has_attachments=len(parsed.parts) > 0,
        folder_name=_pick_folder([mailbox] if mailbox else None, None),
        label_ids=[],
    )


_MAPPERS = {
    ProviderKind.NYLAS: _map_nylas,
    ProviderKind.MICROSOFT: _map_graph,
    ProviderKind.IMAP: _map_imap,
}


def map_message(raw: RawMessage, account_id: uuid.UUID) -> CanonicalEmail:
    """Map one raw provider message to the canonical record.

    Raises :class:`MappingError` when the payload lacks data the record
    cannot be built without.
    """
    try:
        mapper = _MAPPERS[ProviderKind(raw.provider)]
    except (KeyError, ValueError) as exc:
        raise MappingError(f"No mapper for provider {raw.provider!r}") from exc
    try:
        return mapper(raw, account_id)
    except (KeyError, TypeError, AttributeError, ValidationError) as exc:
        raise MappingError(f"Malformed {raw.provider} message {raw.ref}: {exc}") from exc
