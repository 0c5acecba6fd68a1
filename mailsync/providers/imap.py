"""Provider C: session-based IMAP, UID-range pagination.

All blocking ``imaplib`` operations are wrapped with ``asyncio.to_thread()``
to avoid blocking the event loop.  One authenticated session is opened
lazily and reused for every page of a run.

Cursor format is ``"<UIDVALIDITY>:<last UID>"``.  A cursor whose
UIDVALIDITY no longer matches the mailbox is rejected with
:class:`~mailsync.errors.CursorError`.
"""

from __future__ import annotations

import asyncio
import imaplib
import re
from datetime import datetime
from typing import Any

import structlog

from mailsync.config import ImapConfig
from mailsync.errors import CredentialError, CursorError, TransportError
from mailsync.mime import MimeParser
from mailsync.models import ImapCredentials, ProviderKind

from .base import MessagePage, RawMessage

logger = structlog.get_logger()

_INTERNALDATE_RE = re.compile(rb'INTERNALDATE "([^"]+)"')


def parse_cursor(cursor: str) -> tuple[int, int]:
    """Split ``"<uidvalidity>:<uid>"``; raise :class:`CursorError` if malformed."""
    validity, sep, uid = cursor.partition(":")
    if not sep:
        raise CursorError(f"Malformed IMAP cursor: {cursor!r}")
    try:
        return int(validity), int(uid)
    except ValueError as exc:
        raise CursorError(f"Malformed IMAP cursor: {cursor!r}") from exc


def _parse_internaldate(header: bytes) -> str | None:
    match = _INTERNALDATE_RE.search(header)
    if match is None:
        return None
    try:
        parsed = datetime.strptime(match.group(1).decode(), "%d-%b-%Y %H:%M:%S %z")
    except ValueError:
        return None
    return parsed.isoformat()


class ImapAdapter:
    """Read one IMAP mailbox; attachment bytes arrive with each message."""

    kind = ProviderKind.IMAP
    eager_attachments = True

    def __init__(
        self,
        config: ImapConfig,
        credentials: ImapCredentials | None,
        *,
        timeout_seconds: float = 30.0,
    ) -> None:
        if credentials is None:
            raise CredentialError("No IMAP credentials found for account")
        self._config = config
        self._credentials = credentials
        self._timeout = timeout_seconds
        self._parser = MimeParser()
        self._conn: imaplib.IMAP4_SSL | imaplib.IMAP4 | None = None
        self._mailbox: str | None = None
        self._uidvalidity: int = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def _ensure_session(self, mailbox: str) -> None:
        if self._conn is not None and self._mailbox == mailbox:
            return
        try:
            await asyncio.to_thread(self._connect_sync, mailbox)
        except imaplib.IMAP4.abort as exc:
            await self._drop()
            raise TransportError(f"IMAP session aborted: {exc}") from exc
        except imaplib.IMAP4.error as exc:
            await self._drop()
            raise CredentialError(f"IMAP login failed: {exc}") from exc
        except OSError as exc:
            await self._drop()
            raise TransportError(f"IMAP connection failed: {exc}") from exc
        logger.info(
            "imap_connected",
            host=self._credentials.host,
            mailbox=mailbox,
            uidvalidity=self._uidvalidity,
        )

    def _connect_sync(self, mailbox: str) -> None:
        if self._conn is None:
            creds = self._credentials
            if creds.use_ssl:
                self._conn = imaplib.IMAP4_SSL(creds.host, creds.port, timeout=self._timeout)
            else:
                self._conn = imaplib.IMAP4(creds.host, creds.port, timeout=self._timeout)
            self._conn.login(creds.username, creds.password.get_secret_value())

        status, _ = self._conn.select(mailbox, readonly=True)
        if status != "OK":
            raise TransportError(f"Could not select IMAP mailbox {mailbox!r}")
        _, data = self._conn.response("UIDVALIDITY")
        self._uidvalidity = int(data[0]) if data and data[0] else 0
        self._mailbox = mailbox

    async def close(self) -> None:
        """Close mailbox and logout."""
        if self._conn is not None:
            await asyncio.to_thread(self._disconnect_sync)
            self._conn = None
            self._mailbox = None
            logger.info("imap_disconnected")

    def _disconnect_sync(self) -> None:
        assert self._conn is not None
        try:
            self._conn.close()
        except (imaplib.IMAP4.error, OSError):
            pass
        try:
            self._conn.logout()
        except (imaplib.IMAP4.error, OSError):
            pass

    async def _drop(self) -> None:
        """Tear down a broken or half-open connection without a LOGOUT exchange."""
        if self._conn is not None:
            await asyncio.to_thread(self._shutdown_sync, self._conn)
        self._conn = None
        self._mailbox = None

    @staticmethod
    def _shutdown_sync(conn: imaplib.IMAP4) -> None:
        try:
            conn.shutdown()
        except (imaplib.IMAP4.error, OSError):
            pass

    # ------------------------------------------------------------------
    # Message retrieval
    # ------------------------------------------------------------------

    async def list_messages(
        self,
        *,
        cursor: str | None,
        since: datetime | None,
        page_size: int,
        folders: list[str] | None = None,
    ) -> MessagePage:
        mailbox = folders[0] if folders else self._config.mailbox
        last_uid = 0
        if cursor:
            validity, last_uid = parse_cursor(cursor)
        await self._ensure_session(mailbox)
        if cursor and validity != self._uidvalidity:
            raise CursorError(
                f"UIDVALIDITY changed for {mailbox!r}: cursor {validity}, server {self._uidvalidity}"
            )

        if cursor:
            criteria = f"UID {last_uid + 1}:*"
        elif since is not None:
            criteria = f"SINCE {since.strftime('%d-%b-%Y')}"
        else:
            criteria = "ALL"

        try:
            fetched = await asyncio.to_thread(self._search_and_fetch, criteria, last_uid, page_size)
        except imaplib.IMAP4.abort as exc:
            await self._drop()
            raise TransportError(f"IMAP session aborted: {exc}") from exc
        except imaplib.IMAP4.error as exc:
            raise TransportError(f"IMAP command failed: {exc}") from exc
        except OSError as exc:
            await self._drop()
            raise TransportError(f"IMAP connection lost: {exc}") from exc

        messages = [
            RawMessage(provider=self.kind, ref=f"{self._uidvalidity}:{uid}", payload=payload)
            for uid, payload in fetched
        ]
        if fetched:
            next_cursor: str | None = f"{self._uidvalidity}:{fetched[-1][0]}"
        else:
            next_cursor = cursor
        logger.debug("imap_page_fetched", mailbox=mailbox, count=len(messages), cursor=next_cursor)
        return MessagePage(messages=messages, next_cursor=next_cursor)

    async def fetch_attachment_bytes(self, message_ref: str, attachment_ref: str) -> bytes | None:
        """Re-fetch the message by UID and return the part named *attachment_ref*."""
        validity, uid = parse_cursor(message_ref)
        await self._ensure_session(self._mailbox or self._config.mailbox)
        if validity != self._uidvalidity:
            logger.warning("imap_uidvalidity_mismatch", message_ref=message_ref, current=self._uidvalidity)
            return None

        try:
            fetched = await asyncio.to_thread(self._fetch_one, uid)
        except (imaplib.IMAP4.error, OSError) as exc:
            raise TransportError(f"IMAP fetch failed: {exc}") from exc
        if fetched is None:
            return None

        for part in fetched["parsed"].parts:
            if part.filename == attachment_ref:
                return part.payload
        return None

    # ------------------------------------------------------------------
    # Synchronous helpers (run in thread)
    # ------------------------------------------------------------------

    def _search_and_fetch(self, criteria: str, last_uid: int, page_size: int) -> list[tuple[int, dict[str, Any]]]:
        assert self._conn is not None
        status, data = self._conn.uid("SEARCH", None, criteria)
        if status != "OK":
            raise TransportError(f"IMAP SEARCH failed for {criteria!r}")
        if not data or not data[0]:
            return []

        # UID ranges are inclusive and "n:*" returns the highest UID even
        # when it is below n, so filter explicitly.
        uids = sorted(int(u) for u in data[0].split() if int(u) > last_uid)

        results: list[tuple[int, dict[str, Any]]] = []
        for uid in uids[:page_size]:
            payload = self._fetch_one(uid)
            if payload is not None:
                results.append((uid, payload))
        return results

    def _fetch_one(self, uid: int) -> dict[str, Any] | None:
        assert self._conn is not None
        status, msg_data = self._conn.uid("FETCH", str(uid), "(INTERNALDATE FLAGS RFC822)")
        if status != "OK" or not msg_data or not isinstance(msg_data[0], tuple):
            return None

        header, raw_bytes = msg_data[0]
        return {
            "uid": uid,
            "mailbox": self._mailbox,
            "internal_date": _parse_internaldate(header),
            "flags": [flag.decode() for flag in imaplib.ParseFlags(header)],
            "parsed": self._parser.parse(raw_bytes),
        }
