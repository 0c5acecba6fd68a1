"""Attachment extraction, materialization and on-demand download.

Two modes, picked from the adapter's ``eager_attachments`` flag:

* eager -- bytes came with the message; upload now and insert the row as
  ``completed`` (or ``failed`` if the upload is refused).
* lazy -- only metadata is known; insert the row as ``pending`` and let
  :meth:`AttachmentPipeline.download_attachment` fetch bytes later.

Inline parts (inline disposition or a Content-ID) never become rows.
"""

from __future__ import annotations

import asyncio
import re
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import structlog

from .db.models import Email, EmailAccount, utcnow
from .errors import MappingError, ProviderError, StorageError, TransportError
from .logging import bound_context
from .models import (
    DownloadErrorKind,
    DownloadRequest,
    DownloadResult,
    DownloadStatus,
    ProviderKind,
)
from .providers import AdapterFactory
from .providers.base import RawMessage
from .repository import AttachmentRepository
from .storage import S3Store

logger = structlog.get_logger()

MAX_FILENAME_LENGTH = 255
DEFAULT_FILENAME = "untitled"
DEFAULT_CONTENT_TYPE = "application/octet-stream"


def sanitize_filename(name: str) -> str:
    """Make *name* safe for storage paths.

    Every character outside ``[A-Za-z0-9.-]`` becomes ``_``, runs of ``_``
    collapse to one, and the result is cut to 255 characters.
    """
    cleaned = re.sub(r"[^A-Za-z0-9.\-]", "_", name)
    cleaned = re.sub(r"_+", "_", cleaned)[:MAX_FILENAME_LENGTH]
    return cleaned or "attachment"


def storage_key(prefix: str, user_id: uuid.UUID, filename: str, now: datetime) -> str:
    """``{prefix}/{user}/{YYYY}/{MM}/{epoch ms}-{filename}``."""
    epoch_ms = int(now.timestamp() * 1000)
    return f"{prefix}/{user_id}/{now:%Y}/{now:%m}/{epoch_ms}-{filename}"


@dataclass
class AttachmentPart:
    """Provider-neutral view of one attachment-like part of a raw message."""

    filename: str | None
    content_type: str | None
    size: int = 0
    content_id: str | None = None
    disposition: str | None = None
    inline_flag: bool = False
    provider_ref: str | None = None
    content: bytes | None = None

    @property
    def is_inline(self) -> bool:
        if self.inline_flag or self.content_id:
            return True
        return (self.disposition or "").strip().lower().startswith("inline")


def _nylas_parts(payload: dict[str, Any]) -> list[AttachmentPart]:
    return [
        AttachmentPart(
            filename=a.get("filename"),
            content_type=a.get("content_type"),
            size=int(a.get("size") or 0),
            content_id=a.get("content_id"),
            disposition=a.get("content_disposition"),
            inline_flag=a.get("is_inline") is True,
            provider_ref=a.get("id"),
        )
        for a in payload.get("attachments") or []
    ]


def _graph_parts(payload: dict[str, Any]) -> list[AttachmentPart]:
    return [
        AttachmentPart(
            filename=a.get("name"),
            content_type=a.get("contentType"),
            size=int(a.get("size") or 0),
            content_id=a.get("contentId"),
            inline_flag=a.get("isInline") is True,
            provider_ref=a.get("id"),
        )
        for a in payload.get("attachments") or []
    ]


def _imap_parts(payload: dict[str, Any]) -> list[AttachmentPart]:
    return [
        AttachmentPart(
            filename=p.filename,
            content_type=p.content_type,
            size=len(p.payload),
            content_id=p.content_id,
            disposition=p.disposition,
            provider_ref=p.filename,
            content=p.payload,
        )
        for p in payload["parsed"].parts
    ]


_EXTRACTORS: dict[ProviderKind, Callable[[dict[str, Any]], list[AttachmentPart]]] = {
    ProviderKind.NYLAS: _nylas_parts,
    ProviderKind.MICROSOFT: _graph_parts,
    ProviderKind.IMAP: _imap_parts,
}


def extract_parts(raw: RawMessage) -> list[AttachmentPart]:
    """All attachment-like parts of *raw*, before inline filtering."""
    try:
        return _EXTRACTORS[ProviderKind(raw.provider)](raw.payload)
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
        raise MappingError(f"Malformed attachment list on {raw.ref}: {exc}") from exc


def user_facing_parts(raw: RawMessage) -> list[AttachmentPart]:
    return [part for part in extract_parts(raw) if not part.is_inline]


class AttachmentPipeline:
    def __init__(
        self,
        repository: AttachmentRepository,
        store: S3Store,
        adapter_factory: AdapterFactory,
        *,
        fetch_timeout_seconds: float = 30.0,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._repo = repository
        self._store = store
        self._adapter_factory = adapter_factory
        self._fetch_timeout = fetch_timeout_seconds
        self._clock = clock

    # ------------------------------------------------------------------
    # During sync
    # ------------------------------------------------------------------

    async def process_message(
        self,
        raw: RawMessage,
        email: Email,
        account: EmailAccount,
        *,
        eager: bool,
    ) -> int:
        """Create attachment rows for *email*; returns the number inserted."""
        inserted = 0
        for part in user_facing_parts(raw):
            original = part.filename or DEFAULT_FILENAME
            if await self._repo.exists(email.id, original):
                continue

            sanitized = sanitize_filename(original)
            content_type = part.content_type or DEFAULT_CONTENT_TYPE
            values: dict[str, Any] = {
                "email_id": email.id,
                "account_id": account.id,
                "user_id": account.user_id,
                "filename": sanitized,
                "original_filename": original,
                "content_type": content_type,
                "size": part.size,
                "content_id": part.content_id,
                "is_inline": False,
                "provider_attachment_id": part.provider_ref,
                "email_subject": email.subject,
                "email_from": (email.from_address or {}).get("email"),
                "email_received_at": email.received_at,
                "download_status": DownloadStatus.PENDING,
            }

            if eager and part.content is not None:
                key = storage_key(self._store.prefix, account.user_id, sanitized, self._clock())
                try:
                    stored = await self._store.upload(key, part.content, content_type)
                except StorageError:
                    logger.warning("attachment_eager_upload_failed", email_id=str(email.id), filename=original)
                    values["download_status"] = DownloadStatus.FAILED
                else:
                    values.update(
                        download_status=DownloadStatus.COMPLETED,
                        storage_url=stored.url,
                        storage_key=stored.key,
                    )

            if await self._repo.insert(**values) is not None:
                inserted += 1
        return inserted

    # ------------------------------------------------------------------
    # On demand
    # ------------------------------------------------------------------

    async def download_attachment(self, request: DownloadRequest) -> DownloadResult:
        """Materialize one attachment into object storage.

        A row already ``completed`` returns its URL without touching the
        provider.  Every failure leaves the row ``failed`` and retryable.
        """
        with bound_context(attachment_id=str(request.attachment_id), provider=request.provider.value):
            row = await self._repo.get(request.attachment_id)
            if row is None:
                return DownloadResult(
                    success=False,
                    error="Attachment not found",
                    error_kind=DownloadErrorKind.NOT_FOUND,
                )
            if row.download_status == DownloadStatus.COMPLETED and row.storage_url:
                logger.debug("attachment_already_downloaded")
                return DownloadResult(success=True, url=row.storage_url)

            await self._repo.mark_downloading(row.id)
            attachment_ref = request.attachment_ref or row.provider_attachment_id or row.original_filename

            try:
                data = await self._fetch(request, attachment_ref)
            except ProviderError as exc:
                logger.warning("attachment_fetch_failed", error=str(exc))
                await self._repo.mark_failed(row.id)
                return DownloadResult(success=False, error=str(exc), error_kind=DownloadErrorKind.PROVIDER)

            if not data:
                logger.warning("attachment_fetch_empty")
                await self._repo.mark_failed(row.id)
                return DownloadResult(
                    success=False,
                    error="Provider returned no attachment data",
                    error_kind=DownloadErrorKind.PROVIDER,
                )

            key = storage_key(self._store.prefix, row.user_id, row.filename, self._clock())
            try:
                stored = await self._store.upload(key, data, row.content_type)
            except StorageError as exc:
                await self._repo.mark_failed(row.id)
                return DownloadResult(success=False, error=str(exc), error_kind=DownloadErrorKind.STORAGE)

            await self._repo.mark_completed(row.id, url=stored.url, key=stored.key)
            logger.info("attachment_downloaded", key=stored.key, size=len(data))
            return DownloadResult(success=True, url=stored.url)

    async def _fetch(self, request: DownloadRequest, attachment_ref: str) -> bytes | None:
        adapter = self._adapter_factory(request.provider, request.credentials)
        try:
            async with asyncio.timeout(self._fetch_timeout):
                return await adapter.fetch_attachment_bytes(request.message_ref, attachment_ref)
        except TimeoutError as exc:
            raise TransportError(f"Attachment fetch timed out after {self._fetch_timeout}s") from exc
        finally:
            await adapter.close()
