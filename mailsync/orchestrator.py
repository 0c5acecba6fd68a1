"""Sync orchestrator: drives the page/upsert loop for one mailbox account.

Flow for one ``sync_account`` call::

    load account -> check credentials -> begin_sync (atomic)
      -> loop: fetch page -> map -> upsert email -> attachments
               -> record progress + cursor
      -> mark_success | mark_failure

Pages are processed strictly in order; page N+1 is only requested after
page N is committed and its cursor persisted.
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime

import structlog

from .attachments import AttachmentPipeline
from .config import RetryConfig, SyncConfig
from .db.models import EmailAccount
from .errors import (
    CredentialError,
    CursorError,
    MailSyncError,
    MappingError,
    ProviderError,
    StorageError,
    TransportError,
)
from .logging import bound_context
from .mapper import map_message
from .models import SyncMode, SyncOptions, SyncProgress, SyncResult
from .providers import AdapterFactory, credentials_from_account
from .providers.base import MessagePage, ProviderAdapter, RawMessage
from .repository import EmailRepository
from .retry import with_retry
from .status_store import SyncStatusStore

logger = structlog.get_logger()


class _RunCounts:
    __slots__ = ("synced", "created", "updated", "cursor", "pages")

    def __init__(self) -> None:
        self.pages = 0
        self.synced = 0
        self.created = 0
        self.updated = 0
        self.cursor: str | None = None

    def result(self, **kwargs: object) -> SyncResult:
        return SyncResult(
            emails_synced=self.synced,
            emails_created=self.created,
            emails_updated=self.updated,
            next_cursor=self.cursor,
            **kwargs,
        )


class SyncOrchestrator:
    """Entry point external schedulers and UI triggers call."""

    def __init__(
        self,
        status_store: SyncStatusStore,
        emails: EmailRepository,
        attachments: AttachmentPipeline,
        adapter_factory: AdapterFactory,
        *,
        sync_config: SyncConfig | None = None,
        retry_config: RetryConfig | None = None,
    ) -> None:
        self._status = status_store
        self._emails = emails
        self._attachments = attachments
        self._adapter_factory = adapter_factory
        self._sync_config = sync_config or SyncConfig()
        self._retry_config = retry_config or RetryConfig()

    async def get_sync_progress(self, account_id: uuid.UUID) -> SyncProgress | None:
        return await self._status.get_progress(account_id)

    async def sync_account(self, account_id: uuid.UUID, options: SyncOptions | None = None) -> SyncResult:
        """Run one sync for *account_id*.

        Never raises once the account row is loaded; the outcome is reported
        in the returned :class:`SyncResult` and on the account row.
        """
        options = options or SyncOptions()
        with bound_context(account_id=str(account_id), mode=options.mode.value):
            account = await self._status.get_account(account_id)
            if account is None:
                logger.warning("sync_account_not_found")
                return SyncResult(success=False, error="Account not found")

            try:
                credentials = credentials_from_account(account)
            except CredentialError as exc:
                logger.warning("sync_credentials_missing", error=str(exc))
                return SyncResult(success=False, error=str(exc))

            if not await self._status.begin_sync(account_id):
                logger.info("sync_already_running")
                return SyncResult(success=False, error="Sync already in progress", should_retry=True)

            counts = _RunCounts()
            adapter: ProviderAdapter | None = None
            try:
                adapter = self._adapter_factory(account.provider, credentials)
                await self._run(adapter, account, options, counts)
            except CredentialError as exc:
                logger.warning("sync_failed_credentials", error=str(exc), synced=counts.synced)
                await self._status.mark_failure(account_id, str(exc), credential=True)
                return counts.result(success=False, error=str(exc))
            except MailSyncError as exc:
                logger.warning("sync_failed", error=str(exc), synced=counts.synced)
                await self._status.mark_failure(account_id, str(exc))
                return counts.result(success=False, error=str(exc), should_retry=True)
            except Exception as exc:
                logger.exception("sync_failed_unexpected", synced=counts.synced)
                error = f"Unexpected error: {exc}"
                await self._status.mark_failure(account_id, error)
                return counts.result(success=False, error=error, should_retry=True)
            finally:
                if adapter is not None:
                    await adapter.close()

            await self._status.mark_success(account_id, synced=counts.synced, cursor=counts.cursor)
            logger.info(
                "sync_completed",
                synced=counts.synced,
                created=counts.created,
                updated=counts.updated,
            )
            return counts.result(success=True)

    # ------------------------------------------------------------------
    # Batch loop
    # ------------------------------------------------------------------

    async def _run(
        self,
        adapter: ProviderAdapter,
        account: EmailAccount,
        options: SyncOptions,
        counts: _RunCounts,
    ) -> None:
        cursor, since = self._starting_point(account, options)
        try:
            await self._loop(adapter, account, options, counts, cursor, since)
        except CursorError as exc:
            if cursor is None or counts.pages > 0:
                raise
            # Stored cursor rejected on the first page: forget it and
            # re-scan from the timestamp fallback. Upserts make this idempotent.
            logger.warning("sync_cursor_rejected", cursor=cursor, error=str(exc))
            await self._status.clear_cursor(account.id)
            fallback = options.since or account.last_successful_sync_at
            await self._loop(adapter, account, options, counts, None, fallback)

    def _starting_point(self, account: EmailAccount, options: SyncOptions) -> tuple[str | None, datetime | None]:
        if options.mode == SyncMode.FULL:
            return None, options.since
        if account.sync_cursor:
            return account.sync_cursor, None
        return None, options.since or account.last_successful_sync_at

    async def _loop(
        self,
        adapter: ProviderAdapter,
        account: EmailAccount,
        options: SyncOptions,
        counts: _RunCounts,
        cursor: str | None,
        since: datetime | None,
    ) -> None:
        page_size = options.batch_size or self._sync_config.batch_size

        while True:
            page = await self._fetch_page(adapter, cursor, since, page_size, options.folders)

            for raw in page.messages:
                created = await self._process_message(adapter, account, raw)
                if created is None:
                    continue
                counts.synced += 1
                if created:
                    counts.created += 1
                else:
                    counts.updated += 1

            if page.next_cursor is not None:
                counts.cursor = page.next_cursor
            await self._status.record_page(account.id, counts.synced, page.next_cursor)
            counts.pages += 1
            logger.debug(
                "sync_page_committed",
                page=counts.pages,
                messages=len(page.messages),
                synced=counts.synced,
                cursor=page.next_cursor,
            )

            if page.next_cursor is None or len(page.messages) < page_size:
                counts.cursor = page.next_cursor
                return
            if options.limit is not None and counts.synced >= options.limit:
                logger.info("sync_limit_reached", limit=options.limit)
                return
            cursor = page.next_cursor

    async def _fetch_page(
        self,
        adapter: ProviderAdapter,
        cursor: str | None,
        since: datetime | None,
        page_size: int,
        folders: list[str] | None,
    ) -> MessagePage:
        timeout = self._sync_config.provider_timeout_seconds

        @with_retry(self._retry_config)
        async def fetch() -> MessagePage:
            try:
                async with asyncio.timeout(timeout):
                    return await adapter.list_messages(
                        cursor=cursor,
                        since=since,
                        page_size=page_size,
                        folders=folders,
                    )
            except TimeoutError as exc:
                raise TransportError(f"Provider call timed out after {timeout}s") from exc

        return await fetch()

    async def _process_message(
        self,
        adapter: ProviderAdapter,
        account: EmailAccount,
        raw: RawMessage,
    ) -> bool | None:
        """Map, upsert and attach one message.

        Returns whether the email row was created, or ``None`` when the
        message was skipped.
        """
        try:
            canonical = map_message(raw, account.id)
            email, created = await self._emails.upsert(canonical)
            await self._attachments.process_message(raw, email, account, eager=adapter.eager_attachments)
        except (CredentialError, TransportError):
            raise
        except (MappingError, ProviderError, StorageError):
            logger.exception("sync_message_skipped", message_ref=raw.ref)
            return None
        return created
