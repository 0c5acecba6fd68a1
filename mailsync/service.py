"""Wires configuration into the stores, pipeline and orchestrator."""

from __future__ import annotations

import uuid

import structlog

from .attachments import AttachmentPipeline
from .config import Settings
from .db.engine import DatabaseEngine
from .models import DownloadRequest, DownloadResult, SyncOptions, SyncProgress, SyncResult
from .orchestrator import SyncOrchestrator
from .providers import AdapterFactory, default_adapter_factory
from .repository import AttachmentRepository, EmailRepository
from .status_store import SyncStatusStore
from .storage import S3Store

logger = structlog.get_logger()


class MailSyncService:
    """One instance per process; shared by the HTTP app and the CLI.

    *adapter_factory* and *store* can be swapped for test doubles.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        adapter_factory: AdapterFactory | None = None,
        store: S3Store | None = None,
        db: DatabaseEngine | None = None,
    ) -> None:
        self.settings = settings
        self.db = db or DatabaseEngine(settings.database)
        self.store = store or S3Store(settings.s3)
        factory = adapter_factory or default_adapter_factory(settings)

        self.status = SyncStatusStore(self.db, stale_after_seconds=settings.sync.stale_sync_seconds)
        self.emails = EmailRepository(self.db)
        self.attachment_rows = AttachmentRepository(self.db)
        self.attachments = AttachmentPipeline(
            self.attachment_rows,
            self.store,
            factory,
            fetch_timeout_seconds=settings.sync.provider_timeout_seconds,
        )
        self.orchestrator = SyncOrchestrator(
            self.status,
            self.emails,
            self.attachments,
            factory,
            sync_config=settings.sync,
            retry_config=settings.retry,
        )

    async def start(self) -> None:
        await self.store.start()
        logger.info("mailsync_service_started")

    async def stop(self) -> None:
        await self.store.stop()
        await self.db.close()
        logger.info("mailsync_service_stopped")

    async def sync_account(self, account_id: uuid.UUID, options: SyncOptions | None = None) -> SyncResult:
        return await self.orchestrator.sync_account(account_id, options)

    async def get_sync_progress(self, account_id: uuid.UUID) -> SyncProgress | None:
        return await self.orchestrator.get_sync_progress(account_id)

    async def download_attachment(self, request: DownloadRequest) -> DownloadResult:
        return await self.attachments.download_attachment(request)
