"""FastAPI application exposing sync, progress and attachment download."""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from typing import Annotated

import structlog
from fastapi import Body, Depends, FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .config import Settings
from .models import (
    Credentials,
    DownloadErrorKind,
    DownloadRequest,
    DownloadResult,
    ProviderKind,
    SyncOptions,
    SyncProgress,
    SyncResult,
)
from .service import MailSyncService

logger = structlog.get_logger()


class DownloadBody(BaseModel):
    """Request body for ``POST /attachments/{id}/download``."""

    provider: ProviderKind
    message_ref: str
    attachment_ref: str | None = None
    credentials: Credentials = Field(default_factory=Credentials)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: build the service unless one was injected. Shutdown: stop it."""
    service: MailSyncService | None = getattr(app.state, "service", None)
    if service is None:
        service = MailSyncService(app.state.settings)
        app.state.service = service
    await service.start()
    yield
    await service.stop()
    logger.info("shutdown_complete")


def get_service(request: Request) -> MailSyncService:
    return request.app.state.service


ServiceDep = Annotated[MailSyncService, Depends(get_service)]

_DOWNLOAD_STATUS = {
    DownloadErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    DownloadErrorKind.PROVIDER: status.HTTP_502_BAD_GATEWAY,
    DownloadErrorKind.STORAGE: status.HTTP_502_BAD_GATEWAY,
}


def create_app(settings: Settings | None = None, service: MailSyncService | None = None) -> FastAPI:
    """Build and return the FastAPI application."""
    if settings is None:
        settings = service.settings if service is not None else Settings()

    app = FastAPI(title="mailsync", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    if service is not None:
        app.state.service = service

    @app.post("/accounts/{account_id}/sync", response_model=SyncResult)
    async def sync_account(
        account_id: uuid.UUID,
        svc: ServiceDep,
        options: Annotated[SyncOptions | None, Body()] = None,
    ) -> SyncResult:
        if await svc.status.get_account(account_id) is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Account not found")
        return await svc.sync_account(account_id, options)

    @app.get("/accounts/{account_id}/progress", response_model=SyncProgress)
    async def sync_progress(account_id: uuid.UUID, svc: ServiceDep) -> SyncProgress:
        progress = await svc.get_sync_progress(account_id)
        if progress is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Account not found")
        return progress

    @app.post("/attachments/{attachment_id}/download", response_model=DownloadResult)
    async def download_attachment(attachment_id: uuid.UUID, body: DownloadBody, svc: ServiceDep):
        result = await svc.download_attachment(
            DownloadRequest(
                attachment_id=attachment_id,
                provider=body.provider,
                message_ref=body.message_ref,
                attachment_ref=body.attachment_ref,
                credentials=body.credentials,
            )
        )
        if result.success:
            return result
        return JSONResponse(
            content=result.model_dump(mode="json"),
            status_code=_DOWNLOAD_STATUS.get(result.error_kind, status.HTTP_502_BAD_GATEWAY),
        )

    @app.get("/health")
    async def health():
        return {"status": "ok", "service": "mailsync"}

    return app
