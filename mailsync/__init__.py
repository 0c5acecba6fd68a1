"""Mailbox synchronization core: provider adapters, canonical mapping,
attachment materialization and the per-account sync orchestrator."""

from .config import Settings
from .errors import (
    CredentialError,
    CursorError,
    MailSyncError,
    MappingError,
    ProviderError,
    StorageError,
    TransportError,
)
from .logging import setup_logging
from .models import (
    CanonicalEmail,
    Credentials,
    DownloadRequest,
    DownloadResult,
    ProviderKind,
    SyncMode,
    SyncOptions,
    SyncProgress,
    SyncResult,
)
from .service import MailSyncService

__all__ = [
    "CanonicalEmail",
    "CredentialError",
    "Credentials",
    "CursorError",
    "DownloadRequest",
    "DownloadResult",
    "MailSyncError",
    "MailSyncService",
    "MappingError",
    "ProviderError",
    "ProviderKind",
    "Settings",
    "StorageError",
    "SyncMode",
    "SyncOptions",
    "SyncProgress",
    "SyncResult",
    "TransportError",
    "setup_logging",
]
