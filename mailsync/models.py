"""Domain and boundary models for the mailbox sync core."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, SecretStr


class ProviderKind(str, Enum):
    """Remote mailbox API families an account can be connected through."""

    NYLAS = "nylas"
    MICROSOFT = "microsoft"
    IMAP = "imap"


class SyncStatus(str, Enum):
    """Account-level sync state machine: ``idle -> syncing -> success|error``."""

    IDLE = "idle"
    SYNCING = "syncing"
    SUCCESS = "success"
    ERROR = "error"


class AccountStatus(str, Enum):
    """Connection health; ``error`` means the grant must be re-authorized."""

    ACTIVE = "active"
    ERROR = "error"


class DownloadStatus(str, Enum):
    """Per-attachment materialization state machine."""

    PENDING = "pending"
    DOWNLOADING = "downloading"
    COMPLETED = "completed"
    FAILED = "failed"


class SyncMode(str, Enum):
    FULL = "full"
    INCREMENTAL = "incremental"


class SyncPhase(str, Enum):
    FETCHING = "fetching"
    ERROR = "error"
    COMPLETE = "complete"


class DownloadErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    PROVIDER = "provider"
    STORAGE = "storage"


# ============================================================================
# Canonical email record
# ============================================================================


class EmailAddress(BaseModel):
    """One participant of a message."""

    email: str = Field(default="", description="Mailbox address")
    name: str = Field(default="", description="Display name, empty when absent")


class CanonicalEmail(BaseModel):
    """Provider-independent representation of one remote message."""

    account_id: uuid.UUID
    provider_message_id: str = Field(description="Stable remote identifier, the dedup key")
    message_id: str = Field(description="RFC 2822 Message-ID, falls back to the remote id")
    thread_id: str | None = None
    subject: str
    snippet: str = ""

    from_address: EmailAddress
    to_addresses: list[EmailAddress] = Field(default_factory=list)
    cc_addresses: list[EmailAddress] | None = None
    bcc_addresses: list[EmailAddress] | None = None
    reply_to: list[EmailAddress] | None = None

    body_text: str = ""
    body_html: str | None = None

    received_at: datetime
    sent_at: datetime | None = None

    is_read: bool = False
    is_starred: bool = False
    is_important: bool = False
    is_draft: bool = False
    has_attachments: bool = False

    folder_name: str = "inbox"
    label_ids: list[str] = Field(default_factory=list)


# ============================================================================
# Credentials
# ============================================================================


class ImapCredentials(BaseModel):
    """Connection parameters for a session-based IMAP mailbox."""

    host: str
    port: int = 993
    username: str
    password: SecretStr
    use_ssl: bool = True


class Credentials(BaseModel):
    """Opaque credential material for one provider call.

    Exactly which field is consulted depends on the provider: Nylas uses
    ``grant_id``, Microsoft Graph uses ``access_token`` and IMAP uses
    ``imap``.  This core never inspects or refreshes them.
    """

    grant_id: str | None = None
    access_token: SecretStr | None = None
    imap: ImapCredentials | None = None


# ============================================================================
# Sync entry point
# ============================================================================


class SyncOptions(BaseModel):
    """Caller-supplied parameters for one ``sync_account`` invocation."""

    mode: SyncMode = SyncMode.INCREMENTAL
    limit: int | None = Field(default=None, ge=1, description="Stop after this many messages")
    folders: list[str] | None = Field(default=None, description="Folder allow-list")
    since: datetime | None = Field(default=None, description="Explicit lower bound when no cursor is used")
    batch_size: int | None = Field(default=None, ge=1, description="Page size, defaults to SyncConfig")


class SyncResult(BaseModel):
    success: bool
    emails_synced: int = 0
    emails_created: int = 0
    emails_updated: int = 0
    next_cursor: str | None = None
    error: str | None = None
    should_retry: bool = False


class SyncProgress(BaseModel):
    """Read-only projection of the sync status for progress UIs."""

    phase: SyncPhase
    current: int = 0
    total: int = 0
    cursor: str | None = None


# ============================================================================
# On-demand attachment download
# ============================================================================


class DownloadRequest(BaseModel):
    attachment_id: uuid.UUID
    provider: ProviderKind
    message_ref: str = Field(description="Remote message identifier the attachment belongs to")
    attachment_ref: str | None = Field(
        default=None,
        description="Provider attachment reference; defaults to the stored one",
    )
    credentials: Credentials


class DownloadResult(BaseModel):
    success: bool
    url: str | None = None
    error: str | None = None
    error_kind: DownloadErrorKind | None = None
