"""SQLAlchemy ORM models for accounts, emails and attachments."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from mailsync.models import AccountStatus, DownloadStatus, ProviderKind, SyncStatus


def utcnow() -> datetime:
    return datetime.now(UTC)


class UTCDateTime(TypeDecorator):
    """Timezone-aware timestamp stored as UTC on every backend.

    SQLite drops ``tzinfo``; values are normalised to UTC on the way in
    and re-tagged as UTC on the way out so comparisons behave the same as
    on PostgreSQL.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value


def _enum(enum_cls: type, name: str) -> Enum:
    return Enum(
        enum_cls,
        name=name,
        native_enum=False,
        create_constraint=True,
        length=16,
        values_callable=lambda members: [m.value for m in members],
    )


JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    pass


class EmailAccount(Base):
    __tablename__ = "email_accounts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    provider: Mapped[ProviderKind] = mapped_column(_enum(ProviderKind, "email_provider"), nullable=False)
    email_address: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[AccountStatus] = mapped_column(
        _enum(AccountStatus, "email_account_status"),
        nullable=False,
        default=AccountStatus.ACTIVE,
    )

    # Credential references, owned by the OAuth / credential store
    grant_id: Mapped[str | None] = mapped_column(Text)
    access_token: Mapped[str | None] = mapped_column(Text)
    imap_host: Mapped[str | None] = mapped_column(String(255))
    imap_port: Mapped[int | None] = mapped_column(Integer)
    imap_username: Mapped[str | None] = mapped_column(String(255))
    imap_password: Mapped[str | None] = mapped_column(Text)
    imap_use_ssl: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Sync status store
    sync_status: Mapped[SyncStatus] = mapped_column(
        _enum(SyncStatus, "email_sync_status"),
        nullable=False,
        default=SyncStatus.IDLE,
    )
    sync_cursor: Mapped[str | None] = mapped_column(Text)
    sync_progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sync_total: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sync_updated_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    last_sync_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    last_successful_sync_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    last_sync_error: Mapped[str | None] = mapped_column(Text)
    error_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    consecutive_errors: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    emails: Mapped[list[Email]] = relationship(back_populates="account", passive_deletes=True)


class Email(Base):
    __tablename__ = "emails"
    __table_args__ = (
        UniqueConstraint("account_id", "provider_message_id", name="uq_emails_account_provider_message"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("email_accounts.id", ondelete="CASCADE"),
        nullable=False,
    )
    provider_message_id: Mapped[str] = mapped_column(Text, nullable=False)
    message_id: Mapped[str] = mapped_column(Text, nullable=False)
    thread_id: Mapped[str | None] = mapped_column(Text)

    subject: Mapped[str] = mapped_column(Text, nullable=False)
    snippet: Mapped[str | None] = mapped_column(Text)

    from_address: Mapped[dict] = mapped_column(JSONType, nullable=False)
    to_addresses: Mapped[list] = mapped_column(JSONType, nullable=False)
    cc_addresses: Mapped[list | None] = mapped_column(JSONType)
    bcc_addresses: Mapped[list | None] = mapped_column(JSONType)
    reply_to: Mapped[list | None] = mapped_column(JSONType)

    body_text: Mapped[str | None] = mapped_column(Text)
    body_html: Mapped[str | None] = mapped_column(Text)

    received_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    sent_at: Mapped[datetime | None] = mapped_column(UTCDateTime)

    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_starred: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_important: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_draft: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    has_attachments: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    folder_name: Mapped[str | None] = mapped_column(Text)
    label_ids: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    account: Mapped[EmailAccount] = relationship(back_populates="emails")
    attachments: Mapped[list[EmailAttachment]] = relationship(back_populates="email", passive_deletes=True)


class EmailAttachment(Base):
    __tablename__ = "email_attachments"
    __table_args__ = (
        UniqueConstraint("email_id", "original_filename", name="uq_email_attachments_email_filename"),
        CheckConstraint(
            "(download_status = 'completed' AND storage_url IS NOT NULL)"
            " OR (download_status != 'completed' AND storage_url IS NULL)",
            name="ck_email_attachments_storage_url_completed",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("emails.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("email_accounts.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)

    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    original_filename: Mapped[str] = mapped_column(Text, nullable=False)
    content_type: Mapped[str] = mapped_column(String(255), nullable=False)
    size: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    content_id: Mapped[str | None] = mapped_column(Text)
    is_inline: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    provider_attachment_id: Mapped[str | None] = mapped_column(Text)

    download_status: Mapped[DownloadStatus] = mapped_column(
        _enum(DownloadStatus, "attachment_download_status"),
        nullable=False,
        default=DownloadStatus.PENDING,
    )
    storage_url: Mapped[str | None] = mapped_column(Text)
    storage_key: Mapped[str | None] = mapped_column(Text)

    # Denormalised email context for search without a join
    email_subject: Mapped[str | None] = mapped_column(Text)
    email_from: Mapped[str | None] = mapped_column(Text)
    email_received_at: Mapped[datetime | None] = mapped_column(UTCDateTime)

    is_scanned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_safe: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    email: Mapped[Email] = relationship(back_populates="attachments")
