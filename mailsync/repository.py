"""Row-level persistence for emails and attachments.

Both tables are written through their dedup keys:
``(account_id, provider_message_id)`` for emails and
``(email_id, original_filename)`` for attachments.
"""

from __future__ import annotations

import uuid
from typing import Any

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError

from .db.engine import DatabaseEngine
from .db.models import Email, EmailAttachment, utcnow
from .models import CanonicalEmail, DownloadStatus

logger = structlog.get_logger()


def _email_values(email: CanonicalEmail) -> dict[str, Any]:
    return email.model_dump(exclude={"account_id", "provider_message_id"})


class EmailRepository:
    def __init__(self, db: DatabaseEngine) -> None:
        self._db = db

    async def upsert(self, email: CanonicalEmail, *, _retried: bool = False) -> tuple[Email, bool]:
        """Insert *email* or update the row sharing its dedup key.

        Returns ``(row, created)``.
        """
        values = _email_values(email)
        async with self._db.session() as session:
            existing = await session.scalar(
                select(Email).where(
                    Email.account_id == email.account_id,
                    Email.provider_message_id == email.provider_message_id,
                )
            )
            if existing is not None:
                for field, value in values.items():
                    setattr(existing, field, value)
                existing.updated_at = utcnow()
                await session.commit()
                return existing, False

            row = Email(
                account_id=email.account_id,
                provider_message_id=email.provider_message_id,
                **values,
            )
            session.add(row)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                if _retried:
                    raise
            else:
                return row, True

        # Lost an insert race against another writer; the row exists now.
        return await self.upsert(email, _retried=True)

    async def count(self, account_id: uuid.UUID) -> int:
        async with self._db.session() as session:
            return await session.scalar(
                select(func.count()).select_from(Email).where(Email.account_id == account_id)
            )


class AttachmentRepository:
    def __init__(self, db: DatabaseEngine) -> None:
        self._db = db

    async def get(self, attachment_id: uuid.UUID) -> EmailAttachment | None:
        async with self._db.session() as session:
            return await session.get(EmailAttachment, attachment_id)

    async def exists(self, email_id: uuid.UUID, original_filename: str) -> bool:
        async with self._db.session() as session:
            found = await session.scalar(
                select(EmailAttachment.id).where(
                    EmailAttachment.email_id == email_id,
                    EmailAttachment.original_filename == original_filename,
                )
            )
        return found is not None

    async def insert(self, **values: Any) -> EmailAttachment | None:
        """Insert one attachment row; ``None`` if the dedup key already exists."""
        row = EmailAttachment(**values)
        async with self._db.session() as session:
            session.add(row)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                logger.debug(
                    "attachment_duplicate_skipped",
                    email_id=str(values.get("email_id")),
                    filename=values.get("original_filename"),
                )
                return None
        return row

    async def _set(self, attachment_id: uuid.UUID, **values: Any) -> None:
        stmt = (
            update(EmailAttachment)
            .where(EmailAttachment.id == attachment_id)
            .values(updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        async with self._db.session() as session:
            await session.execute(stmt)
            await session.commit()

    async def mark_downloading(self, attachment_id: uuid.UUID) -> None:
        await self._set(
            attachment_id,
            download_status=DownloadStatus.DOWNLOADING,
            storage_url=None,
            storage_key=None,
        )

    async def mark_completed(self, attachment_id: uuid.UUID, *, url: str, key: str) -> None:
        await self._set(
            attachment_id,
            download_status=DownloadStatus.COMPLETED,
            storage_url=url,
            storage_key=key,
        )

    async def mark_failed(self, attachment_id: uuid.UUID) -> None:
        await self._set(
            attachment_id,
            download_status=DownloadStatus.FAILED,
            storage_url=None,
            storage_key=None,
        )
