"""Per-account sync state persisted on the ``email_accounts`` row.

Each method is one short transaction touching a single row.
"""

from __future__ import annotations

import uuid
from datetime import timedelta

from sqlalchemy import or_, select, update

from .db.engine import DatabaseEngine
from .db.models import EmailAccount, utcnow
from .models import AccountStatus, SyncPhase, SyncProgress, SyncStatus

_PHASES = {
    SyncStatus.SYNCING: SyncPhase.FETCHING,
    SyncStatus.ERROR: SyncPhase.ERROR,
}


class SyncStatusStore:
    def __init__(self, db: DatabaseEngine, *, stale_after_seconds: float = 3600.0) -> None:
        self._db = db
        self._stale_after = timedelta(seconds=stale_after_seconds)

    async def get_account(self, account_id: uuid.UUID) -> EmailAccount | None:
        async with self._db.session() as session:
            return await session.get(EmailAccount, account_id)

    async def _update(self, account_id: uuid.UUID, **values: object) -> int:
        now = utcnow()
        stmt = (
            update(EmailAccount)
            .where(EmailAccount.id == account_id)
            .values(sync_updated_at=now, updated_at=now, **values)
            .execution_options(synchronize_session=False)
        )
        async with self._db.session() as session:
            result = await session.execute(stmt)
            await session.commit()
        return result.rowcount

    async def begin_sync(self, account_id: uuid.UUID) -> bool:
        """Atomically move the account to ``syncing``.

        Returns ``False`` when another run holds the account, i.e. it is
        already ``syncing`` and was touched within the stale window.  An
        account stuck in ``syncing`` longer than that is taken over.
        """
        now = utcnow()
        stale_before = now - self._stale_after
        stmt = (
            update(EmailAccount)
            .where(
                EmailAccount.id == account_id,
                or_(
                    EmailAccount.sync_status != SyncStatus.SYNCING,
                    EmailAccount.sync_updated_at.is_(None),
                    EmailAccount.sync_updated_at < stale_before,
                ),
            )
            .values(
                sync_status=SyncStatus.SYNCING,
                sync_progress=0,
                sync_total=0,
                sync_updated_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        async with self._db.session() as session:
            result = await session.execute(stmt)
            await session.commit()
        return result.rowcount == 1

    async def record_page(self, account_id: uuid.UUID, progress: int, cursor: str | None) -> None:
        """Persist progress after a committed page; a ``None`` cursor keeps the stored one."""
        values: dict[str, object] = {"sync_progress": progress}
        if cursor is not None:
            values["sync_cursor"] = cursor
        await self._update(account_id, **values)

    async def clear_cursor(self, account_id: uuid.UUID) -> None:
        await self._update(account_id, sync_cursor=None)

    async def mark_success(self, account_id: uuid.UUID, *, synced: int, cursor: str | None) -> None:
        now = utcnow()
        await self._update(
            account_id,
            sync_status=SyncStatus.SUCCESS,
            status=AccountStatus.ACTIVE,
            sync_progress=synced,
            sync_total=synced,
            sync_cursor=cursor,
            last_sync_at=now,
            last_successful_sync_at=now,
            last_sync_error=None,
            error_count=0,
            consecutive_errors=0,
        )

    async def mark_failure(self, account_id: uuid.UUID, error: str, *, credential: bool = False) -> None:
        """Record a failed run; the stored cursor is left untouched."""
        values: dict[str, object] = {
            "sync_status": SyncStatus.ERROR,
            "last_sync_at": utcnow(),
            "last_sync_error": error,
            "error_count": EmailAccount.error_count + 1,
            "consecutive_errors": EmailAccount.consecutive_errors + 1,
        }
        if credential:
            values["status"] = AccountStatus.ERROR
        await self._update(account_id, **values)

    async def get_progress(self, account_id: uuid.UUID) -> SyncProgress | None:
        stmt = select(
            EmailAccount.sync_status,
            EmailAccount.sync_progress,
            EmailAccount.sync_total,
            EmailAccount.sync_cursor,
        ).where(EmailAccount.id == account_id)
        async with self._db.session() as session:
            row = (await session.execute(stmt)).one_or_none()
        if row is None:
            return None
        status, current, total, cursor = row
        return SyncProgress(
            phase=_PHASES.get(status, SyncPhase.COMPLETE),
            current=current or 0,
            total=total or 0,
            cursor=cursor,
        )
