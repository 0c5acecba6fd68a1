"""Entry point for the mailsync package.

Usage::

    python -m mailsync serve                   # HTTP API (uvicorn)
    python -m mailsync sync <account-id> [--full]
    python -m mailsync init-db                 # create missing tables
"""

from __future__ import annotations

import asyncio
import json
import sys
import uuid

_USAGE = "Usage: python -m mailsync <serve|sync <account-id> [--full]|init-db>"


async def _sync(account_id: uuid.UUID, full: bool) -> int:
    from .config import Settings
    from .models import SyncMode, SyncOptions
    from .service import MailSyncService

    service = MailSyncService(Settings())
    await service.start()
    try:
        mode = SyncMode.FULL if full else SyncMode.INCREMENTAL
        result = await service.sync_account(account_id, SyncOptions(mode=mode))
    finally:
        await service.stop()
    print(json.dumps(result.model_dump(mode="json"), indent=2))
    return 0 if result.success else 1


async def _init_db() -> None:
    from .config import Settings
    from .db.engine import DatabaseEngine

    db = DatabaseEngine(Settings().database)
    try:
        await db.create_all()
    finally:
        await db.close()


def main() -> None:
    if len(sys.argv) < 2 or sys.argv[1] not in ("serve", "sync", "init-db"):
        print(_USAGE, file=sys.stderr)
        sys.exit(1)

    from .config import Settings
    from .logging import setup_logging

    settings = Settings()
    setup_logging(json=settings.log_json, level=settings.log_level)
    command = sys.argv[1]

    if command == "serve":
        import uvicorn

        uvicorn.run(
            "mailsync.api:create_app",
            factory=True,
            host=settings.host,
            port=settings.port,
            log_level=settings.log_level.lower(),
        )

    elif command == "sync":
        args = sys.argv[2:]
        ids = [a for a in args if not a.startswith("--")]
        if len(ids) != 1:
            print(_USAGE, file=sys.stderr)
            sys.exit(1)
        try:
            account_id = uuid.UUID(ids[0])
        except ValueError:
            print(f"Invalid account id: {ids[0]}", file=sys.stderr)
            sys.exit(1)
        sys.exit(asyncio.run(_sync(account_id, full="--full" in args)))

    elif command == "init-db":
        asyncio.run(_init_db())


if __name__ == "__main__":
    main()
