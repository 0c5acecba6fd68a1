"""Shared test fixtures for the mailsync test suite."""

from __future__ import annotations

import uuid

import pytest

from mailsync.config import DatabaseConfig, RetryConfig, S3Config, Settings, SyncConfig
from mailsync.db.engine import DatabaseEngine
from mailsync.db.models import EmailAccount
from mailsync.models import ProviderKind
from mailsync.service import MailSyncService

from tests.fakes import FakeAdapter, FakeStore


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        database=DatabaseConfig(url=f"sqlite+aiosqlite:///{tmp_path / 'mailsync.db'}"),
        s3=S3Config(bucket="test-bucket", region="us-east-1"),
        retry=RetryConfig(max_attempts=2, initial_wait_seconds=0, max_wait_seconds=0),
        sync=SyncConfig(batch_size=50, provider_timeout_seconds=5.0),
    )


@pytest.fixture
async def db(settings: Settings):
    engine = DatabaseEngine(settings.database)
    await engine.create_all()
    yield engine
    await engine.close()


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def adapter() -> FakeAdapter:
    return FakeAdapter()


@pytest.fixture
def service(settings: Settings, db: DatabaseEngine, store: FakeStore, adapter: FakeAdapter) -> MailSyncService:
    """Service wired to the SQLite database, a fake store and *adapter*."""
    return MailSyncService(
        settings,
        adapter_factory=lambda kind, credentials: adapter,
        store=store,
        db=db,
    )


@pytest.fixture
def make_account(db: DatabaseEngine):
    async def _make(**overrides) -> EmailAccount:
        values = {
            "user_id": uuid.uuid4(),
            "provider": ProviderKind.NYLAS,
            "email_address": "owner@example.com",
            "grant_id": "grant-1",
        }
        values.update(overrides)
        account = EmailAccount(**values)
        async with db.session() as session:
            session.add(account)
            await session.commit()
        return account

    return _make


@pytest.fixture
def reload(db: DatabaseEngine):
    """Read a row back through a fresh session."""

    async def _reload(model, pk):
        async with db.session() as session:
            return await session.get(model, pk)

    return _reload
