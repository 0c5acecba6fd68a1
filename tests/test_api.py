"""Tests for mailsync.api."""

from __future__ import annotations

import uuid

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select

from mailsync.api import create_app
from mailsync.db.models import EmailAttachment
from mailsync.providers.base import MessagePage

from tests.fakes import nylas_page, nylas_raw


@pytest.fixture
async def client(service):
    """Async HTTP test client. Lifespan is not started; the service is injected."""
    app = create_app(service=service)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


async def _attachment_id(db) -> uuid.UUID:
    async with db.session() as session:
        return (await session.scalars(select(EmailAttachment.id))).one()


class TestHealth:
    async def test_health(self, client: AsyncClient):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok", "service": "mailsync"}


class TestSyncEndpoint:
    async def test_sync_without_body(self, client: AsyncClient, adapter, make_account):
        account = await make_account()
        adapter.pages = [nylas_page(0, 3, None)]

        resp = await client.post(f"/accounts/{account.id}/sync")

        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["emails_synced"] == 3
        assert data["emails_created"] == 3

    async def test_sync_with_options(self, client: AsyncClient, adapter, make_account):
        account = await make_account(sync_cursor="stored")
        adapter.pages = [nylas_page(0, 3, "next")]

        resp = await client.post(
            f"/accounts/{account.id}/sync",
            json={"mode": "full", "batch_size": 3, "limit": 2, "folders": ["INBOX"]},
        )

        assert resp.status_code == 200
        assert adapter.calls[0]["cursor"] is None
        assert adapter.calls[0]["page_size"] == 3
        assert adapter.calls[0]["folders"] == ["INBOX"]

    async def test_invalid_options(self, client: AsyncClient, make_account):
        account = await make_account()

        resp = await client.post(f"/accounts/{account.id}/sync", json={"limit": 0})

        assert resp.status_code == 422

    async def test_unknown_account(self, client: AsyncClient):
        resp = await client.post(f"/accounts/{uuid.uuid4()}/sync")
        assert resp.status_code == 404

    async def test_missing_credentials_is_reported_not_raised(self, client: AsyncClient, make_account):
        account = await make_account(grant_id=None)

        resp = await client.post(f"/accounts/{account.id}/sync")

        assert resp.status_code == 200
        assert resp.json()["success"] is False
        assert resp.json()["should_retry"] is False


class TestProgressEndpoint:
    async def test_progress_after_sync(self, client: AsyncClient, adapter, make_account):
        account = await make_account()
        adapter.pages = [nylas_page(0, 2, None)]
        await client.post(f"/accounts/{account.id}/sync")

        resp = await client.get(f"/accounts/{account.id}/progress")

        assert resp.status_code == 200
        assert resp.json()["phase"] == "complete"
        assert resp.json()["total"] == 2

    async def test_unknown_account(self, client: AsyncClient):
        resp = await client.get(f"/accounts/{uuid.uuid4()}/progress")
        assert resp.status_code == 404


class TestDownloadEndpoint:
    @pytest.fixture
    async def attachment_id(self, client: AsyncClient, adapter, db, make_account) -> uuid.UUID:
        account = await make_account()
        raw = nylas_raw(0, attachments=[{"id": "att-1", "filename": "a.pdf", "content_type": "application/pdf"}])
        adapter.pages = [MessagePage(messages=[raw], next_cursor=None)]
        await client.post(f"/accounts/{account.id}/sync")
        return await _attachment_id(db)

    def _body(self) -> dict:
        return {"provider": "nylas", "message_ref": "msg-0", "credentials": {"grant_id": "grant-1"}}

    async def test_download(self, client: AsyncClient, adapter, attachment_id):
        resp = await client.post(f"/attachments/{attachment_id}/download", json=self._body())

        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["url"].startswith("https://files.test/attachments/")
        assert data["url"].endswith("-a.pdf")
        assert adapter.fetch_calls == [("msg-0", "att-1")]

    async def test_storage_failure_is_bad_gateway(self, client: AsyncClient, store, attachment_id):
        store.fail = True

        resp = await client.post(f"/attachments/{attachment_id}/download", json=self._body())

        assert resp.status_code == 502
        assert resp.json()["error_kind"] == "storage"

    async def test_unknown_attachment(self, client: AsyncClient):
        resp = await client.post(f"/attachments/{uuid.uuid4()}/download", json=self._body())

        assert resp.status_code == 404
        assert resp.json()["error_kind"] == "not_found"
