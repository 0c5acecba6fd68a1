"""Provider A: Nylas v3 unified API, page-token pagination."""

from __future__ import annotations

from datetime import datetime

import httpx
import structlog

from mailsync.config import NylasConfig
from mailsync.errors import CredentialError
from mailsync.models import ProviderKind

from ._http import json_body, send
from .base import MessagePage, RawMessage

logger = structlog.get_logger()


class NylasAdapter:
    """List messages for one Nylas grant and download attachments by id.

    Attachment metadata is embedded in each message, bytes require a
    separate call, so attachments are materialized lazily.
    """

    kind = ProviderKind.NYLAS
    eager_attachments = False

    def __init__(
        self,
        config: NylasConfig,
        grant_id: str | None,
        *,
        timeout_seconds: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not grant_id:
            raise CredentialError("No Nylas grant ID found for account")
        self._grant_id = grant_id
        self._client = client or httpx.AsyncClient(
            base_url=config.api_uri,
            timeout=httpx.Timeout(timeout_seconds),
            headers={
                "Authorization": f"Bearer {config.api_key.get_secret_value()}",
                "Accept": "application/json",
            },
        )

    async def list_messages(
        self,
        *,
        cursor: str | None,
        since: datetime | None,
        page_size: int,
        folders: list[str] | None = None,
    ) -> MessagePage:
        params: dict[str, str | int] = {"limit": page_size}
        if cursor:
            params["page_token"] = cursor
        if since is not None:
            params["received_after"] = int(since.timestamp())
        if folders:
            params["in"] = ",".join(folders)

        response = await send(
            self._client,
            "GET",
            f"/v3/grants/{self._grant_id}/messages",
            params=params,
            cursor_used=cursor is not None,
        )
        body = json_body(response)
        messages = [
            RawMessage(provider=self.kind, ref=str(item["id"]), payload=item)
            for item in body.get("data") or []
            if item.get("id")
        ]
        next_cursor = body.get("next_cursor") or None
        logger.debug("nylas_page_fetched", count=len(messages), has_more=next_cursor is not None)
        return MessagePage(messages=messages, next_cursor=next_cursor)

    async def fetch_attachment_bytes(self, message_ref: str, attachment_ref: str) -> bytes | None:
        response = await send(
            self._client,
            "GET",
            f"/v3/grants/{self._grant_id}/attachments/{attachment_ref}/download",
            params={"message_id": message_ref},
        )
        return response.content or None

    async def close(self) -> None:
        await self._client.aclose()
