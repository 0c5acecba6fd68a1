"""Provider B: Microsoft Graph ``/me/messages``, ``@odata.nextLink`` pagination."""

from __future__ import annotations

from datetime import UTC, datetime

import httpx
import structlog

from mailsync.config import GraphConfig
from mailsync.errors import CredentialError
from mailsync.models import ProviderKind

from ._http import json_body, send
from .base import MessagePage, RawMessage

logger = structlog.get_logger()

_ATTACHMENT_FIELDS = "id,name,contentType,size,isInline,contentId"


def _odata_quote(value: str) -> str:
    return value.replace("'", "''")


class GraphAdapter:
    """Read one mailbox through Microsoft Graph with a delegated access token.

    The cursor is the opaque ``@odata.nextLink`` URL Graph hands back;
    following it reproduces the original query.  Attachment metadata is
    expanded inline, bytes are fetched through ``$value`` on demand.
    """

    kind = ProviderKind.MICROSOFT
    eager_attachments = False

    def __init__(
        self,
        config: GraphConfig,
        access_token: str | None,
        *,
        timeout_seconds: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not access_token:
            raise CredentialError("No Microsoft access token found for account")
        self._base_url = config.base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds),
            headers={
                "Authorization": f"Bearer {access_token}",
                "Accept": "application/json",
                "Prefer": 'outlook.body-content-type="html"',
            },
        )

    def _build_query(
        self,
        since: datetime | None,
        page_size: int,
        folders: list[str] | None,
    ) -> dict[str, str | int]:
        filters: list[str] = []
        if since is not None:
            stamp = since.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")
            filters.append(f"receivedDateTime ge {stamp}")
        if folders:
            folder_clause = " or ".join(f"parentFolderId eq '{_odata_quote(f)}'" for f in folders)
            filters.append(f"({folder_clause})" if len(folders) > 1 else folder_clause)

        params: dict[str, str | int] = {
            "$top": page_size,
            "$orderby": "receivedDateTime asc",
            "$expand": f"attachments($select={_ATTACHMENT_FIELDS})",
        }
        if filters:
            params["$filter"] = " and ".join(filters)
        return params

    async def list_messages(
        self,
        *,
        cursor: str | None,
        since: datetime | None,
        page_size: int,
        folders: list[str] | None = None,
    ) -> MessagePage:
        if cursor:
            response = await send(self._client, "GET", cursor, cursor_used=True)
        else:
            response = await send(
                self._client,
                "GET",
                f"{self._base_url}/me/messages",
                params=self._build_query(since, page_size, folders),
            )

        body = json_body(response)
        messages = [
            RawMessage(provider=self.kind, ref=str(item["id"]), payload=item)
            for item in body.get("value") or []
            if item.get("id")
        ]
        next_cursor = body.get("@odata.nextLink") or None
        logger.debug("graph_page_fetched", count=len(messages), has_more=next_cursor is not None)
        return MessagePage(messages=messages, next_cursor=next_cursor)

    async def fetch_attachment_bytes(self, message_ref: str, attachment_ref: str) -> bytes | None:
        response = await send(
            self._client,
            "GET",
            f"{self._base_url}/me/messages/{message_ref}/attachments/{attachment_ref}/$value",
        )
        return response.content or None

    async def close(self) -> None:
        await self._client.aclose()
