"""httpx helpers shared by the REST-based provider adapters."""

from __future__ import annotations

from typing import Any

import httpx

from mailsync.errors import CredentialError, CursorError, ProviderError, TransportError

_TRANSIENT_STATUS = {408, 425, 429, 500, 502, 503, 504}
_CURSOR_STATUS = {400, 404, 410}


def classify_response(response: httpx.Response, *, cursor_used: bool = False) -> None:
    """Raise the matching :mod:`mailsync.errors` type for a non-2xx response."""
    if response.is_success:
        return

    status = response.status_code
    detail = f"{response.request.method} {response.request.url.path} -> {status}"
    if status in (401, 403):
        raise CredentialError(f"Provider rejected credentials ({detail})", status_code=status)
    if cursor_used and status in _CURSOR_STATUS:
        raise CursorError(f"Provider rejected cursor ({detail})", status_code=status)
    if status in _TRANSIENT_STATUS:
        raise TransportError(f"Provider temporarily unavailable ({detail})", status_code=status)
    raise ProviderError(f"Provider request failed ({detail})", status_code=status)


async def send(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    cursor_used: bool = False,
    **kwargs: Any,
) -> httpx.Response:
    """Issue a request, translating httpx failures into provider errors."""
    try:
        response = await client.request(method, url, **kwargs)
    except httpx.TimeoutException as exc:
        raise TransportError(f"Provider request timed out: {exc}") from exc
    except httpx.TransportError as exc:
        raise TransportError(f"Provider unreachable: {exc}") from exc

    classify_response(response, cursor_used=cursor_used)
    return response


def json_body(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError as exc:
        raise TransportError("Provider returned a non-JSON body") from exc
    if not isinstance(body, dict):
        raise TransportError("Provider returned an unexpected JSON shape")
    return body
