"""Provider adapter contract shared by every remote mailbox variant.

The orchestrator is written once against :class:`ProviderAdapter`; each
variant (Nylas, Microsoft Graph, IMAP) is an independent implementation
of the same two operations plus ``close()``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from mailsync.models import ProviderKind


@dataclass
class RawMessage:
    """One message exactly as the provider returned it.

    ``payload`` keeps the provider's own shape; the mapper and the
    attachment pipeline know how to read each shape.
    """

    provider: ProviderKind
    ref: str
    payload: dict[str, Any]


@dataclass
class MessagePage:
    """One page of ``list_messages`` output.

    ``next_cursor`` is ``None`` when the provider has no further pages for
    this run.
    """

    messages: list[RawMessage] = field(default_factory=list)
    next_cursor: str | None = None


@runtime_checkable
class ProviderAdapter(Protocol):
    """Capability set every provider variant implements."""

    kind: ProviderKind
    #: ``True`` when attachment bytes arrive with the message itself.
    eager_attachments: bool

    async def list_messages(
        self,
        *,
        cursor: str | None,
        since: datetime | None,
        page_size: int,
        folders: list[str] | None = None,
    ) -> MessagePage:
        """Return one page of messages.

        ``cursor`` wins over ``since`` when both are given.  Raises
        :class:`~mailsync.errors.CredentialError`,
        :class:`~mailsync.errors.TransportError` or
        :class:`~mailsync.errors.CursorError`.
        """
        ...

    async def fetch_attachment_bytes(self, message_ref: str, attachment_ref: str) -> bytes | None:
        """Return the attachment payload, or ``None`` if the provider has none."""
        ...

    async def close(self) -> None:
        """Release connections held by the adapter."""
        ...
