"""Exception hierarchy for the mailbox sync core.

Provider adapters translate library failures (httpx, imaplib, socket)
into these types so the orchestrator can apply one policy per class:

* :class:`CredentialError` -- grant missing, expired or rejected; the
  account needs re-authorization, retrying on schedule will not help.
* :class:`TransportError` -- network trouble, timeouts, throttling or
  provider outages; the next scheduled run retries from the stored cursor.
* :class:`CursorError` -- the provider rejected a pagination cursor.
* :class:`MappingError` -- one raw message could not be converted.
* :class:`StorageError` -- object storage refused an upload.
"""

from __future__ import annotations


class MailSyncError(Exception):
    """Base class for every error raised by this package."""


class ProviderError(MailSyncError):
    """A remote mailbox API call failed."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class CredentialError(ProviderError):
    """The grant / token / password was missing or refused."""


class TransportError(ProviderError):
    """The provider could not be reached or answered with a transient failure."""


class CursorError(ProviderError):
    """A stored or provider-issued cursor was rejected or could not be parsed."""


class MappingError(MailSyncError):
    """A raw provider message could not be mapped to a canonical email."""


class StorageError(MailSyncError):
    """Uploading bytes to object storage failed."""
