"""Provider adapters and the factory that picks one per account."""

from __future__ import annotations

from collections.abc import Callable

from mailsync.config import Settings
from mailsync.db.models import EmailAccount
from mailsync.errors import CredentialError
from mailsync.models import Credentials, ImapCredentials, ProviderKind

from .base import MessagePage, ProviderAdapter, RawMessage
from .imap import ImapAdapter
from .microsoft import GraphAdapter
from .nylas import NylasAdapter

AdapterFactory = Callable[[ProviderKind, Credentials], ProviderAdapter]

__all__ = [
    "AdapterFactory",
    "GraphAdapter",
    "ImapAdapter",
    "MessagePage",
    "NylasAdapter",
    "ProviderAdapter",
    "RawMessage",
    "create_adapter",
    "credentials_from_account",
    "default_adapter_factory",
]


def credentials_from_account(account: EmailAccount) -> Credentials:
    """Collect the credential material an account row references.

    Raises :class:`CredentialError` when the field the account's provider
    needs is missing.
    """
    if account.provider == ProviderKind.NYLAS:
        if not account.grant_id:
            raise CredentialError("No Nylas grant ID found for account")
        return Credentials(grant_id=account.grant_id)

    if account.provider == ProviderKind.MICROSOFT:
        if not account.access_token:
            raise CredentialError("No Microsoft access token found for account")
        return Credentials(access_token=account.access_token)

    if not (account.imap_host and account.imap_username and account.imap_password):
        raise CredentialError("No IMAP credentials found for account")
    return Credentials(
        imap=ImapCredentials(
            host=account.imap_host,
            port=account.imap_port or 993,
            username=account.imap_username,
            password=account.imap_password,
            use_ssl=account.imap_use_ssl,
        )
    )


def create_adapter(kind: ProviderKind, credentials: Credentials, settings: Settings) -> ProviderAdapter:
    """Instantiate the adapter for *kind*."""
    timeout = settings.sync.provider_timeout_seconds
    if kind == ProviderKind.NYLAS:
        return NylasAdapter(settings.nylas, credentials.grant_id, timeout_seconds=timeout)
    if kind == ProviderKind.MICROSOFT:
        token = credentials.access_token.get_secret_value() if credentials.access_token else None
        return GraphAdapter(settings.graph, token, timeout_seconds=timeout)
    if kind == ProviderKind.IMAP:
        return ImapAdapter(settings.imap, credentials.imap, timeout_seconds=timeout)
    raise ValueError(f"Unsupported provider: {kind}")


def default_adapter_factory(settings: Settings) -> AdapterFactory:
    """Bind *settings* so callers only supply the provider and credentials."""

    def factory(kind: ProviderKind, credentials: Credentials) -> ProviderAdapter:
        return create_adapter(kind, credentials, settings)

    return factory
