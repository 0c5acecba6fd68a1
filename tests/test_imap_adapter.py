"""Tests for mailsync.providers.imap."""

from __future__ import annotations

import imaplib
from unittest.mock import MagicMock, patch

import pytest

from mailsync.config import ImapConfig
from mailsync.errors import CredentialError, CursorError, TransportError
from mailsync.models import ImapCredentials
from mailsync.providers.imap import ImapAdapter, parse_cursor

from tests.fakes import at

ATTACHMENT_EMAIL = b"""\
From: Alice <alice@example.com>
To: bob@example.com
Subject: Report
Date: Tue, 05 Mar 2024 12:00:00 +0000
Message-ID: <report@example.com>
MIME-Version: 1.0
Content-Type: multipart/mixed; boundary="b"

--b
Content-Type: text/plain

see attached
--b
Content-Type: application/pdf; name="report.pdf"
Content-Transfer-Encoding: base64
Content-Disposition: attachment; filename="report.pdf"

JVBERi0xLjQ=
--b--
"""


def _simple_email(uid: int) -> bytes:
    return (
        f"From: alice@example.com\r\nTo: bob@example.com\r\nSubject: Message {uid}\r\n"
        f"Message-ID: <{uid}@example.com>\r\n\r\nbody {uid}\r\n"
    ).encode()


def _make_mock_imap(
    *,
    uidvalidity: bytes = b"7",
    search_uids: list[int] | None = None,
    fetch_data: dict[int, bytes] | None = None,
) -> MagicMock:
    """Create a mock imaplib.IMAP4_SSL with programmed responses."""
    mock = MagicMock()
    mock.login.return_value = ("OK", [b"Logged in"])
    mock.select.return_value = ("OK", [b"3"])
    mock.response.return_value = ("UIDVALIDITY", [uidvalidity])
    mock.close.return_value = ("OK", [b"Closed"])
    mock.logout.return_value = ("BYE", [b"Bye"])

    search_data = b" ".join(str(u).encode() for u in search_uids or [])
    mock.uid.side_effect = _make_uid_handler(search_data, fetch_data or {})
    return mock


def _make_uid_handler(search_data: bytes, fetch_data: dict[int, bytes]):
    """Build a side_effect function for mock.uid() that handles SEARCH and FETCH."""

    def handler(command: str, *args):
        if command == "SEARCH":
            return ("OK", [search_data])
        if command == "FETCH":
            uid = int(args[0])
            raw = fetch_data.get(uid)
            if raw is None:
                return ("OK", [None])
            header = b'1 (UID %d INTERNALDATE "05-Mar-2024 12:00:05 +0000" FLAGS (\\Seen) RFC822 {%d}' % (
                uid,
                len(raw),
            )
            return ("OK", [(header, raw), b")"])
        return ("OK", [b""])

    return handler


def _search_criteria(mock: MagicMock) -> list[str]:
    return [c.args[2] for c in mock.uid.call_args_list if c.args[0] == "SEARCH"]


@pytest.fixture
def credentials() -> ImapCredentials:
    return ImapCredentials(host="imap.test.com", port=993, username="user", password="secret")


@pytest.fixture
def adapter(credentials: ImapCredentials) -> ImapAdapter:
    return ImapAdapter(ImapConfig(), credentials, timeout_seconds=5.0)


class TestParseCursor:
    def test_valid(self):
        assert parse_cursor("7:42") == (7, 42)

    @pytest.mark.parametrize("cursor", ["", "42", "a:b", "7:"])
    def test_malformed(self, cursor):
        with pytest.raises(CursorError):
            parse_cursor(cursor)


class TestImapSession:
    async def test_connect_ssl(self, adapter: ImapAdapter):
        with patch("mailsync.providers.imap.imaplib.IMAP4_SSL") as MockSSL:
            mock_conn = _make_mock_imap()
            MockSSL.return_value = mock_conn

            await adapter.list_messages(cursor=None, since=None, page_size=10)

            MockSSL.assert_called_once_with("imap.test.com", 993, timeout=5.0)
            mock_conn.login.assert_called_once_with("user", "secret")
            mock_conn.select.assert_called_once_with("INBOX", readonly=True)

    async def test_connect_plain(self, credentials: ImapCredentials):
        adapter = ImapAdapter(ImapConfig(), credentials.model_copy(update={"use_ssl": False, "port": 143}))
        with patch("mailsync.providers.imap.imaplib.IMAP4") as MockIMAP:
            MockIMAP.return_value = _make_mock_imap()

            await adapter.list_messages(cursor=None, since=None, page_size=10)

            MockIMAP.assert_called_once_with("imap.test.com", 143, timeout=30.0)

    async def test_session_reused_across_pages(self, adapter: ImapAdapter):
        with patch("mailsync.providers.imap.imaplib.IMAP4_SSL") as MockSSL:
            MockSSL.return_value = _make_mock_imap()

            await adapter.list_messages(cursor=None, since=None, page_size=10)
            await adapter.list_messages(cursor="7:0", since=None, page_size=10)

            assert MockSSL.call_count == 1

    async def test_folder_selects_mailbox(self, adapter: ImapAdapter):
        with patch("mailsync.providers.imap.imaplib.IMAP4_SSL") as MockSSL:
            mock_conn = _make_mock_imap()
            MockSSL.return_value = mock_conn

            await adapter.list_messages(cursor=None, since=None, page_size=10, folders=["Archive"])

            mock_conn.select.assert_called_once_with("Archive", readonly=True)

    async def test_login_rejected_is_credential_error(self, adapter: ImapAdapter):
        with patch("mailsync.providers.imap.imaplib.IMAP4_SSL") as MockSSL:
            mock_conn = _make_mock_imap()
            mock_conn.login.side_effect = imaplib.IMAP4.error("AUTHENTICATIONFAILED")
            MockSSL.return_value = mock_conn

            with pytest.raises(CredentialError, match="AUTHENTICATIONFAILED"):
                await adapter.list_messages(cursor=None, since=None, page_size=10)

        mock_conn.shutdown.assert_called_once()
        mock_conn.logout.assert_not_called()
        assert adapter._conn is None

    async def test_retry_after_rejected_login_opens_fresh_connection(self, adapter: ImapAdapter):
        with patch("mailsync.providers.imap.imaplib.IMAP4_SSL") as MockSSL:
            rejected = _make_mock_imap()
            rejected.login.side_effect = imaplib.IMAP4.error("AUTHENTICATIONFAILED")
            MockSSL.side_effect = [rejected, _make_mock_imap()]

            with pytest.raises(CredentialError):
                await adapter.list_messages(cursor=None, since=None, page_size=10)
            await adapter.list_messages(cursor=None, since=None, page_size=10)

        assert MockSSL.call_count == 2

    async def test_dropped_during_select_is_transport_error(self, adapter: ImapAdapter):
        with patch("mailsync.providers.imap.imaplib.IMAP4_SSL") as MockSSL:
            mock_conn = _make_mock_imap()
            mock_conn.select.side_effect = imaplib.IMAP4.abort("socket error: EOF")
            MockSSL.return_value = mock_conn

            with pytest.raises(TransportError, match="aborted"):
                await adapter.list_messages(cursor=None, since=None, page_size=10)

        mock_conn.shutdown.assert_called_once()
        assert adapter._conn is None

    async def test_unreachable_is_transport_error(self, adapter: ImapAdapter):
        with patch("mailsync.providers.imap.imaplib.IMAP4_SSL") as MockSSL:
            MockSSL.side_effect = ConnectionRefusedError("refused")

            with pytest.raises(TransportError):
                await adapter.list_messages(cursor=None, since=None, page_size=10)

    async def test_close_logs_out(self, adapter: ImapAdapter):
        with patch("mailsync.providers.imap.imaplib.IMAP4_SSL") as MockSSL:
            mock_conn = _make_mock_imap()
            MockSSL.return_value = mock_conn
            await adapter.list_messages(cursor=None, since=None, page_size=10)

            await adapter.close()

            mock_conn.close.assert_called_once()
            mock_conn.logout.assert_called_once()
            assert adapter._conn is None

    async def test_close_without_session(self, adapter: ImapAdapter):
        await adapter.close()

    def test_missing_credentials(self):
        with pytest.raises(CredentialError, match="No IMAP credentials"):
            ImapAdapter(ImapConfig(), None)


class TestImapListMessages:
    async def test_first_page(self, adapter: ImapAdapter):
        with patch("mailsync.providers.imap.imaplib.IMAP4_SSL") as MockSSL:
            mock_conn = _make_mock_imap(
                search_uids=[3, 1, 2],
                fetch_data={1: _simple_email(1), 2: _simple_email(2), 3: _simple_email(3)},
            )
            MockSSL.return_value = mock_conn

            page = await adapter.list_messages(cursor=None, since=None, page_size=2)

            assert [m.ref for m in page.messages] == ["7:1", "7:2"]
            assert page.next_cursor == "7:2"
            assert _search_criteria(mock_conn) == ["ALL"]
            payload = page.messages[0].payload
            assert payload["uid"] == 1
            assert payload["mailbox"] == "INBOX"
            assert payload["internal_date"] == "2024-03-05T12:00:05+00:00"
            assert payload["flags"] == ["\\Seen"]
            assert payload["parsed"].subject == "Message 1"

    async def test_cursor_resumes_after_last_uid(self, adapter: ImapAdapter):
        with patch("mailsync.providers.imap.imaplib.IMAP4_SSL") as MockSSL:
            mock_conn = _make_mock_imap(search_uids=[3], fetch_data={3: _simple_email(3)})
            MockSSL.return_value = mock_conn

            page = await adapter.list_messages(cursor="7:2", since=None, page_size=2)

            assert [m.ref for m in page.messages] == ["7:3"]
            assert page.next_cursor == "7:3"
            assert _search_criteria(mock_conn) == ["UID 3:*"]

    async def test_nothing_new_keeps_cursor(self, adapter: ImapAdapter):
        with patch("mailsync.providers.imap.imaplib.IMAP4_SSL") as MockSSL:
            # "UID 6:*" still returns the highest existing UID
            MockSSL.return_value = _make_mock_imap(search_uids=[5], fetch_data={5: _simple_email(5)})

            page = await adapter.list_messages(cursor="7:5", since=None, page_size=10)

            assert page.messages == []
            assert page.next_cursor == "7:5"

    async def test_empty_mailbox(self, adapter: ImapAdapter):
        with patch("mailsync.providers.imap.imaplib.IMAP4_SSL") as MockSSL:
            MockSSL.return_value = _make_mock_imap()

            page = await adapter.list_messages(cursor=None, since=None, page_size=10)

            assert page.messages == []
            assert page.next_cursor is None

    async def test_since_uses_date_search(self, adapter: ImapAdapter):
        with patch("mailsync.providers.imap.imaplib.IMAP4_SSL") as MockSSL:
            mock_conn = _make_mock_imap()
            MockSSL.return_value = mock_conn

            await adapter.list_messages(cursor=None, since=at(2024, 3, 5, 12), page_size=10)

            assert _search_criteria(mock_conn) == ["SINCE 05-Mar-2024"]

    async def test_uidvalidity_change_rejects_cursor(self, adapter: ImapAdapter):
        with patch("mailsync.providers.imap.imaplib.IMAP4_SSL") as MockSSL:
            MockSSL.return_value = _make_mock_imap(uidvalidity=b"8")

            with pytest.raises(CursorError, match="UIDVALIDITY"):
                await adapter.list_messages(cursor="7:2", since=None, page_size=10)

    async def test_malformed_cursor(self, adapter: ImapAdapter):
        with pytest.raises(CursorError):
            await adapter.list_messages(cursor="not-a-cursor", since=None, page_size=10)

    async def test_aborted_session_is_transport_error_and_reconnects(self, adapter: ImapAdapter):
        with patch("mailsync.providers.imap.imaplib.IMAP4_SSL") as MockSSL:
            mock_conn = _make_mock_imap()
            mock_conn.uid.side_effect = imaplib.IMAP4.abort("socket closed")
            MockSSL.return_value = mock_conn

            with pytest.raises(TransportError, match="aborted"):
                await adapter.list_messages(cursor=None, since=None, page_size=10)

            MockSSL.return_value = _make_mock_imap()
            await adapter.list_messages(cursor=None, since=None, page_size=10)
            assert MockSSL.call_count == 2


class TestImapAttachments:
    async def test_fetch_by_filename(self, adapter: ImapAdapter):
        with patch("mailsync.providers.imap.imaplib.IMAP4_SSL") as MockSSL:
            MockSSL.return_value = _make_mock_imap(fetch_data={9: ATTACHMENT_EMAIL})

            data = await adapter.fetch_attachment_bytes("7:9", "report.pdf")

            assert data == b"%PDF-1.4"

    async def test_unknown_filename(self, adapter: ImapAdapter):
        with patch("mailsync.providers.imap.imaplib.IMAP4_SSL") as MockSSL:
            MockSSL.return_value = _make_mock_imap(fetch_data={9: ATTACHMENT_EMAIL})

            assert await adapter.fetch_attachment_bytes("7:9", "other.pdf") is None

    async def test_message_gone(self, adapter: ImapAdapter):
        with patch("mailsync.providers.imap.imaplib.IMAP4_SSL") as MockSSL:
            MockSSL.return_value = _make_mock_imap()

            assert await adapter.fetch_attachment_bytes("7:9", "report.pdf") is None

    async def test_stale_uidvalidity(self, adapter: ImapAdapter):
        with patch("mailsync.providers.imap.imaplib.IMAP4_SSL") as MockSSL:
            mock_conn = _make_mock_imap(uidvalidity=b"8", fetch_data={9: ATTACHMENT_EMAIL})
            MockSSL.return_value = mock_conn

            assert await adapter.fetch_attachment_bytes("7:9", "report.pdf") is None
            assert not [c for c in mock_conn.uid.call_args_list if c.args[0] == "FETCH"]
