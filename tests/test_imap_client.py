"""Tests for the aioimaplib wrapper and FETCH response parsing."""

from __future__ import annotations

from types import SimpleNamespace
from typing import Any

import pytest

from nexusmail.client import imap_client
from nexusmail.client.imap_client import (
  ImapClient,
  MailAuthError,
  MailboxError,
  MailNetworkError,
  create_imap_client,
  parse_fetch_lines,
)

RAW = b"Subject: hi\r\n\r\nbody\r\n"


def ok(*lines: Any) -> SimpleNamespace:
  return SimpleNamespace(result="OK", lines=list(lines))


def no(*lines: Any) -> SimpleNamespace:
  return SimpleNamespace(result="NO", lines=list(lines))


class FakeIMAP:
  """Scripted stand-in for aioimaplib's IMAP4_SSL."""

  instances: list[FakeIMAP] = []

  def __init__(self, host: str, port: int, timeout: float) -> None:
    self.host = host
    self.port = port
    self.calls: list[tuple[Any, ...]] = []
    self.login_response = ok(b"LOGIN completed")
    self.select_response = ok(b"3 EXISTS", b"OK [UIDVALIDITY 42] UIDs valid", b"[READ-WRITE] Select completed")
    self.search_response = ok(b"SEARCH 4 9 12", b"SEARCH completed")
    self.capabilities: set[str] = set()
    FakeIMAP.instances.append(self)

  async def wait_hello_from_server(self) -> None:
    return None

  async def login(self, user: str, password: str) -> SimpleNamespace:
    self.calls.append(("login", user, password))
    return self.login_response

  async def xoauth2(self, user: str, token: str) -> SimpleNamespace:
    self.calls.append(("xoauth2", user, token))
    return self.login_response

  async def select(self, folder: str) -> SimpleNamespace:
    self.calls.append(("select", folder))
    return self.select_response

  async def examine(self, folder: str) -> SimpleNamespace:
    self.calls.append(("examine", folder))
    return self.select_response

  async def uid(self, command: str, *args: Any) -> SimpleNamespace:
    self.calls.append(("uid", command, *args))
    if command == "search":
      return self.search_response
    return ok(b"completed")

  async def expunge(self) -> SimpleNamespace:
    self.calls.append(("expunge",))
    return ok()

  def has_capability(self, name: str) -> bool:
    return name in self.capabilities

  async def logout(self) -> SimpleNamespace:
    self.calls.append(("logout",))
    return ok()


@pytest.fixture
def fake_imap(monkeypatch) -> type[FakeIMAP]:
  FakeIMAP.instances = []
  monkeypatch.setattr(imap_client, "IMAP4_SSL", FakeIMAP)
  return FakeIMAP


class TestParseFetchLines:
  def test_uid_before_literal(self) -> None:
    lines = [
      b"1 FETCH (UID 5 FLAGS (\\Seen \\Flagged) BODY[] {21}",
      bytearray(RAW),
      b")",
      b"2 FETCH (UID 6 FLAGS () BODY[] {21}",
      bytearray(RAW),
      b")",
      b"Fetch completed (0.001 + 0.000 secs).",
    ]

    messages = parse_fetch_lines(lines)

    assert [m.uid for m in messages] == [5, 6]
    assert messages[0].flags == ["\\Seen", "\\Flagged"]
    assert messages[0].raw == RAW
    assert messages[1].flags == []

  def test_uid_after_literal(self) -> None:
    lines = ["* 3 FETCH (BODY[] {21}", bytearray(RAW), " UID 77 FLAGS (\\Seen))", "OK done"]

    messages = parse_fetch_lines(lines)

    assert len(messages) == 1
    assert messages[0].uid == 77
    assert messages[0].flags == ["\\Seen"]
    assert messages[0].raw == RAW

  def test_entry_without_uid_is_dropped(self) -> None:
    assert parse_fetch_lines([b"1 FETCH (FLAGS () BODY[] {21}", bytearray(RAW), b")"]) == []


class TestImapClient:
  @pytest.mark.asyncio
  async def test_password_login_and_folder_ops(self, fake_imap, password_account) -> None:
    client = create_imap_client(password_account)
    await client.connect(password_account)
    imap = fake_imap.instances[0]

    assert imap.host == "imap.example.com"
    assert imap.calls[0] == ("login", "alice@example.com", "secret")
    assert await client.count_messages("INBOX") == 3
    info = await client.select_folder("INBOX")
    assert info == {"exists": 3, "uidvalidity": 42}
    assert await client.list_uids() == [4, 9, 12]

    await client.disconnect()
    assert imap.calls[-1] == ("logout",)
    assert not client.is_connected

  @pytest.mark.asyncio
  async def test_xoauth2_for_oauth_accounts(self, fake_imap, oauth_account) -> None:
    client = create_imap_client(oauth_account)
    await client.connect(oauth_account)
    assert fake_imap.instances[0].calls[0] == ("xoauth2", "bob@gmail.com", "stale-token")

  @pytest.mark.asyncio
  async def test_rejected_login(self, fake_imap, monkeypatch, password_account) -> None:
    class Rejecting(FakeIMAP):
      def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.login_response = no(b"[AUTHENTICATIONFAILED] Invalid credentials")

    monkeypatch.setattr(imap_client, "IMAP4_SSL", Rejecting)
    client = create_imap_client(password_account)

    with pytest.raises(MailAuthError, match="Invalid credentials"):
      await client.connect(password_account)
    assert not client.is_connected
    assert fake_imap.instances[0].calls[-1] == ("logout",)

  @pytest.mark.asyncio
  async def test_retry_closes_rejected_connection(self, fake_imap, monkeypatch, oauth_account) -> None:
    class RejectOnce(FakeIMAP):
      def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        if len(FakeIMAP.instances) == 1:
          self.login_response = no(b"[AUTHENTICATIONFAILED] Invalid credentials")

    monkeypatch.setattr(imap_client, "IMAP4_SSL", RejectOnce)
    client = create_imap_client(oauth_account)

    with pytest.raises(MailAuthError):
      await client.connect(oauth_account)
    await client.connect(oauth_account)
    await client.disconnect()

    first, second = fake_imap.instances
    assert first.calls == [("xoauth2", "bob@gmail.com", "stale-token"), ("logout",)]
    assert second.calls[-1] == ("logout",)

  @pytest.mark.asyncio
  async def test_unreachable_host(self, monkeypatch, password_account) -> None:
    def refuse(*args: Any, **kwargs: Any) -> None:
      raise ConnectionRefusedError("refused")

    monkeypatch.setattr(imap_client, "IMAP4_SSL", refuse)

    with pytest.raises(MailNetworkError, match="Cannot reach"):
      await create_imap_client(password_account).connect(password_account)

  @pytest.mark.asyncio
  async def test_missing_folder(self, fake_imap, password_account) -> None:
    client = create_imap_client(password_account)
    await client.connect(password_account)
    fake_imap.instances[0].select_response = no(b"Mailbox doesn't exist: Archive")

    with pytest.raises(MailboxError) as excinfo:
      await client.select_folder("Archive")
    assert excinfo.value.folder == "Archive"

  @pytest.mark.asyncio
  async def test_commands_require_connection(self) -> None:
    client = ImapClient("imap.example.com", 993)
    with pytest.raises(MailNetworkError, match="Not connected"):
      await client.select_folder("INBOX")
    await client.disconnect()

  @pytest.mark.asyncio
  async def test_move_falls_back_to_copy(self, fake_imap, password_account) -> None:
    client = create_imap_client(password_account)
    await client.connect(password_account)
    imap = fake_imap.instances[0]

    await client.move_message(5, "Archive")

    assert imap.calls[1:] == [
      ("uid", "copy", "5", "Archive"),
      ("uid", "store", "5", "+FLAGS", "(\\Deleted)"),
      ("expunge",),
    ]

  @pytest.mark.asyncio
  async def test_move_uses_uid_move(self, fake_imap, password_account) -> None:
    client = create_imap_client(password_account)
    await client.connect(password_account)
    imap = fake_imap.instances[0]
    imap.capabilities.add("MOVE")

    await client.move_message(5, "Archive")
    await client.store_flags(5, "\\Seen", add=False)

    assert imap.calls[1:] == [
      ("uid", "move", "5", "Archive"),
      ("uid", "store", "5", "-FLAGS", "(\\Seen)"),
    ]
