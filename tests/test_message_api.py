"""Tests for server-then-local message operations."""

from __future__ import annotations

import pytest
import pytest_asyncio

from nexusmail.api import message_api
from nexusmail.db.queries import add_account, get_email, upsert_email
from nexusmail.state.types import EmailRecord
from tests.fakes.fake_mailbox import FakeMailboxClient, FakeRefresher


@pytest_asyncio.fixture
async def stored_message(db, password_account) -> str:
  await add_account(db, password_account)
  await upsert_email(
    db,
    EmailRecord(id="acct1-inbox-5", account_id="acct1", folder_id="inbox", subject="hi"),
  )
  return "acct1-inbox-5"


@pytest.fixture
def client() -> FakeMailboxClient:
  fake = FakeMailboxClient({"INBOX": {}, "Archive": {}})
  message_api.set_client_factory(lambda _account: fake)
  message_api.set_refresher(FakeRefresher())
  return fake


class TestFlags:
  @pytest.mark.asyncio
  async def test_mark_read(self, db, settings, stored_message, client) -> None:
    result = await message_api.mark_read(db, settings, stored_message, True)

    assert result.success
    assert result.warning is None
    assert client.selected == "INBOX"
    assert client.flag_ops == [(5, "\\Seen", True)]
    assert client.disconnected
    assert (await get_email(db, stored_message)).is_read

  @pytest.mark.asyncio
  async def test_server_failure_still_updates_locally(self, db, settings, stored_message, client) -> None:
    client.fail_select = True

    result = await message_api.mark_read(db, settings, stored_message, True)

    assert result.success
    assert result.warning == message_api.UPDATED_LOCALLY
    assert client.flag_ops == []
    assert (await get_email(db, stored_message)).is_read

  @pytest.mark.asyncio
  async def test_unstar(self, db, settings, stored_message, client) -> None:
    await message_api.set_starred(db, settings, stored_message, True)
    result = await message_api.set_starred(db, settings, stored_message, False)

    assert result.success
    assert client.flag_ops == [(5, "\\Flagged", True), (5, "\\Flagged", False)]
    assert not (await get_email(db, stored_message)).is_starred

  @pytest.mark.asyncio
  async def test_unknown_message(self, db, settings, client) -> None:
    result = await message_api.mark_read(db, settings, "acct1-inbox-99", True)

    assert not result.success
    assert result.is_error
    assert result.message == "Email not found: acct1-inbox-99"
    assert client.connect_calls == []


class TestMoveAndDelete:
  @pytest.mark.asyncio
  async def test_move_rekeys_message(self, db, settings, stored_message, client) -> None:
    result = await message_api.move_message(db, settings, stored_message, "archive")

    assert result.success
    assert result.new_id == "acct1-archive-5"
    assert client.moves == [(5, "Archive")]
    assert await get_email(db, stored_message) is None
    moved = await get_email(db, "acct1-archive-5")
    assert moved is not None
    assert moved.folder_id == "archive"

  @pytest.mark.asyncio
  async def test_move_server_failure(self, db, settings, stored_message, client) -> None:
    client.auth_failures = 1

    result = await message_api.move_message(db, settings, stored_message, "trash")

    assert result.success
    assert result.warning == message_api.MOVED_LOCALLY
    assert await get_email(db, "acct1-trash-5") is not None

  @pytest.mark.asyncio
  async def test_move_onto_existing_message_is_refused(self, db, settings, stored_message, client) -> None:
    await upsert_email(
      db,
      EmailRecord(id="acct1-trash-5", account_id="acct1", folder_id="trash", subject="trash five"),
    )

    result = await message_api.move_message(db, settings, stored_message, "trash")

    assert not result.success
    assert "acct1-trash-5" in result.message
    assert client.moves == []
    assert (await get_email(db, stored_message)).subject == "hi"
    assert (await get_email(db, "acct1-trash-5")).subject == "trash five"

  @pytest.mark.asyncio
  async def test_move_to_invalid_folder(self, db, settings, stored_message, client) -> None:
    result = await message_api.move_message(db, settings, stored_message, "no such/folder")

    assert not result.success
    assert "target_folder_id" in result.message
    assert await get_email(db, stored_message) is not None

  @pytest.mark.asyncio
  async def test_delete(self, db, settings, stored_message, client) -> None:
    result = await message_api.delete_message(db, settings, stored_message)

    assert result.success
    assert client.deletes == [5]
    assert await get_email(db, stored_message) is None
