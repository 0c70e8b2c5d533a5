"""
Message operations: read state, star, move, delete.

Each operation is applied on the server first and then to the local store.
A server failure never blocks the local update; the result carries a warning
instead. Lookup and validation failures come back as error results.
"""

from __future__ import annotations

import functools
import logging
from typing import TYPE_CHECKING, Any

from ..client.auth import CredentialConnector
from ..client.imap_client import create_imap_client
from ..client.oauth_client import refresh_access_token
from ..client.providers import get_imap_folder
from ..db.queries import (
  delete_email,
  get_account,
  get_email,
  move_email,
  save_account_credential,
  update_email_flags,
)
from ..helpers import ErrorCategory, OperationResult, log_and_format_error
from ..state.types import make_message_id
from ..validation import ValidationError, parse_message_id, validate_folder_id

if TYPE_CHECKING:
  from collections.abc import Awaitable, Callable

  import aiosqlite

  from ..client.auth import Refresher
  from ..client.imap_client import MailboxClient
  from ..config import SyncSettings
  from ..state.types import EmailAccount

  ClientFactory = Callable[[EmailAccount], MailboxClient]
  ServerOp = Callable[[MailboxClient, int], Awaitable[None]]

log = logging.getLogger("nexusmail.api.message")

UPDATED_LOCALLY = "Updated locally, server sync failed"
MOVED_LOCALLY = "Moved locally, server sync failed"
DELETED_LOCALLY = "Deleted locally, server sync failed"

_client_factory: ClientFactory | None = None
_refresher: Refresher | None = None


def set_client_factory(factory: ClientFactory | None) -> None:
  global _client_factory
  _client_factory = factory


def set_refresher(refresher: Refresher | None) -> None:
  global _refresher
  _refresher = refresher


async def _apply_on_server(
  db: aiosqlite.Connection,
  account: EmailAccount,
  settings: SyncSettings,
  folder_id: str,
  uid: int,
  op: ServerOp,
) -> None:
  if _client_factory is not None:
    client = _client_factory(account)
  else:
    client = create_imap_client(
      account,
      connect_timeout=settings.connect_timeout,
      logout_timeout=settings.logout_timeout,
    )

  async def default_refresher(provider: str, refresh_token: str) -> dict[str, Any]:
    return await refresh_access_token(provider, refresh_token, settings)

  connector = CredentialConnector(
    _refresher or default_refresher,
    functools.partial(save_account_credential, db),
  )
  try:
    account = await connector.connect(client, account)
    await client.select_folder(get_imap_folder(account.provider, folder_id))
    await op(client, uid)
  finally:
    await client.disconnect()


async def _resolve(
  db: aiosqlite.Connection,
  message_id: str,
) -> tuple[EmailAccount | None, str, int]:
  record = await get_email(db, message_id)
  if record is None:
    raise ValidationError(f"Email not found: {message_id}")
  folder_id, uid = parse_message_id(message_id, record.account_id)
  account = await get_account(db, record.account_id)
  return account, folder_id, uid


async def _server_then_local(
  db: aiosqlite.Connection,
  settings: SyncSettings,
  message_id: str,
  op: ServerOp,
  local: Callable[[], Awaitable[Any]],
  warning: str,
) -> OperationResult:
  account, folder_id, uid = await _resolve(db, message_id)

  server_ok = True
  if account is not None:
    try:
      await _apply_on_server(db, account, settings, folder_id, uid, op)
    except Exception:
      log.exception("Server update failed for %s", message_id)
      server_ok = False

  await local()
  if server_ok:
    return OperationResult(success=True)
  return OperationResult(success=True, warning=warning)


async def mark_read(
  db: aiosqlite.Connection,
  settings: SyncSettings,
  message_id: str,
  is_read: bool,
) -> OperationResult:
  """Set or clear \\Seen."""

  async def op(client: MailboxClient, uid: int) -> None:
    await client.store_flags(uid, "\\Seen", add=is_read)

  try:
    return await _server_then_local(
      db,
      settings,
      message_id,
      op,
      lambda: update_email_flags(db, message_id, is_read=is_read),
      UPDATED_LOCALLY,
    )
  except Exception as e:
    return log_and_format_error("mark_read", e, ErrorCategory.FLAG)


async def set_starred(
  db: aiosqlite.Connection,
  settings: SyncSettings,
  message_id: str,
  is_starred: bool,
) -> OperationResult:
  """Set or clear \\Flagged."""

  async def op(client: MailboxClient, uid: int) -> None:
    await client.store_flags(uid, "\\Flagged", add=is_starred)

  try:
    return await _server_then_local(
      db,
      settings,
      message_id,
      op,
      lambda: update_email_flags(db, message_id, is_starred=is_starred),
      UPDATED_LOCALLY,
    )
  except Exception as e:
    return log_and_format_error("set_starred", e, ErrorCategory.FLAG)


async def move_message(
  db: aiosqlite.Connection,
  settings: SyncSettings,
  message_id: str,
  target_folder_id: str,
) -> OperationResult:
  """Move a message and re-key it to the target folder's composite id."""
  try:
    target_folder_id = validate_folder_id(target_folder_id, "target_folder_id")
    record = await get_email(db, message_id)
    if record is None:
      raise ValidationError(f"Email not found: {message_id}")
    _, uid = parse_message_id(message_id, record.account_id)
    new_id = make_message_id(record.account_id, target_folder_id, uid)
    if new_id != message_id and await get_email(db, new_id) is not None:
      raise ValidationError(f"Message already exists in target folder: {new_id}")
    account = await get_account(db, record.account_id)
    target_folder = get_imap_folder(account.provider if account else "default", target_folder_id)

    async def op(client: MailboxClient, uid: int) -> None:
      await client.move_message(uid, target_folder)

    result = await _server_then_local(
      db,
      settings,
      message_id,
      op,
      lambda: move_email(db, message_id, new_id, target_folder_id),
      MOVED_LOCALLY,
    )
  except Exception as e:
    return log_and_format_error("move_message", e, ErrorCategory.MSG)
  result.new_id = new_id
  return result


async def delete_message(
  db: aiosqlite.Connection,
  settings: SyncSettings,
  message_id: str,
) -> OperationResult:
  """Delete on the server (flag + expunge) and remove the local row."""

  async def op(client: MailboxClient, uid: int) -> None:
    await client.delete_message(uid)

  try:
    return await _server_then_local(
      db,
      settings,
      message_id,
      op,
      lambda: delete_email(db, message_id),
      DELETED_LOCALLY,
    )
  except Exception as e:
    return log_and_format_error("delete_message", e, ErrorCategory.MSG)
