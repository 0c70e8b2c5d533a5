"""
Typed query helpers for the mail database.
"""

from __future__ import annotations

import json
import logging
import time
from typing import TYPE_CHECKING, Any

from pydantic import TypeAdapter

from ..state.types import Credential, EmailAccount, EmailRecord, SavedAttachment

if TYPE_CHECKING:
  from collections.abc import Callable

  import aiosqlite

log = logging.getLogger("nexusmail.db.queries")

_credential_adapter: TypeAdapter[Credential] = TypeAdapter(Credential)


# ---------------------------------------------------------------------------
# Secret codec (credentials at rest)
# ---------------------------------------------------------------------------


def _identity(value: str) -> str:
  return value


_encrypt: Callable[[str], str] = _identity
_decrypt: Callable[[str], str] = _identity


def set_secret_codec(
  encrypt: Callable[[str], str] | None,
  decrypt: Callable[[str], str] | None,
) -> None:
  """Install encrypt/decrypt hooks for stored credentials. None restores plaintext."""
  global _encrypt, _decrypt
  _encrypt = encrypt or _identity
  _decrypt = decrypt or _identity


def _dump_credential(credential: Credential) -> str:
  return _encrypt(credential.model_dump_json())


def _load_credential(raw: str) -> Credential:
  return _credential_adapter.validate_json(_decrypt(raw))


# ---------------------------------------------------------------------------
# Emails
# ---------------------------------------------------------------------------


async def upsert_email(db: aiosqlite.Connection, record: EmailRecord) -> None:
  """Insert or update an email keyed by its composite id."""
  now = time.time()
  await db.execute(
    """
        INSERT INTO emails (
            id, account_id, folder_id, sender_name, sender_email, subject,
            preview, body, attachments_json, timestamp, is_read, is_starred,
            updated_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT (id) DO UPDATE SET
            account_id = excluded.account_id,
            folder_id = excluded.folder_id,
            sender_name = excluded.sender_name,
            sender_email = excluded.sender_email,
            subject = excluded.subject,
            preview = excluded.preview,
            body = excluded.body,
            attachments_json = excluded.attachments_json,
            timestamp = excluded.timestamp,
            is_read = excluded.is_read,
            is_starred = excluded.is_starred,
            updated_at = excluded.updated_at
        """,
    (
      record.id,
      record.account_id,
      record.folder_id,
      record.sender_name,
      record.sender_email,
      record.subject,
      record.preview,
      record.body,
      json.dumps([a.model_dump() for a in record.attachments]),
      record.timestamp,
      int(record.is_read),
      int(record.is_starred),
      now,
    ),
  )
  await db.commit()


async def get_email(db: aiosqlite.Connection, email_id: str) -> EmailRecord | None:
  cursor = await db.execute("SELECT * FROM emails WHERE id = ?", (email_id,))
  row = await cursor.fetchone()
  if not row:
    return None
  return _row_to_record(row)


async def delete_email(db: aiosqlite.Connection, email_id: str) -> bool:
  cursor = await db.execute("DELETE FROM emails WHERE id = ?", (email_id,))
  await db.commit()
  return cursor.rowcount > 0


async def get_existing_ids(
  db: aiosqlite.Connection,
  account_id: str,
  folder_id: str,
) -> set[str]:
  """Composite ids already persisted for one account folder."""
  cursor = await db.execute(
    "SELECT id FROM emails WHERE account_id = ? AND folder_id = ?",
    (account_id, folder_id),
  )
  rows = await cursor.fetchall()
  return {r["id"] for r in rows}


async def list_emails(
  db: aiosqlite.Connection,
  folder_id: str,
  account_id: str | None = None,
) -> list[EmailRecord]:
  """Emails in a folder, newest first. All accounts when account_id is None."""
  if account_id:
    cursor = await db.execute(
      "SELECT * FROM emails WHERE folder_id = ? AND account_id = ? ORDER BY timestamp DESC",
      (folder_id, account_id),
    )
  else:
    cursor = await db.execute(
      "SELECT * FROM emails WHERE folder_id = ? ORDER BY timestamp DESC",
      (folder_id,),
    )
  rows = await cursor.fetchall()
  return [_row_to_record(r) for r in rows]


async def get_unread_counts(
  db: aiosqlite.Connection,
  account_id: str | None = None,
) -> dict[str, int]:
  """Unread message count per folder id."""
  if account_id:
    cursor = await db.execute(
      "SELECT folder_id, COUNT(*) AS n FROM emails WHERE is_read = 0 AND account_id = ? GROUP BY folder_id",
      (account_id,),
    )
  else:
    cursor = await db.execute(
      "SELECT folder_id, COUNT(*) AS n FROM emails WHERE is_read = 0 GROUP BY folder_id"
    )
  rows = await cursor.fetchall()
  return {r["folder_id"]: r["n"] for r in rows}


async def update_email_flags(
  db: aiosqlite.Connection,
  email_id: str,
  is_read: bool | None = None,
  is_starred: bool | None = None,
) -> bool:
  sets: list[str] = []
  params: list[Any] = []
  if is_read is not None:
    sets.append("is_read = ?")
    params.append(int(is_read))
  if is_starred is not None:
    sets.append("is_starred = ?")
    params.append(int(is_starred))
  if not sets:
    return False
  sets.append("updated_at = ?")
  params.extend([time.time(), email_id])
  cursor = await db.execute(f"UPDATE emails SET {', '.join(sets)} WHERE id = ?", params)
  await db.commit()
  return cursor.rowcount > 0


async def move_email(
  db: aiosqlite.Connection,
  email_id: str,
  new_id: str,
  folder_id: str,
) -> bool:
  """Re-key an email into another folder.

  Returns False, leaving both rows untouched, when new_id is already taken.
  """
  if await get_email(db, new_id) is not None:
    log.warning("Not moving %s: %s already exists", email_id, new_id)
    return False
  cursor = await db.execute(
    "UPDATE emails SET id = ?, folder_id = ?, updated_at = ? WHERE id = ?",
    (new_id, folder_id, time.time(), email_id),
  )
  await db.commit()
  return cursor.rowcount > 0


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


async def add_account(db: aiosqlite.Connection, account: EmailAccount) -> None:
  """Insert or update an account together with its credential."""
  await db.execute(
    """
        INSERT INTO accounts (
            id, email, provider, display_name, imap_host, imap_port, use_ssl,
            status, last_sync, credential, created_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT (id) DO UPDATE SET
            email = excluded.email,
            provider = excluded.provider,
            display_name = excluded.display_name,
            imap_host = excluded.imap_host,
            imap_port = excluded.imap_port,
            use_ssl = excluded.use_ssl,
            credential = excluded.credential
        """,
    (
      account.id,
      account.email,
      account.provider,
      account.display_name,
      account.imap_host,
      account.imap_port,
      int(account.use_ssl),
      account.status,
      account.last_sync,
      _dump_credential(account.credential),
      time.time(),
    ),
  )
  await db.commit()


async def get_account(db: aiosqlite.Connection, account_id: str) -> EmailAccount | None:
  cursor = await db.execute("SELECT * FROM accounts WHERE id = ?", (account_id,))
  row = await cursor.fetchone()
  if not row:
    return None
  return _row_to_account(row)


async def list_accounts(db: aiosqlite.Connection) -> list[EmailAccount]:
  cursor = await db.execute("SELECT * FROM accounts ORDER BY created_at")
  rows = await cursor.fetchall()
  return [_row_to_account(r) for r in rows]


async def delete_account(db: aiosqlite.Connection, account_id: str) -> bool:
  """Delete an account and every email mirrored for it."""
  await db.execute("DELETE FROM emails WHERE account_id = ?", (account_id,))
  cursor = await db.execute("DELETE FROM accounts WHERE id = ?", (account_id,))
  await db.commit()
  return cursor.rowcount > 0


async def update_account_status(
  db: aiosqlite.Connection,
  account_id: str,
  status: str,
) -> None:
  await db.execute("UPDATE accounts SET status = ? WHERE id = ?", (status, account_id))
  await db.commit()


async def update_last_sync(
  db: aiosqlite.Connection,
  account_id: str,
  last_sync: str,
  status: str = "active",
) -> None:
  await db.execute(
    "UPDATE accounts SET last_sync = ?, status = ? WHERE id = ?",
    (last_sync, status, account_id),
  )
  await db.commit()


async def save_account_credential(
  db: aiosqlite.Connection,
  account_id: str,
  credential: Credential,
) -> None:
  """Persist a (refreshed) credential for an account."""
  await db.execute(
    "UPDATE accounts SET credential = ? WHERE id = ?",
    (_dump_credential(credential), account_id),
  )
  await db.commit()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _row_to_record(row: aiosqlite.Row) -> EmailRecord:
  return EmailRecord(
    id=row["id"],
    account_id=row["account_id"],
    folder_id=row["folder_id"],
    sender_name=row["sender_name"],
    sender_email=row["sender_email"],
    subject=row["subject"],
    preview=row["preview"],
    body=row["body"],
    attachments=_parse_attachments(row["attachments_json"]),
    timestamp=row["timestamp"],
    is_read=bool(row["is_read"]),
    is_starred=bool(row["is_starred"]),
  )


def _row_to_account(row: aiosqlite.Row) -> EmailAccount:
  return EmailAccount(
    id=row["id"],
    email=row["email"],
    provider=row["provider"],
    display_name=row["display_name"],
    imap_host=row["imap_host"],
    imap_port=row["imap_port"],
    use_ssl=bool(row["use_ssl"]),
    status=row["status"],
    last_sync=row["last_sync"],
    credential=_load_credential(row["credential"]),
  )


def _parse_attachments(raw: str | None) -> list[SavedAttachment]:
  if not raw:
    return []
  try:
    items = json.loads(raw)
    return [SavedAttachment(**a) for a in items if isinstance(a, dict)]
  except (json.JSONDecodeError, TypeError):
    return []
