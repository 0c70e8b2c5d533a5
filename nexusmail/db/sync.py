"""
Full-account mirroring of remote IMAP folders into the local store.

Run shape:
1. Connect once (one-shot OAuth refresh on auth failure)
2. Counting pass: EXAMINE every folder, sum EXISTS
3. Per folder: SELECT, UID SEARCH ALL, diff against persisted ids
4. Fetch new UIDs in batches, decode, write attachments, upsert
5. Record last_sync and status

Every run emits exactly one `start` event first and exactly one of
`complete` / `error` last. Re-running never duplicates rows: records are
keyed by "{account_id}-{folder_id}-{uid}".
"""

from __future__ import annotations

import functools
import logging
import os
import re
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from ..client.auth import AuthPhase, CredentialConnector
from ..client.headers import decode_header
from ..client.imap_client import MailboxError, create_imap_client
from ..client.oauth_client import refresh_access_token
from ..client.parsers import as_wire_text, get_header, parse_date, parse_sender, split_headers
from ..client.providers import get_imap_folder
from ..client.sanitizer import make_preview, render_body
from ..helpers import classify_sync_error
from ..state import store
from ..state.types import (
  TERMINAL_EVENTS,
  EmailRecord,
  FolderResult,
  SavedAttachment,
  SyncProgressEvent,
  SyncResult,
  make_message_id,
)
from .queries import (
  get_account,
  get_existing_ids,
  save_account_credential,
  update_account_status,
  update_last_sync,
  upsert_email,
)

if TYPE_CHECKING:
  from collections.abc import Callable

  import aiosqlite

  from ..client.auth import Refresher
  from ..client.imap_client import MailboxClient
  from ..config import SyncSettings
  from ..state.types import EmailAccount, FetchedMessage, InlineAttachment

  ClientFactory = Callable[[EmailAccount], MailboxClient]
  ProgressCallback = Callable[[SyncProgressEvent], None]

log = logging.getLogger("nexusmail.db.sync")

NO_SUBJECT = "(No Subject)"

_UNSAFE_FILENAME_RE = re.compile(r"[^A-Za-z0-9.]")


class SyncPhase(str, Enum):
  IDLE = "idle"
  CONNECTING = "connecting"
  REFRESHING = "refreshing-credentials"
  COUNTING = "counting"
  SYNCING = "syncing"
  FINALIZING = "finalizing"
  COMPLETE = "complete"
  ERRORED = "errored"


class SyncInProgressError(RuntimeError):
  """A sync run for the account is already in flight."""


# ---------------------------------------------------------------------------
# Progress
# ---------------------------------------------------------------------------


class ProgressReporter:
  """Emits ordered progress events for one run."""

  def __init__(self, account_id: str, on_progress: ProgressCallback | None = None) -> None:
    self.account_id = account_id
    self._on_progress = on_progress
    self._started = False
    self._finished = False
    self.events: list[SyncProgressEvent] = []

  def emit(self, event_type: str, **fields: Any) -> SyncProgressEvent:
    if self._finished:
      raise RuntimeError(f"Progress event {event_type} after the run finished")
    if not self._started and event_type != "start":
      raise RuntimeError(f"Progress event {event_type} before start")
    if self._started and event_type == "start":
      raise RuntimeError("Duplicate start event")

    event = SyncProgressEvent(type=event_type, account_id=self.account_id, **fields)
    self._started = True
    self._finished = event_type in TERMINAL_EVENTS
    self.events.append(event)

    if self._on_progress is not None:
      try:
        self._on_progress(event)
      except Exception:
        log.exception("Progress callback failed on %s event", event_type)
    return event


class _Counters:
  def __init__(self, total_emails: int = 0) -> None:
    self.total_emails = total_emails
    self.processed = 0
    self.total_synced = 0


# ---------------------------------------------------------------------------
# Message records
# ---------------------------------------------------------------------------


def safe_filename(filename: str) -> str:
  return _UNSAFE_FILENAME_RE.sub("_", filename)


def save_attachments(
  attachments_dir: str,
  message_id: str,
  attachments: list[InlineAttachment],
) -> list[SavedAttachment]:
  """Write attachments to {attachments_dir}/{message_id}/{safe filename}."""
  if not attachments:
    return []
  target_dir = os.path.join(attachments_dir, message_id)
  os.makedirs(target_dir, exist_ok=True)

  saved: list[SavedAttachment] = []
  for att in attachments:
    path = os.path.join(target_dir, safe_filename(att.filename))
    with open(path, "wb") as f:
      f.write(att.content)
    saved.append(
      SavedAttachment(
        filename=att.filename,
        content_type=att.content_type,
        size=att.size,
        path=path,
      )
    )
  return saved


def build_record(
  account_id: str,
  folder_id: str,
  message: FetchedMessage,
  settings: SyncSettings,
) -> EmailRecord:
  """Decode one fetched message into a persistable record."""
  message_id = make_message_id(account_id, folder_id, message.uid)
  headers, _ = split_headers(as_wire_text(message.raw))

  subject = decode_header(get_header(headers, "Subject")) or NO_SUBJECT
  sender_name, sender_email = parse_sender(decode_header(get_header(headers, "From")))
  timestamp = parse_date(get_header(headers, "Date"))

  rendered = render_body(
    message.raw,
    strict=settings.strict_sanitize,
    max_depth=settings.max_mime_depth,
    repair=settings.repair_mojibake,
  )
  saved = save_attachments(str(settings.attachments_dir), message_id, rendered.attachments)

  return EmailRecord(
    id=message_id,
    account_id=account_id,
    folder_id=folder_id,
    sender_name=sender_name,
    sender_email=sender_email,
    subject=subject,
    preview=make_preview(rendered.body, settings.preview_length),
    body=rendered.body,
    attachments=saved,
    timestamp=timestamp,
    is_read="\\Seen" in message.flags,
    is_starred="\\Flagged" in message.flags,
  )


# ---------------------------------------------------------------------------
# Folder sync
# ---------------------------------------------------------------------------


async def _count_folders(
  client: MailboxClient,
  account: EmailAccount,
  settings: SyncSettings,
  reporter: ProgressReporter,
) -> int:
  total_emails = 0
  for folder_id in settings.folders:
    imap_folder = get_imap_folder(account.provider, folder_id)
    try:
      count = await client.count_messages(imap_folder)
    except MailboxError as e:
      log.warning("Could not count folder %s (%s): %s", folder_id, imap_folder, e)
      continue
    total_emails += count
    reporter.emit("folder-count", folder_id=folder_id, count=count, total_emails=total_emails)

  reporter.emit(
    "count-complete",
    total_emails=total_emails,
    message=f"Found {total_emails} emails to sync",
  )
  return total_emails


async def sync_folder(
  db: aiosqlite.Connection,
  client: MailboxClient,
  account: EmailAccount,
  folder_id: str,
  settings: SyncSettings,
  reporter: ProgressReporter,
  counters: _Counters,
) -> FolderResult:
  """Mirror one folder. Raises MailboxError when the folder cannot be opened."""
  imap_folder = get_imap_folder(account.provider, folder_id)
  reporter.emit(
    "folder-start",
    folder_id=folder_id,
    imap_folder=imap_folder,
    message=f"Syncing {folder_id}...",
  )

  await client.select_folder(imap_folder)
  uids = await client.list_uids()

  existing = await get_existing_ids(db, account.id, folder_id)
  new_uids = [u for u in uids if make_message_id(account.id, folder_id, u) not in existing]
  counters.processed += len(uids) - len(new_uids)
  log.info("Folder %s: %d total, %d new", folder_id, len(uids), len(new_uids))

  folder_synced = 0
  batch_size = settings.batch_size
  for start in range(0, len(new_uids), batch_size):
    batch = new_uids[start : start + batch_size]
    fetched = await client.fetch_messages(batch)
    is_final_batch = start + batch_size >= len(new_uids)

    for index, message in enumerate(fetched):
      counters.processed += 1
      record: EmailRecord | None = None
      try:
        record = build_record(account.id, folder_id, message, settings)
        await upsert_email(db, record)
      except Exception:
        log.exception("Failed to store UID %s in %s, skipping", message.uid, folder_id)
        record = None
      else:
        folder_synced += 1
        counters.total_synced += 1

      # The closing event fires even when the last message was skipped
      is_last = is_final_batch and index == len(fetched) - 1
      if counters.processed % settings.progress_interval == 0 or is_last:
        reporter.emit(
          "message-synced",
          folder_id=folder_id,
          email=record,
          processed=counters.processed,
          total_emails=counters.total_emails,
          folder_synced=folder_synced,
          total_synced=counters.total_synced,
        )

  reporter.emit("folder-complete", folder_id=folder_id, synced=folder_synced, total=len(uids))
  return FolderResult(success=True, synced=folder_synced, total=len(uids))


# ---------------------------------------------------------------------------
# Account sync
# ---------------------------------------------------------------------------


def _default_client_factory(settings: SyncSettings) -> ClientFactory:
  def factory(account: EmailAccount) -> MailboxClient:
    return create_imap_client(
      account,
      connect_timeout=settings.connect_timeout,
      logout_timeout=settings.logout_timeout,
    )

  return factory


def _default_refresher(settings: SyncSettings) -> Refresher:
  async def refresher(provider: str, refresh_token: str) -> dict[str, Any]:
    return await refresh_access_token(provider, refresh_token, settings)

  return refresher


async def sync_all_folders(
  db: aiosqlite.Connection,
  account: EmailAccount,
  settings: SyncSettings,
  *,
  client_factory: ClientFactory | None = None,
  refresher: Refresher | None = None,
  on_progress: ProgressCallback | None = None,
) -> SyncResult:
  """Mirror every configured folder of one account.

  Failures are reported through the `error` event and the returned result;
  only cancellation propagates.
  """
  reporter = ProgressReporter(account.id, on_progress)
  phase = SyncPhase.IDLE

  def enter(new_phase: SyncPhase) -> None:
    nonlocal phase
    log.debug("Account %s: %s -> %s", account.id, phase.value, new_phase.value)
    phase = new_phase

  def on_auth_phase(auth_phase: AuthPhase) -> None:
    if auth_phase == AuthPhase.REFRESHING:
      enter(SyncPhase.REFRESHING)
    elif auth_phase == AuthPhase.RETRYING:
      enter(SyncPhase.CONNECTING)

  reporter.emit("start", message=f"Connecting to {account.email}...")
  client = (client_factory or _default_client_factory(settings))(account)
  connector = CredentialConnector(
    refresher or _default_refresher(settings),
    functools.partial(save_account_credential, db),
    on_phase=on_auth_phase,
  )

  try:
    await update_account_status(db, account.id, "syncing")

    enter(SyncPhase.CONNECTING)
    account = await connector.connect(client, account)

    enter(SyncPhase.COUNTING)
    counters = _Counters(await _count_folders(client, account, settings, reporter))

    enter(SyncPhase.SYNCING)
    results: dict[str, FolderResult] = {}
    for folder_id in settings.folders:
      try:
        results[folder_id] = await sync_folder(
          db, client, account, folder_id, settings, reporter, counters
        )
      except MailboxError as e:
        log.warning("Skipping folder %s: %s", folder_id, e)
        results[folder_id] = FolderResult(success=False, error=str(e))
        reporter.emit("folder-error", folder_id=folder_id, error=str(e))

    enter(SyncPhase.FINALIZING)
    last_sync = datetime.now(UTC).isoformat()
    await update_last_sync(db, account.id, last_sync, "active")

    enter(SyncPhase.COMPLETE)
    reporter.emit(
      "complete",
      total_synced=counters.total_synced,
      total_emails=counters.total_emails,
      results=results,
      message=f"Sync complete: {counters.total_synced} new emails",
    )
    return SyncResult(
      success=True,
      account_id=account.id,
      total_synced=counters.total_synced,
      total_emails=counters.total_emails,
      results=results,
      last_sync=last_sync,
    )
  except Exception as e:
    enter(SyncPhase.ERRORED)
    message = classify_sync_error(e)
    log.error("Sync failed for account %s in phase %s: %s", account.id, phase.value, e)
    try:
      await update_account_status(db, account.id, "error")
    except Exception:
      log.exception("Could not mark account %s as errored", account.id)
    reporter.emit("error", error=message)
    return SyncResult(success=False, account_id=account.id, error=message)
  finally:
    await client.disconnect()


async def sync_account(
  db: aiosqlite.Connection,
  account_id: str,
  settings: SyncSettings,
  *,
  client_factory: ClientFactory | None = None,
  refresher: Refresher | None = None,
  on_progress: ProgressCallback | None = None,
) -> SyncResult:
  """Sync one stored account, refusing to start a second concurrent run."""
  account = await get_account(db, account_id)
  if account is None:
    return SyncResult(success=False, account_id=account_id, error="Account not found")

  if not store.begin_sync(account_id):
    raise SyncInProgressError(f"Sync already running for account {account_id}")

  def forward(event: SyncProgressEvent) -> None:
    store.publish(event)
    if on_progress is not None:
      on_progress(event)

  try:
    return await sync_all_folders(
      db,
      account,
      settings,
      client_factory=client_factory,
      refresher=refresher,
      on_progress=forward,
    )
  finally:
    store.end_sync(account_id)
