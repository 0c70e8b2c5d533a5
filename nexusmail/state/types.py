"""
Shared types for accounts, decoded messages, persisted records and sync
progress events.

Progress events are what the presentation layer consumes; each one carries
enough context (counts, folder, latest message) to render live progress
without extra queries.
"""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BaseModel, Field

AccountStatus = Literal["active", "syncing", "error"]

SyncEventType = Literal[
  "start",
  "folder-count",
  "count-complete",
  "folder-start",
  "message-synced",
  "folder-complete",
  "folder-error",
  "complete",
  "error",
]

TERMINAL_EVENTS: frozenset[str] = frozenset({"complete", "error"})


# ---------------------------------------------------------------------------
# Credentials & accounts
# ---------------------------------------------------------------------------


class PasswordCredential(BaseModel):
  kind: Literal["password"] = "password"
  password: str


class OAuthCredential(BaseModel):
  kind: Literal["oauth"] = "oauth"
  access_token: str
  refresh_token: str | None = None
  expiry: float | None = None
  token_type: str = "Bearer"


Credential = Annotated[PasswordCredential | OAuthCredential, Field(discriminator="kind")]


class EmailAccount(BaseModel):
  id: str
  email: str
  provider: str = "imap"
  display_name: str | None = None
  imap_host: str = ""
  imap_port: int = 993
  use_ssl: bool = True
  status: AccountStatus = "active"
  last_sync: str | None = None
  credential: Credential

  @property
  def is_oauth(self) -> bool:
    return isinstance(self.credential, OAuthCredential)


# ---------------------------------------------------------------------------
# Decoded messages
# ---------------------------------------------------------------------------


class InlineAttachment(BaseModel):
  """An attachment still held in memory, before it is written to storage."""

  filename: str
  content_type: str
  size: int = 0
  content: bytes = b""


class SavedAttachment(BaseModel):
  filename: str
  content_type: str
  size: int = 0
  path: str


class DecodedMessage(BaseModel):
  text: str = ""
  html: str = ""
  attachments: list[InlineAttachment] = Field(default_factory=list)


class RenderedBody(BaseModel):
  body: str = ""
  attachments: list[InlineAttachment] = Field(default_factory=list)


class FetchedMessage(BaseModel):
  """One message as returned by the mailbox client."""

  uid: int
  flags: list[str] = Field(default_factory=list)
  raw: bytes = b""


# ---------------------------------------------------------------------------
# Persisted records
# ---------------------------------------------------------------------------


class EmailRecord(BaseModel):
  id: str
  account_id: str
  folder_id: str
  sender_name: str = ""
  sender_email: str = ""
  subject: str = ""
  preview: str = ""
  body: str = ""
  attachments: list[SavedAttachment] = Field(default_factory=list)
  timestamp: str = ""
  is_read: bool = False
  is_starred: bool = False


def make_message_id(account_id: str, folder_id: str, uid: int | str) -> str:
  """Composite id: stable across re-syncs, used as the upsert key."""
  return f"{account_id}-{folder_id}-{uid}"


# ---------------------------------------------------------------------------
# Sync progress
# ---------------------------------------------------------------------------


class FolderResult(BaseModel):
  success: bool
  synced: int = 0
  total: int = 0
  error: str | None = None


class SyncProgressEvent(BaseModel):
  type: SyncEventType
  account_id: str = ""
  folder_id: str | None = None
  imap_folder: str | None = None
  message: str | None = None
  count: int | None = None
  total_emails: int | None = None
  processed: int | None = None
  folder_synced: int | None = None
  total_synced: int | None = None
  synced: int | None = None
  total: int | None = None
  email: EmailRecord | None = None
  error: str | None = None
  results: dict[str, FolderResult] | None = None


class SyncResult(BaseModel):
  success: bool
  account_id: str
  total_synced: int = 0
  total_emails: int = 0
  results: dict[str, FolderResult] = Field(default_factory=dict)
  last_sync: str | None = None
  error: str | None = None
