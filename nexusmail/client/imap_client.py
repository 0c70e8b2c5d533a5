"""
Async IMAP client wrapper using aioimaplib.

One instance holds one authenticated connection. Commands are serialized on
a lock; protocol failures surface as typed MailClientError subclasses so the
sync orchestrator can decide what is terminal.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import TYPE_CHECKING, Any, Protocol

from aioimaplib import IMAP4, IMAP4_SSL

from ..state.types import FetchedMessage

if TYPE_CHECKING:
  from ..state.types import EmailAccount

log = logging.getLogger("nexusmail.client.imap")

CONNECT_TIMEOUT = 30.0
LOGOUT_TIMEOUT = 3.0
FETCH_ITEMS = "(UID FLAGS BODY.PEEK[])"


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class MailClientError(Exception):
  """Base class for mailbox protocol failures."""


class MailAuthError(MailClientError):
  """The server rejected the credentials."""


class MailNetworkError(MailClientError):
  """Connection could not be established or was lost."""


class MailboxError(MailClientError):
  """A folder could not be opened."""

  def __init__(self, folder: str, message: str) -> None:
    self.folder = folder
    super().__init__(f"Cannot open folder {folder}: {message}")


# ---------------------------------------------------------------------------
# Collaborator protocol
# ---------------------------------------------------------------------------


class MailboxClient(Protocol):
  async def connect(self, account: EmailAccount) -> None: ...

  async def count_messages(self, folder: str) -> int: ...

  async def select_folder(self, folder: str) -> dict[str, Any]: ...

  async def list_uids(self) -> list[int]: ...

  async def fetch_messages(self, uids: list[int]) -> list[FetchedMessage]: ...

  async def store_flags(self, uid: int, flags: str, add: bool = True) -> None: ...

  async def move_message(self, uid: int, dest_folder: str) -> None: ...

  async def delete_message(self, uid: int) -> None: ...

  async def disconnect(self) -> None: ...


# ---------------------------------------------------------------------------
# aioimaplib implementation
# ---------------------------------------------------------------------------


class ImapClient:
  """Async IMAP client bound to one server."""

  def __init__(
    self,
    host: str,
    port: int,
    use_ssl: bool = True,
    connect_timeout: float = CONNECT_TIMEOUT,
    logout_timeout: float = LOGOUT_TIMEOUT,
  ) -> None:
    self.host = host
    self.port = port
    self.use_ssl = use_ssl
    self.connect_timeout = connect_timeout
    self.logout_timeout = logout_timeout
    self._imap: IMAP4_SSL | IMAP4 | None = None
    self._current_folder: str | None = None
    self._lock = asyncio.Lock()
    self.is_connected: bool = False

  async def connect(self, account: EmailAccount) -> None:
    """Connect and authenticate with the account's credential."""
    async with self._lock:
      # Drop any connection left over from an earlier attempt
      await self.disconnect()
      try:
        if self.use_ssl:
          self._imap = IMAP4_SSL(host=self.host, port=self.port, timeout=self.connect_timeout)
        else:
          self._imap = IMAP4(host=self.host, port=self.port, timeout=self.connect_timeout)
        await asyncio.wait_for(self._imap.wait_hello_from_server(), self.connect_timeout)
      except TimeoutError as e:
        await self.disconnect()
        raise MailNetworkError(f"Connection timeout to {self.host}:{self.port}") from e
      except OSError as e:
        await self.disconnect()
        raise MailNetworkError(f"Cannot reach {self.host}:{self.port}: {e}") from e

      credential = account.credential
      try:
        if credential.kind == "oauth":
          response = await asyncio.wait_for(
            self._imap.xoauth2(account.email, credential.access_token), self.connect_timeout
          )
        else:
          response = await asyncio.wait_for(
            self._imap.login(account.email, credential.password), self.connect_timeout
          )
      except TimeoutError as e:
        await self.disconnect()
        raise MailNetworkError("Connection timeout during authentication") from e
      except OSError as e:
        await self.disconnect()
        raise MailNetworkError(f"Connection lost during authentication: {e}") from e

      if response.result != "OK":
        detail = " ".join(_line_text(line) for line in response.lines).strip()
        log.error("IMAP authentication failed for account %s: %s", account.id, detail)
        await self.disconnect()
        raise MailAuthError(f"AUTHENTICATE failed: {detail or response.result}")

      self.is_connected = True
      self._current_folder = None
      log.info("IMAP connected to %s for account %s", self.host, account.id)

  async def disconnect(self) -> None:
    """Log out, giving the server a bounded amount of time to answer."""
    if self._imap is None:
      return
    try:
      await asyncio.wait_for(self._imap.logout(), self.logout_timeout)
    except Exception:
      log.debug("Logout from %s did not complete cleanly", self.host)
      transport = getattr(getattr(self._imap, "protocol", None), "transport", None)
      if transport is not None:
        transport.close()
    self._imap = None
    self.is_connected = False
    self._current_folder = None

  async def _run(self, command: str, *args: Any) -> Any:
    if self._imap is None or not self.is_connected:
      raise MailNetworkError("Not connected")
    try:
      return await getattr(self._imap, command)(*args)
    except MailClientError:
      raise
    except Exception as e:
      self.is_connected = False
      raise MailNetworkError(f"IMAP {command} failed: {e}") from e

  async def count_messages(self, folder: str) -> int:
    """Open a folder read-only and return its message count."""
    async with self._lock:
      response = await self._run("examine", folder)
      if response.result != "OK":
        raise MailboxError(folder, _response_detail(response))
      self._current_folder = None
      return _parse_select_response(response.lines).get("exists", 0)

  async def select_folder(self, folder: str) -> dict[str, Any]:
    """Open a folder read-write."""
    async with self._lock:
      response = await self._run("select", folder)
      if response.result != "OK":
        raise MailboxError(folder, _response_detail(response))
      self._current_folder = folder
      return _parse_select_response(response.lines)

  async def list_uids(self) -> list[int]:
    """All UIDs in the selected folder."""
    async with self._lock:
      response = await self._run("uid", "search", "ALL")
      if response.result != "OK":
        raise MailboxError(self._current_folder or "", _response_detail(response))

      uids: list[int] = []
      for line in response.lines:
        text = _line_text(line)
        if "COMPLETED" in text.upper():
          continue
        for part in text.split():
          if part.isdigit():
            uids.append(int(part))
      return sorted(set(uids))

  async def fetch_messages(self, uids: list[int]) -> list[FetchedMessage]:
    """Fetch full raw messages plus flags without setting \\Seen."""
    if not uids:
      return []
    uid_str = ",".join(str(u) for u in uids)
    async with self._lock:
      response = await self._run("uid", "fetch", uid_str, FETCH_ITEMS)
      if response.result != "OK":
        raise MailNetworkError(f"FETCH failed: {_response_detail(response)}")
      return parse_fetch_lines(response.lines)

  async def store_flags(self, uid: int, flags: str, add: bool = True) -> None:
    action = "+FLAGS" if add else "-FLAGS"
    async with self._lock:
      response = await self._run("uid", "store", str(uid), action, f"({flags})")
      if response.result != "OK":
        raise MailClientError(f"STORE failed: {_response_detail(response)}")

  async def move_message(self, uid: int, dest_folder: str) -> None:
    """Move via UID MOVE when advertised, otherwise copy + delete + expunge."""
    async with self._lock:
      if self._imap is not None and self._imap.has_capability("MOVE"):
        response = await self._run("uid", "move", str(uid), dest_folder)
        if response.result != "OK":
          raise MailClientError(f"MOVE failed: {_response_detail(response)}")
        return

      response = await self._run("uid", "copy", str(uid), dest_folder)
      if response.result != "OK":
        raise MailClientError(f"COPY failed: {_response_detail(response)}")
      response = await self._run("uid", "store", str(uid), "+FLAGS", r"(\Deleted)")
      if response.result != "OK":
        raise MailClientError(f"STORE failed: {_response_detail(response)}")
      await self._run("expunge")

  async def delete_message(self, uid: int) -> None:
    async with self._lock:
      response = await self._run("uid", "store", str(uid), "+FLAGS", r"(\Deleted)")
      if response.result != "OK":
        raise MailClientError(f"STORE failed: {_response_detail(response)}")
      await self._run("expunge")


def create_imap_client(
  account: EmailAccount,
  connect_timeout: float = CONNECT_TIMEOUT,
  logout_timeout: float = LOGOUT_TIMEOUT,
) -> ImapClient:
  """Build an unconnected client for an account's server."""
  return ImapClient(
    account.imap_host,
    account.imap_port,
    account.use_ssl,
    connect_timeout=connect_timeout,
    logout_timeout=logout_timeout,
  )


# ---------------------------------------------------------------------------
# Response parsing helpers
# ---------------------------------------------------------------------------

_FETCH_START_RE = re.compile(r"^\*?\s*\d+\s+FETCH\b", re.IGNORECASE)
_UID_RE = re.compile(r"\bUID\s+(\d+)", re.IGNORECASE)
_FLAGS_RE = re.compile(r"FLAGS\s*\(([^)]*)\)", re.IGNORECASE)


def _line_text(line: Any) -> str:
  if isinstance(line, bytes | bytearray):
    return bytes(line).decode("utf-8", errors="replace")
  return str(line)


def _response_detail(response: Any) -> str:
  return " ".join(_line_text(line) for line in response.lines).strip() or str(response.result)


def parse_fetch_lines(lines: list[Any]) -> list[FetchedMessage]:
  """Parse UID FETCH (UID FLAGS BODY[]) response lines.

  Literal message data arrives as bytearray; metadata lines as str or bytes.
  UID and FLAGS may appear before or after the literal.
  """
  results: list[FetchedMessage] = []
  current: dict[str, Any] | None = None

  def flush() -> None:
    if current is not None and current.get("uid") is not None:
      results.append(
        FetchedMessage(uid=current["uid"], flags=current["flags"], raw=current["raw"])
      )

  for line in lines:
    if isinstance(line, bytearray):
      if current is not None:
        current["raw"] = bytes(line)
      continue

    text = _line_text(line).strip()
    if not text:
      continue
    if _FETCH_START_RE.match(text):
      flush()
      current = {"uid": None, "flags": [], "raw": b""}
    if current is None:
      continue

    m = _UID_RE.search(text)
    if m:
      current["uid"] = int(m.group(1))
    m = _FLAGS_RE.search(text)
    if m:
      current["flags"] = m.group(1).split()

  flush()
  return results


def _parse_select_response(lines: list[Any]) -> dict[str, Any]:
  """Parse SELECT/EXAMINE response for counts and UIDVALIDITY."""
  result: dict[str, Any] = {}
  for line in lines:
    line_upper = _line_text(line).upper()
    # Parse "N EXISTS"
    m = re.search(r"(\d+)\s+EXISTS", line_upper)
    if m:
      result["exists"] = int(m.group(1))
    # Parse "UIDVALIDITY N"
    m = re.search(r"UIDVALIDITY\s+(\d+)", line_upper)
    if m:
      result["uidvalidity"] = int(m.group(1))
    # Parse "UIDNEXT N"
    m = re.search(r"UIDNEXT\s+(\d+)", line_upper)
    if m:
      result["uidnext"] = int(m.group(1))
  return result
