"""
Connect with one-shot OAuth credential refresh.

  connecting --auth failure, OAuth, refresh token--> refreshing
  refreshing --new tokens persisted--> retrying
  retrying --ok--> connected
  any other failure --> failed

A credential is refreshed at most once per connect attempt; a failure while
retrying is final.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Any

from ..helpers import is_auth_failure
from ..state.types import OAuthCredential
from .oauth_client import OAuthRefreshError, merge_tokens

if TYPE_CHECKING:
  from collections.abc import Awaitable, Callable

  from ..state.types import EmailAccount
  from .imap_client import MailboxClient

  Refresher = Callable[[str, str], Awaitable[dict[str, Any]]]
  CredentialSaver = Callable[[str, OAuthCredential], Awaitable[None]]

log = logging.getLogger("nexusmail.client.auth")


class AuthPhase(str, Enum):
  CONNECTING = "connecting"
  REFRESHING = "refreshing"
  RETRYING = "retrying"
  CONNECTED = "connected"
  FAILED = "failed"


class CredentialConnector:
  """Drives one connect attempt, refreshing an OAuth credential at most once."""

  def __init__(
    self,
    refresher: Refresher,
    save_credential: CredentialSaver,
    on_phase: Callable[[AuthPhase], None] | None = None,
  ) -> None:
    self._refresher = refresher
    self._save_credential = save_credential
    self._on_phase = on_phase
    self.phase = AuthPhase.CONNECTING
    self.refresh_count = 0

  def _enter(self, phase: AuthPhase) -> None:
    self.phase = phase
    if self._on_phase is not None:
      self._on_phase(phase)

  async def connect(self, client: MailboxClient, account: EmailAccount) -> EmailAccount:
    """Connect `client`, returning the account with its current credential."""
    self._enter(AuthPhase.CONNECTING)
    try:
      await client.connect(account)
    except Exception as first_error:
      refreshed = await self._try_refresh(account, first_error)
      if refreshed is None:
        self._enter(AuthPhase.FAILED)
        raise

      account = refreshed
      self._enter(AuthPhase.RETRYING)
      try:
        await client.connect(account)
      except Exception:
        self._enter(AuthPhase.FAILED)
        raise

    self._enter(AuthPhase.CONNECTED)
    return account

  async def _try_refresh(
    self,
    account: EmailAccount,
    error: Exception,
  ) -> EmailAccount | None:
    credential = account.credential
    if not isinstance(credential, OAuthCredential) or not is_auth_failure(error):
      return None
    if self.refresh_count >= 1:
      return None
    if not credential.refresh_token:
      log.warning("Account %s has no refresh token, cannot recover from auth failure", account.id)
      return None

    self._enter(AuthPhase.REFRESHING)
    self.refresh_count += 1
    log.info("Authentication failed for account %s, refreshing access token", account.id)
    try:
      tokens = await self._refresher(account.provider, credential.refresh_token)
    except OAuthRefreshError:
      log.exception("Token refresh failed for account %s", account.id)
      return None

    merged = merge_tokens(credential, tokens)
    await self._save_credential(account.id, merged)
    return account.model_copy(update={"credential": merged})
