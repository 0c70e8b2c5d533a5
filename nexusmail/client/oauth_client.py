"""
OAuth token refresh against the provider token endpoints.

Uses aiohttp with form-encoded POSTs. The consent flow that produces the
first refresh token happens elsewhere; this module only exchanges a refresh
token for a fresh access token.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any

import aiohttp

from ..state.types import OAuthCredential
from .providers import TOKEN_URLS

if TYPE_CHECKING:
  from ..config import SyncSettings

log = logging.getLogger("nexusmail.client.oauth")

REQUEST_TIMEOUT = 30


class OAuthRefreshError(Exception):
  """The token endpoint refused or could not be reached."""

  def __init__(self, provider: str, message: str) -> None:
    self.provider = provider
    super().__init__(f"Token refresh for {provider} failed: {message}")


async def refresh_access_token(
  provider: str,
  refresh_token: str,
  settings: SyncSettings,
  session: aiohttp.ClientSession | None = None,
) -> dict[str, Any]:
  """Exchange a refresh token for new tokens.

  Returns the endpoint's JSON (`access_token`, optionally `refresh_token`
  and `expires_in`). Raises OAuthRefreshError on any failure.
  """
  token_url = TOKEN_URLS.get(provider)
  client = settings.oauth_clients.get(provider)
  if not token_url or client is None:
    raise OAuthRefreshError(provider, "provider has no OAuth configuration")

  form = {
    "grant_type": "refresh_token",
    "refresh_token": refresh_token,
    "client_id": client.client_id,
    "client_secret": client.client_secret,
  }

  owns_session = session is None
  if session is None:
    session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=REQUEST_TIMEOUT))
  try:
    async with session.post(token_url, data=form) as resp:
      try:
        payload = await resp.json(content_type=None)
      except ValueError as e:
        raise OAuthRefreshError(provider, f"HTTP {resp.status}, unreadable response") from e
  except (TimeoutError, aiohttp.ClientError) as e:
    raise OAuthRefreshError(provider, str(e)) from e
  finally:
    if owns_session:
      await session.close()

  if not isinstance(payload, dict):
    raise OAuthRefreshError(provider, "unexpected response shape")
  if payload.get("error"):
    raise OAuthRefreshError(provider, str(payload.get("error_description") or payload["error"]))
  if not payload.get("access_token"):
    raise OAuthRefreshError(provider, "response carried no access_token")

  log.info("Refreshed access token for provider %s", provider)
  return payload


def merge_tokens(old: OAuthCredential, new: dict[str, Any]) -> OAuthCredential:
  """Overlay freshly issued tokens on the stored credential.

  The previous refresh token is kept when the endpoint does not rotate it.
  """
  expiry = old.expiry
  expires_in = new.get("expires_in")
  if expires_in is not None:
    try:
      expiry = time.time() + float(expires_in)
    except (TypeError, ValueError):
      log.debug("Ignoring non-numeric expires_in %r", expires_in)

  return OAuthCredential(
    access_token=str(new.get("access_token") or old.access_token),
    refresh_token=new.get("refresh_token") or old.refresh_token,
    expiry=expiry,
    token_type=str(new.get("token_type") or old.token_type),
  )
