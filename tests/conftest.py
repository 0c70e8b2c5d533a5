"""Shared fixtures: a temporary SQLite store, settings and clean module state."""

from __future__ import annotations

import pytest
import pytest_asyncio

from nexusmail.api import message_api
from nexusmail.config import SyncSettings
from nexusmail.db import queries
from nexusmail.db.connection import open_db
from nexusmail.state import store
from nexusmail.state.types import EmailAccount, OAuthCredential, PasswordCredential


@pytest.fixture(autouse=True)
def _reset_module_state():
  store.reset_state()
  queries.set_secret_codec(None, None)
  message_api.set_client_factory(None)
  message_api.set_refresher(None)
  yield
  store.reset_state()
  queries.set_secret_codec(None, None)
  message_api.set_client_factory(None)
  message_api.set_refresher(None)


@pytest_asyncio.fixture
async def db(tmp_path):
  conn = await open_db(str(tmp_path / "data"))
  yield conn
  await conn.close()


@pytest.fixture
def settings(tmp_path) -> SyncSettings:
  return SyncSettings(data_dir=str(tmp_path / "data"), folders=["inbox"])


@pytest.fixture
def password_account() -> EmailAccount:
  return EmailAccount(
    id="acct1",
    email="alice@example.com",
    provider="imap",
    imap_host="imap.example.com",
    credential=PasswordCredential(password="secret"),
  )


@pytest.fixture
def oauth_account() -> EmailAccount:
  return EmailAccount(
    id="acct2",
    email="bob@gmail.com",
    provider="gmail",
    imap_host="imap.gmail.com",
    credential=OAuthCredential(access_token="stale-token", refresh_token="refresh-1"),
  )
