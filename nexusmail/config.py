"""
Sync configuration.

Settings are read from `config.json` (by default inside the data directory)
and then overridden from the environment:

  NEXUSMAIL_DATA_DIR                     data directory
  NEXUSMAIL_<PROVIDER>_CLIENT_ID         OAuth client id for a provider
  NEXUSMAIL_<PROVIDER>_CLIENT_SECRET     OAuth client secret for a provider
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator

from .client.providers import DEFAULT_SYNC_FOLDERS, TOKEN_URLS

log = logging.getLogger("nexusmail.config")

CONFIG_FILENAME = "config.json"
DEFAULT_DATA_DIR = "data"
ENV_PREFIX = "NEXUSMAIL_"


class OAuthClientConfig(BaseModel):
  client_id: str = ""
  client_secret: str = ""


class SyncSettings(BaseModel):
  data_dir: str = DEFAULT_DATA_DIR
  folders: list[str] = Field(default_factory=lambda: list(DEFAULT_SYNC_FOLDERS))
  batch_size: int = 50
  progress_interval: int = 10
  max_mime_depth: int = 10
  strict_sanitize: bool = False
  repair_mojibake: bool = True
  preview_length: int = 150
  connect_timeout: float = 30.0
  logout_timeout: float = 3.0
  oauth_clients: dict[str, OAuthClientConfig] = Field(default_factory=dict)

  @field_validator("batch_size", "progress_interval", "preview_length")
  @classmethod
  def _positive(cls, v: int) -> int:
    if v < 1:
      raise ValueError("must be at least 1")
    return v

  @field_validator("max_mime_depth")
  @classmethod
  def _non_negative(cls, v: int) -> int:
    if v < 0:
      raise ValueError("must not be negative")
    return v

  @property
  def attachments_dir(self) -> Path:
    return Path(self.data_dir) / "attachments"

  @property
  def db_path(self) -> Path:
    return Path(self.data_dir) / "nexusmail.db"


def _apply_env(config: dict[str, Any], environ: dict[str, str]) -> dict[str, Any]:
  data_dir = environ.get(f"{ENV_PREFIX}DATA_DIR", "").strip()
  if data_dir:
    config["data_dir"] = data_dir

  clients: dict[str, Any] = dict(config.get("oauth_clients") or {})
  for provider in TOKEN_URLS:
    key = provider.upper()
    client_id = environ.get(f"{ENV_PREFIX}{key}_CLIENT_ID", "").strip()
    client_secret = environ.get(f"{ENV_PREFIX}{key}_CLIENT_SECRET", "").strip()
    if not client_id and not client_secret:
      continue
    entry = dict(clients.get(provider) or {})
    if client_id:
      entry["client_id"] = client_id
    if client_secret:
      entry["client_secret"] = client_secret
    clients[provider] = entry
  config["oauth_clients"] = clients
  return config


def load_settings(
  path: str | Path | None = None,
  environ: dict[str, str] | None = None,
) -> SyncSettings:
  """Load settings from a JSON file, then apply environment overrides.

  With no path, `config.json` in the data directory is used when present.
  """
  env = dict(os.environ) if environ is None else environ

  if path is None:
    data_dir = env.get(f"{ENV_PREFIX}DATA_DIR", "").strip() or DEFAULT_DATA_DIR
    path = Path(data_dir) / CONFIG_FILENAME
  path = Path(path)

  config: dict[str, Any] = {}
  if path.exists():
    config = json.loads(path.read_text(encoding="utf-8"))
    log.debug("Loaded settings from %s", path)

  return SyncSettings.model_validate(_apply_env(config, env))
