"""
Provider presets: IMAP endpoints, canonical folder mapping and OAuth token
endpoints.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import TYPE_CHECKING

if TYPE_CHECKING:
  from collections.abc import Mapping

CANONICAL_FOLDERS: tuple[str, ...] = ("inbox", "sent", "drafts", "trash", "spam", "archive")
DEFAULT_SYNC_FOLDERS: tuple[str, ...] = ("inbox", "sent", "drafts", "trash", "spam")


@dataclass(frozen=True)
class ProviderPreset:
  imap_host: str
  imap_port: int = 993
  use_ssl: bool = True


PRESETS: Mapping[str, ProviderPreset] = MappingProxyType(
  {
    "gmail": ProviderPreset("imap.gmail.com"),
    "outlook": ProviderPreset("outlook.office365.com"),
    "yahoo": ProviderPreset("imap.mail.yahoo.com"),
    "icloud": ProviderPreset("imap.mail.me.com"),
    "qq": ProviderPreset("imap.qq.com"),
    "163": ProviderPreset("imap.163.com"),
  }
)

TOKEN_URLS: Mapping[str, str] = MappingProxyType(
  {
    "gmail": "https://oauth2.googleapis.com/token",
    "outlook": "https://login.microsoftonline.com/common/oauth2/v2.0/token",
    "yahoo": "https://api.login.yahoo.com/oauth2/get_token",
  }
)

FOLDER_MAPPING: Mapping[str, Mapping[str, str]] = MappingProxyType(
  {
    "gmail": MappingProxyType(
      {
        "inbox": "INBOX",
        "sent": "[Gmail]/Sent Mail",
        "drafts": "[Gmail]/Drafts",
        "trash": "[Gmail]/Trash",
        "spam": "[Gmail]/Spam",
        "archive": "[Gmail]/All Mail",
      }
    ),
    "outlook": MappingProxyType(
      {
        "inbox": "INBOX",
        "sent": "Sent",
        "drafts": "Drafts",
        "trash": "Deleted",
        "spam": "Junk",
        "archive": "Archive",
      }
    ),
    "yahoo": MappingProxyType(
      {
        "inbox": "INBOX",
        "sent": "Sent",
        "drafts": "Draft",
        "trash": "Trash",
        "spam": "Bulk Mail",
        "archive": "Archive",
      }
    ),
    "qq": MappingProxyType(
      {
        "inbox": "INBOX",
        "sent": "Sent Messages",
        "drafts": "Drafts",
        "trash": "Deleted Messages",
        "spam": "Junk",
        "archive": "Archive",
      }
    ),
    # Modified UTF-7 names as advertised by the server (已发送, 草稿箱, ...)
    "163": MappingProxyType(
      {
        "inbox": "INBOX",
        "sent": "&XfJT0ZAB-",
        "drafts": "&g0l6P3ux-",
        "trash": "&XfJSIJZk-",
        "spam": "&V4NXPpCuTvY-",
        "archive": "Archive",
      }
    ),
    "default": MappingProxyType(
      {
        "inbox": "INBOX",
        "sent": "Sent",
        "drafts": "Drafts",
        "trash": "Trash",
        "spam": "Spam",
        "archive": "Archive",
      }
    ),
  }
)


def get_imap_folder(provider: str, folder_id: str) -> str:
  """Map a canonical folder id to the provider's mailbox name."""
  mapping = FOLDER_MAPPING.get(provider) or FOLDER_MAPPING["default"]
  return mapping.get(folder_id) or folder_id.upper()


def detect_provider(email: str) -> str:
  """Guess the provider preset from an address's domain."""
  domain = email.rsplit("@", 1)[-1].lower() if email else ""
  if "gmail" in domain:
    return "gmail"
  if "outlook" in domain or "hotmail" in domain or "live" in domain:
    return "outlook"
  if "yahoo" in domain:
    return "yahoo"
  if "icloud" in domain or "me.com" in domain:
    return "icloud"
  if "qq.com" in domain:
    return "qq"
  if "163.com" in domain:
    return "163"
  return "imap"


def get_preset(provider: str) -> ProviderPreset | None:
  return PRESETS.get(provider)
