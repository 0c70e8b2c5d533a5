"""
Input validation helpers for message operation arguments.
"""

from __future__ import annotations

import re
from typing import Any

from .client.providers import CANONICAL_FOLDERS

_FOLDER_ID_RE = re.compile(r"^[A-Za-z0-9_\-]+$")


class ValidationError(Exception):
  pass


def validate_folder_id(value: Any, param_name: str = "folder_id") -> str:
  """Validate a canonical folder id (or a custom single-token folder id)."""
  if not isinstance(value, str) or not value.strip():
    raise ValidationError(f"Missing required parameter: {param_name}")
  value = value.strip()
  if value.lower() in CANONICAL_FOLDERS:
    return value.lower()
  if not _FOLDER_ID_RE.match(value):
    raise ValidationError(f"Invalid {param_name}: {value}")
  return value


def validate_uid(value: Any, param_name: str = "uid") -> int:
  """Validate a UID (positive integer)."""
  if isinstance(value, bool):
    raise ValidationError(f"Invalid {param_name}: must be a positive integer")
  if isinstance(value, int):
    uid = value
  elif isinstance(value, str) and value.strip().isdigit():
    uid = int(value.strip())
  else:
    raise ValidationError(f"Invalid {param_name}: must be a positive integer")
  if uid <= 0:
    raise ValidationError(f"Invalid {param_name}: must be a positive integer")
  return uid


def parse_message_id(message_id: Any, account_id: str) -> tuple[str, int]:
  """Split a composite message id into (folder_id, uid).

  The account id may itself contain dashes, so it is matched as a prefix.
  """
  if not isinstance(message_id, str) or not message_id:
    raise ValidationError("Missing required parameter: message_id")
  prefix = f"{account_id}-"
  if not account_id or not message_id.startswith(prefix):
    raise ValidationError(f"Message {message_id} does not belong to account {account_id}")
  folder_id, sep, uid = message_id[len(prefix) :].rpartition("-")
  if not sep or not folder_id:
    raise ValidationError(f"Malformed message id: {message_id}")
  return folder_id, validate_uid(uid, "message_id")
