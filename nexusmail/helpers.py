"""
Shared error classification and formatting helpers.
"""

from __future__ import annotations

import logging
import ssl
from dataclasses import dataclass
from enum import Enum

from .client.imap_client import MailAuthError, MailboxError, MailNetworkError
from .client.oauth_client import OAuthRefreshError

log = logging.getLogger("nexusmail.helpers")

AUTH_FAILED_MESSAGE = "Authentication failed - check your password or use app-specific password"
TIMEOUT_MESSAGE = "Connection timeout - check your network connection"
CERTIFICATE_MESSAGE = "SSL/TLS certificate verification failed"

_AUTH_MARKERS = ("AUTHENTICATE", "authentication", "credentials")


# ---------------------------------------------------------------------------
# Operation result
# ---------------------------------------------------------------------------


@dataclass
class OperationResult:
  success: bool
  message: str = ""
  warning: str | None = None
  new_id: str | None = None
  is_error: bool = False


# ---------------------------------------------------------------------------
# Error handling
# ---------------------------------------------------------------------------


class ErrorCategory(str, Enum):
  AUTH = "AUTH"
  NETWORK = "NETWORK"
  CERTIFICATE = "CERTIFICATE"
  FOLDER = "FOLDER"
  MSG = "MSG"
  FLAG = "FLAG"
  SYNC = "SYNC"


def is_auth_failure(error: BaseException) -> bool:
  """True when an error means the server rejected the credential."""
  if isinstance(error, MailAuthError):
    return True
  # Transport failures stay network errors whatever their message says
  if isinstance(error, MailNetworkError | TimeoutError):
    return False
  text = str(error)
  return any(marker in text for marker in _AUTH_MARKERS)


def categorize_error(error: BaseException) -> ErrorCategory:
  if is_auth_failure(error) or isinstance(error, OAuthRefreshError):
    return ErrorCategory.AUTH
  text = str(error)
  if isinstance(error, ssl.SSLCertVerificationError) or "certificate" in text.lower():
    return ErrorCategory.CERTIFICATE
  if isinstance(error, TimeoutError) or "timeout" in text.lower() or "ETIMEDOUT" in text:
    return ErrorCategory.NETWORK
  if isinstance(error, MailboxError):
    return ErrorCategory.FOLDER
  if isinstance(error, MailNetworkError):
    return ErrorCategory.NETWORK
  return ErrorCategory.SYNC


def classify_sync_error(error: BaseException) -> str:
  """User-facing message for a failed sync run."""
  category = categorize_error(error)
  if category == ErrorCategory.AUTH:
    return AUTH_FAILED_MESSAGE
  if category == ErrorCategory.CERTIFICATE:
    return CERTIFICATE_MESSAGE
  if category == ErrorCategory.NETWORK and (
    isinstance(error, TimeoutError) or "timeout" in str(error).lower()
  ):
    return TIMEOUT_MESSAGE
  return str(error) or error.__class__.__name__


def log_and_format_error(
  function_name: str,
  error: Exception,
  category: str | ErrorCategory | None = None,
) -> OperationResult:
  prefix = category.value if isinstance(category, ErrorCategory) else (category or "GEN")
  hash_val = sum(ord(c) for c in function_name) % 1000
  error_code = f"{prefix}-ERR-{hash_val:03d}"

  log.error("Error in %s - Code: %s - %s", function_name, error_code, error)

  from .validation import ValidationError

  if isinstance(error, ValidationError):
    user_message = str(error)
  else:
    user_message = f"An error occurred (code: {error_code}). Check logs for details."

  return OperationResult(success=False, message=user_message, is_error=True)
