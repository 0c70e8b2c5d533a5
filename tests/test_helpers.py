"""Tests for error classification and argument validation."""

from __future__ import annotations

import ssl

import pytest

from nexusmail.client.imap_client import MailAuthError, MailboxError, MailNetworkError
from nexusmail.client.oauth_client import OAuthRefreshError
from nexusmail.helpers import (
  AUTH_FAILED_MESSAGE,
  CERTIFICATE_MESSAGE,
  TIMEOUT_MESSAGE,
  ErrorCategory,
  categorize_error,
  classify_sync_error,
  is_auth_failure,
  log_and_format_error,
)
from nexusmail.validation import ValidationError, parse_message_id, validate_folder_id, validate_uid


class TestClassifySyncError:
  @pytest.mark.parametrize(
    ("error", "expected"),
    [
      (MailAuthError("AUTHENTICATE failed: bad"), AUTH_FAILED_MESSAGE),
      (OAuthRefreshError("gmail", "invalid_grant"), AUTH_FAILED_MESSAGE),
      (RuntimeError("Invalid credentials (Failure)"), AUTH_FAILED_MESSAGE),
      (ssl.SSLCertVerificationError("certificate verify failed"), CERTIFICATE_MESSAGE),
      (TimeoutError(), TIMEOUT_MESSAGE),
      (MailNetworkError("Connection timeout to imap.x:993"), TIMEOUT_MESSAGE),
      (MailNetworkError("Connection reset by peer"), "Connection reset by peer"),
      (MailNetworkError("Connection timeout during authentication"), TIMEOUT_MESSAGE),
      (
        MailNetworkError("Connection lost during authentication: reset"),
        "Connection lost during authentication: reset",
      ),
      (RuntimeError(), "RuntimeError"),
    ],
  )
  def test_messages(self, error: Exception, expected: str) -> None:
    assert classify_sync_error(error) == expected

  def test_categories(self) -> None:
    assert categorize_error(MailboxError("Archive", "NO")) == ErrorCategory.FOLDER
    assert categorize_error(MailNetworkError("reset")) == ErrorCategory.NETWORK
    assert categorize_error(ValueError("x")) == ErrorCategory.SYNC
    assert is_auth_failure(MailAuthError("x"))
    assert not is_auth_failure(MailNetworkError("reset"))
    assert not is_auth_failure(MailNetworkError("Connection timeout during authentication"))


class TestLogAndFormatError:
  def test_validation_error_is_shown(self) -> None:
    result = log_and_format_error("mark_read", ValidationError("Email not found: x"), ErrorCategory.FLAG)
    assert not result.success
    assert result.is_error
    assert result.message == "Email not found: x"

  def test_other_errors_get_a_code(self) -> None:
    result = log_and_format_error("move_message", RuntimeError("db locked"), ErrorCategory.MSG)
    code = sum(ord(c) for c in "move_message") % 1000
    assert result.message == f"An error occurred (code: MSG-ERR-{code:03d}). Check logs for details."


class TestValidation:
  def test_folder_ids(self) -> None:
    assert validate_folder_id(" Inbox ") == "inbox"
    assert validate_folder_id("receipts_2024") == "receipts_2024"
    with pytest.raises(ValidationError):
      validate_folder_id("a/b")
    with pytest.raises(ValidationError):
      validate_folder_id("")

  def test_uids(self) -> None:
    assert validate_uid("42") == 42
    for bad in (0, -1, True, "x", None):
      with pytest.raises(ValidationError):
        validate_uid(bad)

  def test_parse_message_id_with_dashed_account(self) -> None:
    assert parse_message_id("acct-1-inbox-7", "acct-1") == ("inbox", 7)
    with pytest.raises(ValidationError):
      parse_message_id("other-inbox-7", "acct-1")
    with pytest.raises(ValidationError):
      parse_message_id("acct-1-7", "acct-1")
