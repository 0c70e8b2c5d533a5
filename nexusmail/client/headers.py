"""
RFC 2047 encoded-word and RFC 2231 filename decoding for header values.

Decoding a header never raises: a token that cannot be decoded is left in
the output exactly as it appeared on the wire.
"""

from __future__ import annotations

import base64
import binascii
import logging
import re
from urllib.parse import unquote_to_bytes

from .charsets import decode_with_charset

log = logging.getLogger("nexusmail.client.headers")

_ENCODED_WORD_RE = re.compile(r"=\?([^?]+)\?([BQ])\?([^?]*)\?=", re.IGNORECASE)
# Whitespace between two adjacent encoded-words is not part of the text
_ADJACENT_WS_RE = re.compile(r"(=\?[^?]+\?[BQ]\?[^?]*\?=)\s+(?==\?[^?]+\?[BQ]\?[^?]*\?=)", re.IGNORECASE)
_Q_HEX_RE = re.compile(r"=([0-9A-F]{2})", re.IGNORECASE)
_RFC2231_RE = re.compile(r"^([A-Za-z0-9_\-]+)'[A-Za-z0-9\-]*'(.*)$", re.DOTALL)


def _decode_b(payload: str, charset: str) -> str:
  compact = payload.strip()
  compact += "=" * (-len(compact) % 4)
  raw = base64.b64decode(compact, validate=True)
  return decode_with_charset(raw, charset)


def _decode_q(payload: str, charset: str) -> str:
  expanded = _Q_HEX_RE.sub(lambda m: chr(int(m.group(1), 16)), payload.replace("_", " "))
  label = charset.strip().lower()
  if label in ("us-ascii", "ascii"):
    label = "utf-8"
  # Q-encoding yields 8-bit octets; reinterpret them before charset decoding
  return decode_with_charset(expanded.encode("latin-1", errors="replace"), label)


def _replace_word(match: re.Match[str]) -> str:
  charset, encoding, payload = match.group(1), match.group(2).upper(), match.group(3)
  # RFC 2231 language suffix: =?utf-8*en?Q?...?=
  charset = charset.split("*", 1)[0]
  try:
    if encoding == "B":
      return _decode_b(payload, charset)
    return _decode_q(payload, charset)
  except (binascii.Error, ValueError):
    log.debug("Leaving undecodable encoded-word as-is: %.40s", match.group(0))
    return match.group(0)


def decode_header(value: str | bytes | None) -> str:
  """Decode all encoded-words in a header value."""
  if not value:
    return ""
  if isinstance(value, bytes | bytearray):
    value = decode_with_charset(bytes(value), "utf-8")
  value = _ADJACENT_WS_RE.sub(r"\1", value)
  return _ENCODED_WORD_RE.sub(_replace_word, value)


def decode_filename(value: str | None) -> str:
  """Decode an attachment filename (RFC 2231 extended value or encoded-words)."""
  if not value:
    return ""
  value = value.strip().strip("\"'")
  m = _RFC2231_RE.match(value)
  if m:
    charset, encoded = m.group(1), m.group(2)
    return decode_with_charset(unquote_to_bytes(encoded), charset)
  return decode_header(value)
