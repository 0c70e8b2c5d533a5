"""
Content-Transfer-Encoding decoders.

Both decoders are total: malformed input degrades to a best-effort byte
string instead of raising.
"""

from __future__ import annotations

import base64
import binascii
import logging
import re

log = logging.getLogger("nexusmail.client.transfer")

_SOFT_BREAK_RE = re.compile(r"=\r?\n")
_WHITESPACE_RE = re.compile(r"\s+")
_HEX_DIGITS = frozenset("0123456789abcdefABCDEF")

# Byte written for code points that cannot be a single octet
PLACEHOLDER = 0x3F


def to_bytes(text: str | bytes) -> bytes:
  """Turn wire text back into bytes.

  Text produced by reading raw bytes as ISO-8859-1 maps back exactly; text
  holding wider code points is encoded as UTF-8.
  """
  if isinstance(text, bytes | bytearray):
    return bytes(text)
  try:
    return text.encode("latin-1")
  except UnicodeEncodeError:
    return text.encode("utf-8")


def decode_quoted_printable(text: str) -> bytes:
  """Decode a quoted-printable body into raw bytes."""
  text = _SOFT_BREAK_RE.sub("", text)
  out = bytearray()
  i = 0
  n = len(text)
  while i < n:
    ch = text[i]
    hex_pair = text[i + 1 : i + 3]
    if ch == "=" and len(hex_pair) == 2 and all(c in _HEX_DIGITS for c in hex_pair):
      out.append(int(hex_pair, 16))
      i += 3
      continue
    code = ord(ch)
    out.append(code if code < 256 else PLACEHOLDER)
    i += 1
  return bytes(out)


def decode_base64(text: str) -> bytes:
  """Decode a base64 body, returning the original bytes when it is malformed."""
  compact = _WHITESPACE_RE.sub("", text)
  if not compact:
    return b""
  compact += "=" * (-len(compact) % 4)
  try:
    return base64.b64decode(compact, validate=True)
  except (binascii.Error, ValueError):
    log.debug("Malformed base64 body (%d chars), keeping raw bytes", len(text))
    return to_bytes(text)


def decode_body(text: str, transfer_encoding: str) -> bytes:
  """Reverse the declared transfer encoding of a part body."""
  encoding = (transfer_encoding or "").strip().lower()
  if encoding == "base64":
    return decode_base64(text)
  if encoding == "quoted-printable":
    return decode_quoted_printable(text)
  return to_bytes(text)
