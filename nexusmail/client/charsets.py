"""
Charset label normalization and forgiving byte-to-text decoding.

Senders routinely mislabel charsets (several Chinese providers in
particular), so decoding always produces text and degrades through a fixed
list of fallbacks instead of failing.
"""

from __future__ import annotations

import codecs
import logging
import re
from collections.abc import Mapping
from types import MappingProxyType

log = logging.getLogger("nexusmail.client.charsets")

DEFAULT_ALIASES: Mapping[str, str] = MappingProxyType(
  {
    # Simplified / traditional Chinese
    "gb2312": "gbk",
    "gb18030": "gbk",
    "gb_2312-80": "gbk",
    "gb-2312": "gbk",
    "big5": "big5",
    "big5-hkscs": "big5",
    # Western European
    "iso-8859-1": "latin_1",
    "iso-8859-15": "latin_1",
    "windows-1252": "latin_1",
    "cp1252": "latin_1",
    "us-ascii": "utf_8",
    "ascii": "utf_8",
    # Korean
    "ks_c_5601-1987": "cp949",
    "ks_c_5601": "cp949",
    "euc-kr": "cp949",
    # Japanese
    "shift_jis": "shift_jis",
    "shift-jis": "shift_jis",
    "sjis": "shift_jis",
    "windows-31j": "shift_jis",
    "euc-jp": "euc_jp",
    "ujis": "euc_jp",
    # Unicode
    "utf-8": "utf_8",
    "utf8": "utf_8",
    "utf-16": "utf_16_le",
    "utf-16le": "utf_16_le",
    "utf-16be": "utf_16_be",
  }
)

FALLBACK_CODECS: tuple[str, ...] = ("gbk", "big5", "utf_8")

# Control characters that betray a wrong guess (tab, LF and CR excluded)
_CORRUPTION_RE = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F]")
# A Latin-1 lead byte followed by a UTF-8 continuation byte
_MOJIBAKE_RE = re.compile(r"[\u00C0-\u00FF][\u0080-\u00BF]")


def _codec_exists(name: str) -> bool:
  try:
    codecs.lookup(name)
  except LookupError:
    return False
  return True


class CharsetNormalizer:
  """Maps declared charset labels to codecs and decodes bytes to text."""

  def __init__(
    self,
    aliases: Mapping[str, str] = DEFAULT_ALIASES,
    fallbacks: tuple[str, ...] = FALLBACK_CODECS,
  ) -> None:
    self._aliases = MappingProxyType(dict(aliases))
    self._fallbacks = tuple(fallbacks)

  @property
  def aliases(self) -> Mapping[str, str]:
    return self._aliases

  def normalize(self, label: str | None) -> str:
    """Return the canonical codec name for a declared label."""
    key = (label or "").strip().lower()
    return self._aliases.get(key, key)

  def decode(self, data: bytes | bytearray | str, label: str | None) -> str:
    """Decode bytes with the declared charset, falling back until text comes out."""
    if isinstance(data, str):
      return data.replace("\x00", "")
    if not data:
      return ""
    data = bytes(data)
    canonical = self.normalize(label) or "utf_8"

    try:
      return data.decode(canonical).replace("\x00", "")
    except (LookupError, UnicodeError):
      log.debug("Strict decode with %s (declared %r) failed", canonical, label)

    declared = (label or "").strip()
    for name in (canonical, declared):
      if not name or not _codec_exists(name):
        continue
      try:
        return data.decode(name, errors="replace").replace("\x00", "")
      except (LookupError, UnicodeError):
        # Not a text encoding (e.g. "hex"), or one that rejects any error handler
        continue

    for fallback in self._fallbacks:
      try:
        text = data.decode(fallback).replace("\x00", "")
      except UnicodeDecodeError:
        continue
      if text and not _CORRUPTION_RE.search(text):
        log.debug("Unknown charset %r decoded with fallback %s", label, fallback)
        return text

    log.debug("Forcing UTF-8 for unknown charset %r", label)
    return data.decode("utf-8", errors="replace").replace("\x00", "")


_default = CharsetNormalizer()


def normalize_charset(label: str | None) -> str:
  return _default.normalize(label)


def decode_with_charset(data: bytes | bytearray | str, label: str | None) -> str:
  return _default.decode(data, label)


def repair_mojibake(text: str) -> str:
  """Recover UTF-8 text that was read as Latin-1.

  Applied once per decoded part. Text is only replaced when it is entirely
  Latin-1 representable and its bytes form valid UTF-8.
  """
  if not text or not _MOJIBAKE_RE.search(text):
    return text
  try:
    return text.encode("latin-1").decode("utf-8")
  except (UnicodeEncodeError, UnicodeDecodeError):
    return text
