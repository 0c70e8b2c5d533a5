"""Tests for charset normalization and forgiving decoding."""

from __future__ import annotations

import pytest

from nexusmail.client.charsets import (
  DEFAULT_ALIASES,
  CharsetNormalizer,
  decode_with_charset,
  normalize_charset,
  repair_mojibake,
)

SAMPLES = {
  "gbk": "中文邮件",
  "big5": "中文郵件",
  "latin_1": "Café crème",
  "utf_8": "héllo ✓ 中文",
  "cp949": "한국어 메일",
  "shift_jis": "日本語のメール",
  "euc_jp": "日本語のメール",
  "utf_16_le": "Hello ✓",
  "utf_16_be": "Hello ✓",
}


class TestNormalize:
  def test_aliases(self) -> None:
    assert normalize_charset("GB2312") == "gbk"
    assert normalize_charset(" ks_c_5601-1987 ") == "cp949"
    assert normalize_charset("windows-1252") == "latin_1"
    assert normalize_charset("us-ascii") == "utf_8"

  def test_unknown_label_passes_through_lowercased(self) -> None:
    assert normalize_charset(" X-Custom ") == "x-custom"

  def test_alias_table_is_read_only(self) -> None:
    with pytest.raises(TypeError):
      DEFAULT_ALIASES["koi8-r"] = "koi8_r"  # type: ignore[index]

  def test_injected_table(self) -> None:
    normalizer = CharsetNormalizer(aliases={"x-mac-cyrillic": "mac_cyrillic"})
    assert normalizer.normalize("x-mac-cyrillic") == "mac_cyrillic"
    assert normalizer.normalize("gb2312") == "gb2312"


class TestDecode:
  @pytest.mark.parametrize("label", sorted(DEFAULT_ALIASES))
  def test_round_trip_for_every_alias(self, label: str) -> None:
    """Text encoded with an alias's codec decodes back to the same text."""
    codec = DEFAULT_ALIASES[label]
    text = SAMPLES[codec] if codec != "utf_8" or label in ("utf-8", "utf8") else "plain ascii"
    assert decode_with_charset(text.encode(codec), label) == text

  def test_unknown_label_falls_back_to_gbk(self) -> None:
    assert decode_with_charset("中文".encode("gbk"), "x-unknown") == "中文"

  def test_unknown_label_and_undecodable_bytes_force_utf8(self) -> None:
    assert decode_with_charset(b"\xff\xff\xff", "x-unknown") == "\ufffd\ufffd\ufffd"

  def test_mislabeled_known_charset_replaces(self) -> None:
    assert decode_with_charset(b"ok\xff", "utf-8") == "ok\ufffd"

  def test_nul_characters_stripped(self) -> None:
    assert decode_with_charset(b"a\x00b", "utf-8") == "ab"

  def test_non_text_codec_label_never_raises(self) -> None:
    assert decode_with_charset(b"hello", "hex") == "hello"

  @pytest.mark.parametrize("label", ["undefined", "idna", "punycode"])
  def test_codec_raising_plain_unicode_error_falls_back(self, label: str) -> None:
    assert isinstance(decode_with_charset(b"caf\xe9 \xff", label), str)

  def test_undefined_codec_forces_utf8(self) -> None:
    assert decode_with_charset(b"caf\xe9 \xff", "undefined") == "caf\ufffd \ufffd"
    assert decode_with_charset(b"hello", "undefined") == "hello"

  def test_str_input_returned(self) -> None:
    assert decode_with_charset("already\x00 text", "gbk") == "already text"

  def test_empty(self) -> None:
    assert decode_with_charset(b"", "utf-8") == ""


class TestRepairMojibake:
  def test_repairs_utf8_read_as_latin1(self) -> None:
    assert repair_mojibake("CafÃ© crÃ¨me") == "Café crème"

  def test_leaves_clean_text_alone(self) -> None:
    assert repair_mojibake("Café") == "Café"
    assert repair_mojibake("中文") == "中文"

  def test_leaves_invalid_sequences_alone(self) -> None:
    # Looks like mojibake but is not valid UTF-8 once re-encoded
    assert repair_mojibake("Ã© Ã") == "Ã© Ã"
