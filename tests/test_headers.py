"""Tests for encoded-word and filename decoding."""

from __future__ import annotations

import pytest

from nexusmail.client.headers import decode_filename, decode_header


class TestDecodeHeader:
  def test_base64_utf8(self) -> None:
    assert decode_header("=?UTF-8?B?5Lit5paH?=") == "中文"

  def test_base64_gb2312_alias(self) -> None:
    assert decode_header("=?gb2312?B?1tDOxA==?=") == "中文"

  def test_q_latin1(self) -> None:
    assert decode_header("=?ISO-8859-1?Q?Caf=E9?=") == "Café"

  def test_q_utf8_multibyte_and_underscore(self) -> None:
    assert decode_header("=?utf-8?q?caf=C3=A9_ok?=") == "café ok"

  def test_adjacent_words_join_without_whitespace(self) -> None:
    assert decode_header("=?utf-8?Q?Hello_?= \r\n =?utf-8?Q?World?=") == "Hello World"

  def test_mixed_plain_and_encoded(self) -> None:
    assert decode_header("Re: =?utf-8?B?5Lit5paH?= report") == "Re: 中文 report"

  def test_language_suffix_ignored(self) -> None:
    assert decode_header("=?utf-8*en?Q?hi?=") == "hi"

  def test_missing_base64_padding_repaired(self) -> None:
    assert decode_header("=?utf-8?B?aGk?=") == "hi"

  def test_malformed_token_left_literal(self) -> None:
    assert decode_header("=?utf-8?B?@@@?=") == "=?utf-8?B?@@@?="

  def test_empty_values(self) -> None:
    assert decode_header(None) == ""
    assert decode_header("") == ""

  def test_bytes_input(self) -> None:
    assert decode_header("Grüße".encode()) == "Grüße"

  @pytest.mark.parametrize(
    "value",
    [
      "=?",
      "=?utf-8?",
      "=?utf-8?X?abc?=",
      "=?bogus-charset?B?////?=",
      "=?utf-8?Q?=ZZ=?=",
      "=?utf-16?B?AA?=",
      "?=?=?=",
      "\x00\xff=?gbk?Q?=FF=FE?=",
    ],
  )
  def test_never_raises(self, value: str) -> None:
    assert isinstance(decode_header(value), str)


class TestDecodeFilename:
  def test_rfc2231_utf8(self) -> None:
    assert decode_filename("utf-8''%E4%B8%AD%E6%96%87.pdf") == "中文.pdf"

  def test_rfc2231_with_language(self) -> None:
    assert decode_filename("iso-8859-1'fr'caf%E9.txt") == "café.txt"

  def test_encoded_word_filename(self) -> None:
    assert decode_filename('"=?UTF-8?B?5Lit5paH?=.doc"') == "中文.doc"

  def test_plain(self) -> None:
    assert decode_filename("report.pdf") == "report.pdf"
    assert decode_filename(None) == ""
