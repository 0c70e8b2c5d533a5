"""
HTML sanitizing, plain-text extraction and display body rendering.
"""

from __future__ import annotations

import html as html_lib
import logging
import re
import unicodedata

from ..state.types import RenderedBody
from .charsets import repair_mojibake
from .parsers import MAX_DEPTH, as_wire_text, parse_mime_message

log = logging.getLogger("nexusmail.client.sanitizer")

PREVIEW_LENGTH = 150

_BLOCK_TAGS = ("script", "style", "object", "embed", "iframe")
_STRICT_BLOCK_TAGS = ("form",)
_STRICT_VOID_TAGS = ("link", "meta", "base")

_DOUBLE_QUOTED_HANDLER_RE = re.compile(r"\son\w+\s*=\s*\"[^\"]*\"", re.IGNORECASE)
_ANY_HANDLER_RE = re.compile(r"\son\w+\s*=\s*(?:\"[^\"]*\"|'[^']*'|[^\s>]+)", re.IGNORECASE)
_JS_HREF_RE = re.compile(r"href\s*=\s*([\"'])\s*javascript:[^\"']*\1", re.IGNORECASE)
_UNSAFE_URL_RE = re.compile(
  r"(href|src)\s*=\s*(?:([\"'])\s*(?:javascript|vbscript|data):[^\"']*\2|(?:javascript|vbscript|data):[^\s>]*)",
  re.IGNORECASE,
)
_STYLE_ATTR_RE = re.compile(r"\sstyle\s*=\s*(?:\"[^\"]*\"|'[^']*'|[^\s>]+)", re.IGNORECASE)

_TAG_RE = re.compile(r"<[^>]+>")
_WS_RE = re.compile(r"\s+")
_CONTROL_RE = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
_QUESTION_RUN_RE = re.compile(r"\?{2,}")
_LINE_BREAK_RE = re.compile(r"\r?\n")


def _block_re(tag: str) -> re.Pattern[str]:
  return re.compile(rf"<{tag}\b[^>]*>.*?</{tag}\s*>", re.IGNORECASE | re.DOTALL)


def _lone_tag_re(tag: str) -> re.Pattern[str]:
  return re.compile(rf"</?{tag}\b[^>]*>", re.IGNORECASE)


_BLOCK_RES = [_block_re(t) for t in _BLOCK_TAGS]
_STRICT_BLOCK_RES = [_block_re(t) for t in _STRICT_BLOCK_TAGS]
_STRICT_LONE_RES = [_lone_tag_re(t) for t in _BLOCK_TAGS + _STRICT_BLOCK_TAGS + _STRICT_VOID_TAGS]


# ---------------------------------------------------------------------------
# HTML
# ---------------------------------------------------------------------------


def sanitize_html(html: str, strict: bool = False) -> str:
  """Remove active content from an HTML body.

  The default mode drops script-like blocks, double-quoted inline event
  handlers and `javascript:` links. Strict mode additionally removes forms,
  document-level tags, unpaired dangerous tags, every handler form, unsafe
  URL schemes in href/src, and inline styles.
  """
  if not html:
    return ""

  for pattern in _BLOCK_RES:
    html = pattern.sub("", html)

  if not strict:
    html = _DOUBLE_QUOTED_HANDLER_RE.sub("", html)
    return _JS_HREF_RE.sub('href="#"', html)

  for pattern in _STRICT_BLOCK_RES:
    html = pattern.sub("", html)
  for pattern in _STRICT_LONE_RES:
    html = pattern.sub("", html)
  html = _ANY_HANDLER_RE.sub("", html)
  html = _UNSAFE_URL_RE.sub(lambda m: f'{m.group(1)}="#"', html)
  return _STYLE_ATTR_RE.sub("", html)


def extract_plain_text(html: str) -> str:
  """Reduce HTML to a single line of visible text."""
  if not html:
    return ""
  text = _block_re("style").sub("", html)
  text = _block_re("script").sub("", text)
  text = _TAG_RE.sub(" ", text)
  text = re.sub(r"&nbsp;", " ", text, flags=re.IGNORECASE)
  return _WS_RE.sub(" ", text).strip()


# ---------------------------------------------------------------------------
# Text cleanup
# ---------------------------------------------------------------------------


def _is_unprintable(ch: str) -> bool:
  if ch == "\ufffd":
    return True
  return unicodedata.category(ch) in ("Co", "Cs", "Cn")


def clean_corrupted_text(text: str) -> str:
  """Strip decoding debris while keeping every printable script."""
  if not text:
    return ""
  text = _CONTROL_RE.sub("", text)

  out: list[str] = []
  in_run = False
  for ch in text:
    if _is_unprintable(ch):
      if not in_run:
        out.append(" ")
        in_run = True
      continue
    in_run = False
    out.append(ch)

  text = _QUESTION_RUN_RE.sub("?", "".join(out))
  return text.strip()


# ---------------------------------------------------------------------------
# Display body
# ---------------------------------------------------------------------------


def _text_to_html(text: str) -> str:
  return _LINE_BREAK_RE.sub("<br>", html_lib.escape(text, quote=False))


def render_body(
  raw: bytes | bytearray | str,
  strict: bool = False,
  max_depth: int = MAX_DEPTH,
  repair: bool = True,
) -> RenderedBody:
  """Decode a raw message into a display-ready HTML body and its attachments."""
  decoded = parse_mime_message(raw, max_depth=max_depth, repair=repair)

  if decoded.html:
    body = clean_corrupted_text(sanitize_html(decoded.html, strict=strict))
  else:
    text = decoded.text
    if not text and not decoded.attachments:
      log.debug("No text part decoded, rendering raw message")
      text = as_wire_text(raw) if raw else ""
      if repair:
        text = repair_mojibake(text)
    body = _text_to_html(clean_corrupted_text(text))

  return RenderedBody(body=body, attachments=decoded.attachments)


def make_preview(body: str, length: int = PREVIEW_LENGTH) -> str:
  """Short plain-text summary of a rendered body."""
  text = extract_plain_text(body)
  if len(text) <= length:
    return text
  return text[:length] + "..."
