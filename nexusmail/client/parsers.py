"""
MIME structure parsing.

Raw messages are walked by a depth-bounded recursive descent into an explicit
tree of Leaf / Multipart parts, then collected into a DecodedMessage. The
parser is forgiving: a malformed boundary or an over-deep nesting yields a
partial result, never an exception.
"""

from __future__ import annotations

import email.utils
import logging
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime

from ..state.types import DecodedMessage, InlineAttachment
from .charsets import decode_with_charset, repair_mojibake
from .headers import decode_filename, decode_header
from .transfer import decode_body

log = logging.getLogger("nexusmail.client.parsers")

MAX_DEPTH = 10
DEFAULT_CONTENT_TYPE = "text/plain"
DEFAULT_TRANSFER_ENCODING = "7bit"
DEFAULT_CHARSET = "utf-8"
UNNAMED_ATTACHMENT = "unnamed_attachment"

_BLANK_LINE_RE = re.compile(r"\r?\n\r?\n")
_LEADING_BREAK_RE = re.compile(r"^[ \t]*\r?\n")
_TRAILING_BREAK_RE = re.compile(r"\r?\n$")
_FOLD_RE = re.compile(r"\r?\n[ \t]+")
_PART_REMNANT_RE = re.compile(r"^------=_Part_[\w.]+[\r\n]*", re.MULTILINE)


# ---------------------------------------------------------------------------
# Part tree
# ---------------------------------------------------------------------------


@dataclass
class Leaf:
  content_type: str = DEFAULT_CONTENT_TYPE
  charset: str = DEFAULT_CHARSET
  transfer_encoding: str = DEFAULT_TRANSFER_ENCODING
  disposition: str = ""
  filename: str = ""
  content: bytes = b""


@dataclass
class Multipart:
  content_type: str
  boundary: str
  children: list[Leaf | Multipart] = field(default_factory=list)


Part = Leaf | Multipart


# ---------------------------------------------------------------------------
# Header helpers
# ---------------------------------------------------------------------------


def as_wire_text(raw: bytes | bytearray | str) -> str:
  """Map raw message bytes to text, one code point per byte."""
  if isinstance(raw, bytes | bytearray):
    return bytes(raw).decode("latin-1")
  return raw


def split_headers(raw: str) -> tuple[str, str]:
  """Split a message or part at the first blank line."""
  lead = _LEADING_BREAK_RE.match(raw)
  if lead:
    # No header block at all
    return "", raw[lead.end() :]
  m = _BLANK_LINE_RE.search(raw)
  if not m:
    return raw, ""
  return raw[: m.start()], raw[m.end() :]


def get_header(headers: str, name: str) -> str:
  """Return the unfolded raw value of the first header called `name`."""
  unfolded = _FOLD_RE.sub(" ", headers)
  m = re.search(rf"^{re.escape(name)}:[ \t]*(.*)$", unfolded, re.IGNORECASE | re.MULTILINE)
  if not m:
    return ""
  value = m.group(1).strip()
  # 8-bit header text that was really UTF-8
  return repair_mojibake(value)


def get_param(header_value: str, name: str) -> str:
  """Read a `name=value` parameter, tolerating quotes and RFC 2231 stars."""
  m = re.search(
    rf"(?:^|[;\s]){re.escape(name)}(?:\*0)?\*?=[ \t]*(?:\"([^\"\r\n]*)\"|'([^'\r\n]*)'|([^;\r\n]*))",
    header_value,
    re.IGNORECASE,
  )
  if not m:
    return ""
  value = next((g for g in m.groups() if g is not None), "")
  return value.strip()


def _media_type(header_value: str, default: str) -> str:
  value = header_value.split(";", 1)[0].strip().lower()
  return value or default


def parse_sender(value: str) -> tuple[str, str]:
  """Split a decoded From header into (display name, address)."""
  value = (value or "").strip()
  if not value:
    return "Unknown", "Unknown"
  m = re.search(r"<([^>]+)>", value)
  if m:
    addr = m.group(1).strip()
    name = value[: m.start()].strip().strip('"').strip()
    return (name or addr), addr
  name, addr = email.utils.parseaddr(value)
  if not addr:
    return value, value
  return (name.strip() or addr), addr


def parse_date(value: str) -> str:
  """Parse a Date header to an ISO-8601 string, defaulting to now."""
  if value:
    try:
      parsed = email.utils.parsedate_to_datetime(value)
      if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
      return parsed.isoformat()
    except (ValueError, TypeError, IndexError):
      log.debug("Unparseable Date header: %r", value)
  return datetime.now(UTC).isoformat()


# ---------------------------------------------------------------------------
# Structure
# ---------------------------------------------------------------------------


def _split_multipart(body: str, boundary: str) -> list[str]:
  segments = re.split("--" + re.escape(boundary), body)
  parts: list[str] = []
  # segments[0] is the preamble
  for segment in segments[1:]:
    if segment.startswith("--"):
      # Closing delimiter, followed only by the epilogue
      continue
    segment = _LEADING_BREAK_RE.sub("", segment, count=1)
    segment = _TRAILING_BREAK_RE.sub("", segment, count=1)
    parts.append(segment)
  return parts


def _parse_leaf(headers: str, body: str) -> Leaf:
  content_type_header = get_header(headers, "Content-Type")
  content_type = _media_type(content_type_header, DEFAULT_CONTENT_TYPE)

  transfer_encoding = get_header(headers, "Content-Transfer-Encoding").strip().lower()
  transfer_encoding = transfer_encoding or DEFAULT_TRANSFER_ENCODING

  charset = get_param(content_type_header, "charset").lower() or DEFAULT_CHARSET
  if charset.startswith("iso-2022"):
    charset = "latin1"

  disposition_header = get_header(headers, "Content-Disposition")
  disposition = _media_type(disposition_header, "")

  raw_filename = get_param(disposition_header, "filename") or get_param(
    content_type_header, "name"
  )

  return Leaf(
    content_type=content_type,
    charset=charset,
    transfer_encoding=transfer_encoding,
    disposition=disposition,
    filename=decode_filename(raw_filename),
    content=decode_body(body, transfer_encoding),
  )


def parse_structure(raw: str, depth: int = 0, max_depth: int = MAX_DEPTH) -> Part | None:
  """Parse raw message text into a part tree.

  Parts nested deeper than `max_depth` are dropped.
  """
  if depth > max_depth:
    log.warning("MIME nesting deeper than %d, omitting part", max_depth)
    return None
  if not raw:
    return None

  headers, body = split_headers(raw)
  content_type_header = get_header(headers, "Content-Type")
  content_type = _media_type(content_type_header, DEFAULT_CONTENT_TYPE)
  boundary = get_param(content_type_header, "boundary")

  if content_type.startswith("multipart/") and boundary:
    node = Multipart(content_type=content_type, boundary=boundary)
    for segment in _split_multipart(body, boundary):
      child = parse_structure(segment, depth + 1, max_depth)
      if child is not None:
        node.children.append(child)
    return node

  return _parse_leaf(headers, body)


def is_attachment(leaf: Leaf) -> bool:
  if leaf.disposition == "attachment":
    return True
  if leaf.disposition == "inline" and leaf.filename:
    return True
  if leaf.content_type == "application/octet-stream":
    return True
  return bool(leaf.filename) and not leaf.content_type.startswith("text/")


def _leaf_text(leaf: Leaf, repair: bool) -> str:
  text = decode_with_charset(leaf.content, leaf.charset)
  if repair:
    text = repair_mojibake(text)
  return _PART_REMNANT_RE.sub("", text).strip()


def collect(part: Part | None, repair: bool = True) -> DecodedMessage:
  """Aggregate a part tree into text, HTML and attachments."""
  result = DecodedMessage()
  if part is None:
    return result

  stack: list[Part] = [part]
  while stack:
    node = stack.pop()
    if isinstance(node, Multipart):
      stack.extend(reversed(node.children))
      continue

    if is_attachment(node):
      result.attachments.append(
        InlineAttachment(
          filename=node.filename or UNNAMED_ATTACHMENT,
          content_type=node.content_type,
          size=len(node.content),
          content=node.content,
        )
      )
      continue

    if "text/html" in node.content_type:
      if not result.html:
        result.html = _leaf_text(node, repair)
    elif "text/plain" in node.content_type and not result.text:
      result.text = _leaf_text(node, repair)

  return result


def parse_mime_message(
  raw: bytes | bytearray | str,
  max_depth: int = MAX_DEPTH,
  repair: bool = True,
) -> DecodedMessage:
  """Decode a raw message into its text, HTML and attachments."""
  if not raw:
    return DecodedMessage()
  tree = parse_structure(as_wire_text(raw), 0, max_depth)
  return collect(tree, repair)
