"""
Command-line entry point.

Run with: python -m nexusmail sync <account-id>     (mirror one stored account)
          python -m nexusmail render <file.eml>     (decode a raw message)
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from .client.headers import decode_header
from .client.parsers import (
  Multipart,
  Part,
  as_wire_text,
  get_header,
  parse_date,
  parse_sender,
  parse_structure,
  split_headers,
)
from .client.sanitizer import make_preview, render_body
from .config import load_settings
from .db.connection import close_db, init_db
from .db.sync import SyncInProgressError, sync_account

if TYPE_CHECKING:
  from .state.types import SyncProgressEvent


def _print_event(event: SyncProgressEvent) -> None:
  parts = [event.type]
  if event.folder_id:
    parts.append(event.folder_id)
  if event.message:
    parts.append(event.message)
  if event.processed is not None and event.total_emails:
    parts.append(f"{event.processed}/{event.total_emails}")
  if event.error:
    parts.append(f"error: {event.error}")
  print(" | ".join(parts), flush=True)


async def _run_sync(args: argparse.Namespace) -> int:
  settings = load_settings(args.config)
  db = await init_db(settings.data_dir)
  try:
    result = await sync_account(db, args.account_id, settings, on_progress=_print_event)
  except SyncInProgressError as e:
    print(str(e), file=sys.stderr)
    return 2
  finally:
    await close_db()

  if not result.success:
    print(f"Sync failed: {result.error}", file=sys.stderr)
    return 1
  print(f"Synced {result.total_synced} new of {result.total_emails} emails")
  return 0


def _describe(part: Part | None, depth: int = 0) -> list[str]:
  if part is None:
    return []
  indent = "  " * depth
  if isinstance(part, Multipart):
    lines = [f"{indent}{part.content_type} (boundary={part.boundary})"]
    for child in part.children:
      lines.extend(_describe(child, depth + 1))
    return lines
  name = f" name={part.filename!r}" if part.filename else ""
  return [
    f"{indent}{part.content_type} charset={part.charset} "
    f"encoding={part.transfer_encoding} bytes={len(part.content)}{name}"
  ]


def _run_render(args: argparse.Namespace) -> int:
  settings = load_settings(args.config)
  raw = Path(args.path).read_bytes()
  wire = as_wire_text(raw)
  headers, _ = split_headers(wire)

  sender_name, sender_email = parse_sender(decode_header(get_header(headers, "From")))
  print(f"From: {sender_name} <{sender_email}>")
  print(f"Subject: {decode_header(get_header(headers, 'Subject'))}")
  print(f"Date: {parse_date(get_header(headers, 'Date'))}")
  print("Structure:")
  for line in _describe(parse_structure(wire, 0, settings.max_mime_depth), 1):
    print(line)

  rendered = render_body(
    raw,
    strict=args.strict or settings.strict_sanitize,
    max_depth=settings.max_mime_depth,
    repair=settings.repair_mojibake,
  )
  print(f"Attachments: {len(rendered.attachments)}")
  for att in rendered.attachments:
    print(f"  {att.filename} ({att.content_type}, {att.size} bytes)")
  print(f"Preview: {make_preview(rendered.body, settings.preview_length)}")
  if args.body:
    print()
    print(rendered.body)
  return 0


def build_parser() -> argparse.ArgumentParser:
  parser = argparse.ArgumentParser(prog="nexusmail")
  parser.add_argument("--config", help="path to config.json")
  parser.add_argument("--log-level", default="INFO", help="logging level (default INFO)")
  sub = parser.add_subparsers(dest="command", required=True)

  p_sync = sub.add_parser("sync", help="mirror all folders of a stored account")
  p_sync.add_argument("account_id")

  p_render = sub.add_parser("render", help="decode a raw .eml file")
  p_render.add_argument("path")
  p_render.add_argument("--strict", action="store_true", help="use strict HTML sanitizing")
  p_render.add_argument("--body", action="store_true", help="print the rendered body")
  return parser


def main(argv: list[str] | None = None) -> int:
  args = build_parser().parse_args(argv)
  logging.basicConfig(
    level=getattr(logging, str(args.log_level).upper(), logging.INFO),
    format="[%(name)s] %(levelname)s: %(message)s",
    stream=sys.stderr,
  )
  if args.command == "sync":
    return asyncio.run(_run_sync(args))
  return _run_render(args)


if __name__ == "__main__":
  sys.exit(main())
