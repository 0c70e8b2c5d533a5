"""
Shared aiosqlite connection management.
"""

from __future__ import annotations

import logging
import os

import aiosqlite

from .schema import PRAGMA_SQL, SCHEMA_SQL

log = logging.getLogger("nexusmail.db")

DB_FILENAME = "nexusmail.db"

_db: aiosqlite.Connection | None = None


async def get_db() -> aiosqlite.Connection:
  """Return the shared database connection."""
  if _db is None:
    raise RuntimeError("Database not initialized. Call init_db() first.")
  return _db


async def open_db(data_dir: str) -> aiosqlite.Connection:
  """Open a new connection with pragmas applied and the schema created."""
  os.makedirs(data_dir, exist_ok=True)
  db_path = os.path.join(data_dir, DB_FILENAME)
  log.info("Opening database at %s", db_path)

  db = await aiosqlite.connect(db_path)
  db.row_factory = aiosqlite.Row

  for line in PRAGMA_SQL.strip().splitlines():
    line = line.strip()
    if line and not line.startswith("--"):
      await db.execute(line)

  await db.executescript(SCHEMA_SQL)
  await db.commit()
  return db


async def init_db(data_dir: str) -> aiosqlite.Connection:
  """Initialize the shared database connection."""
  global _db
  _db = await open_db(data_dir)
  log.info("Database initialized")
  return _db


async def close_db() -> None:
  """Close the shared database connection."""
  global _db
  if _db is not None:
    await _db.close()
    _db = None
    log.info("Database closed")
