"""
In-process sync state.

Tracks which accounts have a sync run in flight (one run per account at a
time) and fans progress events out to subscribed listeners. State mutations
are synchronous; listeners are notified after each event.
"""

from __future__ import annotations

import contextlib
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
  from collections.abc import Callable

  from .types import SyncProgressEvent

log = logging.getLogger("nexusmail.state.store")

_in_flight: set[str] = set()
_last_events: dict[str, SyncProgressEvent] = {}
_listeners: list[Callable[[SyncProgressEvent], None]] = []


# ---------------------------------------------------------------------------
# Listeners
# ---------------------------------------------------------------------------


def subscribe(listener: Callable[[SyncProgressEvent], None]) -> Callable[[], None]:
  _listeners.append(listener)

  def unsubscribe() -> None:
    with contextlib.suppress(ValueError):
      _listeners.remove(listener)

  return unsubscribe


def publish(event: SyncProgressEvent) -> None:
  _last_events[event.account_id] = event
  for fn in list(_listeners):
    try:
      fn(event)
    except Exception:
      log.exception("Progress listener failed on %s event", event.type)


def get_last_event(account_id: str) -> SyncProgressEvent | None:
  return _last_events.get(account_id)


# ---------------------------------------------------------------------------
# Single-run-per-account guard
# ---------------------------------------------------------------------------


def begin_sync(account_id: str) -> bool:
  """Claim the account for a sync run. False if one is already running."""
  if account_id in _in_flight:
    return False
  _in_flight.add(account_id)
  return True


def end_sync(account_id: str) -> None:
  _in_flight.discard(account_id)


def is_syncing(account_id: str) -> bool:
  return account_id in _in_flight


# ---------------------------------------------------------------------------
# Reset
# ---------------------------------------------------------------------------


def reset_state() -> None:
  _in_flight.clear()
  _last_events.clear()
  _listeners.clear()
