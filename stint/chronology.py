"""Forward-chronology rule for the ledger.

The ledger models a single timeline of attention: once a session has been
completed, no session on any timer may be started before its end.
"""

from __future__ import annotations

from stint.db import SessionStore
from stint.errors import ChronologyViolationError


def latest_completed_end(store: SessionStore) -> int | None:
    """Maximum end over all completed sessions, or None if none has completed."""
    return store.get_latest_end()


def check_start(candidate_start: int, latest_end: int | None) -> None:
    """Raise ChronologyViolationError if a start would precede the latest end.

    Passes vacuously when no session has completed yet. Starting exactly at
    the latest end is allowed.
    """
    if latest_end is not None and candidate_start < latest_end:
        raise ChronologyViolationError(candidate_start, latest_end)


def validate_start(store: SessionStore, candidate_start: int) -> None:
    """Check a candidate start against the store's latest completed end."""
    check_start(candidate_start, latest_completed_end(store))
