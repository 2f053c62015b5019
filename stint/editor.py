"""Session editing for interactive pickers.

The editor only sequences ledger calls. It has no write path of its own, so
every edit is subject to the same checks as any other caller.
"""

from __future__ import annotations

from stint.db import Session, Timer
from stint.ledger import Ledger


class SessionEditor:
    def __init__(self, ledger: Ledger) -> None:
        self._ledger = ledger

    def choices(self, start: int, end: int) -> list[tuple[Timer, Session]]:
        """Sessions a picker can offer for the window, running ones included.

        Returns (timer, session) pairs, most recent start first.
        """
        result = self._ledger.sessions_in_range(start, end, include_active=True)
        return result.pairs()

    def create(self, timer_name: str, start: int, end: int) -> Session:
        return self._ledger.create_session(timer_name, start, end)

    def start(self, timer_name: str, start_at: int | None = None) -> tuple[Session, bool]:
        return self._ledger.start(timer_name, start_at)

    def delete(self, session_id: str) -> Session:
        return self._ledger.delete_session(session_id)
