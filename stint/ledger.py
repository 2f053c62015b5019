"""Timer registry and session lifecycle.

All writes go through :class:`Ledger`. Each write runs its checks and its
insert/update inside one store transaction, so a rejected operation never
leaves partial state behind (an auto-created timer is rolled back together
with the session that failed to start).
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable
from enum import Enum

from pydantic import ValidationError

from stint.chronology import latest_completed_end, validate_start
from stint.db import DEFAULT_COLOR, Session, SessionStore, Timer
from stint.errors import (
    AlreadyRunningError,
    AmbiguousIdError,
    DuplicateNameError,
    InvalidRangeError,
    InvalidStopTimeError,
    InvalidTimerError,
    NotRunningError,
    SessionNotFoundError,
    TimerNotFoundError,
)
from stint.queries import RangeResult, sessions_in_range

logger = logging.getLogger(__name__)

Clock = Callable[[], int]

# Shortest prefix accepted when resolving a session by partial ID
MIN_ID_PREFIX = 4


def system_clock() -> int:
    """Current wall-clock time as integer epoch seconds."""
    return int(time.time())


class TimerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


def _validation_message(error: ValidationError) -> str:
    first = error.errors()[0]
    field = ".".join(str(part) for part in first["loc"])
    return f"Invalid timer {field}: {first['msg']}"


class Ledger:
    """Owns timer and session state on top of a SessionStore.

    Args:
        store: Backing store.
        clock: Time source returning epoch seconds. Used whenever a start or
            stop time is not given explicitly.
    """

    def __init__(self, store: SessionStore, *, clock: Clock = system_clock) -> None:
        self._store = store
        self._clock = clock

    @property
    def store(self) -> SessionStore:
        return self._store

    def now(self) -> int:
        return self._clock()

    # Registry

    def _new_timer(self, name: str, color: str | None) -> Timer:
        try:
            return Timer(
                id=str(uuid.uuid4()),
                name=name,
                color=DEFAULT_COLOR if color is None else color,
                created_at=self.now(),
            )
        except ValidationError as e:
            raise InvalidTimerError(_validation_message(e)) from e

    def get_timer(self, name: str) -> Timer | None:
        """Exact, case-sensitive lookup by name."""
        return self._store.get_timer_by_name(name)

    def require_timer(self, name: str) -> Timer:
        timer = self._store.get_timer_by_name(name)
        if timer is None:
            raise TimerNotFoundError(name)
        return timer

    def list_timers(self) -> list[Timer]:
        """All timers ordered by name."""
        return self._store.get_timers()

    def create_timer(self, name: str, color: str | None = None) -> Timer:
        """Create a timer. Raises DuplicateNameError if the name is taken."""
        timer = self._new_timer(name, color)
        with self._store.transaction():
            if not self._store.insert_timer_if_absent(timer, commit=False):
                raise DuplicateNameError(name)
        logger.debug("Created timer %r (%s)", timer.name, timer.id)
        return timer

    def _get_or_create(self, name: str) -> tuple[Timer, bool]:
        """Get-or-create as a single insert-if-absent. Caller owns the transaction."""
        candidate = self._new_timer(name, None)
        created = self._store.insert_timer_if_absent(candidate, commit=False)
        if created:
            logger.debug("Auto-created timer %r (%s)", name, candidate.id)
            return candidate, True
        return self.require_timer(name), False

    def get_or_create_timer(self, name: str) -> tuple[Timer, bool]:
        """Return the named timer, creating it with the default color if absent.

        Returns:
            Tuple of (timer, created).
        """
        with self._store.transaction():
            return self._get_or_create(name)

    def rename_timer(self, name: str, new_name: str) -> Timer:
        """Rename a timer, keeping names unique."""
        timer = self.require_timer(name)
        try:
            renamed = Timer.model_validate({**timer.model_dump(), "name": new_name})
        except ValidationError as e:
            raise InvalidTimerError(_validation_message(e)) from e
        with self._store.transaction():
            existing = self._store.get_timer_by_name(new_name)
            if existing is not None and existing.id != timer.id:
                raise DuplicateNameError(new_name)
            self._store.update_timer(renamed, commit=False)
        logger.debug("Renamed timer %r to %r", name, new_name)
        return renamed

    def recolor_timer(self, name: str, color: str) -> Timer:
        timer = self.require_timer(name)
        try:
            recolored = Timer.model_validate({**timer.model_dump(), "color": color})
        except ValidationError as e:
            raise InvalidTimerError(_validation_message(e)) from e
        with self._store.transaction():
            self._store.update_timer(recolored, commit=False)
        logger.debug("Set color of %r to %s", name, color)
        return recolored

    def delete_timer(self, name: str) -> int:
        """Delete a timer and all of its sessions.

        Returns the number of sessions removed.
        """
        with self._store.transaction():
            timer = self._store.get_timer_by_name(name)
            if timer is None:
                raise TimerNotFoundError(name)
            removed = self._store.delete_timer(timer.id, commit=False)
        logger.debug("Deleted timer %r with %d session(s)", name, removed)
        return removed

    # Lifecycle

    def state(self, name: str) -> TimerState:
        timer = self.require_timer(name)
        if self._store.get_active_session(timer.id) is None:
            return TimerState.IDLE
        return TimerState.RUNNING

    def start(self, name: str, start_at: int | None = None) -> tuple[Session, bool]:
        """Start a session on the named timer, auto-creating the timer.

        An explicit ``start_at`` (retroactive start) must not precede the end
        of the latest completed session on any timer.

        Returns:
            Tuple of (session, timer_created).

        Raises:
            AlreadyRunningError: The timer already has a running session.
            ChronologyViolationError: ``start_at`` is before the latest end.
        """
        start = start_at if start_at is not None else self.now()
        with self._store.transaction():
            timer, created = self._get_or_create(name)
            if self._store.get_active_session(timer.id) is not None:
                logger.info("Rejected start of %r: already running", name)
                raise AlreadyRunningError(name)
            if start_at is not None:
                validate_start(self._store, start_at)
            session = Session(
                id=str(uuid.uuid4()),
                timer_id=timer.id,
                start=start,
                end=None,
                created_at=self.now(),
            )
            self._store.insert_session(session, commit=False)
        logger.debug("Started %r at %d (session %s)", name, start, session.id)
        return session, created

    def stop(self, name: str, stop_at: int | None = None) -> Session:
        """Stop the running session of the named timer.

        Raises:
            TimerNotFoundError: No timer with this name.
            NotRunningError: The timer has no running session.
            InvalidStopTimeError: The stop time (``stop_at`` or now) is not
                after the session start.
        """
        with self._store.transaction():
            timer = self._store.get_timer_by_name(name)
            if timer is None:
                raise TimerNotFoundError(name)
            active = self._store.get_active_session(timer.id)
            if active is None:
                raise NotRunningError(name)
            end = stop_at if stop_at is not None else self.now()
            if end <= active.start:
                logger.info("Rejected stop of %r at %d: not after start", name, end)
                raise InvalidStopTimeError(end, active.start)
            self._store.close_session(active.id, end, commit=False)
        logger.debug("Stopped %r at %d (session %s)", name, end, active.id)
        return active.model_copy(update={"end": end})

    def create_session(self, name: str, start: int, end: int) -> Session:
        """Insert a completed session directly (manual backfill).

        The timer is auto-created if absent. Forward chronology is not
        checked here: backfilled entries may land anywhere on the timeline.

        Raises:
            InvalidRangeError: ``end`` is not strictly after ``start``.
        """
        if end <= start:
            raise InvalidRangeError(start, end)
        with self._store.transaction():
            timer, _ = self._get_or_create(name)
            session = Session(
                id=str(uuid.uuid4()),
                timer_id=timer.id,
                start=start,
                end=end,
                created_at=self.now(),
            )
            self._store.insert_session(session, commit=False)
        logger.debug("Created session %s for %r: %d-%d", session.id, name, start, end)
        return session

    def delete_session(self, session_id: str) -> Session:
        """Delete a session, running or completed. Returns the removed session."""
        with self._store.transaction():
            session = self._store.get_session(session_id)
            if session is None:
                raise SessionNotFoundError(session_id)
            self._store.delete_session(session_id, commit=False)
        logger.debug("Deleted session %s", session_id)
        return session

    # Lookups

    def get_session(self, session_id: str) -> Session | None:
        return self._store.get_session(session_id)

    def find_session(self, id_or_prefix: str) -> Session:
        """Resolve a session by full ID or by a unique ID prefix.

        Raises:
            SessionNotFoundError: Nothing matches.
            AmbiguousIdError: The prefix matches several sessions.
        """
        exact = self._store.get_session(id_or_prefix)
        if exact is not None:
            return exact
        if len(id_or_prefix) >= MIN_ID_PREFIX:
            matches = self._store.get_sessions_by_prefix(id_or_prefix)
            if len(matches) == 1:
                return matches[0]
            if len(matches) > 1:
                raise AmbiguousIdError(id_or_prefix, [s.id[:7] for s in matches])
        raise SessionNotFoundError(id_or_prefix)

    def active_sessions(self) -> list[Session]:
        return self._store.get_active_sessions()

    def running_timers(self) -> list[tuple[Timer, Session]]:
        """Timers with a running session, ordered by timer name."""
        active = {s.timer_id: s for s in self._store.get_active_sessions()}
        return [(t, active[t.id]) for t in self._store.get_timers() if t.id in active]

    def sessions_for_timer(self, name: str) -> list[Session]:
        """All sessions of one timer, most recent first."""
        timer = self.require_timer(name)
        return self._store.get_sessions_for_timer(timer.id)

    # Reads

    def latest_completed_end(self) -> int | None:
        return latest_completed_end(self._store)

    def sessions_in_range(
        self, start: int, end: int, *, include_active: bool = False
    ) -> RangeResult:
        return sessions_in_range(self._store, start, end, include_active=include_active)
