"""Domain exceptions for the session ledger.

Every rejected operation raises exactly one of these and leaves the store
untouched. Storage failures (``sqlite3.Error``) are not wrapped.
"""

from __future__ import annotations


class StintError(Exception):
    """Base exception for ledger errors."""

    pass


class DuplicateNameError(StintError):
    """A timer with this name already exists."""

    def __init__(self, name: str) -> None:
        super().__init__(f'Timer "{name}" already exists')
        self.name = name


class InvalidTimerError(StintError):
    """Timer name or color failed validation."""

    pass


class NotFoundError(StintError):
    """Referenced timer or session does not exist."""

    pass


class TimerNotFoundError(NotFoundError):
    def __init__(self, name: str) -> None:
        super().__init__(f'Timer "{name}" not found')
        self.name = name


class SessionNotFoundError(NotFoundError):
    def __init__(self, session_id: str) -> None:
        super().__init__(f'Session "{session_id}" not found')
        self.session_id = session_id


class AmbiguousIdError(StintError):
    """A session id prefix matches more than one session."""

    def __init__(self, prefix: str, matches: list[str]) -> None:
        super().__init__(
            f'Multiple sessions match "{prefix}" ({", ".join(matches)}). '
            "Please provide more characters."
        )
        self.prefix = prefix
        self.matches = matches


class AlreadyRunningError(StintError):
    def __init__(self, name: str) -> None:
        super().__init__(f'Timer "{name}" is already running')
        self.name = name


class NotRunningError(StintError):
    def __init__(self, name: str) -> None:
        super().__init__(f'Timer "{name}" is not running')
        self.name = name


class ChronologyViolationError(StintError):
    """Start time falls before the end of the latest completed session.

    ``latest_end`` carries the conflicting timestamp so callers can explain
    the rejection.
    """

    def __init__(self, start: int, latest_end: int) -> None:
        super().__init__(
            "Cannot start at specified time - latest session ended at "
            f"{latest_end}. Start time must be after the last stop event."
        )
        self.start = start
        self.latest_end = latest_end


class InvalidStopTimeError(StintError):
    """Explicit stop time is not after the session's start."""

    def __init__(self, stop: int, session_start: int) -> None:
        super().__init__(
            "Stop time is before or equal to start time "
            f"(session started at {session_start})."
        )
        self.stop = stop
        self.session_start = session_start


class InvalidRangeError(StintError):
    """Session end is not strictly after its start."""

    def __init__(self, start: int, end: int) -> None:
        super().__init__("Session end time must be after start time")
        self.start = start
        self.end = end
