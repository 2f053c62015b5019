"""Range queries and aggregation over sessions.

Read-only. Every duration is computed with :func:`session_duration`, which
treats a running session's end as "now", so open sessions are never counted
as zero-length.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, tzinfo

from stint.db import Session, SessionStore, Timer


def session_duration(session: Session, now: int) -> int:
    """Duration in seconds: ``(end or now) - start``."""
    return session.duration(now)


def total_duration(sessions: Iterable[Session], now: int) -> int:
    return sum(session_duration(s, now) for s in sessions)


@dataclass
class RangeResult:
    """Sessions in a window, grouped by owning timer.

    Attributes
    ----------
    start, end : int
        Query window in epoch seconds (both inclusive).
    timers : dict[str, Timer]
        Timer lookup by ID for every timer that has sessions in ``sessions``.
    sessions : dict[str, list[Session]]
        Sessions keyed by timer ID. Order within a group is not guaranteed.
    """

    start: int
    end: int
    timers: dict[str, Timer] = field(default_factory=dict)
    sessions: dict[str, list[Session]] = field(default_factory=dict)

    def is_empty(self) -> bool:
        return not self.sessions

    def all_sessions(self) -> list[Session]:
        return [s for group in self.sessions.values() for s in group]

    def pairs(self) -> list[tuple[Timer, Session]]:
        """Flat (timer, session) list, most recent start first."""
        flat = [
            (self.timers[timer_id], session)
            for timer_id, group in self.sessions.items()
            for session in group
        ]
        return sorted(flat, key=lambda pair: pair[1].start, reverse=True)


def sessions_in_range(
    store: SessionStore,
    start: int,
    end: int,
    *,
    include_active: bool,
) -> RangeResult:
    """Sessions starting in [start, end], grouped by timer.

    With ``include_active``, running sessions are included too, even when
    they started before the window. Without it only completed sessions are
    returned.
    """
    sessions = store.get_sessions_in_range(start, end, include_active=include_active)
    grouped: defaultdict[str, list[Session]] = defaultdict(list)
    for session in sessions:
        grouped[session.timer_id].append(session)

    timers = store.get_timers_by_ids(list(grouped))
    # Sessions always have a timer (cascade delete); skip anything orphaned
    return RangeResult(
        start=start,
        end=end,
        timers=timers,
        sessions={tid: group for tid, group in grouped.items() if tid in timers},
    )


def group_by_day(
    result: RangeResult, tz: tzinfo | None = None
) -> dict[date, dict[str, list[Session]]]:
    """Group sessions by calendar day of their start, then by timer ID.

    Days are in ``tz`` (local time if None). Days come out in ascending
    order; sessions within a group are sorted by start.
    """
    by_day: defaultdict[date, defaultdict[str, list[Session]]] = defaultdict(
        lambda: defaultdict(list)
    )
    for timer_id, sessions in result.sessions.items():
        for session in sessions:
            day = datetime.fromtimestamp(session.start, tz).date()
            by_day[day][timer_id].append(session)

    return {
        day: {
            timer_id: sorted(group, key=lambda s: s.start)
            for timer_id, group in by_day[day].items()
        }
        for day in sorted(by_day)
    }


@dataclass(frozen=True)
class TimerStats:
    timer: Timer
    session_count: int
    total_seconds: int

    @property
    def average_seconds(self) -> float:
        return self.total_seconds / self.session_count if self.session_count else 0.0


def timer_stats(result: RangeResult, now: int) -> list[TimerStats]:
    """Per-timer session count and total duration, largest total first."""
    stats = [
        TimerStats(
            timer=result.timers[timer_id],
            session_count=len(sessions),
            total_seconds=total_duration(sessions, now),
        )
        for timer_id, sessions in result.sessions.items()
    ]
    # Equal totals ordered by name
    stats.sort(key=lambda s: (-s.total_seconds, s.timer.name))
    return stats
