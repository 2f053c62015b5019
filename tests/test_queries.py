"""Tests for range queries and aggregation."""

from datetime import date, timezone

from stint.db import SessionStore
from stint.ledger import Ledger
from stint.queries import (
    RangeResult,
    group_by_day,
    session_duration,
    sessions_in_range,
    timer_stats,
    total_duration,
)

T = 1_737_799_200  # 2025-01-25T10:00:00Z
HOUR = 3600
DAY = 86400


class FakeClock:
    def __init__(self, now: int = T) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now


def make_ledger(now: int = T) -> tuple[Ledger, FakeClock]:
    clock = FakeClock(now)
    return Ledger(SessionStore.open_in_memory(), clock=clock), clock


class TestDuration:
    def test_completed_session(self):
        ledger, _ = make_ledger()
        session = ledger.create_session("work", T - HOUR, T)
        assert session_duration(session, T + 10 * HOUR) == HOUR

    def test_running_session_grows_with_now(self):
        """A running session's duration is measured up to now."""
        ledger, _ = make_ledger()
        session, _ = ledger.start("work")
        assert session_duration(session, T) == 0
        assert session_duration(session, T + 60) == 60
        assert session_duration(session, T + 120) > session_duration(session, T + 60)

    def test_total_duration(self):
        ledger, _ = make_ledger()
        a = ledger.create_session("work", T - 2 * HOUR, T - HOUR)
        b = ledger.create_session("music", T - HOUR, T - HOUR + 1800)
        assert total_duration([a, b], T) == HOUR + 1800
        assert total_duration([], T) == 0


class TestSessionsInRange:
    def test_empty_range(self):
        ledger, _ = make_ledger()
        result = sessions_in_range(ledger.store, T, T + HOUR, include_active=False)
        assert result.is_empty()
        assert result.timers == {}

    def test_grouped_by_timer(self):
        ledger, _ = make_ledger()
        ledger.create_session("work", T, T + HOUR)
        ledger.create_session("work", T + 2 * HOUR, T + 3 * HOUR)
        ledger.create_session("music", T + HOUR, T + 2 * HOUR)

        result = ledger.sessions_in_range(T, T + DAY)

        work = ledger.get_timer("work")
        music = ledger.get_timer("music")
        assert set(result.sessions) == {work.id, music.id}
        assert len(result.sessions[work.id]) == 2
        assert result.timers[music.id].name == "music"
        assert len(result.all_sessions()) == 3

    def test_running_session_excluded_without_include_active(self):
        ledger, _ = make_ledger()
        ledger.start("work")
        assert ledger.sessions_in_range(T - HOUR, T + HOUR).is_empty()

    def test_straddling_running_session(self):
        """A session started yesterday and still running shows up in today's window."""
        ledger, clock = make_ledger(T - DAY)
        ledger.start("work")
        clock.now = T

        result = ledger.sessions_in_range(T - HOUR, T + HOUR, include_active=True)

        (session,) = result.all_sessions()
        assert session.start == T - DAY
        assert session_duration(session, clock.now) == DAY

    def test_pairs_most_recent_first(self):
        ledger, _ = make_ledger()
        ledger.create_session("work", T, T + HOUR)
        ledger.create_session("music", T + 2 * HOUR, T + 3 * HOUR)
        ledger.create_session("work", T + 4 * HOUR, T + 5 * HOUR)

        result = ledger.sessions_in_range(T, T + DAY)
        assert [s.start for _, s in result.pairs()] == [
            T + 4 * HOUR,
            T + 2 * HOUR,
            T,
        ]
        assert [t.name for t, _ in result.pairs()] == ["work", "music", "work"]


class TestGroupByDay:
    def test_days_ascending_and_sessions_sorted(self):
        ledger, _ = make_ledger()
        ledger.create_session("work", T + DAY + HOUR, T + DAY + 2 * HOUR)
        ledger.create_session("work", T + 2 * HOUR, T + 3 * HOUR)
        ledger.create_session("work", T, T + HOUR)

        result = ledger.sessions_in_range(T - DAY, T + 2 * DAY)
        by_day = group_by_day(result, timezone.utc)

        assert list(by_day) == [date(2025, 1, 25), date(2025, 1, 26)]
        work_id = ledger.get_timer("work").id
        assert [s.start for s in by_day[date(2025, 1, 25)][work_id]] == [T, T + 2 * HOUR]
        assert len(by_day[date(2025, 1, 26)][work_id]) == 1

    def test_empty_result(self):
        assert group_by_day(RangeResult(start=T, end=T + DAY)) == {}


class TestTimerStats:
    def test_sorted_by_total_descending(self):
        ledger, _ = make_ledger(T + DAY)
        ledger.create_session("work", T, T + 2 * HOUR)
        ledger.create_session("work", T + 3 * HOUR, T + 4 * HOUR)
        ledger.create_session("music", T + 5 * HOUR, T + 6 * HOUR)

        stats = timer_stats(ledger.sessions_in_range(T, T + DAY), ledger.now())

        assert [s.timer.name for s in stats] == ["work", "music"]
        assert stats[0].session_count == 2
        assert stats[0].total_seconds == 3 * HOUR
        assert stats[0].average_seconds == 1.5 * HOUR
        assert stats[1].total_seconds == HOUR

    def test_ties_ordered_by_name(self):
        ledger, _ = make_ledger(T + DAY)
        ledger.create_session("work", T, T + HOUR)
        ledger.create_session("admin", T + 2 * HOUR, T + 3 * HOUR)

        stats = timer_stats(ledger.sessions_in_range(T, T + DAY), ledger.now())
        assert [s.timer.name for s in stats] == ["admin", "work"]

    def test_running_session_counted_up_to_now(self):
        ledger, clock = make_ledger()
        ledger.start("work")
        clock.now = T + 1800

        result = ledger.sessions_in_range(T - HOUR, T + HOUR, include_active=True)
        (stats,) = timer_stats(result, clock.now)
        assert stats.total_seconds == 1800
