"""CLI entry point for stint."""

from __future__ import annotations

import calendar
import json
import logging
import re
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import NamedTuple, NoReturn

import click

from stint.db import Session, SessionStore
from stint.editor import SessionEditor
from stint.errors import ChronologyViolationError, InvalidStopTimeError, StintError
from stint.ledger import Ledger
from stint.queries import RangeResult, group_by_day, timer_stats, total_duration

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

DEFAULT_DB_PATH = Path.home() / ".local" / "share" / "stint" / "stint.db"

RANGE_HELP = "today, yesterday, week, month, YYYY-MM-DD or YYYY-MM-DD..YYYY-MM-DD"


class DateRange(NamedTuple):
    start: int  # epoch seconds, inclusive
    end: int  # epoch seconds, inclusive
    label: str


def format_duration(seconds: int | float) -> str:
    """Format seconds as '2h 34m', '45m', '30s' or '0s'.

    Hours are never rolled up into days.
    """
    seconds = int(seconds)
    total_minutes = seconds // 60
    hours = total_minutes // 60
    minutes = total_minutes % 60

    parts = []
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    if not parts and seconds % 60:
        parts.append(f"{seconds % 60}s")
    return " ".join(parts) or "0s"


def format_time(timestamp: int) -> str:
    """Format epoch seconds as local 'HH:MM'."""
    return datetime.fromtimestamp(timestamp).strftime("%H:%M")


def format_date_label(date: datetime) -> str:
    return date.strftime("%d/%m/%Y")


def make_progress_bar(value: int, max_value: int, width: int = 16) -> str:
    """Create ASCII progress bar.

    Args:
        value: Current value.
        max_value: Maximum value (100%).
        width: Total width of bar (default: 16).

    Returns:
        Progress bar string like '████████░░░░░░░░'.
    """
    if max_value == 0 or value == 0:
        return "░" * width
    filled = max(1, min(width, round((value / max_value) * width)))
    return "█" * filled + "░" * (width - filled)


def parse_time_today(time_str: str, *, now: datetime | None = None) -> int:
    """Parse 'HH:MM' as a local time today.

    Args:
        time_str: Time like '09:30' or '9:30'.
        now: Optional local datetime for testing (defaults to now).

    Returns:
        Epoch seconds.

    Raises:
        ValueError: Malformed or out-of-range time.
    """
    match = re.match(r"^(\d{1,2}):(\d{2})$", time_str.strip())
    if not match:
        raise ValueError(f"Invalid time format: {time_str}. Use HH:MM (e.g., 09:30, 14:00)")
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        raise ValueError(f"Invalid time: {time_str}. Hours must be 0-23, minutes 0-59.")

    if now is None:
        now = datetime.now()
    target = now.replace(hour=hours, minute=minutes, second=0, microsecond=0)
    return int(target.timestamp())


def parse_datetime(value: str) -> int:
    """Parse 'YYYY-MM-DDTHH:MM' (or with a space) as local time.

    Returns:
        Epoch seconds.

    Raises:
        ValueError: Malformed or impossible datetime.
    """
    normalized = value.strip().replace(" ", "T", 1)
    if not re.match(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}$", normalized):
        raise ValueError(
            f'Invalid datetime format: "{value}". '
            "Use YYYY-MM-DDTHH:MM (e.g., 2025-12-28T09:00)"
        )
    try:
        dt = datetime.strptime(normalized, "%Y-%m-%dT%H:%M")
    except ValueError:
        raise ValueError(f'Invalid datetime: "{value}"') from None
    return int(dt.timestamp())


def _parse_date(value: str) -> datetime | None:
    try:
        return datetime.strptime(value.strip(), "%Y-%m-%d")
    except ValueError:
        return None


def _day_bounds(first: datetime, last: datetime) -> tuple[datetime, datetime]:
    start = first.replace(hour=0, minute=0, second=0, microsecond=0)
    end = last.replace(hour=23, minute=59, second=59, microsecond=0)
    return start, end


def parse_date_range(range_str: str | None = None, *, now: datetime | None = None) -> DateRange:
    """Parse a range keyword or date(s) into local-time day bounds.

    Args:
        range_str: One of today (default), yesterday, week (last 7 days
            including today), month (this calendar month), YYYY-MM-DD or
            YYYY-MM-DD..YYYY-MM-DD.
        now: Optional naive local datetime for testing (defaults to now).

    Returns:
        DateRange from 00:00:00 of the first day to 23:59:59 of the last.

    Raises:
        ValueError: Unrecognised range, or end date before start date.
    """
    if now is None:
        now = datetime.now()
    key = (range_str or "today").strip().lower()

    if key == "today":
        start, end = _day_bounds(now, now)
        return DateRange(int(start.timestamp()), int(end.timestamp()), f"Today ({format_date_label(start)})")

    if key == "yesterday":
        start, end = _day_bounds(now - timedelta(days=1), now - timedelta(days=1))
        return DateRange(int(start.timestamp()), int(end.timestamp()), f"Yesterday ({format_date_label(start)})")

    if key == "week":
        start, end = _day_bounds(now - timedelta(days=6), now)
        label = f"Last 7 days ({format_date_label(start)} to {format_date_label(end)})"
        return DateRange(int(start.timestamp()), int(end.timestamp()), label)

    if key == "month":
        last_day = calendar.monthrange(now.year, now.month)[1]
        start, end = _day_bounds(now.replace(day=1), now.replace(day=last_day))
        label = f"This month ({format_date_label(start)} to {format_date_label(end)})"
        return DateRange(int(start.timestamp()), int(end.timestamp()), label)

    if ".." in key:
        first_str, _, last_str = key.partition("..")
        first = _parse_date(first_str)
        last = _parse_date(last_str)
        if first is None or last is None:
            raise ValueError(f"Invalid date range: {range_str}")
        start, end = _day_bounds(first, last)
        if end < start:
            raise ValueError("End date must be after start date")
        label = f"{format_date_label(start)} to {format_date_label(end)}"
        return DateRange(int(start.timestamp()), int(end.timestamp()), label)

    date = _parse_date(key)
    if date is None:
        raise ValueError(f"Invalid date range: {range_str}. Use: {RANGE_HELP}")
    start, end = _day_bounds(date, date)
    return DateRange(int(start.timestamp()), int(end.timestamp()), format_date_label(start))


def describe_error(error: StintError) -> str:
    """User-facing message for a ledger error, with times shown as HH:MM."""
    if isinstance(error, ChronologyViolationError):
        return (
            "Cannot start at specified time - latest session ended at "
            f"{format_time(error.latest_end)}. Start time must be after the last stop event."
        )
    if isinstance(error, InvalidStopTimeError):
        return (
            "Stop time is before or equal to start time. "
            f"Session started at {format_time(error.session_start)}."
        )
    return str(error)


def _fail(message: str) -> NoReturn:
    click.echo(f"✗ {message}", err=True)
    sys.exit(1)


def _require_db(db: Path) -> None:
    if not db.exists():
        click.echo("No database found", err=True)
        sys.exit(1)


def _open_store(db: Path) -> SessionStore:
    # Ensure database directory exists
    db.parent.mkdir(parents=True, exist_ok=True)
    return SessionStore.open(db)


def _session_line(session: Session, now: int) -> str:
    end_display = format_time(session.end) if session.end is not None else "→ now"
    return f"{format_time(session.start)} - {end_display}  ({format_duration(session.duration(now))})"


db_option = click.option(
    "--db",
    type=click.Path(path_type=Path),
    default=DEFAULT_DB_PATH,
    envvar="STINT_DB",
    help="Path to SQLite database (env: STINT_DB)",
)


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
def main(verbose: bool) -> None:
    """Local CLI time tracker."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format=LOG_FORMAT,
        force=True,
    )


@main.command("start")
@click.argument("timer", required=False)
@click.option("--at", "at", help="Start at this time today (HH:MM) instead of now")
@db_option
def start_command(timer: str | None, at: str | None, db: Path) -> None:
    """Start a timer.

    The timer is created if it doesn't exist yet. Without TIMER, starts the
    only existing timer or asks which one to start.

    Example:
        stint start work
        stint start work --at 09:15
    """
    try:
        start_at = parse_time_today(at) if at else None
    except ValueError as e:
        _fail(str(e))

    with _open_store(db) as store:
        ledger = Ledger(store)
        suffix = ""
        if timer is None:
            timer, suffix = _pick_timer_to_start(ledger)

        try:
            session, created = ledger.start(timer, start_at)
        except StintError as e:
            _fail(describe_error(e))

    prefix = "Created and started" if created else "Started"
    click.echo(f'✓ {prefix} "{timer}" timer at {format_time(session.start)}{suffix}')


def _pick_timer_to_start(ledger: Ledger) -> tuple[str, str]:
    timers = ledger.list_timers()
    if len(timers) == 1:
        return timers[0].name, "  (only timer available)"

    running = {t.id for t, _ in ledger.running_timers()}
    if timers:
        # Running timers are listed but cannot be picked
        idle = []
        click.echo("Timers:")
        for candidate in timers:
            if candidate.id in running:
                click.echo(f"  -) ● {candidate.name}  (already running)")
            else:
                idle.append(candidate)
                click.echo(f"  {len(idle)}) ○ {candidate.name}")
        click.echo("  0) + Create new timer")
        choice = click.prompt(
            "Select a timer to start", type=click.IntRange(0, len(idle))
        )
        if choice > 0:
            return idle[choice - 1].name, ""

    name = click.prompt("Timer name").strip()
    if not name:
        _fail("Timer name cannot be empty")
    return name, ""


@main.command("stop")
@click.argument("timer", required=False)
@click.option("--at", "at", help="Stop at this time today (HH:MM) instead of now")
@db_option
def stop_command(timer: str | None, at: str | None, db: Path) -> None:
    """Stop a running timer.

    Without TIMER, stops the only running timer or asks which one to stop.
    """
    try:
        stop_at = parse_time_today(at) if at else None
    except ValueError as e:
        _fail(str(e))

    with _open_store(db) as store:
        ledger = Ledger(store)
        suffix = ""
        if timer is None:
            running = ledger.running_timers()
            if not running:
                click.echo("No timers currently running")
                return
            if len(running) == 1:
                timer, suffix = running[0][0].name, "  (only timer running)"
            else:
                now = ledger.now()
                click.echo("Running timers:")
                for index, (candidate, active) in enumerate(running, 1):
                    click.echo(
                        f"  {index}) ● {candidate.name} — {format_duration(active.duration(now))}"
                    )
                choice = click.prompt(
                    "Select a timer to stop", type=click.IntRange(1, len(running))
                )
                timer = running[choice - 1][0].name

        try:
            session = ledger.stop(timer, stop_at)
        except StintError as e:
            _fail(describe_error(e))

    seconds = session.duration(ledger.now())
    click.echo(
        f'✓ Stopped "{timer}" timer at {format_time(session.start + seconds)} '
        f"({format_duration(seconds)}){suffix}"
    )


@main.command("create")
@click.argument("timer")
@click.argument("start")
@click.argument("end")
@db_option
def create_command(timer: str, start: str, end: str, db: Path) -> None:
    """Create a completed session from START to END.

    START and END are local datetimes in YYYY-MM-DDTHH:MM format. The timer
    is created if it doesn't exist yet.

    Example:
        stint create work 2025-12-28T09:00 2025-12-28T17:00
    """
    try:
        start_ts = parse_datetime(start)
        end_ts = parse_datetime(end)
    except ValueError as e:
        _fail(str(e))

    with _open_store(db) as store:
        editor = SessionEditor(Ledger(store))
        try:
            session = editor.create(timer, start_ts, end_ts)
        except StintError as e:
            _fail(describe_error(e))

    click.echo(
        f'✓ Created session for "{timer}": {start} - {end} '
        f"({format_duration(session.duration(end_ts))})"
    )


@main.command("delete")
@click.argument("session_id", required=False)
@db_option
def delete_command(session_id: str | None, db: Path) -> None:
    """Delete a session.

    SESSION_ID is the full ID or a prefix of at least 4 characters, as
    shown by `stint log`. Without it, lists this month's sessions and asks
    which one to delete.
    """
    _require_db(db)

    with SessionStore.open(db) as store:
        ledger = Ledger(store)
        editor = SessionEditor(ledger)
        now = ledger.now()

        if session_id is not None:
            try:
                session = ledger.find_session(session_id)
            except StintError as e:
                _fail(describe_error(e))
            timer = store.get_timer_by_id(session.timer_id)
            timer_name = timer.name if timer else "unknown"
        else:
            month = parse_date_range("month")
            choices = editor.choices(month.start, month.end)
            if not choices:
                click.echo("No sessions found in the last month")
                return
            for index, (candidate_timer, candidate) in enumerate(choices, 1):
                day = datetime.fromtimestamp(candidate.start).strftime("%d/%m")
                click.echo(
                    f"  {index}) [{candidate.id[:6]}] {candidate_timer.name}  "
                    f"{day} {_session_line(candidate, now)}"
                )
            choice = click.prompt(
                "Select a session to delete (0 to cancel)",
                type=click.IntRange(0, len(choices)),
            )
            if choice == 0:
                click.echo("Cancelled")
                return
            timer_name = choices[choice - 1][0].name
            session = choices[choice - 1][1]

        try:
            editor.delete(session.id)
        except StintError as e:
            _fail(describe_error(e))

    click.echo(f'✓ Deleted session for "{timer_name}" ({_session_line(session, now)})')


@main.command("status")
@db_option
def status_command(db: Path) -> None:
    """Show status of all timers."""
    _require_db(db)

    with SessionStore.open(db) as store:
        ledger = Ledger(store)
        timers = ledger.list_timers()
        running = {t.id: s for t, s in ledger.running_timers()}
        now = ledger.now()

    if not timers:
        click.echo('No timers yet. Use "stint start" to create one.')
        return

    for timer in timers:
        active = running.get(timer.id)
        if active is not None:
            click.echo(f"● {timer.name} — Running for {format_duration(active.duration(now))}")
        else:
            click.echo(f"○ {timer.name} — Stopped")


@main.command("timers")
@db_option
def timers_command(db: Path) -> None:
    """List timers."""
    _require_db(db)

    with SessionStore.open(db) as store:
        timers = Ledger(store).list_timers()

    if not timers:
        click.echo('No timers yet. Use "stint start" to create one.')
        return
    for timer in timers:
        click.echo(f"{timer.name}  {timer.color}")


@main.command("rename")
@click.argument("name")
@click.argument("new_name")
@db_option
def rename_command(name: str, new_name: str, db: Path) -> None:
    """Rename a timer."""
    _require_db(db)

    with SessionStore.open(db) as store:
        try:
            Ledger(store).rename_timer(name, new_name)
        except StintError as e:
            _fail(describe_error(e))

    click.echo(f'✓ Renamed "{name}" to "{new_name}"')


@main.command("color")
@click.argument("name")
@click.argument("color")
@db_option
def color_command(name: str, color: str, db: Path) -> None:
    """Set a timer's color (#rrggbb)."""
    _require_db(db)

    with SessionStore.open(db) as store:
        try:
            Ledger(store).recolor_timer(name, color)
        except StintError as e:
            _fail(describe_error(e))

    click.echo(f'✓ Set color of "{name}" to {color}')


@main.command("remove")
@click.argument("name")
@click.option("--yes", "-y", is_flag=True, help="Don't ask for confirmation")
@db_option
def remove_command(name: str, yes: bool, db: Path) -> None:
    """Delete a timer and all of its sessions."""
    _require_db(db)

    with SessionStore.open(db) as store:
        ledger = Ledger(store)
        try:
            count = len(ledger.sessions_for_timer(name))
        except StintError as e:
            _fail(describe_error(e))
        if not yes:
            click.confirm(
                f'Delete timer "{name}" and its {count} session(s)?', abort=True
            )
        try:
            removed = ledger.delete_timer(name)
        except StintError as e:
            _fail(describe_error(e))

    click.echo(f'✓ Deleted timer "{name}" ({removed} session(s))')


@main.command("log")
@click.argument("range_str", metavar="[RANGE]", required=False)
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@db_option
def log_command(range_str: str | None, output_json: bool, db: Path) -> None:
    """Show sessions grouped by day, running ones included.

    RANGE is one of today (default), yesterday, week, month, YYYY-MM-DD or
    YYYY-MM-DD..YYYY-MM-DD.
    """
    _require_db(db)

    try:
        date_range = parse_date_range(range_str)
    except ValueError as e:
        _fail(str(e))

    with SessionStore.open(db) as store:
        ledger = Ledger(store)
        result = ledger.sessions_in_range(date_range.start, date_range.end, include_active=True)
        now = ledger.now()

    if output_json:
        _output_json_log(date_range, result, now)
        return

    if result.is_empty():
        click.echo(f"No sessions found for {date_range.label}")
        return

    _output_human_log(date_range, result, now)


def _output_json_log(date_range: DateRange, result: RangeResult, now: int) -> None:
    """Output JSON log."""
    days = []
    for day, by_timer in group_by_day(result).items():
        timers = sorted(by_timer.items(), key=lambda item: result.timers[item[0]].name)
        days.append({
            "date": day.isoformat(),
            "total_seconds": sum(total_duration(s, now) for _, s in timers),
            "timers": [
                {
                    "name": result.timers[timer_id].name,
                    "color": result.timers[timer_id].color,
                    "sessions": [
                        {
                            "id": s.id,
                            "start": s.start,
                            "end": s.end,
                            "duration_seconds": s.duration(now),
                        }
                        for s in sessions
                    ],
                }
                for timer_id, sessions in timers
            ],
        })

    output = {
        "generated_at": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        "range": {"start": date_range.start, "end": date_range.end, "label": date_range.label},
        "total_seconds": total_duration(result.all_sessions(), now),
        "days": days,
    }
    click.echo(json.dumps(output, indent=2))


def _output_human_log(date_range: DateRange, result: RangeResult, now: int) -> None:
    """Output human-readable log."""
    click.echo(f"Sessions for {date_range.label}:")
    click.echo()

    grand_total = 0
    for day, by_timer in group_by_day(result).items():
        click.echo(day.strftime("%A, %d %B %Y"))
        day_total = 0
        for timer_id in sorted(by_timer, key=lambda tid: result.timers[tid].name):
            click.echo(f"  {result.timers[timer_id].name}")
            for session in by_timer[timer_id]:
                day_total += session.duration(now)
                click.echo(f"    [{session.id[:6]}] {_session_line(session, now)}")
        click.echo(f"  Day total: {format_duration(day_total)}")
        click.echo()
        grand_total += day_total

    click.echo(f"Total: {format_duration(grand_total)}")


@main.command("report")
@click.argument("range_str", metavar="[RANGE]", required=False)
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@db_option
def report_command(range_str: str | None, output_json: bool, db: Path) -> None:
    """Show per-timer totals for completed sessions.

    RANGE is one of today (default), yesterday, week, month, YYYY-MM-DD or
    YYYY-MM-DD..YYYY-MM-DD.
    """
    _require_db(db)

    try:
        date_range = parse_date_range(range_str)
    except ValueError as e:
        _fail(str(e))

    with SessionStore.open(db) as store:
        ledger = Ledger(store)
        result = ledger.sessions_in_range(date_range.start, date_range.end, include_active=False)
        now = ledger.now()

    stats = timer_stats(result, now)
    total_sessions = sum(s.session_count for s in stats)
    total_seconds = sum(s.total_seconds for s in stats)

    if output_json:
        output = {
            "generated_at": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
            "range": {"start": date_range.start, "end": date_range.end, "label": date_range.label},
            "session_count": total_sessions,
            "total_seconds": total_seconds,
            "by_timer": [
                {
                    "name": s.timer.name,
                    "color": s.timer.color,
                    "session_count": s.session_count,
                    "total_seconds": s.total_seconds,
                    "average_seconds": round(s.average_seconds),
                }
                for s in stats
            ],
        }
        click.echo(json.dumps(output, indent=2))
        return

    if not stats:
        click.echo(f"No sessions found for {date_range.label}")
        return

    name_width = max(15, *(len(s.timer.name) for s in stats))
    header = f"{'Timer':<{name_width}}  {'Sessions':>10}  {'Total Time':>12}  {'Avg/Session':>12}"
    separator = "─" * len(header)

    click.echo(f"Time Report for {date_range.label}")
    click.echo()
    click.echo(header)
    click.echo(separator)

    max_total = stats[0].total_seconds
    for s in stats:
        bar = make_progress_bar(s.total_seconds, max_total)
        click.echo(
            f"{s.timer.name:<{name_width}}  {s.session_count:>10}  "
            f"{format_duration(s.total_seconds):>12}  {format_duration(s.average_seconds):>12}   {bar}"
        )

    click.echo(separator)
    average = total_seconds / total_sessions
    click.echo(
        f"{'TOTAL':<{name_width}}  {total_sessions:>10}  "
        f"{format_duration(total_seconds):>12}  {format_duration(average):>12}"
    )


if __name__ == "__main__":
    main()
