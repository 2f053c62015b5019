"""Local time tracker: timers, sessions, and range reports over SQLite."""
