"""Helpers for browsing saved notes."""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from .models import Note

_SIZE_UNITS = ("KB", "MB", "GB")


def group_label(day: date, today: date) -> str:
    if day == today:
        return "Today"
    if day == today - timedelta(days=1):
        return "Yesterday"
    return f"{day:%B} {day.day}, {day.year}"


def group_notes_by_date(
    notes: Iterable[Note], today: Optional[date] = None
) -> List[Tuple[str, List[Note]]]:
    """Group notes into Today / Yesterday / calendar-day buckets, newest first."""

    today = today or datetime.now().astimezone().date()
    buckets: Dict[date, List[Note]] = {}
    for note in notes:
        day = note.created_at.astimezone().date() if note.created_at.tzinfo else note.created_at.date()
        buckets.setdefault(day, []).append(note)

    groups = []
    for day in sorted(buckets, reverse=True):
        members = sorted(buckets[day], key=lambda n: n.created_at, reverse=True)
        groups.append((group_label(day, today), members))
    return groups


def format_storage_size(num_bytes: int) -> str:
    """Human readable size using KB, MB and GB with decimal (file) units."""

    value = max(num_bytes, 0) / 1000
    unit = _SIZE_UNITS[0]
    for unit in _SIZE_UNITS:
        if value < 1000 or unit == _SIZE_UNITS[-1]:
            break
        value /= 1000
    if value < 10 and unit != "KB":
        return f"{value:.1f} {unit}"
    return f"{value:.0f} {unit}"
