"""
Time and slot utilities.

Pure functions: weekday/date resolution, candidate-date generation, slot
expansion from a teacher's configured availability, busy-interval filtering
and loose time parsing. No I/O; callers pass "now" and the zone explicitly.
"""

import logging
import re
import unicodedata
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Iterable, Optional, Sequence

from app.core.scheduling.models import AvailableDate

logger = logging.getLogger(__name__)

# Monday-first, matching date.weekday()
WEEKDAYS = ["lunes", "martes", "miercoles", "jueves", "viernes", "sabado", "domingo"]

MONTH_ABBREVIATIONS = [
    "Ene", "Feb", "Mar", "Abr", "May", "Jun",
    "Jul", "Ago", "Sep", "Oct", "Nov", "Dic",
]

_ISO_DATE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
_DAY_MONTH = re.compile(r"(\d{1,2})[/\-](\d{1,2})(?:[/\-](\d{2,4}))?")
_CLOCK = re.compile(r"(\d{1,2}):?(\d{2})?")


@dataclass
class BusyInterval:
    """A busy period reported by the calendar."""

    start: datetime
    end: datetime


def strip_accents(text: str) -> str:
    """Remove diacritics ("miércoles" -> "miercoles")."""
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(c for c in decomposed if unicodedata.category(c) != "Mn")


def normalize(text: str) -> str:
    """Lower-case, accent-free, trimmed."""
    return strip_accents(text).lower().strip()


def weekday_index(name: str) -> Optional[int]:
    """Map a (possibly abbreviated) Spanish weekday name to date.weekday()."""
    needle = normalize(name)
    if len(needle) < 2:
        return None
    for index, weekday in enumerate(WEEKDAYS):
        if weekday.startswith(needle):
            return index
    return None


def next_weekday_date(name: str, today: date) -> Optional[date]:
    """Next strictly-future date falling on the named weekday."""
    target = weekday_index(name)
    if target is None:
        return None
    days_until = target - today.weekday()
    if days_until <= 0:
        days_until += 7
    return today + timedelta(days=days_until)


def resolve_date(text: str, today: date) -> Optional[date]:
    """
    Resolve a weekday name or partial date text to an absolute date.

    Accepts "YYYY-MM-DD", "DD/MM[/YYYY]" (or with dashes) and weekday names.
    """
    text = text.strip()

    iso = _ISO_DATE.match(text)
    if iso:
        return date(int(iso.group(1)), int(iso.group(2)), int(iso.group(3)))

    partial = _DAY_MONTH.search(text)
    if partial:
        day = int(partial.group(1))
        month = int(partial.group(2))
        year = partial.group(3)
        if year is None:
            year_num = today.year
        elif len(year) == 2:
            year_num = 2000 + int(year)
        else:
            year_num = int(year)
        try:
            return date(year_num, month, day)
        except ValueError:
            return None

    return next_weekday_date(text, today)


def format_date_label(day: date, weekday_name: str) -> str:
    """Listing label, e.g. "lunes 20 Oct"."""
    return f"{weekday_name} {day.day} {MONTH_ABBREVIATIONS[day.month - 1]}"


def upcoming_dates(
    weekdays: Sequence[str],
    now: datetime,
    weeks_ahead: int = 4,
    cutoff_hour: int = 17,
    limit: int = 10,
) -> list[AvailableDate]:
    """
    Concrete dates within the forward window that fall on a configured weekday.

    Args:
        weekdays: Weekday names as configured on the teacher
        now: Current local time
        weeks_ahead: Length of the window in weeks
        cutoff_hour: From this hour on the window starts tomorrow
        limit: Maximum number of dates returned

    Returns:
        Ordered list of AvailableDate
    """
    configured = [(weekday_index(name), name.strip()) for name in weekdays]
    configured = [(index, name) for index, name in configured if index is not None]
    if not configured:
        return []

    today = now.date()
    end = today + timedelta(weeks=weeks_ahead)
    current = today + timedelta(days=1) if now.hour >= cutoff_hour else today

    result: list[AvailableDate] = []
    while current <= end and len(result) < limit:
        for index, name in configured:
            if current.weekday() == index:
                result.append(
                    AvailableDate(
                        date=current,
                        display=format_date_label(current, name),
                        weekday=name,
                    )
                )
                break
        current += timedelta(days=1)

    return result


def _parse_clock(value: str) -> Optional[int]:
    """"HH:MM" -> minutes after midnight."""
    parts = value.strip().split(":")
    try:
        hours = int(parts[0])
        minutes = int(parts[1]) if len(parts) > 1 and parts[1] else 0
    except ValueError:
        return None
    if not (0 <= hours <= 23 and 0 <= minutes <= 59):
        return None
    return hours * 60 + minutes


def _format_clock(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def expand_availability(windows: Iterable[str], duration_minutes: int) -> list[str]:
    """
    Expand configured availability into discrete slot start times.

    Each entry is either a range ("08:00-12:00"), stepped by the duration
    while the whole slot fits, or a single start time ("14:00").
    """
    if duration_minutes <= 0:
        return []

    slots: list[str] = []
    for window in windows:
        window = window.strip()
        if not window:
            continue

        if "-" in window:
            start_raw, end_raw = window.split("-", 1)
            start = _parse_clock(start_raw)
            end = _parse_clock(end_raw)
            if start is None or end is None:
                logger.warning(f"Ignoring malformed availability window: {window!r}")
                continue
            current = start
            while current + duration_minutes <= end:
                slots.append(_format_clock(current))
                current += duration_minutes
        else:
            single = _parse_clock(window)
            if single is None:
                logger.warning(f"Ignoring malformed availability time: {window!r}")
                continue
            slots.append(_format_clock(single))

    return slots


def combine_local(day: date, clock: str, tz: tzinfo) -> datetime:
    """Aware datetime for a local date and "HH:MM"."""
    minutes = _parse_clock(clock)
    if minutes is None:
        raise ValueError(f"Invalid time: {clock!r}")
    return datetime.combine(day, time(minutes // 60, minutes % 60), tzinfo=tz)


def day_bounds(day: date, tz: tzinfo) -> tuple[datetime, datetime]:
    """Start and end of a local calendar day."""
    start = datetime.combine(day, time(0, 0), tzinfo=tz)
    return start, start + timedelta(days=1)


def slot_overlaps(start: datetime, end: datetime, busy: Iterable[BusyInterval]) -> bool:
    """True if [start, end) intersects any busy interval."""
    return any(start < interval.end and end > interval.start for interval in busy)


def filter_busy_slots(
    slots: Sequence[str],
    busy: Sequence[BusyInterval],
    day: date,
    duration_minutes: int,
    tz: tzinfo,
) -> list[str]:
    """
    Drop slots whose [start, start+duration) overlaps a busy interval.

    If every slot would be dropped, the unfiltered list is returned so the
    contact can still book.
    """
    free = []
    for slot in slots:
        start = combine_local(day, slot, tz)
        end = start + timedelta(minutes=duration_minutes)
        if not slot_overlaps(start, end, busy):
            free.append(slot)

    if not free:
        return list(slots)
    return free


def format_12h(clock: str) -> str:
    """"14:00" -> "02:00 PM"."""
    if not clock:
        return ""
    hour_raw, _, minute = clock.partition(":")
    hour = int(hour_raw)
    meridiem = "PM" if hour >= 12 else "AM"
    hour = hour % 12 or 12
    return f"{hour:02d}:{minute or '00'} {meridiem}"


def match_time_to_slots(text: str, slots: Sequence[str]) -> Optional[str]:
    """
    Resolve a loosely written time ("2pm", "10", "3:30 p.m.") to an offered slot.

    Without a meridiem marker, an hour that only exists twelve hours later
    among the slots is read as PM. Without minutes, the first slot in that
    hour is taken.

    Returns:
        The matching slot ("HH:MM"), or None
    """
    lowered = text.lower().strip()
    is_pm = "pm" in lowered or "p.m" in lowered
    is_am = "am" in lowered or "a.m" in lowered

    digits = re.sub(r"[^\d:]", "", lowered)
    found = _CLOCK.search(digits)
    if not found:
        return None

    hour = int(found.group(1))
    minute = found.group(2)

    if is_pm and hour < 12:
        hour += 12
    elif is_am and hour == 12:
        hour = 0
    elif not is_pm and not is_am and 1 <= hour <= 12:
        literal = f"{hour:02d}:"
        shifted = f"{hour + 12:02d}:"
        if not any(s.startswith(literal) for s in slots) and any(
            s.startswith(shifted) for s in slots
        ):
            hour += 12

    if hour > 23 or (minute is not None and int(minute) > 59):
        return None

    prefix = f"{hour:02d}:"
    if minute is not None:
        target = f"{prefix}{minute}"
        return target if target in slots else None

    for slot in slots:
        if slot.startswith(prefix):
            return slot
    return None
