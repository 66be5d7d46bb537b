"""Resolve a free-text answer against a numbered list of options."""

import re
from typing import Optional, Sequence

from app.core.scheduling.models import AvailableDate
from app.core.scheduling.timeutils import normalize

_NUMBER = re.compile(r"\d{1,2}")


def _as_index(needle: str, count: int) -> Optional[int]:
    if needle.isdigit():
        number = int(needle)
        if 1 <= number <= count:
            return number - 1
    return None


def resolve_choice(options: Sequence[str], text: str) -> Optional[int]:
    """
    Pick the option a contact's answer refers to.

    Tried in order: 1-based index, exact label, label containing the answer,
    answer containing the label. Comparison ignores case and accents.

    Returns:
        Index into options, or None if nothing matches
    """
    needle = normalize(text)
    if not needle:
        return None

    if needle.isdigit():
        return _as_index(needle, len(options))

    labels = [normalize(option) for option in options]

    for index, label in enumerate(labels):
        if label == needle:
            return index

    for index, label in enumerate(labels):
        if needle in label:
            return index

    for index, label in enumerate(labels):
        if label and label in needle:
            return index

    return None


def find_date(dates: Sequence[AvailableDate], text: str) -> Optional[int]:
    """
    Pick the listed date a contact's answer refers to.

    Tried in order: exact label ("lunes 20 Oct"), explicit day of month
    ("el 20", "20 oct", or a bare number too large to be a list position),
    weekday name, 1-based list position.

    Returns:
        Index into dates, or None if nothing matches
    """
    needle = normalize(text)
    if not needle:
        return None

    for index, candidate in enumerate(dates):
        if normalize(candidate.display) == needle:
            return index

    bare_index = _as_index(needle, len(dates))
    number = _NUMBER.search(needle)
    if number and bare_index is None:
        day = int(number.group(0))
        for index, candidate in enumerate(dates):
            if candidate.day == day:
                return index

    if not needle.isdigit():
        for index, candidate in enumerate(dates):
            weekday = normalize(candidate.weekday)
            if weekday in needle or (len(needle) >= 3 and needle in weekday):
                return index

    return bare_index
