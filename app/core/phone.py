"""Contact number helpers."""

import re

_NON_DIGITS = re.compile(r"\D")

# Shortest number that may match another by suffix (a local number without
# its country code)
MIN_SUFFIX_DIGITS = 7


def digits_only(number: str) -> str:
    """Strip everything but digits ("+57 300-123" -> "57300123")."""
    return _NON_DIGITS.sub("", number or "")


def same_contact(a: str, b: str) -> bool:
    """
    True if two numbers refer to the same contact.

    Numbers are compared as digits; one may carry a country code the other
    lacks, so either being a suffix of the other counts as a match as long
    as the shorter one has at least MIN_SUFFIX_DIGITS digits.
    """
    left, right = digits_only(a), digits_only(b)
    if not left or not right:
        return False
    if left == right:
        return True

    shorter, longer = sorted((left, right), key=len)
    return len(shorter) >= MIN_SUFFIX_DIGITS and longer.endswith(shorter)
