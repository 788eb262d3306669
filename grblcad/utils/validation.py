"""Argument checks for the link, jog commands and GRBL setting writes.

Each check returns the normalized value or raises InvalidParameterError /
InvalidRangeError, so callers validate and convert in one step.
"""

import math
from typing import Optional, Tuple

from .constants import GRBL_SETTING_LIMITS, VALID_BAUD_RATES
from .exceptions import InvalidParameterError, InvalidRangeError


def _as_number(name: str, value, convert=float):
    try:
        return convert(value)
    except (TypeError, ValueError):
        kind = "an integer" if convert is int else "a number"
        raise InvalidParameterError(name, value, f"must be {kind}")


def validate_feed_rate(feed: float) -> float:
    """Return ``feed`` (mm/min) as a float; it must be above zero."""
    rate = _as_number("feed_rate", feed)
    if not rate > 0:
        raise InvalidParameterError("feed_rate", feed, "must be greater than zero")
    return rate


def validate_distance(distance: float, name: str = "distance") -> float:
    """Return a travel distance (mm) as a float; it must be finite and above zero."""
    value = _as_number(name, distance)
    if not (math.isfinite(value) and value > 0):
        raise InvalidParameterError(name, distance, "must be a positive distance")
    return value


def validate_axis(axis: str) -> str:
    """Validate a single jog axis letter and return it upper-cased."""
    letter = axis.strip().upper() if isinstance(axis, str) else ""
    if letter not in ("X", "Y", "Z"):
        raise InvalidParameterError("axis", axis, "must be one of X, Y, Z")
    return letter


def validate_setting_id(setting_id) -> str:
    """Normalize a GRBL setting id ("$110", 110, "110") to its string key."""
    text = str(setting_id).strip().removeprefix("$")
    if not text.isdigit():
        raise InvalidParameterError("setting_id", setting_id, "must be a non-negative integer")
    return str(int(text))


def validate_grbl_setting(setting_id, value) -> Tuple[str, str]:
    """Check a ``$<id>=<value>`` write.

    Ids listed in GRBL_SETTING_LIMITS must carry a number inside their range.
    Other ids (grblHAL and other forks add many) pass through unchecked.

    Args:
        setting_id: Setting id, with or without the leading ``$``
        value: New value; surrounding whitespace is dropped

    Returns:
        Tuple of (setting key, value text)

    Raises:
        InvalidParameterError: Bad id, empty or multi-line value, or a
            non-numeric value for a range-checked id
        InvalidRangeError: Numeric value outside the id's range
    """
    key = validate_setting_id(setting_id)
    name = f"setting_{key}"
    text = str(value).strip()
    if not text:
        raise InvalidParameterError(name, value, "must not be empty")
    if "\r" in text or "\n" in text:
        raise InvalidParameterError(name, value, "must be a single line")

    limits = GRBL_SETTING_LIMITS.get(int(key))
    if limits is None:
        return key, text
    number = _as_number(name, text)
    low, high = limits
    if not low <= number <= high:
        raise InvalidRangeError(number, low, high)
    return key, text


def validate_port_name(port: str) -> str:
    """Return the stripped port name.

    Device paths ("COM3", "/dev/ttyUSB0") and pyserial URLs
    ("rfc2217://host:2217", "loop://") are both accepted.
    """
    name = port.strip() if isinstance(port, str) else ""
    if not name:
        raise InvalidParameterError("port", port, "must be a non-empty string")
    return name


def validate_baud_rate(baud: int) -> int:
    rate = _as_number("baud_rate", baud, int)
    if rate not in VALID_BAUD_RATES:
        choices = ", ".join(str(b) for b in VALID_BAUD_RATES)
        raise InvalidParameterError("baud_rate", baud, f"must be one of {choices}")
    return rate


def validate_interval(interval: float, min_val: float = 0.0) -> float:
    """Return ``interval`` seconds as a float no smaller than ``min_val``."""
    seconds = _as_number("interval", interval)
    if not seconds >= min_val:
        raise InvalidParameterError("interval", interval, f"must be at least {min_val}")
    return seconds


def validate_line_index(index: int, max_index: Optional[int] = None) -> int:
    """Return a 0-based job line index, bounded by ``max_index`` when given.

    Raises:
        InvalidParameterError: Not an integer, or negative
        InvalidRangeError: Past ``max_index``
    """
    value = _as_number("line_index", index, int)
    if value < 0:
        raise InvalidParameterError("line_index", index, "must not be negative")
    if max_index is not None and value > max_index:
        raise InvalidRangeError(value, 0, max_index)
    return value
