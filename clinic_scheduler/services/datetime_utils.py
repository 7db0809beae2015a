"""Conversions between appointment date/time labels and calendar values.

Appointments store their day as a label such as ``"Monday, 15 Jan 2025"`` and
their slot as ``"9:30 AM"``. Slot queries compare labels verbatim, so every
label is rewritten to one spelling before it is stored or queried.
"""

import re
from datetime import date, datetime, time

WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")
MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

_MONTH_INDEX = {name: index for index, name in enumerate(MONTHS, start=1)}

_DATE_LABEL_RE = re.compile(
    r"^\s*(?:(?P<weekday>[A-Za-z]+),\s*)?(?P<day>\d{1,2})\s+(?P<month>[A-Za-z]{3})\s+(?P<year>\d{4})\s*$"
)
_TIME_LABEL_RE = re.compile(r"^\s*(?P<hour>\d{1,2}):(?P<minute>\d{2})\s*(?P<meridiem>[AaPp][Mm])\s*$")


def format_date_for_display(value: date) -> str:
    """
    Render a calendar day as an appointment date label.

    Args:
        value: Date (or datetime, whose time part is ignored)

    Returns:
        Label like ``"Monday, 15 Jan 2025"``
    """
    return f"{WEEKDAYS[value.weekday()]}, {value.day} {MONTHS[value.month - 1]} {value.year}"


def format_date_for_query(value: date | str) -> str:
    """
    Normalize a date argument to the label stored on appointments.

    Parseable labels are rewritten in display form, so ``"13 Jan 2025"``,
    ``"Monday, 03 Jan 2025"`` and a wrong weekday name all map to the same
    label. Unparseable strings are only stripped.
    """
    if isinstance(value, str):
        parsed = parse_date_label(value)
        return value.strip() if parsed is None else format_date_for_display(parsed)
    return format_date_for_display(value)


def format_time_slot(value: time) -> str:
    """Render a time of day as a 12-hour slot label such as ``"2:00 PM"``."""
    hour = value.hour % 12 or 12
    meridiem = "AM" if value.hour < 12 else "PM"
    return f"{hour}:{value.minute:02d} {meridiem}"


def parse_date_label(label: str | None) -> date | None:
    """
    Parse a ``"<Weekday>, <Day> <Mon> <Year>"`` label.

    The weekday is not cross-checked against the computed day; legacy rows
    carry labels written by older clients.

    Returns:
        The calendar day, or None when the label cannot be parsed
    """
    if not label:
        return None

    match = _DATE_LABEL_RE.match(label)
    if not match:
        return None

    month = _MONTH_INDEX.get(match.group("month").title())
    if month is None:
        return None

    try:
        return date(int(match.group("year")), month, int(match.group("day")))
    except ValueError:
        return None


def parse_time_slot(label: str | None) -> time | None:
    """
    Parse a 12-hour slot label (``"9:30 AM"``, ``"09:00 PM"``).

    Returns:
        The time of day, or None when the label cannot be parsed
    """
    if not label:
        return None

    match = _TIME_LABEL_RE.match(label)
    if not match:
        return None

    hour = int(match.group("hour"))
    minute = int(match.group("minute"))
    if not 1 <= hour <= 12 or minute > 59:
        return None

    if match.group("meridiem").upper() == "PM":
        hour = hour % 12 + 12
    else:
        hour = hour % 12

    return time(hour, minute)


def parse_appointment_date(date_label: str | None, time_label: str | None = None) -> datetime | None:
    """
    Combine a date label and an optional slot label into a datetime.

    Args:
        date_label: Label like ``"Monday, 15 Jan 2025"``
        time_label: Label like ``"9:30 AM"``; midnight when omitted

    Returns:
        Naive local datetime, or None if either label is unparseable
    """
    day = parse_date_label(date_label)
    if day is None:
        return None

    if time_label is None:
        return datetime.combine(day, time())

    slot = parse_time_slot(time_label)
    if slot is None:
        return None

    return datetime.combine(day, slot)


def parse_appointment_date_or(
    date_label: str | None,
    time_label: str | None,
    fallback: datetime,
) -> datetime:
    """Parse like :func:`parse_appointment_date`, substituting ``fallback`` on failure."""
    parsed = parse_appointment_date(date_label, time_label)
    return fallback if parsed is None else parsed


def appointment_sort_key(appointment: dict) -> tuple[bool, datetime]:
    """Sort key ordering appointments chronologically, unparseable labels last."""
    parsed = parse_appointment_date(appointment.get("date"), appointment.get("time_slot"))
    if parsed is None:
        return (True, datetime.max)
    return (False, parsed)


def normalize_time_slot(label: str) -> str:
    """Rewrite a slot label in display form (``"09:30 am"`` -> ``"9:30 AM"``)."""
    parsed = parse_time_slot(label)
    return label.strip() if parsed is None else format_time_slot(parsed)
