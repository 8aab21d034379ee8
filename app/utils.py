"""Utility helpers for the Entertainment Hub service."""

from __future__ import annotations

import calendar
import re
from datetime import date
from typing import Literal


UNSCHEDULED_MINUTES = 9999
CLOCK_TIME_RE = re.compile(r"(\d{1,2}):?(\d{2})?\s*(am|pm)?", re.IGNORECASE)

ImageSize = Literal["w92", "w342", "w500"]
IMAGE_SIZES: tuple[str, ...] = ("w92", "w342", "w500")


def parse_catalog_date(value: object) -> date | None:
    """Parse a catalog ``YYYY-MM-DD`` string, returning ``None`` when absent."""

    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None


def parse_time_to_minutes(value: object) -> int:
    """Convert a free-text clock time such as ``9:30 PM`` to minute-of-day.

    Blank, absent or unrecognisable values sort to the end of the day.
    """

    if not isinstance(value, str):
        return UNSCHEDULED_MINUTES
    text = value.strip().lower()
    if not text:
        return UNSCHEDULED_MINUTES
    match = CLOCK_TIME_RE.search(text)
    if not match:
        return UNSCHEDULED_MINUTES

    hours = int(match.group(1))
    minutes = int(match.group(2)) if match.group(2) else 0
    period = match.group(3)
    if period == "pm" and hours < 12:
        hours += 12
    if period == "am" and hours == 12:
        hours = 0
    if hours > 23 or minutes > 59:
        return UNSCHEDULED_MINUTES
    return hours * 60 + minutes


def add_months(value: date, months: int) -> date:
    """Shift ``value`` by whole calendar months, clamping to the month end."""

    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def build_image_url(
    path: str | None,
    *,
    base_url: str,
    placeholder: str,
    size: ImageSize = "w342",
) -> str:
    """Return a CDN URL for a catalog image path or the placeholder."""

    if not path:
        return placeholder
    if path.startswith("http"):
        return path
    if size not in IMAGE_SIZES:
        raise ValueError(f"Unsupported image size: {size}")
    base = base_url if base_url.endswith("/") else f"{base_url}/"
    if not path.startswith("/"):
        path = f"/{path}"
    return f"{base}{size}{path}"
