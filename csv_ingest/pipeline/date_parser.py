"""
Layout-driven date parser.

The field mapping names the layout of the date column, so parsing is a
split on the layout's separator and a reassembly as ISO YYYY-MM-DD.
Strings that do not fit the layout are returned unchanged; callers
validate the result with to_date().
"""

from datetime import date
from typing import Optional

from dateutil import parser as dateutil_parser


# layout -> (separator, order of day/month/year parts)
DATE_LAYOUTS = {
    "DD/MM/YYYY": ("/", ("d", "m", "y")),
    "MM/DD/YYYY": ("/", ("m", "d", "y")),
    "DD-MM-YYYY": ("-", ("d", "m", "y")),
    "MM-DD-YYYY": ("-", ("m", "d", "y")),
    "DD.MM.YYYY": (".", ("d", "m", "y")),
}

ISO_LAYOUT = "YYYY-MM-DD"

SUPPORTED_LAYOUTS = [*DATE_LAYOUTS, ISO_LAYOUT]


def parse_date(value: Optional[str], layout: Optional[str]) -> str:
    """Reassemble a date string as YYYY-MM-DD according to its layout."""
    if not value:
        return ""

    raw = value.strip()
    fmt = (layout or "").strip().upper()

    if fmt == ISO_LAYOUT:
        return raw

    spec = DATE_LAYOUTS.get(fmt)
    if spec is None:
        return value

    separator, order = spec
    parts = [p.strip() for p in raw.split(separator)]
    if len(parts) != 3 or not all(parts):
        return value

    fields = dict(zip(order, parts))
    return f"{fields['y']}-{fields['m'].zfill(2)}-{fields['d'].zfill(2)}"


def to_date(iso_value: Optional[str]) -> Optional[date]:
    """Validate an ISO date string. Returns None if it is not a real date."""
    if not iso_value or len(iso_value) != 10:
        return None
    try:
        return dateutil_parser.isoparse(iso_value).date()
    except (ValueError, OverflowError):
        return None


def is_supported_layout(layout: Optional[str]) -> bool:
    return (layout or "").strip().upper() in SUPPORTED_LAYOUTS
