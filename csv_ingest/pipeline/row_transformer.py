"""
Raw row -> CanonicalRow.

Pure and deterministic: the same row and mapping always give the same
canonical row. Validation is a separate step so callers can decide what
an unusable row means for them.
"""

from typing import Optional

from csv_ingest.config import settings
from csv_ingest.pipeline.date_parser import parse_date, to_date
from csv_ingest.pipeline.number_format import parse_number, format_from_hint
from csv_ingest.schemas.canonical import CanonicalRow
from csv_ingest.schemas.contracts import FIXED_CURRENCY, NO_CODE, FieldMappings


GLYPH_TO_ISO = {
    "€": "EUR",
    "$": "USD",
    "£": "GBP",
    "¥": "JPY",
    "₹": "INR",
    "₽": "RUB",
    "₩": "KRW",
    "₪": "ILS",
    "₺": "TRY",
    "₴": "UAH",
}


class RowValidationError(Exception):
    """A single line cannot become a transaction. The run continues."""


def _cell(row: dict[str, str], column: str) -> str:
    if not column:
        return ""
    return (row.get(column) or "").strip()


def _amount(value: str, fmt_hint: Optional[str]) -> tuple[Optional[float], Optional[str]]:
    if not value:
        return None, None
    result = parse_number(value, force_format=format_from_hint(fmt_hint))
    return result.value, result.currency


def normalize_currency(value: Optional[str]) -> str:
    if not value:
        return ""
    v = value.strip()
    return GLYPH_TO_ISO.get(v, v.upper())


def transform_row(
    row: dict[str, str],
    mappings: FieldMappings,
    default_currency: Optional[str] = None,
) -> CanonicalRow:
    default_currency = default_currency or settings.DEFAULT_CURRENCY

    # Date
    date_value = _cell(row, mappings.date.source_field)
    date = parse_date(date_value, mappings.date.format) if date_value else ""

    # Kind + Amount
    kind = ""
    amount = 0.0
    seen_currency = None

    if mappings.shared_amount_column:
        value, seen_currency = _amount(_cell(row, mappings.outgoing.source_field), mappings.outgoing.format)
        if value is not None:
            kind = "-" if value < 0 else "+"
            amount = abs(value)
    else:
        out_value, out_currency = _amount(_cell(row, mappings.outgoing.source_field), mappings.outgoing.format)
        in_value, in_currency = _amount(_cell(row, mappings.incoming.source_field), mappings.incoming.format)
        # Outgoing wins when both columns carry a positive amount
        if out_value is not None and out_value > 0:
            kind, amount, seen_currency = "-", out_value, out_currency
        elif in_value is not None and in_value > 0:
            kind, amount, seen_currency = "+", in_value, in_currency

    # Currency
    currency_source = mappings.currency.source_field
    if currency_source.lower() == FIXED_CURRENCY:
        currency = normalize_currency(seen_currency) or default_currency
    else:
        currency = (
            normalize_currency(_cell(row, currency_source))
            or normalize_currency(seen_currency)
            or default_currency
        )

    # Code
    code_source = mappings.code.source_field
    code = "" if code_source.lower() == NO_CODE else _cell(row, code_source)

    return CanonicalRow(
        date=date,
        kind=kind,
        amount=amount,
        currency=currency,
        description=_cell(row, mappings.description.source_field),
        code=code,
    )


def validate_canonical_row(row: CanonicalRow) -> None:
    """Raise RowValidationError when the row cannot be persisted."""
    if not row.date:
        raise RowValidationError("missing date")
    if to_date(row.date) is None:
        raise RowValidationError(f"unparseable date {row.date!r}")
    if not row.kind:
        raise RowValidationError("no resolvable amount")
