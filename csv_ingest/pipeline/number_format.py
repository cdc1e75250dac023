"""
Locale-aware number parser for bank CSV amounts.

Handles the common export conventions:
- 1.234,56 / 1 234,56       -> european (decimal comma)
- 1,234.56                  -> us (decimal period)
- 1'234.56                  -> swiss (apostrophe thousands)
- 1,23,456.78               -> indian (lakh grouping)
- (1,234.56)                -> negative (parentheses)
- -1.234,56 / 1.234,56-     -> negative (leading or trailing minus)
- €1.234,56 / 1,234.56 USD  -> currency glyph or ISO code stripped and reported

Unparseable input yields value=None, never an exception.
"""

import re
from typing import Optional

from pydantic import BaseModel

from csv_ingest.models.enums import NumberFormatType


CURRENCY_GLYPHS = "€$£¥₹₽¢₩₪₦₨₱₡₵₴₸₺₼₾₿"

_GLYPH_RE = re.compile(rf"^[{CURRENCY_GLYPHS}]+|[{CURRENCY_GLYPHS}]+$")
_ISO_CODE_RE = re.compile(r"^([A-Z]{3})\s+|\s*([A-Z]{3})$")
_MINUS_CHARS = "-−"


class NumberFormat(BaseModel):
    type: NumberFormatType = NumberFormatType.UNKNOWN
    decimal_separator: str = "."
    thousand_separator: str = ","
    confidence: float = 0.0


class NumberParseResult(BaseModel):
    value: Optional[float] = None
    raw_text: str
    formatted: str = ""
    format: NumberFormat
    is_negative: bool = False
    currency: Optional[str] = None


FORCED_FORMATS = {
    NumberFormatType.EUROPEAN: (",", "."),
    NumberFormatType.US: (".", ","),
    NumberFormatType.SWISS: (".", "'"),
    NumberFormatType.INDIAN: (".", ","),
}


def detect_number_format(value: Optional[str]) -> NumberFormat:
    """
    Infer decimal and thousand separators from a single numeric string.
    Rules are applied in priority order; the first match wins.
    """
    if not value or not isinstance(value, str):
        return NumberFormat()

    s = value.strip()

    comma_count = s.count(",")
    period_count = s.count(".")
    space_count = len(re.findall(r"\s", s))
    apostrophe_count = s.count("'")

    last_comma = s.rfind(",")
    last_period = s.rfind(".")

    decimal_part = ""
    if last_comma > last_period:
        decimal_part = s[last_comma + 1:]
    elif last_period > -1:
        decimal_part = s[last_period + 1:]

    # A separator that repeats is grouping, never the decimal mark

    # 1. European: separator that appears last is a single comma
    if last_comma > last_period and comma_count == 1 and len(decimal_part) <= 3:
        if period_count > 0:
            thousand = "."
        elif space_count > 0:
            thousand = " "
        elif apostrophe_count > 0:
            thousand = "'"
        else:
            thousand = ""
        confidence = 0.9
        if period_count > 0 and comma_count == 1 and len(decimal_part) == 2:
            confidence = 0.95
        return NumberFormat(
            type=NumberFormatType.EUROPEAN,
            decimal_separator=",",
            thousand_separator=thousand,
            confidence=confidence,
        )

    # 2. Swiss: 1'234'567.89
    if apostrophe_count > 0 and period_count == 1:
        return NumberFormat(
            type=NumberFormatType.SWISS,
            decimal_separator=".",
            thousand_separator="'",
            confidence=0.85,
        )

    # 3. Indian: 1,23,456.78
    if comma_count > 1 and period_count == 1:
        integer_part = s.split(".")[0]
        if re.match(r"^\d{1,2}(,\d{2})*,\d{3}$", integer_part):
            return NumberFormat(
                type=NumberFormatType.INDIAN,
                decimal_separator=".",
                thousand_separator=",",
                confidence=0.85,
            )

    # 4. US: separator that appears last is a single period
    if last_period > last_comma and period_count == 1 and len(decimal_part) <= 3:
        confidence = 0.9
        if comma_count > 0 and len(decimal_part) == 2:
            confidence = 0.95
        return NumberFormat(
            type=NumberFormatType.US,
            decimal_separator=".",
            thousand_separator="," if comma_count > 0 else "",
            confidence=confidence,
        )

    # 5. Commas only: thousands grouping without decimals
    if comma_count > 0 and period_count == 0:
        if re.match(r"^\d{1,3}(,\d{3})*$", s):
            return NumberFormat(
                type=NumberFormatType.US,
                decimal_separator=".",
                thousand_separator=",",
                confidence=0.7,
            )
        return NumberFormat()

    # 6. Periods only: european thousands, else a plain decimal
    if period_count > 0 and comma_count == 0:
        if re.match(r"^\d{1,3}(\.\d{3})*$", s):
            return NumberFormat(
                type=NumberFormatType.EUROPEAN,
                decimal_separator=",",
                thousand_separator=".",
                confidence=0.7,
            )
        return NumberFormat(
            type=NumberFormatType.US,
            decimal_separator=".",
            thousand_separator="",
            confidence=0.8,
        )

    # 7. Nothing recognisable
    return NumberFormat()


def format_from_hint(hint: Optional[str]) -> Optional[NumberFormatType]:
    """
    Interpret a free-text format note such as "decimal comma" or
    "period decimal, comma thousands". Returns None when the note is
    not decisive, in which case each value is auto-detected.
    """
    if not hint:
        return None
    h = hint.lower()

    for fmt in (NumberFormatType.SWISS, NumberFormatType.INDIAN, NumberFormatType.EUROPEAN):
        if fmt.value in h:
            return fmt
    if re.search(r"\bus\b", h):
        return NumberFormatType.US

    comma_decimal = re.search(r"decimal[^,.;]*comma|comma[^,.;]*decimal", h)
    period_decimal = re.search(r"decimal[^,.;]*(period|point|dot)|(period|point|dot)[^,.;]*decimal", h)
    if comma_decimal and not period_decimal:
        return NumberFormatType.EUROPEAN
    if period_decimal and not comma_decimal:
        return NumberFormatType.US
    return None


def parse_number(
    value,
    force_format: Optional[NumberFormatType] = None,
    decimal_separator: Optional[str] = None,
    thousand_separator: Optional[str] = None,
) -> NumberParseResult:
    """
    Parse a monetary string, detecting its locale format unless one is forced.
    Explicit separators override whatever was detected or forced.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        return NumberParseResult(value=None, raw_text=value or "", format=NumberFormat())

    s = str(value).strip()
    raw = s

    # Currency glyph or ISO code
    currency = None
    m = _GLYPH_RE.search(s)
    if m:
        currency = m.group(0)
        s = (s[:m.start()] + s[m.end():]).strip()
    else:
        m = _ISO_CODE_RE.search(s)
        if m:
            currency = m.group(1) or m.group(2)
            s = (s[:m.start()] + s[m.end():]).strip()

    # Sign markers
    is_negative = False
    if s and (s[0] in "(" + _MINUS_CHARS or s[-1] in ")" + _MINUS_CHARS):
        is_negative = True
        s = s.replace("(", "").replace(")", "").strip()
        s = s.strip(_MINUS_CHARS).strip()

    if force_format is not None and force_format != NumberFormatType.UNKNOWN:
        dec, thou = FORCED_FORMATS[force_format]
        fmt = NumberFormat(
            type=force_format,
            decimal_separator=decimal_separator or dec,
            thousand_separator=thousand_separator or thou,
            confidence=1.0,
        )
    else:
        fmt = detect_number_format(s)
        if decimal_separator:
            fmt.decimal_separator = decimal_separator
        if thousand_separator:
            fmt.thousand_separator = thousand_separator

    clean = s
    if fmt.thousand_separator:
        clean = clean.replace(fmt.thousand_separator, "")
    if fmt.decimal_separator != ".":
        clean = clean.replace(fmt.decimal_separator, ".", 1)
    clean = re.sub(r"[^\d.\-]", "", clean)

    try:
        parsed = float(clean)
    except ValueError:
        return NumberParseResult(
            value=None, raw_text=raw, format=fmt, is_negative=is_negative, currency=currency,
        )

    final = -abs(parsed) if is_negative else parsed
    return NumberParseResult(
        value=final,
        raw_text=raw,
        formatted=format_number(final, fmt, currency),
        format=fmt,
        is_negative=is_negative,
        currency=currency,
    )


def format_number(
    value: Optional[float],
    fmt: Optional[NumberFormat] = None,
    currency: Optional[str] = None,
) -> str:
    """Render a value in the given format; the inverse of parse_number."""
    if value is None or value != value:
        return ""

    if fmt is None:
        fmt = NumberFormat(type=NumberFormatType.US, confidence=1.0)

    is_negative = value < 0
    integer_part, decimal_part = f"{abs(value):.2f}".split(".")

    if fmt.thousand_separator:
        if fmt.type == NumberFormatType.INDIAN and len(integer_part) > 3:
            # Rightmost three digits, then groups of two
            result = integer_part[-3:]
            remaining = integer_part[:-3]
            while len(remaining) > 2:
                result = remaining[-2:] + fmt.thousand_separator + result
                remaining = remaining[:-2]
            if remaining:
                result = remaining + fmt.thousand_separator + result
            integer_part = result
        else:
            integer_part = re.sub(r"\B(?=(\d{3})+(?!\d))", fmt.thousand_separator, integer_part)

    formatted = integer_part + fmt.decimal_separator + decimal_part
    if is_negative:
        formatted = "-" + formatted

    if currency:
        if currency == "€" and fmt.type == NumberFormatType.EUROPEAN:
            formatted = f"{formatted} {currency}"
        elif len(currency) == 3 and currency.isalpha():
            formatted = f"{formatted} {currency}"
        else:
            formatted = currency + formatted

    return formatted


def parse_amount(value: Optional[str], format_hint: Optional[str] = None) -> Optional[float]:
    """Parse an amount cell using the column's format note, if decisive."""
    if value is None or not str(value).strip():
        return None
    return parse_number(value, force_format=format_from_hint(format_hint)).value
