"""
Column-to-field mapping.

The oracle looks at the header plus one representative row and names the
source column (and sub-format) for each canonical field. The mapping is
computed once per upload and reused for every row.
"""

import structlog

from csv_ingest.oracle.base import ClassificationOracle
from csv_ingest.oracle.prompts import mapping_request
from csv_ingest.schemas.contracts import (
    FIXED_CURRENCY,
    NO_CODE,
    FieldMappingResult,
    FieldSource,
)

logger = structlog.get_logger(__name__)

# Sentinel source values that are not column names
_SENTINELS = {FIXED_CURRENCY, NO_CODE, ""}


async def detect_field_mapping(
    oracle: ClassificationOracle,
    headers: list[str],
    sample_row: dict[str, str],
) -> FieldMappingResult:
    """
    Ask the oracle for the mapping and resolve it against the real headers.
    Raises OracleError when no model answered, ValidationError on a malformed answer.
    """
    answer = await oracle.classify(mapping_request(headers, sample_row))
    result = FieldMappingResult.model_validate(answer)
    result = resolve_source_fields(result, headers)

    logger.info(
        "field_mapping_detected",
        confidence=result.confidence,
        shared_amount_column=result.mappings.shared_amount_column,
        columns=len(headers),
    )
    return result


def _resolve(source: FieldSource, headers: list[str], field_name: str) -> FieldSource:
    name = source.source_field
    if name in headers or name.lower() in _SENTINELS:
        return source

    # Case or whitespace drift in the oracle's answer
    for h in headers:
        if h.strip().lower() == name.lower():
            return source.model_copy(update={"source_field": h})

    # Column given by position
    if name.isdigit() and int(name) < len(headers):
        return source.model_copy(update={"source_field": headers[int(name)]})

    logger.warning("mapping_unknown_column", field=field_name, headers=len(headers))
    return source


def resolve_source_fields(result: FieldMappingResult, headers: list[str]) -> FieldMappingResult:
    """Normalise every sourceField to an exact header name where possible."""
    m = result.mappings
    resolved = m.model_copy(update={
        "date": _resolve(m.date, headers, "Date"),
        "outgoing": _resolve(m.outgoing, headers, "FieldForOutgoing"),
        "incoming": _resolve(m.incoming, headers, "FieldForIncoming"),
        "currency": _resolve(m.currency, headers, "Currency"),
        "description": _resolve(m.description, headers, "Description"),
        "code": _resolve(m.code, headers, "Code"),
    })
    return result.model_copy(update={"mappings": resolved})
