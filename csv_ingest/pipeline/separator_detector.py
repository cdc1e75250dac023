"""
Field delimiter detection and line splitting.
"""

import csv
from typing import Optional

import structlog

from csv_ingest.oracle.base import ClassificationOracle
from csv_ingest.oracle.prompts import separator_request
from csv_ingest.schemas.contracts import SeparatorDetection

logger = structlog.get_logger(__name__)


async def detect_separator(oracle: ClassificationOracle, sample_lines: list[str]) -> SeparatorDetection:
    """
    Ask the oracle which delimiter the sample uses.
    Raises OracleError when no model answered, ValidationError on a malformed answer.
    """
    answer = await oracle.classify(separator_request(sample_lines))
    detection = SeparatorDetection.model_validate(answer)

    logger.info(
        "separator_detected",
        separator=repr(detection.separator),
        confidence=detection.confidence,
        sample_size=len(sample_lines),
    )
    return detection


def split_line(line: str, separator: str) -> list[str]:
    """
    Split one physical CSV line, honouring quotes.

    Stray quotes inside a field (`"AMAZON" MARKETPLACE`) are kept as text.
    A line the csv module still rejects is split on the bare separator.
    """
    try:
        reader = csv.reader([line], delimiter=separator, skipinitialspace=separator == " ")
        fields = next(reader, [])
    except csv.Error:
        logger.debug("split_line_fallback", separator=repr(separator))
        fields = line.split(separator)
    return [f.strip() for f in fields]


def header_names(line: str, separator: str) -> list[str]:
    """Header fields; blank names fall back to the column index."""
    return [name or str(i) for i, name in enumerate(split_line(line, separator))]


def row_dict(headers: list[str], values: list[str], fill: Optional[str] = "") -> dict[str, str]:
    """Key values by header. Missing trailing fields are filled; extras are dropped."""
    return {h: (values[i] if i < len(values) else fill) for i, h in enumerate(headers)}
