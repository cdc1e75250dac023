"""
Instructions and response schemas for the three oracle request kinds.
Schemas follow the strict structured-output subset: every property is
required and no additional properties are allowed.
"""

import json
from typing import Any

from csv_ingest.models.enums import Category
from csv_ingest.oracle.base import OracleKind, OracleRequest
from csv_ingest.schemas.contracts import SEPARATOR_CHOICES


# ── Separator detection ──────────────────────────────────────

SEPARATOR_INSTRUCTIONS = """\
You receive the first lines of a CSV file exported by a bank.
Identify the character that separates fields.

Candidates: comma, semicolon, tab, pipe, colon, space.

Prefer the candidate that:
- splits every line (header included) into the same number of fields
- never appears inside an unquoted value
- yields fields that look like dates, amounts and descriptions

Regional hint: when amounts use a decimal comma (1.234,56) the field
separator is almost always a semicolon.

Answer with the separator character itself (a real tab for tab) and a
confidence between 0 and 1.
"""

SEPARATOR_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "separator": {"type": "string", "enum": SEPARATOR_CHOICES},
        "confidence": {"type": "number"},
    },
    "required": ["separator", "confidence"],
    "additionalProperties": False,
}


def separator_request(sample_lines: list[str]) -> OracleRequest:
    return OracleRequest(
        kind=OracleKind.DETECT_SEPARATOR,
        schema_name="csv_separator_detection",
        instructions=SEPARATOR_INSTRUCTIONS,
        input_text="\n".join(sample_lines),
        response_schema=SEPARATOR_SCHEMA,
    )


# ── Field mapping ────────────────────────────────────────────

MAPPING_INSTRUCTIONS = """\
You receive the header of a bank CSV export and one data row keyed by
header. Map the columns onto these target fields:

Date              column holding the booking date; format is one of
                  DD/MM/YYYY, MM/DD/YYYY, YYYY-MM-DD, DD-MM-YYYY,
                  MM-DD-YYYY, DD.MM.YYYY
FieldForOutgoing  column holding money leaving the account (debit)
FieldForIncoming  column holding money entering the account (credit)
Currency          column holding the currency, or "fixed" if the file
                  has no currency column
Description       column holding the transaction text
Code              column holding a reference or transaction code, or
                  "none"

When a single signed column carries both directions, give the same
column for FieldForOutgoing and FieldForIncoming. For amount columns,
describe the number format in "format", for example "decimal comma,
period thousands" or "decimal period". Use exact header names.
Give an overall confidence between 0 and 1 and short notes on anything
ambiguous.
"""


def _field(with_format: bool) -> dict[str, Any]:
    props: dict[str, Any] = {"sourceField": {"type": "string"}}
    if with_format:
        props["format"] = {"type": ["string", "null"]}
    return {
        "type": "object",
        "properties": props,
        "required": list(props),
        "additionalProperties": False,
    }


MAPPING_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "mappings": {
            "type": "object",
            "properties": {
                "Date": _field(True),
                "FieldForOutgoing": _field(True),
                "FieldForIncoming": _field(True),
                "Currency": _field(False),
                "Description": _field(False),
                "Code": _field(False),
            },
            "required": ["Date", "FieldForOutgoing", "FieldForIncoming", "Currency", "Description", "Code"],
            "additionalProperties": False,
        },
        "confidence": {"type": "number"},
        "notes": {"type": "string"},
    },
    "required": ["mappings", "confidence", "notes"],
    "additionalProperties": False,
}


def mapping_request(headers: list[str], row: dict[str, str]) -> OracleRequest:
    payload = {"headers": headers, "row": row}
    return OracleRequest(
        kind=OracleKind.MAP_FIELDS,
        schema_name="csv_field_mapping",
        instructions=MAPPING_INSTRUCTIONS,
        input_text=json.dumps(payload, ensure_ascii=False),
        response_schema=MAPPING_SCHEMA,
    )


# ── Categorization ───────────────────────────────────────────

CATEGORIZATION_INSTRUCTIONS = f"""\
You categorize personal bank transactions. Each input item carries a
transactionId, date, amount, currency, description and kind ("-" for
money out, "+" for money in).

Return exactly one result per input item, echoing its transactionId.

category must be one of: {", ".join(c.value for c in Category)}.

Rules:
- Rows that only report an account balance ("Saldo contabile", "Opening
  Balance", "Kontostand", "Solde") are not money movements: use Balance.
- Incoming salary, refunds and reimbursements belong to Income.
- Use Other with subcategory Unknown when nothing fits.

merchantName is the clean business or counterparty name without card
numbers, dates or terminal codes. merchantType is a short description of
the business (e.g. "supermarket", "airline"). subcategory is a short
label within the category. confidence is between 0 and 1.

Also return a batch summary: number of items, average confidence and any
recurring patterns you noticed.
"""

CATEGORIZATION_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "categorizedTransactions": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "transactionId": {"type": "string"},
                    "category": {"type": "string", "enum": [c.value for c in Category]},
                    "subcategory": {"type": "string"},
                    "merchantName": {"type": "string"},
                    "merchantType": {"type": "string"},
                    "confidence": {"type": "number"},
                },
                "required": ["transactionId", "category", "subcategory", "merchantName", "merchantType", "confidence"],
                "additionalProperties": False,
            },
        },
        "batchSummary": {
            "type": "object",
            "properties": {
                "totalTransactions": {"type": "integer"},
                "avgConfidence": {"type": "number"},
                "detectedPatterns": {"type": "array", "items": {"type": "string"}},
            },
            "required": ["totalTransactions", "avgConfidence", "detectedPatterns"],
            "additionalProperties": False,
        },
    },
    "required": ["categorizedTransactions", "batchSummary"],
    "additionalProperties": False,
}


def categorization_request(items: list[dict[str, Any]]) -> OracleRequest:
    return OracleRequest(
        kind=OracleKind.CATEGORIZE_BATCH,
        schema_name="transaction_categorization",
        instructions=CATEGORIZATION_INSTRUCTIONS,
        input_text=json.dumps(items, ensure_ascii=False),
        response_schema=CATEGORIZATION_SCHEMA,
    )
