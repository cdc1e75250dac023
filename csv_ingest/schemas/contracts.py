"""
Oracle response contracts.
Field aliases match the JSON the oracle is instructed to emit; Python
code reads the snake_case names.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from csv_ingest.models.enums import Category


SEPARATOR_CHOICES = [",", ";", "\t", "|", ":", " "]

FIXED_CURRENCY = "fixed"
NO_CODE = "none"


def _clamp(value) -> float:
    try:
        v = float(value)
    except (TypeError, ValueError):
        return 0.0
    if v != v:
        return 0.0
    return max(0.0, min(1.0, v))


class SeparatorDetection(BaseModel):
    separator: str
    confidence: float = 0.0

    @field_validator("separator")
    @classmethod
    def _known_separator(cls, v: str) -> str:
        # The oracle sometimes spells the tab out
        if v in ("\\t", "tab", "TAB"):
            v = "\t"
        if v not in SEPARATOR_CHOICES:
            raise ValueError(f"unsupported separator {v!r}")
        return v

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, v) -> float:
        return _clamp(v)


# ── Field mapping ────────────────────────────────────────────

class FieldSource(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    source_field: str = Field(default="", alias="sourceField")
    format: Optional[str] = Field(default=None, alias="format")

    @field_validator("source_field", mode="before")
    @classmethod
    def _stringify(cls, v) -> str:
        return "" if v is None else str(v).strip()


class FieldMappings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    date: FieldSource = Field(alias="Date")
    outgoing: FieldSource = Field(alias="FieldForOutgoing")
    incoming: FieldSource = Field(alias="FieldForIncoming")
    currency: FieldSource = Field(default_factory=lambda: FieldSource(source_field=FIXED_CURRENCY), alias="Currency")
    description: FieldSource = Field(alias="Description")
    code: FieldSource = Field(default_factory=lambda: FieldSource(source_field=NO_CODE), alias="Code")

    @property
    def shared_amount_column(self) -> bool:
        return bool(self.outgoing.source_field) and self.outgoing.source_field == self.incoming.source_field


class FieldMappingResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    mappings: FieldMappings
    confidence: float = 0.0
    notes: str = ""

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, v) -> float:
        return _clamp(v)

    @field_validator("notes", mode="before")
    @classmethod
    def _notes_text(cls, v) -> str:
        return v or ""


# ── Categorization ───────────────────────────────────────────

class CategorizedItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    transaction_id: str = Field(alias="transactionId")
    category: str = Category.OTHER.value
    subcategory: str = "Unknown"
    merchant_name: str = Field(default="Unknown", alias="merchantName")
    merchant_type: str = Field(default="Unknown", alias="merchantType")
    confidence: float = 0.0

    @field_validator("transaction_id", mode="before")
    @classmethod
    def _id_text(cls, v) -> str:
        return str(v)

    @field_validator("category", mode="before")
    @classmethod
    def _known_category(cls, v) -> str:
        try:
            return Category(v).value
        except ValueError:
            return Category.OTHER.value

    @field_validator("subcategory", "merchant_name", "merchant_type", mode="before")
    @classmethod
    def _unknown_if_blank(cls, v) -> str:
        return str(v).strip() if v and str(v).strip() else "Unknown"

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, v) -> float:
        return _clamp(v)


class BatchSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total_transactions: int = Field(default=0, alias="totalTransactions")
    avg_confidence: float = Field(default=0.0, alias="avgConfidence")
    detected_patterns: list[str] = Field(default_factory=list, alias="detectedPatterns")


class CategorizationBatchResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    categorized_transactions: list[CategorizedItem] = Field(alias="categorizedTransactions")
    batch_summary: Optional[BatchSummary] = Field(default=None, alias="batchSummary")
