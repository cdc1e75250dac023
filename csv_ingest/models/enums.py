"""
Python enums for persisted status values and oracle vocabularies.
Values are stored as plain strings.
"""

from enum import Enum


class UploadStatus(str, Enum):
    UPLOADING = "uploading"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class PipelineStage(str, Enum):
    """Orchestrator checkpoint stages for resume-on-failure."""
    PENDING = "pending"
    DETECTING_SEPARATOR = "detecting_separator"
    DETECTING_MAPPING = "detecting_mapping"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class TransactionKind(str, Enum):
    INCOMING = "+"
    OUTGOING = "-"


class NumberFormatType(str, Enum):
    EUROPEAN = "european"
    US = "us"
    SWISS = "swiss"
    INDIAN = "indian"
    UNKNOWN = "unknown"


class Category(str, Enum):
    FOOD_DINING = "Food & Dining"
    SHOPPING = "Shopping"
    TRANSPORTATION = "Transportation"
    UTILITIES = "Utilities"
    ENTERTAINMENT = "Entertainment"
    HEALTH_WELLNESS = "Health & Wellness"
    TRAVEL = "Travel"
    HOUSING = "Housing"
    FINANCIAL = "Financial"
    EDUCATION = "Education"
    PERSONAL_CARE = "Personal Care"
    INSURANCE = "Insurance"
    PETS = "Pets"
    SUBSCRIPTIONS = "Subscriptions & Memberships"
    GIFTS_DONATIONS = "Gifts & Donations"
    GOVERNMENT_TAXES = "Government & Taxes"
    CHILDREN_FAMILY = "Children & Family"
    BUSINESS = "Business & Professional"
    CASH_ATM = "Cash & ATM"
    INCOME = "Income"
    BALANCE = "Balance"
    OTHER = "Other"


class ProgressEvent(str, Enum):
    UPLOAD_STARTED = "upload:started"
    SEPARATOR_DETECTED = "separator:detected"
    MAPPING_DETECTED = "mapping:detected"
    PROCESSING_PROGRESS = "processing:progress"
    UPLOAD_COMPLETED = "upload:completed"
    UPLOAD_FAILED = "upload:failed"
