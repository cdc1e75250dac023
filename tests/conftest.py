"""
Shared test fixtures.
"""

import json
import uuid

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from csv_ingest.models.database import init_db
from csv_ingest.oracle.base import ClassificationOracle, OracleError, OracleKind, OracleRequest
from csv_ingest.notify.base import ProgressSink
from csv_ingest.storage.crypto import Cipher


SAMPLE_CSV = (
    "Data;Descrizione;Dare;Avere;Divisa\n"
    "01/03/2024;POS ESSELUNGA MILANO;45,20;;EUR\n"
    "02/03/2024;STIPENDIO ACME SRL;;2.500,00;EUR\n"
    "03/03/2024;Saldo contabile;;1.234,56;EUR\n"
    "04/03/2024;BONIFICO A FAVORE DI MARIO ROSSI IBAN IT60X;150,00;;EUR\n"
    "invalid;BROKEN ROW;5,00;;EUR\n"
)

SAMPLE_MAPPING = {
    "mappings": {
        "Date": {"sourceField": "Data", "format": "DD/MM/YYYY"},
        "FieldForOutgoing": {"sourceField": "Dare", "format": "decimal comma, period thousands"},
        "FieldForIncoming": {"sourceField": "Avere", "format": "decimal comma, period thousands"},
        "Currency": {"sourceField": "Divisa"},
        "Description": {"sourceField": "Descrizione"},
        "Code": {"sourceField": "none"},
    },
    "confidence": 0.92,
    "notes": "Italian export with separate debit and credit columns",
}


def default_category(item: dict) -> dict:
    """Deterministic stand-in for a categorization model."""
    desc = item["description"]
    if "saldo" in desc.lower():
        category, sub, merchant = "Balance", "Account Balance", "Unknown"
    elif item["kind"] == "+":
        category, sub, merchant = "Income", "Salary", desc.split()[1] if len(desc.split()) > 1 else desc
    else:
        category, sub, merchant = "Food & Dining", "Groceries", desc.split()[-1]
    return {
        "transactionId": item["transactionId"],
        "category": category,
        "subcategory": sub,
        "merchantName": merchant,
        "merchantType": "test",
        "confidence": 0.9,
    }


class ScriptedOracle(ClassificationOracle):
    """
    Answers oracle requests from fixed data.
    separator=None or mapping=False make that request kind fail.
    fail_when(items) returning True makes a categorization batch fail.
    """

    def __init__(self, separator=";", mapping=None, categorize=default_category, fail_when=None):
        self.separator = separator
        self.mapping = SAMPLE_MAPPING if mapping is None else mapping
        self.categorize = categorize
        self.fail_when = fail_when
        self.calls: list[OracleKind] = []
        self.requests: list[OracleRequest] = []
        self.categorized_items: list[dict] = []

    async def classify(self, request: OracleRequest) -> dict:
        self.calls.append(request.kind)
        self.requests.append(request)

        if request.kind == OracleKind.DETECT_SEPARATOR:
            if self.separator is None:
                raise OracleError(request.kind, [("scripted", "unavailable")])
            return {"separator": self.separator, "confidence": 0.97}

        if request.kind == OracleKind.MAP_FIELDS:
            if self.mapping is False:
                raise OracleError(request.kind, [("scripted", "unavailable")])
            return self.mapping

        items = json.loads(request.input_text)
        if self.fail_when and self.fail_when(items):
            raise OracleError(request.kind, [("scripted", "batch rejected")])
        self.categorized_items.extend(items)
        results = [self.categorize(item) for item in items]
        return {
            "categorizedTransactions": results,
            "batchSummary": {
                "totalTransactions": len(results),
                "avgConfidence": 0.9,
                "detectedPatterns": [],
            },
        }


class RecordingSink(ProgressSink):
    """Keeps every progress event in memory."""

    def __init__(self):
        self.events = []

    async def notify(self, user_id, event, payload):
        self.events.append((user_id, event, payload))

    def of(self, event):
        return [payload for _, e, payload in self.events if e == event]


@pytest.fixture
def cipher():
    return Cipher(key_hex="11" * 32, salt="test-salt")


@pytest.fixture
def oracle():
    return ScriptedOracle()


@pytest.fixture
def scripted_oracle():
    """The oracle class itself, for tests that need custom behaviour."""
    return ScriptedOracle


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def user_id():
    return uuid.uuid4()


@pytest_asyncio.fixture
async def db_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, expire_on_commit=False)


@pytest.fixture
def sample_csv():
    return SAMPLE_CSV


@pytest.fixture
def sample_mapping():
    return json.loads(json.dumps(SAMPLE_MAPPING))
