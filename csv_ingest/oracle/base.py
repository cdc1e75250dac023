"""
Classification oracle interface.

The pipeline asks an external model three kinds of question (which
delimiter, which columns, which categories) and always receives JSON
shaped by the request's schema. Backing models are tried in priority
order; the first one that answers wins.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

import structlog

from csv_ingest.config import settings
from csv_ingest.observability.metrics import oracle_calls_total, oracle_latency_seconds

logger = structlog.get_logger(__name__)


class OracleKind(str, Enum):
    DETECT_SEPARATOR = "detect_separator"
    MAP_FIELDS = "map_fields"
    CATEGORIZE_BATCH = "categorize_batch"


@dataclass
class OracleRequest:
    kind: OracleKind
    schema_name: str
    instructions: str
    input_text: str
    response_schema: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ModelChoice:
    name: str
    priority: int = 0


class OracleError(Exception):
    """Raised when every configured model failed to answer a request."""

    def __init__(self, kind: OracleKind, attempts: list[tuple[str, str]]):
        self.kind = kind
        self.attempts = attempts
        detail = "; ".join(f"{model}: {err}" for model, err in attempts) or "no models configured"
        super().__init__(f"[{kind.value}] all oracle models failed ({detail})")


class ClassificationOracle(ABC):
    """Anything that can answer an OracleRequest with schema-shaped JSON."""

    @abstractmethod
    async def classify(self, request: OracleRequest) -> dict[str, Any]:
        """
        Return the decoded JSON answer.
        Must raise OracleError when no answer could be produced.
        """
        ...


def default_models() -> list[ModelChoice]:
    return [ModelChoice(name, priority) for priority, name in enumerate(settings.oracle_model_list)]


class FallbackOracle(ClassificationOracle):
    """
    Tries an ordered list of models, each under its own timeout.
    Subclasses implement a single model call.
    """

    def __init__(
        self,
        models: Optional[list[ModelChoice]] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.models = sorted(models if models is not None else default_models(), key=lambda m: m.priority)
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else settings.ORACLE_TIMEOUT_SECONDS

    @abstractmethod
    async def _call_model(self, model: str, request: OracleRequest) -> dict[str, Any]:
        ...

    async def classify(self, request: OracleRequest) -> dict[str, Any]:
        attempts: list[tuple[str, str]] = []

        for choice in self.models:
            start = time.monotonic()
            try:
                result = await asyncio.wait_for(
                    self._call_model(choice.name, request),
                    timeout=self.timeout_seconds,
                )
            except asyncio.TimeoutError:
                error = f"timed out after {self.timeout_seconds}s"
            except Exception as e:
                error = f"{type(e).__name__}: {e}"
            else:
                oracle_calls_total.labels(request.kind.value, choice.name, "ok").inc()
                oracle_latency_seconds.labels(request.kind.value, choice.name).observe(time.monotonic() - start)
                logger.debug("oracle_answered", kind=request.kind.value, model=choice.name)
                return result

            oracle_calls_total.labels(request.kind.value, choice.name, "error").inc()
            oracle_latency_seconds.labels(request.kind.value, choice.name).observe(time.monotonic() - start)
            logger.warning(
                "oracle_attempt_failed",
                kind=request.kind.value,
                model=choice.name,
                error=error,
            )
            attempts.append((choice.name, error))

        raise OracleError(request.kind, attempts)
