"""
OpenAI-backed oracle using chat completions with strict JSON-schema output.
"""

import json
import re
from typing import Any, Optional

import structlog
from openai import AsyncOpenAI

from csv_ingest.config import settings
from csv_ingest.oracle.base import FallbackOracle, ModelChoice, OracleRequest

logger = structlog.get_logger(__name__)

_JSON_FENCE_RE = re.compile(r"^\s*```(?:json)?\s*|\s*```\s*$", re.IGNORECASE)


def strip_json_fences(text: str) -> str:
    return _JSON_FENCE_RE.sub("", text).strip()


class OpenAIOracle(FallbackOracle):

    def __init__(
        self,
        client: Optional[AsyncOpenAI] = None,
        models: Optional[list[ModelChoice]] = None,
        timeout_seconds: Optional[float] = None,
        temperature: Optional[float] = None,
    ):
        super().__init__(models=models, timeout_seconds=timeout_seconds)
        self.client = client or AsyncOpenAI(api_key=settings.OPENAI_API_KEY)
        self.temperature = temperature if temperature is not None else settings.ORACLE_TEMPERATURE

    async def _call_model(self, model: str, request: OracleRequest) -> dict[str, Any]:
        response = await self.client.chat.completions.create(
            model=model,
            temperature=self.temperature,
            messages=[
                {"role": "system", "content": request.instructions},
                {"role": "user", "content": request.input_text},
            ],
            response_format={
                "type": "json_schema",
                "json_schema": {
                    "name": request.schema_name,
                    "schema": request.response_schema,
                    "strict": True,
                },
            },
        )

        message = response.choices[0].message
        if getattr(message, "refusal", None):
            raise ValueError(f"model refused: {message.refusal}")
        content = message.content or ""
        if not content.strip():
            raise ValueError("empty response")

        data = json.loads(strip_json_fences(content))
        if not isinstance(data, dict):
            raise ValueError(f"expected a JSON object, got {type(data).__name__}")

        usage = getattr(response, "usage", None)
        if usage is not None:
            logger.debug(
                "oracle_usage",
                kind=request.kind.value,
                model=model,
                prompt_tokens=usage.prompt_tokens,
                completion_tokens=usage.completion_tokens,
            )
        return data
