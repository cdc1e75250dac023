"""
Tests for ordered model fallback and the OpenAI adapter.
"""

import asyncio
from types import SimpleNamespace

import pytest

from csv_ingest.oracle.base import FallbackOracle, ModelChoice, OracleError, OracleKind
from csv_ingest.oracle.openai_oracle import OpenAIOracle, strip_json_fences
from csv_ingest.oracle.prompts import categorization_request, mapping_request, separator_request


class StubOracle(FallbackOracle):
    """Behaviour per model name: a dict answer, an exception, or 'hang'."""

    def __init__(self, behaviour, **kwargs):
        super().__init__(**kwargs)
        self.behaviour = behaviour
        self.tried = []

    async def _call_model(self, model, request):
        self.tried.append(model)
        outcome = self.behaviour[model]
        if outcome == "hang":
            await asyncio.sleep(10)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class TestFallbackOracle:
    """Test model fallback and retry ordering."""

    async def test_priority_order(self):
        oracle = StubOracle(
            {"primary": {"separator": ";", "confidence": 1}, "backup": {"separator": ",", "confidence": 1}},
            models=[ModelChoice("backup", 1), ModelChoice("primary", 0)],
        )
        answer = await oracle.classify(separator_request(["a;b"]))
        assert answer["separator"] == ";"
        assert oracle.tried == ["primary"]

    async def test_falls_through_on_error(self):
        oracle = StubOracle(
            {"primary": RuntimeError("rate limited"), "backup": {"separator": ",", "confidence": 1}},
            models=[ModelChoice("primary", 0), ModelChoice("backup", 1)],
        )
        answer = await oracle.classify(separator_request(["a,b"]))
        assert answer["separator"] == ","
        assert oracle.tried == ["primary", "backup"]

    async def test_timeout_counts_as_failure(self):
        oracle = StubOracle(
            {"slow": "hang", "fast": {"separator": "|", "confidence": 1}},
            models=[ModelChoice("slow", 0), ModelChoice("fast", 1)],
            timeout_seconds=0.05,
        )
        answer = await oracle.classify(separator_request(["a|b"]))
        assert answer["separator"] == "|"

    async def test_all_fail(self):
        oracle = StubOracle(
            {"a": ValueError("bad json"), "b": RuntimeError("down")},
            models=[ModelChoice("a", 0), ModelChoice("b", 1)],
        )
        with pytest.raises(OracleError) as exc:
            await oracle.classify(separator_request(["x"]))
        assert exc.value.kind == OracleKind.DETECT_SEPARATOR
        assert [model for model, _ in exc.value.attempts] == ["a", "b"]

    async def test_no_models(self):
        with pytest.raises(OracleError):
            await StubOracle({}, models=[]).classify(separator_request(["x"]))


def _completion(content, refusal=None):
    message = SimpleNamespace(content=content, refusal=refusal)
    usage = SimpleNamespace(prompt_tokens=10, completion_tokens=5)
    return SimpleNamespace(choices=[SimpleNamespace(message=message)], usage=usage)


class FakeCompletions:

    def __init__(self, responses):
        self.responses = list(responses)
        self.requests = []

    async def create(self, **kwargs):
        self.requests.append(kwargs)
        return self.responses.pop(0)


def _client(responses):
    completions = FakeCompletions(responses)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions)), completions


class TestOpenAIOracle:
    """Test the structured-output client adapter."""

    async def test_strict_schema_request(self):
        client, completions = _client([_completion('{"separator": ";", "confidence": 0.9}')])
        oracle = OpenAIOracle(client=client, models=[ModelChoice("m1", 0)])

        answer = await oracle.classify(separator_request(["a;b"]))

        assert answer == {"separator": ";", "confidence": 0.9}
        fmt = completions.requests[0]["response_format"]
        assert fmt["type"] == "json_schema"
        assert fmt["json_schema"]["strict"] is True
        assert completions.requests[0]["model"] == "m1"

    async def test_fenced_json_accepted(self):
        client, _ = _client([_completion('```json\n{"separator": ","}\n```')])
        oracle = OpenAIOracle(client=client, models=[ModelChoice("m1", 0)])
        assert await oracle.classify(separator_request(["a,b"])) == {"separator": ","}

    async def test_refusal_then_fallback(self):
        client, completions = _client([
            _completion(None, refusal="cannot help"),
            _completion('{"separator": "|", "confidence": 1}'),
        ])
        oracle = OpenAIOracle(client=client, models=[ModelChoice("m1", 0), ModelChoice("m2", 1)])

        answer = await oracle.classify(separator_request(["a|b"]))

        assert answer["separator"] == "|"
        assert [r["model"] for r in completions.requests] == ["m1", "m2"]

    async def test_non_object_rejected(self):
        client, _ = _client([_completion("[1, 2]")])
        oracle = OpenAIOracle(client=client, models=[ModelChoice("m1", 0)])
        with pytest.raises(OracleError):
            await oracle.classify(separator_request(["x"]))

    def test_strip_fences(self):
        assert strip_json_fences('```\n{"a": 1}\n```') == '{"a": 1}'
        assert strip_json_fences('{"a": 1}') == '{"a": 1}'


class TestPrompts:
    """Test oracle request construction."""

    def _all_required(self, schema):
        if schema.get("type") == "object":
            assert set(schema["required"]) == set(schema["properties"])
            assert schema["additionalProperties"] is False
            for prop in schema["properties"].values():
                self._all_required(prop)
        if schema.get("type") == "array":
            self._all_required(schema["items"])

    @pytest.mark.parametrize("request_", [
        separator_request(["a;b"]),
        mapping_request(["a"], {"a": "1"}),
        categorization_request([{"transactionId": "0"}]),
    ])
    def test_schemas_are_strict(self, request_):
        self._all_required(request_.response_schema)

    def test_mapping_input_is_json(self):
        request = mapping_request(["Data"], {"Data": "01/03/2024"})
        assert request.kind == OracleKind.MAP_FIELDS
        assert '"headers"' in request.input_text
