import os
import unittest
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
from openai import APIConnectionError, APIStatusError, APITimeoutError

from medscribe.config import GatewayConfig
from medscribe.errors import GatewayError, ResponseParseError, SchemaViolation
from medscribe.llm_client import LlmJSONClient
from medscribe.prompt_builder import build_assess_severity_messages
from medscribe.schemas import SeverityAssessment

REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def _response(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def _client(*side_effect, **kwargs) -> LlmJSONClient:
    sdk = MagicMock()
    sdk.chat.completions.create = AsyncMock(side_effect=list(side_effect))
    return LlmJSONClient(client=sdk, **kwargs)


class LlmJSONClientTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.messages, self.schema = build_assess_severity_messages("Hypertension", "history of hypertension")

    async def test_returns_raw_text_and_requests_json_object(self) -> None:
        client = _client(_response('{"severity": "low", "reason": "controlled"}'))
        text = await client.complete(self.messages, self.schema)
        self.assertEqual(text, '{"severity": "low", "reason": "controlled"}')
        kwargs = client.client.chat.completions.create.await_args.kwargs
        self.assertEqual(kwargs["response_format"], {"type": "json_object"})
        self.assertEqual(kwargs["messages"], self.messages)
        self.assertEqual(kwargs["model"], "gpt-4.1")
        self.assertEqual(kwargs["temperature"], 0.3)

    async def test_json_schema_mode_sends_schema(self) -> None:
        client = _client(_response('{"severity": "low", "reason": "r"}'), response_format="json_schema")
        await client.complete(self.messages, self.schema)
        kwargs = client.client.chat.completions.create.await_args.kwargs
        self.assertEqual(kwargs["response_format"], {"type": "json_schema", "json_schema": self.schema})

    async def test_empty_body_is_gateway_error(self) -> None:
        for content in (None, "", "   "):
            client = _client(_response(content))
            with self.assertRaises(GatewayError):
                await client.complete(self.messages, self.schema)

    async def test_no_choices_is_gateway_error(self) -> None:
        client = _client(SimpleNamespace(choices=[]))
        with self.assertRaises(GatewayError):
            await client.complete(self.messages, self.schema)

    async def test_connection_failure_is_not_retried_by_default(self) -> None:
        client = _client(APIConnectionError(request=REQUEST), _response("{}"))
        with self.assertRaises(GatewayError) as ctx:
            await client.complete(self.messages, self.schema)
        self.assertIsInstance(ctx.exception.__cause__, APIConnectionError)
        self.assertEqual(client.client.chat.completions.create.await_count, 1)

    async def test_timeout_is_gateway_error(self) -> None:
        client = _client(APITimeoutError(request=REQUEST))
        with self.assertRaises(GatewayError):
            await client.complete(self.messages, self.schema)

    async def test_non_success_status_is_gateway_error(self) -> None:
        error = APIStatusError("server error", response=httpx.Response(500, request=REQUEST), body=None)
        client = _client(error)
        with self.assertRaises(GatewayError) as ctx:
            await client.complete(self.messages, self.schema)
        self.assertIs(ctx.exception.__cause__, error)

    async def test_transport_retries_when_enabled(self) -> None:
        client = _client(
            APIConnectionError(request=REQUEST),
            _response('{"severity": "high", "reason": "r"}'),
            max_transport_attempts=2,
        )
        text = await client.complete(self.messages, self.schema)
        self.assertIn("high", text)
        self.assertEqual(client.client.chat.completions.create.await_count, 2)

    async def test_status_errors_are_never_retried(self) -> None:
        error = APIStatusError("bad request", response=httpx.Response(400, request=REQUEST), body=None)
        client = _client(error, _response("{}"), max_transport_attempts=3)
        with self.assertRaises(GatewayError):
            await client.complete(self.messages, self.schema)
        self.assertEqual(client.client.chat.completions.create.await_count, 1)

    async def test_create_json_rejects_invalid_json(self) -> None:
        client = _client(_response("severity: low"))
        with self.assertRaises(ResponseParseError):
            await client.create_json(self.messages, self.schema)

    async def test_create_and_validate(self) -> None:
        client = _client(_response('{"severity": "medium", "reason": "chronic"}'))
        resp, raw = await client.create_and_validate(self.messages, self.schema, SeverityAssessment)
        self.assertEqual(resp, SeverityAssessment(severity="medium", reason="chronic"))
        self.assertEqual(raw, '{"severity": "medium", "reason": "chronic"}')

    async def test_create_and_validate_rejects_bad_shape(self) -> None:
        client = _client(_response('{"severity": "severe", "reason": "x"}'))
        with self.assertRaises(SchemaViolation):
            await client.create_and_validate(self.messages, self.schema, SeverityAssessment)


class LlmJSONClientConfigTests(unittest.TestCase):
    def test_rejects_unknown_response_format(self) -> None:
        with self.assertRaises(ValueError):
            LlmJSONClient(client=MagicMock(), response_format="text")  # type: ignore[arg-type]

    def test_rejects_zero_attempts(self) -> None:
        with self.assertRaises(ValueError):
            LlmJSONClient(client=MagicMock(), max_transport_attempts=0)

    @patch.dict(os.environ, {"OPENAI_API_KEY": "sk-test"})
    def test_from_config(self) -> None:
        cfg = GatewayConfig(model="gpt-4o-mini", temperature=0.0, timeout=5, max_transport_attempts=2)
        client = LlmJSONClient.from_config(cfg)
        self.assertEqual(client.model, "gpt-4o-mini")
        self.assertEqual(client.temperature, 0.0)
        self.assertEqual(client.timeout, 5)
        self.assertEqual(client.max_transport_attempts, 2)


if __name__ == "__main__":
    unittest.main()
