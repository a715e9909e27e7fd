from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Literal, Optional, Tuple, Type, TypeVar

from openai import AsyncOpenAI, APIConnectionError, APIError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .config import GatewayConfig
from .errors import GatewayError
from .validation import parse_json_object, validate_response

logger = logging.getLogger(__name__)

T = TypeVar("T")

ResponseFormat = Literal["json_object", "json_schema"]


class JSONModelGateway:
    """Narrow interface to the language-model service.

    Subclasses implement ``complete``; parsing and shape validation are shared.
    """

    async def complete(self, messages: List[Dict[str, Any]], json_schema: Optional[Dict] = None) -> str:
        raise NotImplementedError

    async def create_json(
        self,
        messages: List[Dict[str, Any]],
        json_schema: Optional[Dict] = None,
    ) -> Tuple[Dict[str, Any], str]:
        content = await self.complete(messages, json_schema)
        return parse_json_object(content), content

    async def create_and_validate(
        self,
        messages: List[Dict[str, Any]],
        json_schema: Optional[Dict],
        response_type: Type[T],
    ) -> Tuple[T, str]:
        """
        Create a JSON response and validate it against a declared shape.

        Args:
            messages: Chat messages (system + user)
            json_schema: JSON schema for structured output, used in json_schema mode
            response_type: Annotated dataclass describing the expected reply

        Returns:
            Tuple of (validated instance, raw response text)

        Raises:
            GatewayError, ResponseParseError, SchemaViolation
        """
        obj, raw_text = await self.create_json(messages, json_schema)
        return validate_response(obj, response_type), raw_text


class LlmJSONClient(JSONModelGateway):
    def __init__(
        self,
        model: str = "gpt-4.1",
        temperature: float = 0.3,
        timeout: float = 60,
        response_format: ResponseFormat = "json_object",
        max_transport_attempts: int = 1,
        client: Optional[AsyncOpenAI] = None,
    ):
        if response_format not in ("json_object", "json_schema"):
            raise ValueError(f"Unsupported response_format: {response_format}")
        if max_transport_attempts < 1:
            raise ValueError("max_transport_attempts must be >= 1")
        # The SDK enforces the per-call timeout; an expired call raises APITimeoutError
        self.client = client if client is not None else AsyncOpenAI(timeout=timeout, max_retries=0)
        self.model = model
        self.temperature = temperature
        self.timeout = timeout
        self.response_format = response_format
        self.max_transport_attempts = max_transport_attempts

    @classmethod
    def from_config(cls, config: GatewayConfig) -> "LlmJSONClient":
        return cls(
            model=config.model,
            temperature=config.temperature,
            timeout=config.timeout,
            response_format=config.response_format,
            max_transport_attempts=config.max_transport_attempts,
        )

    def _response_format(self, json_schema: Optional[Dict]) -> Dict[str, Any]:
        if self.response_format == "json_schema" and json_schema is not None:
            return {"type": "json_schema", "json_schema": json_schema}
        return {"type": "json_object"}

    async def complete(self, messages: List[Dict[str, Any]], json_schema: Optional[Dict] = None) -> str:
        # Only connection-level failures (including timeouts) are retried, and
        # only when max_transport_attempts > 1
        retrying = AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(self.max_transport_attempts),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            retry=retry_if_exception_type(APIConnectionError),
        )
        started = time.perf_counter()
        try:
            async for attempt in retrying:
                with attempt:
                    response = await self.client.chat.completions.create(
                        model=self.model,
                        temperature=self.temperature,
                        messages=messages,
                        response_format=self._response_format(json_schema),
                    )
        except APIError as e:
            raise GatewayError(f"OpenAI request failed: {e}") from e

        logger.debug("model %s replied in %.0f ms", self.model, (time.perf_counter() - started) * 1000)

        try:
            content = response.choices[0].message.content
        except (IndexError, AttributeError) as e:
            raise GatewayError(f"No content in response: {e}") from e
        if not content or not content.strip():
            raise GatewayError("Model returned an empty response body")
        return content
