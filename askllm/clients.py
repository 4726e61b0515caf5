"""Client for the hosted chat-completion API."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

import httpx
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from pydantic import ValidationError

from .models import CompletionRequest, CompletionResponse
from .telemetry import get_correlation_id

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

FALLBACK_ANSWER = "DeepSeek LLM could not generate a response to your query."


class CompletionClientError(RuntimeError):
    """Raised when the completion client fails to fulfil a request."""


class PayloadEncodeError(CompletionClientError):
    """The outbound request could not be serialised."""


class UpstreamUnreachableError(CompletionClientError):
    """The provider could not be reached (DNS, refused connection, timeout)."""


class UpstreamStatusError(CompletionClientError):
    """The provider answered with a non-2xx status."""

    def __init__(self, status_code: int, body: str) -> None:
        super().__init__(f"Upstream returned HTTP {status_code}")
        self.status_code = status_code
        self.body = body


class MalformedResponseError(CompletionClientError):
    """A 2xx response body did not match the completion envelope."""


@dataclass
class CompletionResult:
    """Container for the answer relayed to the caller."""

    content: str
    model: str
    finish_reason: Optional[str] = None
    usage: Dict[str, int] = field(default_factory=dict)
    fallback: bool = False


class CompletionClient:
    """Async wrapper around the provider's ``/v1/chat/completions`` endpoint.

    One instance is shared by every request handled by the process. The
    underlying :class:`httpx.AsyncClient` pools connections and is safe to use
    from concurrent tasks; call :meth:`aclose` once at shutdown.
    """

    def __init__(
        self,
        api_key: str,
        endpoint: str,
        model: str,
        timeout: float = 60.0,
        max_tokens: int = 1024,
        temperature: float = 0.7,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._api_key = api_key
        self._endpoint = endpoint
        self._model = model
        self._timeout = timeout
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._http = http_client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))

    @property
    def model(self) -> str:
        return self._model

    @property
    def endpoint(self) -> str:
        return self._endpoint

    async def aclose(self) -> None:
        await self._http.aclose()

    def build_request(self, query: str) -> CompletionRequest:
        return CompletionRequest.for_query(
            query,
            model=self._model,
            max_tokens=self._max_tokens,
            temperature=self._temperature,
        )

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._api_key}",
        }
        correlation_id = get_correlation_id()
        if correlation_id:
            headers["X-Correlation-ID"] = correlation_id
        return headers

    async def _post(self, query: str) -> CompletionResult:
        try:
            payload = self.build_request(query).model_dump_json()
        except (ValueError, TypeError) as exc:
            logger.exception("Failed to encode completion request")
            raise PayloadEncodeError(str(exc)) from exc

        # One deadline for the whole exchange, body included.
        try:
            response = await asyncio.wait_for(
                self._http.post(
                    self._endpoint,
                    content=payload,
                    headers=self._headers(),
                    timeout=self._timeout,
                ),
                self._timeout,
            )
        except asyncio.TimeoutError as exc:
            logger.error("Upstream %s did not answer within %ss", self._endpoint, self._timeout)
            raise UpstreamUnreachableError(f"No answer within {self._timeout}s") from exc
        except httpx.TransportError as exc:
            logger.error("Failed to contact upstream %s: %r", self._endpoint, exc)
            raise UpstreamUnreachableError(str(exc)) from exc
        except httpx.HTTPError as exc:
            logger.error("Failed to read upstream response from %s: %r", self._endpoint, exc)
            raise CompletionClientError(str(exc)) from exc

        if not response.is_success:
            logger.error(
                "Upstream returned error %s for POST %s: %s",
                response.status_code,
                self._endpoint,
                response.text,
            )
            raise UpstreamStatusError(response.status_code, response.text)

        try:
            envelope = CompletionResponse.model_validate_json(response.content)
        except ValidationError as exc:
            logger.error("Invalid completion payload from upstream: %s", exc)
            raise MalformedResponseError(str(exc)) from exc

        model = envelope.model or self._model
        usage = envelope.usage.model_dump()
        answer = envelope.answer_text()
        if answer is None:
            logger.warning("Upstream completion did not include any text")
            return CompletionResult(content=FALLBACK_ANSWER, model=model, usage=usage, fallback=True)

        return CompletionResult(
            content=answer,
            model=model,
            finish_reason=envelope.choices[0].finish_reason,
            usage=usage,
        )

    async def complete(self, query: str) -> CompletionResult:
        """Ask ``query`` as a single user turn and return the first answer."""

        span_attributes = {
            "llm.system": "chutes",
            "llm.operation": "chat.completion",
            "llm.model": self._model,
        }
        correlation_id = get_correlation_id()
        if correlation_id:
            span_attributes["correlation.id"] = correlation_id

        with tracer.start_as_current_span("Chutes.chatCompletion") as span:
            for key, value in span_attributes.items():
                span.set_attribute(key, value)
            try:
                result = await self._post(query)
            except CompletionClientError as exc:
                span.record_exception(exc)
                span.set_status(Status(StatusCode.ERROR, str(exc)))
                if isinstance(exc, UpstreamStatusError):
                    span.set_attribute("http.status_code", exc.status_code)
                raise
            span.set_status(Status(StatusCode.OK))
            span.set_attribute("llm.fallback", result.fallback)
            if result.finish_reason:
                span.set_attribute("llm.finish_reason", result.finish_reason)
            for usage_key, usage_value in result.usage.items():
                span.set_attribute(f"llm.usage.{usage_key}", usage_value)
            return result
