#!/usr/bin/env python3
"""AskLLM gateway: relay a ``?q=`` query to the hosted LLM and return its answer."""
from __future__ import annotations

from dotenv import load_dotenv

load_dotenv()

import logging
import os
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional, Tuple

import structlog
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from opentelemetry._logs import set_logger_provider
from opentelemetry.exporter.otlp.proto.http._log_exporter import OTLPLogExporter
from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
from opentelemetry.sdk._logs.export import BatchLogRecordProcessor
from opentelemetry.sdk.resources import Resource
from starlette.middleware.base import BaseHTTPMiddleware
from structlog.contextvars import bind_contextvars, unbind_contextvars
from structlog.stdlib import ProcessorFormatter

from .clients import (
    CompletionClient,
    CompletionClientError,
    CompletionResult,
    MalformedResponseError,
    PayloadEncodeError,
    UpstreamStatusError,
    UpstreamUnreachableError,
)
from .config import Settings, get_settings
from .observability import Observability
from .telemetry import configure_tracing, correlation_id_var

SERVICE_NAME = "askllm-gateway"

MISSING_QUERY_MESSAGE = "Please provide a query with the 'q' parameter. Example: /?q=Hello"
INTERNAL_ERROR_MESSAGE = "Internal server error."

# Checked in order; the first matching class wins.
FAILURE_RESPONSES: Tuple[Tuple[type, str, str], ...] = (
    (PayloadEncodeError, "encode_failure", INTERNAL_ERROR_MESSAGE),
    (
        UpstreamUnreachableError,
        "upstream_unreachable",
        "Failed to contact DeepSeek LLM. Please try again later.",
    ),
    (
        UpstreamStatusError,
        "upstream_error",
        "Error from DeepSeek LLM. Please try again later.",
    ),
    (
        MalformedResponseError,
        "malformed_response",
        "Internal server error: invalid response format from DeepSeek LLM.",
    ),
    (CompletionClientError, "client_error", INTERNAL_ERROR_MESSAGE),
)

logger = logging.getLogger("askllm")


class CorrelationIdFilter(logging.Filter):
    """Inject the correlation identifier into log records."""

    def filter(self, record: logging.LogRecord) -> bool:  # pragma: no cover - logging helper
        record.correlation_id = correlation_id_var.get() or "unknown"
        return True


def _add_correlation_id(_: Any, __: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:  # pragma: no cover - logging helper
    event_dict.setdefault("correlation_id", correlation_id_var.get() or "unknown")
    return event_dict


def _configure_otlp_logging(service_name: str) -> None:
    if not (
        os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
        or os.getenv("OTEL_EXPORTER_OTLP_LOGS_ENDPOINT")
    ):
        return

    root_logger = logging.getLogger()
    try:
        resource = Resource.create(
            {"service.name": os.getenv("OTEL_SERVICE_NAME", service_name)}
        )
        logger_provider = LoggerProvider(resource=resource)
        exporter = OTLPLogExporter()
        logger_provider.add_log_record_processor(BatchLogRecordProcessor(exporter))
        set_logger_provider(logger_provider)
        otlp_handler = LoggingHandler(level=logging.NOTSET, logger_provider=logger_provider)
        root_logger.addHandler(otlp_handler)
        root_logger.debug(
            "OTLP log exporter configured",
            extra={"service_name": resource.attributes.get("service.name")},
        )
    except Exception:  # pragma: no cover - exporter is optional
        root_logger.exception("Failed to configure OTLP log exporter")


def configure_logging(service_name: str = SERVICE_NAME) -> None:
    timestamper = structlog.processors.TimeStamper(fmt="iso", utc=True)
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        _add_correlation_id,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.ExtraAdder(),
        timestamper,
        structlog.processors.format_exc_info,
    ]

    formatter = ProcessorFormatter(
        processor=structlog.processors.JSONRenderer(),
        foreign_pre_chain=shared_processors,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    handler.addFilter(CorrelationIdFilter())

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(os.getenv("ASKLLM_LOG_LEVEL", "INFO").upper())

    structlog.configure(
        processors=shared_processors + [ProcessorFormatter.wrap_for_formatter],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    _configure_otlp_logging(service_name)


configure_logging()


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Attach correlation identifiers and latency to responses."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        correlation_id = request.headers.get("X-Correlation-ID", str(uuid.uuid4()))
        token = correlation_id_var.set(correlation_id)
        bind_contextvars(correlation_id=correlation_id)
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            logger.exception("Unhandled exception during request", extra={"path": request.url.path})
            raise
        finally:
            duration_ms = (time.perf_counter() - start) * 1000
            correlation_id_var.reset(token)
            unbind_contextvars("correlation_id")
            logger.info(
                "Request completed",
                extra={
                    "path": request.url.path,
                    "method": request.method,
                    "duration_ms": round(duration_ms, 2),
                },
            )

        response.headers["X-Correlation-ID"] = correlation_id
        response.headers["X-Process-Time-ms"] = f"{duration_ms:.2f}"
        return response


# Raises at import when CHUTES_API_TOKEN is missing, so the process never serves.
settings = get_settings()


def build_completion_client(settings: Settings) -> CompletionClient:
    return CompletionClient(
        api_key=settings.api_token,
        endpoint=settings.upstream_url,
        model=settings.model,
        timeout=settings.timeout_seconds,
        max_tokens=settings.max_tokens,
        temperature=settings.temperature,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    client = build_completion_client(get_settings())
    app.state.completion_client = client
    logger.info(
        "AskLLM gateway ready",
        extra={"upstream": client.endpoint, "model": client.model},
    )
    try:
        yield
    finally:
        await client.aclose()


app = FastAPI(title="AskLLM Gateway", version="0.1.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(CorrelationIdMiddleware)
observability = Observability(app, SERVICE_NAME)
app.state.observability = observability
configure_tracing(app, SERVICE_NAME)


# Dependency factories -----------------------------------------------------

def get_completion_client(request: Request) -> CompletionClient:
    return request.app.state.completion_client


# Routes -------------------------------------------------------------------


def _describe_failure(exc: CompletionClientError) -> Tuple[str, str]:
    for error_type, kind, message in FAILURE_RESPONSES:
        if isinstance(exc, error_type):
            return kind, message
    return "client_error", INTERNAL_ERROR_MESSAGE  # pragma: no cover - CompletionClientError is last


@app.get("/", response_class=PlainTextResponse)
async def ask(
    q: Optional[str] = None,
    completion_client: CompletionClient = Depends(get_completion_client),
) -> PlainTextResponse:
    """Answer the ``q`` query parameter with the model's reply as plain text."""

    if not q:
        return PlainTextResponse(MISSING_QUERY_MESSAGE, status_code=400)

    logger.info("Received query: %s", q)
    try:
        result: CompletionResult = await completion_client.complete(q)
    except CompletionClientError as exc:
        kind, message = _describe_failure(exc)
        observability.record_completion(kind)
        logger.error("Completion failed (%s): %s", kind, exc)
        return PlainTextResponse(message, status_code=500)

    observability.record_completion("fallback" if result.fallback else "answer")
    if result.fallback:
        logger.info("Model did not provide a text response")
    else:
        logger.info("Model response: %s", result.content)
    return PlainTextResponse(result.content, status_code=200)


@app.get("/healthz")
async def healthz(settings: Settings = Depends(get_settings)) -> Dict[str, str]:
    """Simple readiness probe for container orchestrators."""

    return {"status": "ok", "upstream": settings.upstream_url, "model": settings.model}


def run() -> None:
    """Serve the gateway with uvicorn on the configured host and port."""

    import uvicorn

    logger.info("AskLLM gateway starting on %s:%s", settings.host, settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    run()
