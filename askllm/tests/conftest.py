from __future__ import annotations

import os
import sys
from collections.abc import Generator
from pathlib import Path
from typing import List

import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("CHUTES_API_TOKEN", "test-token")
os.environ.setdefault("OTEL_SDK_DISABLED", "true")

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from askllm import main
from askllm.clients import CompletionClientError, CompletionResult


class DummyCompletionClient:
    """Stand-in for the upstream client that records every query it receives."""

    def __init__(self, content: str = "", error: CompletionClientError | None = None) -> None:
        self.content = content
        self.error = error
        self.queries: List[str] = []

    @property
    def calls(self) -> int:
        return len(self.queries)

    async def complete(self, query: str) -> CompletionResult:
        self.queries.append(query)
        if self.error is not None:
            raise self.error
        content = self.content or f"response to {query}"
        return CompletionResult(content=content, model="dummy-model", usage={"total_tokens": 42})


@pytest.fixture()
def dummy_completion_client() -> DummyCompletionClient:
    return DummyCompletionClient()


@pytest.fixture()
def client(dummy_completion_client: DummyCompletionClient) -> Generator[TestClient, None, None]:
    main.app.dependency_overrides[main.get_completion_client] = lambda: dummy_completion_client
    with TestClient(main.app) as http_client:
        yield http_client
    main.app.dependency_overrides.clear()


@pytest.fixture()
def client_for():
    """Build a test client whose completion client is the given object."""

    opened: List[TestClient] = []

    def _build(completion_client) -> TestClient:
        main.app.dependency_overrides[main.get_completion_client] = lambda: completion_client
        http_client = TestClient(main.app)
        http_client.__enter__()
        opened.append(http_client)
        return http_client

    yield _build
    for http_client in opened:
        http_client.__exit__(None, None, None)
    main.app.dependency_overrides.clear()


@pytest.fixture()
def dummy_factory():
    return DummyCompletionClient
