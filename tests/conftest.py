"""tests/conftest.py

Общие фикстуры: подставные хранилище и бэкенд, коллекции из config.yaml.
"""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from muse import loader
from muse.context_fetcher import ContextFetcher
from muse.handler import RequestHandler
from muse.llm_service import BackendError, GenerationClient
from muse.models import StoreRecord


class FakeStore:
    """Хранилище в памяти: ответы и ошибки по имени коллекции."""

    def __init__(self, results: dict | None = None, errors: dict | None = None, delay: float = 0.0):
        self.results = results or {}
        self.errors = errors or {}
        self.delay = delay
        self.calls: list[tuple[str, dict, int]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def query(self, collection: str, filter: dict, limit: int) -> list[StoreRecord]:
        self.calls.append((collection, filter, limit))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if collection in self.errors:
                raise self.errors[collection]
            return self.results.get(collection, [])
        finally:
            self.in_flight -= 1

    def collections_called(self) -> list[str]:
        return [call[0] for call in self.calls]


class FakeBackend:
    """Бэкенд генерации: ответ или исключение для каждой модели."""

    def __init__(self, replies: dict[str, Any], api_key: str = "test-key"):
        self.replies = replies
        self.api_key = api_key
        self.calls: list[dict[str, Any]] = []

    async def complete(self, model_id, messages, temperature, max_tokens) -> str:
        self.calls.append(
            {"model": model_id, "messages": messages, "temperature": temperature, "max_tokens": max_tokens}
        )
        reply = self.replies.get(model_id, BackendError(f"unknown model {model_id}"))
        if isinstance(reply, Exception):
            raise reply
        return reply


def record(record_id: str, **data: Any) -> StoreRecord:
    return StoreRecord(id=record_id, data=data)


@pytest.fixture
def collections() -> dict[str, loader.CollectionSpec]:
    return loader.load_collections(loader.load_yaml(loader.ROOT_DIR / "config.yaml"))


@pytest.fixture
def sampling() -> dict[str, loader.SamplingParams]:
    return {
        "default": loader.SamplingParams(temperature=0.9, max_tokens=2000),
        "directive": loader.SamplingParams(temperature=0.6, max_tokens=1500),
    }


@pytest.fixture
def full_store() -> FakeStore:
    """Хранилище, где для каждой категории есть данные."""
    return FakeStore(
        results={
            "Characters": [record("char-1", personality="Cold, patient, cruel.")],
            "ChatSessions": [
                record(
                    "chat-1",
                    messages=[{"type": "user", "text": f"q{i}"} if i % 2 == 0 else {"type": "ai", "text": f"a{i}"}
                              for i in range(8)],
                ),
                record("chat-2", messages=[{"type": "user", "text": "Why the knife?"}]),
            ],
            "Chapters": [
                record("doc-1", title="Chapter One", content="The house burned."),
                record("doc-2", title="Chapter Two", content="x" * 2000),
            ],
            "Directives": [record("dir-1", instructions="Mara must spare the child.")],
        }
    )


@pytest.fixture
def make_handler(collections, sampling):
    def _make(store: FakeStore, backend: FakeBackend, models: list[str] | None = None) -> RequestHandler:
        generation = GenerationClient(backend, models or ["model-a"])
        return RequestHandler(ContextFetcher(store, collections), generation, sampling)

    return _make
