"""tests/test_handler.py

Конвейер целиком: проверка входа, метаданные контекста, выбор сэмплинга.
"""

from __future__ import annotations

import asyncio

import pytest

from conftest import FakeBackend, FakeStore
from muse.handler import MissingFragmentError
from muse.llm_service import BackendError, GenerationExhaustedError, MissingCredentialError
from muse.models import ContextBundle, GenerateRequest
from muse.store import StoreError

TAGGED = GenerateRequest(
    fragment="She raised the knife.",
    character_name="Mara",
    character_tags=["mara"],
    story_tags=["fire"],
    directive_tags=["mercy"],
)


def handle(handler, req, bundle=None):
    return asyncio.run(handler.handle(req, bundle))


class TestRequestHandler:
    @pytest.mark.parametrize("fragment", [None, "", "   "])
    def test_missing_fragment_does_no_work(self, make_handler, fragment) -> None:
        store, backend = FakeStore(), FakeBackend({"model-a": "text"})
        with pytest.raises(MissingFragmentError):
            handle(make_handler(store, backend), GenerateRequest(fragment=fragment, character_tags=["mara"]))

        assert store.calls == []
        assert backend.calls == []

    def test_missing_credential_checked_before_fetch(self, make_handler) -> None:
        store = FakeStore()
        handler = make_handler(store, FakeBackend({"model-a": "x"}, api_key=""))
        with pytest.raises(MissingCredentialError):
            handle(handler, TAGGED)
        assert store.calls == []

    def test_bare_request(self, make_handler) -> None:
        backend = FakeBackend({"model-a": "I smiled at her."})
        response = handle(make_handler(FakeStore(), backend), GenerateRequest(fragment="She raised the knife.", character_name="Mara"))

        body = response.model_dump(by_alias=True)
        assert body["status"] == "success"
        assert body["result"] == "I smiled at her."
        assert body["charsGenerated"] == len("I smiled at her.")
        assert isinstance(body["processingTime"], int)
        assert body["model"] == "model-a"
        assert body["contextUsed"] == {
            "characterProfile": False,
            "chatSessions": 0,
            "relatedDocuments": 0,
            "directiveEnforced": False,
        }
        system = backend.calls[0]["messages"][0]["content"]
        assert "YOUR CORE PERSONALITY" not in system
        assert backend.calls[0]["temperature"] == 0.9

    def test_full_context_uses_directive_sampling(self, make_handler, full_store) -> None:
        backend = FakeBackend({"model-a": "Fine. The child lives."})
        response = handle(make_handler(full_store, backend), TAGGED)

        assert response.context_used.model_dump(by_alias=True) == {
            "characterProfile": True,
            "chatSessions": 2,
            "relatedDocuments": 2,
            "directiveEnforced": True,
        }
        call = backend.calls[0]
        assert call["temperature"] == 0.6
        assert call["max_tokens"] == 1500
        assert "Mara must spare the child." in call["messages"][1]["content"]

    def test_one_store_failure_only_clears_its_flag(self, make_handler, full_store) -> None:
        full_store.errors["Chapters"] = StoreError("Chapters: HTTP 500")
        response = handle(make_handler(full_store, FakeBackend({"model-a": "ok"})), TAGGED)

        used = response.context_used
        assert used.related_documents == 0
        assert used.character_profile and used.directive_enforced
        assert used.chat_sessions == 2
        assert response.status == "success"

    def test_supplied_bundle_skips_store(self, make_handler, full_store) -> None:
        backend = FakeBackend({"model-a": "ok"})
        bundle = ContextBundle(character_profile="Given directly.")
        response = handle(make_handler(full_store, backend), TAGGED, bundle)

        assert full_store.calls == []
        assert response.context_used.character_profile is True
        assert "Given directly." in backend.calls[0]["messages"][0]["content"]

    def test_exhaustion_propagates(self, make_handler) -> None:
        backend = FakeBackend({"m1": BackendError("down"), "m2": BackendError("also down")})
        with pytest.raises(GenerationExhaustedError):
            handle(make_handler(FakeStore(), backend, ["m1", "m2"]), TAGGED)
