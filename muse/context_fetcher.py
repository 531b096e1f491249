"""Параллельная загрузка контекста из хранилища с изоляцией ошибок по категориям.

Каждая категория (профиль, история, документы, директива) ищется отдельно.
Результат поиска - LookupOutcome: ok, empty или failed. Ошибки только логируются,
наружу уходит ContextBundle, где неудачная категория просто пустая.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Dict, List, Optional

from muse.loader import CollectionSpec
from muse.models import ChatSession, ContextBundle, Document, GenerateRequest, Message, StoreRecord
from muse.store import DocumentStore

logger = logging.getLogger(__name__)

AUTHOR_TYPES = {"user", "author"}


@dataclass(frozen=True)
class LookupOutcome:
    status: str
    value: Any = None
    reason: Optional[str] = None

    @classmethod
    def ok(cls, value: Any) -> "LookupOutcome":
        return cls("ok", value)

    @classmethod
    def empty(cls, reason: str = "") -> "LookupOutcome":
        return cls("empty", reason=reason)

    @classmethod
    def failed(cls, reason: str) -> "LookupOutcome":
        return cls("failed", reason=reason)

    @property
    def is_ok(self) -> bool:
        return self.status == "ok"

    def value_or(self, default: Any) -> Any:
        return self.value if self.is_ok else default


def first_tag(tags: List[str]) -> Optional[str]:
    """Для поиска используется только первый тег списка."""
    return tags[0] if tags else None


def build_filter(spec: CollectionSpec, value: str) -> Dict[str, Any]:
    operand = [value] if spec.operator == "$hasSome" else value
    return {spec.field: {spec.operator: operand}}


def parse_session(record: StoreRecord, spec: CollectionSpec) -> ChatSession:
    raw_messages = record.data.get(spec.messages_field) or []
    if not isinstance(raw_messages, list):
        raise ValueError(f"{spec.messages_field} is not a list in record {record.id}")
    messages = []
    for raw in raw_messages:
        if not isinstance(raw, dict):
            continue
        kind = raw.get("type") or raw.get("speaker") or raw.get("role")
        speaker = "author" if kind in AUTHOR_TYPES else "character"
        messages.append(Message(speaker=speaker, text=str(raw.get("text") or "")))
    return ChatSession(messages=messages)


def text_of(record: StoreRecord, field: str) -> str:
    value = record.data.get(field)
    return value.strip() if isinstance(value, str) else ""


class ContextFetcher:
    """Собирает ContextBundle для запроса, ни одна ошибка хранилища не выходит наружу."""

    def __init__(self, store: DocumentStore, collections: Dict[str, CollectionSpec]):
        self.store = store
        self.collections = collections

    async def _query(self, category: str, value: str) -> List[StoreRecord]:
        spec = self.collections[category]
        return await self.store.query(spec.name, build_filter(spec, value), spec.limit)

    async def _guarded(self, category: str, lookup: Awaitable[LookupOutcome]) -> LookupOutcome:
        started = time.perf_counter()
        try:
            outcome = await lookup
        except Exception as e:
            outcome = LookupOutcome.failed(f"{type(e).__name__}: {e}")
        elapsed = int((time.perf_counter() - started) * 1000)

        if outcome.status == "failed":
            logger.warning(f"Context {category}: failed after {elapsed} ms: {outcome.reason}")
        elif outcome.status == "empty":
            logger.info(f"Context {category}: empty ({outcome.reason}), {elapsed} ms")
        else:
            logger.info(f"Context {category}: ok, {elapsed} ms")
        return outcome

    async def _fetch_profile(self, tag: Optional[str]) -> LookupOutcome:
        if tag is None:
            return LookupOutcome.empty("no character tag")
        records = await self._query("profile", tag)
        if not records:
            return LookupOutcome.empty(f"no profile for '{tag}'")
        return LookupOutcome.ok(records[0])

    async def _fetch_history(self, profile: "asyncio.Task[LookupOutcome]") -> LookupOutcome:
        profile_outcome = await profile
        if not profile_outcome.is_ok:
            return LookupOutcome.empty("no character to key history by")
        character_id = profile_outcome.value.id
        records = await self._query("history", character_id)
        spec = self.collections["history"]
        sessions = [parse_session(record, spec) for record in records]
        sessions = [session for session in sessions if session.messages]
        if not sessions:
            return LookupOutcome.empty(f"no sessions for character {character_id}")
        return LookupOutcome.ok(sessions)

    async def _fetch_documents(self, tag: Optional[str]) -> LookupOutcome:
        if tag is None:
            return LookupOutcome.empty("no story tag")
        spec = self.collections["documents"]
        records = await self._query("documents", tag)
        documents = [
            Document(title=text_of(record, spec.title_field), content=text_of(record, spec.text_field))
            for record in records
        ]
        documents = [doc for doc in documents if doc.content]
        if not documents:
            return LookupOutcome.empty(f"no documents for '{tag}'")
        return LookupOutcome.ok(documents)

    async def _fetch_directive(self, tag: Optional[str]) -> LookupOutcome:
        if tag is None:
            return LookupOutcome.empty("no directive tag")
        spec = self.collections["directive"]
        records = await self._query("directive", tag)
        texts = [text_of(record, spec.text_field) for record in records]
        directive = "\n\n".join(text for text in texts if text)
        if not directive:
            return LookupOutcome.empty(f"no directive for '{tag}'")
        return LookupOutcome.ok(directive)

    async def fetch_outcomes(self, req: GenerateRequest) -> Dict[str, LookupOutcome]:
        """Запускает все четыре поиска параллельно и ждёт завершения каждого."""
        profile = asyncio.ensure_future(
            self._guarded("profile", self._fetch_profile(first_tag(req.character_tags)))
        )
        history, documents, directive = await asyncio.gather(
            self._guarded("history", self._fetch_history(profile)),
            self._guarded("documents", self._fetch_documents(first_tag(req.story_tags))),
            self._guarded("directive", self._fetch_directive(first_tag(req.directive_tags))),
        )
        return {
            "profile": await profile,
            "history": history,
            "documents": documents,
            "directive": directive,
        }

    async def fetch(self, req: GenerateRequest) -> ContextBundle:
        outcomes = await self.fetch_outcomes(req)
        profile_text = None
        if outcomes["profile"].is_ok:
            profile_text = text_of(outcomes["profile"].value, self.collections["profile"].text_field) or None
        return ContextBundle(
            character_profile=profile_text,
            chat_sessions=outcomes["history"].value_or([]),
            related_documents=outcomes["documents"].value_or([]),
            directive=outcomes["directive"].value_or(None),
        )
