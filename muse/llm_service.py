"""Модуль для работы с генеративным бэкендом: вызов моделей, цепочка фолбэков, инициализация сервиса."""
import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import httpx

import muse.loader as loader
from muse.context_fetcher import ContextFetcher
from muse.handler import RequestHandler
from muse.models import ModelAttempt
from muse.store import DocumentStore
from muse.textblock_formatter import Prompt

logger = logging.getLogger(__name__)


class MissingCredentialError(RuntimeError):
    """Не задан ключ генеративного бэкенда."""


class BackendError(Exception):
    """Неудачная попытка вызова одной модели."""


class GenerationExhaustedError(RuntimeError):
    """Все модели цепочки вернули ошибку."""

    def __init__(self, attempts: List[ModelAttempt]):
        self.attempts = attempts
        super().__init__(f"All {len(attempts)} models failed")

    @property
    def last_reason(self) -> str:
        if not self.attempts:
            return "no models configured"
        return self.attempts[-1].reason or "unknown error"


@dataclass
class GenerationResult:
    text: str
    model_id: str
    attempts: List[ModelAttempt] = field(default_factory=list)


class OpenRouterBackend:
    """OpenAI-совместимый эндпоинт chat/completions (OpenRouter)."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_key: str,
        base_url: str = "https://openrouter.ai/api/v1",
        referer: str = "",
        title: str = "Devil Muse",
        timeout: Optional[float] = None,
    ):
        self.client = client
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.referer = referer
        self.title = title
        self.timeout = timeout

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
            "X-Title": self.title,
        }
        if self.referer:
            headers["HTTP-Referer"] = self.referer
        return headers

    async def complete(
        self,
        model_id: str,
        messages: List[Dict[str, str]],
        temperature: float,
        max_tokens: int,
    ) -> str:
        if not self.api_key:
            raise MissingCredentialError("API key not configured")

        payload = {
            "model": model_id,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        kwargs: Dict[str, Any] = {"json": payload, "headers": self._headers()}
        if self.timeout is not None:
            kwargs["timeout"] = self.timeout

        try:
            response = await self.client.post(f"{self.base_url}/chat/completions", **kwargs)
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise BackendError(f"timed out: {exc}") from exc
        except httpx.HTTPStatusError as exc:
            raise BackendError(
                f"AI API failed: {exc.response.status_code} {exc.response.text[:300]}"
            ) from exc
        except httpx.HTTPError as exc:
            raise BackendError(f"network error: {exc}") from exc

        try:
            data = response.json()
        except ValueError as exc:
            raise BackendError("non-JSON response") from exc

        if not isinstance(data, dict):
            raise BackendError("malformed payload")
        if data.get("error"):
            error = data["error"]
            message = error.get("message") if isinstance(error, dict) else error
            raise BackendError(f"backend error: {message}")

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise BackendError("malformed payload: no choices[0].message.content") from exc
        if not isinstance(content, str) or not content.strip():
            raise BackendError("empty completion")
        return content.strip()


class GenerationClient:
    """Перебирает модели по порядку, пока одна не ответит."""

    def __init__(self, backend: OpenRouterBackend, models: Sequence[str], retry_delay: float = 0.0):
        self.backend = backend
        self.models = list(models)
        self.retry_delay = retry_delay

    def ensure_configured(self) -> None:
        if not self.backend.api_key:
            raise MissingCredentialError("API key not configured")

    async def generate(self, prompt: Prompt, temperature: float, max_tokens: int) -> GenerationResult:
        messages = prompt.as_messages()
        attempts: List[ModelAttempt] = []

        for index, model_id in enumerate(self.models):
            if index and self.retry_delay:
                await asyncio.sleep(self.retry_delay)
            try:
                text = await self.backend.complete(model_id, messages, temperature, max_tokens)
            except BackendError as e:
                attempts.append(ModelAttempt(model_id=model_id, outcome="failure", reason=str(e)))
                logger.warning(f"Model {model_id} ({index + 1}/{len(self.models)}) failed: {e}")
                continue

            attempts.append(ModelAttempt(model_id=model_id, outcome="success", text=text))
            logger.info(f"Model {model_id} responded, length: {len(text)} chars")
            return GenerationResult(text=text, model_id=model_id, attempts=attempts)

        error = GenerationExhaustedError(attempts)
        logger.error(f"{error}, last reason: {error.last_reason}")
        raise error


def build_handler(client: httpx.AsyncClient, cfg: Optional[dict] = None) -> RequestHandler:
    """Собирает обработчик запросов из конфигурации."""
    cfg = loader.config if cfg is None else cfg
    store_cfg = loader.section("store", cfg)
    openrouter_cfg = loader.section("openrouter", cfg)
    generation_cfg = loader.section("generation", cfg)
    credentials = loader.store_credentials(cfg)

    store = DocumentStore(
        client,
        base_url=store_cfg.get("base_url", "https://www.wixapis.com/wix-data/v2"),
        api_key=credentials["api_key"],
        site_id=credentials["site_id"],
        timeout=loader.optional_float(store_cfg.get("timeout")),
    )
    backend = OpenRouterBackend(
        client,
        api_key=loader.openrouter_api_key(cfg),
        base_url=openrouter_cfg.get("base_url", "https://openrouter.ai/api/v1"),
        referer=openrouter_cfg.get("referer", ""),
        title=openrouter_cfg.get("title", "Devil Muse"),
        timeout=loader.optional_float(generation_cfg.get("attempt_timeout")),
    )
    generation = GenerationClient(
        backend,
        models=loader.load_models(cfg),
        retry_delay=float(generation_cfg.get("retry_delay") or 0),
    )
    return RequestHandler(
        fetcher=ContextFetcher(store, loader.load_collections(cfg)),
        generation=generation,
        sampling=loader.load_sampling_params(cfg),
    )


@asynccontextmanager
async def lifespan(app):
    """Создаёт общий HTTP-клиент и обработчик при запуске, закрывает клиент при остановке."""
    async with httpx.AsyncClient(timeout=httpx.Timeout(120.0, connect=10.0)) as client:
        app.state.handler = build_handler(client)
        models = app.state.handler.generation.models
        logger.info(f"Цепочка моделей: {', '.join(models) or '(пусто)'}")
        logger.info(f"API Key configured: {'YES' if app.state.handler.generation.backend.api_key else 'NO'}")
        yield
