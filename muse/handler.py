"""Оркестрация запроса: проверка, загрузка контекста, сборка промпта, генерация."""
import logging
import time
from typing import TYPE_CHECKING, Dict, Optional

from muse.context_fetcher import ContextFetcher
from muse.loader import SamplingParams
from muse.models import ContextBundle, ContextUsed, GenerateRequest, GenerateResponse
from muse.textblock_formatter import assemble_prompt

if TYPE_CHECKING:
    from muse.llm_service import GenerationClient

logger = logging.getLogger(__name__)


class MissingFragmentError(ValueError):
    """В запросе нет текста для продолжения."""


def elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


class RequestHandler:
    """Проверяет запрос, собирает контекст и промпт, вызывает цепочку моделей."""

    def __init__(self, fetcher: ContextFetcher, generation: "GenerationClient", sampling: Dict[str, SamplingParams]):
        self.fetcher = fetcher
        self.generation = generation
        self.sampling = sampling

    async def handle(
        self,
        req: GenerateRequest,
        bundle: Optional[ContextBundle] = None,
        missing_fragment_message: str = "No fragment provided",
    ) -> GenerateResponse:
        """Выполняет весь конвейер. Если bundle передан, хранилище не опрашивается."""
        if not req.fragment or not req.fragment.strip():
            raise MissingFragmentError(missing_fragment_message)
        self.generation.ensure_configured()

        started = time.perf_counter()
        if bundle is None:
            bundle = await self.fetcher.fetch(req)
        fetch_time = elapsed_ms(started)

        prompt = assemble_prompt(req, bundle)
        logger.info(f"System prompt length: {len(prompt.system)} chars, user prompt: {len(prompt.user)} chars")

        sampling = self.sampling["directive" if bundle.directive else "default"]
        generation_started = time.perf_counter()
        generated = await self.generation.generate(prompt, sampling.temperature, sampling.max_tokens)
        generation_time = elapsed_ms(generation_started)

        return GenerateResponse(
            result=generated.text,
            chars_generated=len(generated.text),
            processing_time=elapsed_ms(started),
            fetch_time=fetch_time,
            generation_time=generation_time,
            model=generated.model_id,
            context_used=ContextUsed.from_bundle(bundle),
        )
