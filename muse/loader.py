"""Модуль для загрузки конфигурации: модели, параметры сэмплинга, коллекции хранилища и ключи."""
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict

ROOT_DIR = Path(__file__).resolve().parent.parent
CONFIG_PATH = Path(os.environ.get("MUSE_CONFIG", ROOT_DIR / "config.yaml"))

CATEGORIES = ("profile", "history", "documents", "directive")


def load_yaml(path: Path = CONFIG_PATH) -> dict:
    """Загрузка конфигурации из YAML файла."""
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


config = load_yaml(CONFIG_PATH)


@dataclass(frozen=True)
class SamplingParams:
    temperature: float
    max_tokens: int


class CollectionSpec(BaseModel):
    """Описание поиска одной категории контекста в хранилище."""
    model_config = ConfigDict(frozen=True)

    name: str
    field: str
    operator: str = "$hasSome"
    limit: int = 1
    text_field: str = "text"
    title_field: str = "title"
    messages_field: str = "messages"


def section(name: str, cfg: Optional[dict] = None) -> dict:
    cfg = config if cfg is None else cfg
    return cfg.get(name) or {}


def load_models(cfg: Optional[dict] = None) -> List[str]:
    """Цепочка моделей в порядке перебора."""
    models = section("generation", cfg).get("models") or []
    return [str(m).strip() for m in models if str(m).strip()]


def load_sampling_params(cfg: Optional[dict] = None) -> Dict[str, SamplingParams]:
    """Загружает профили сэмплинга: default и directive."""
    sampling = section("sampling", cfg)
    default = sampling.get("default") or {}
    directive = sampling.get("directive") or {}
    return {
        "default": SamplingParams(
            temperature=float(default.get("temperature", 0.9)),
            max_tokens=int(default.get("max_tokens", 2000)),
        ),
        "directive": SamplingParams(
            temperature=float(directive.get("temperature", 0.6)),
            max_tokens=int(directive.get("max_tokens", 2000)),
        ),
    }


def load_collections(cfg: Optional[dict] = None) -> Dict[str, CollectionSpec]:
    """Загружает описания коллекций для каждой категории контекста."""
    collections = section("store", cfg).get("collections") or {}
    specs = {}
    for category in CATEGORIES:
        raw = collections.get(category)
        if not raw:
            raise ValueError(f"Отсутствует коллекция '{category}' в секции store.collections конфигурации")
        specs[category] = CollectionSpec(**raw)
    return specs


def optional_float(value) -> Optional[float]:
    return None if value is None else float(value)


def openrouter_api_key(cfg: Optional[dict] = None) -> str:
    """Ключ генеративного бэкенда. Переменная окружения важнее конфига."""
    return os.environ.get("OPENROUTER_API_KEY") or section("openrouter", cfg).get("api_key") or ""


def store_credentials(cfg: Optional[dict] = None) -> Dict[str, str]:
    store = section("store", cfg)
    return {
        "api_key": os.environ.get("WIX_API_KEY") or store.get("api_key") or "",
        "site_id": os.environ.get("WIX_SITE_ID") or store.get("site_id") or "",
    }
