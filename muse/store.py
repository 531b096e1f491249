"""Клиент хранилища документов (Wix Data): запрос записей коллекции по фильтру."""
import logging
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from muse.models import StoreRecord

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Хранилище недоступно или вернуло что-то, что нельзя разобрать."""


class DocumentStore:
    """Обёртка над эндпоинтом items/query. Любая ошибка превращается в StoreError."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str,
        api_key: str = "",
        site_id: str = "",
        timeout: Optional[float] = None,
    ):
        self.client = client
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.site_id = site_id
        self.timeout = timeout

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = self.api_key
        if self.site_id:
            headers["wix-site-id"] = self.site_id
        return headers

    async def query(self, collection: str, filter: Dict[str, Any], limit: int) -> List[StoreRecord]:
        """Возвращает записи коллекции, подходящие под фильтр, в порядке хранилища."""
        payload = {
            "dataCollectionId": collection,
            "query": {"filter": filter, "paging": {"limit": limit}},
        }
        kwargs: Dict[str, Any] = {"json": payload, "headers": self._headers()}
        if self.timeout is not None:
            kwargs["timeout"] = self.timeout

        try:
            response = await self.client.post(f"{self.base_url}/items/query", **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise StoreError(
                f"{collection}: HTTP {exc.response.status_code} {exc.response.text[:200]}"
            ) from exc
        except httpx.HTTPError as exc:
            raise StoreError(f"{collection}: network error: {exc}") from exc

        try:
            body = response.json()
        except ValueError as exc:
            raise StoreError(f"{collection}: non-JSON response") from exc

        if not isinstance(body, dict):
            raise StoreError(f"{collection}: unexpected payload type {type(body).__name__}")
        items = body.get("dataItems", body.get("items"))
        if not isinstance(items, list):
            raise StoreError(f"{collection}: payload has no item list")

        try:
            records = [StoreRecord.model_validate(item) for item in items]
        except ValidationError as exc:
            raise StoreError(f"{collection}: malformed record: {exc.errors()[0]['msg']}") from exc

        logger.debug(f"Store {collection}: {len(records)} записей")
        return records
