"""
mem0 Platform Client
Async REST client for adding and searching long-term user memories.
"""
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx
import structlog

logger = structlog.get_logger()


class MemoryStoreError(Exception):
    """The memory store could not complete a request."""


@dataclass
class MemoryHit:
    """One memory returned by the store."""
    id: str
    text: str
    score: float = 0.0
    metadata: dict = field(default_factory=dict)
    created_at: Optional[str] = None

    @classmethod
    def from_api(cls, item: dict) -> "MemoryHit":
        return cls(
            id=str(item.get("id") or ""),
            text=item.get("memory") or item.get("text") or "",
            score=float(item.get("score") or 0.0),
            metadata=item.get("metadata") or {},
            created_at=item.get("created_at"),
        )


def _result_items(data: Any) -> list[dict]:
    # The API answers with either a bare list or {"results": [...]}
    if isinstance(data, dict):
        data = data.get("results", [])
    if not isinstance(data, list):
        return []
    return [item for item in data if isinstance(item, dict)]


class MemoryStore:
    """Thin async wrapper over the mem0 v1 memories endpoints."""

    def __init__(self, api_key: str, base_url: str = "https://api.mem0.ai", timeout: float = 30.0):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def _request(self, method: str, endpoint: str, json_data: dict = None, params: dict = None) -> Any:
        if not self.api_key:
            raise MemoryStoreError("mem0 API key not configured")

        headers = {
            "Authorization": f"Token {self.api_key}",
            "Content-Type": "application/json",
        }
        url = f"{self.base_url}{endpoint}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.request(method, url, headers=headers, json=json_data, params=params)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as e:
            raise MemoryStoreError(
                f"mem0 {method} {endpoint} returned {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise MemoryStoreError(f"mem0 {method} {endpoint} failed: {e}") from e
        except ValueError as e:
            raise MemoryStoreError(f"mem0 {method} {endpoint} returned invalid JSON") from e

    async def add(
        self,
        messages: list[dict],
        user_id: str,
        metadata: Optional[dict] = None,
        infer: bool = True,
    ) -> Optional[str]:
        """
        Store messages for a user.

        Args:
            messages: [{"role": ..., "content": ...}, ...]
            user_id: Owner of the memory
            metadata: Optional metadata stored with the memory
            infer: Let the platform extract facts; False stores the text verbatim

        Returns:
            Id of the first created memory, if the platform reports one
        """
        payload: dict = {"messages": messages, "user_id": user_id}
        if metadata:
            payload["metadata"] = metadata
        if not infer:
            payload["infer"] = False

        data = await self._request("POST", "/v1/memories/", json_data=payload)
        items = _result_items(data)
        memory_id = items[0].get("id") if items else None
        logger.debug("memory_added", user_id=user_id, memory_id=memory_id, results=len(items))
        return memory_id

    async def search(
        self,
        query: str,
        user_id: str,
        filters: Optional[dict] = None,
        limit: int = 50,
    ) -> list[MemoryHit]:
        payload: dict = {"query": query, "user_id": user_id, "limit": limit}
        if filters:
            payload["filters"] = filters
        data = await self._request("POST", "/v1/memories/search/", json_data=payload)
        return [MemoryHit.from_api(item) for item in _result_items(data)]

    async def get_all(self, user_id: str) -> list[MemoryHit]:
        """Every memory stored for a user."""
        data = await self._request("GET", "/v1/memories/", params={"user_id": user_id})
        return [MemoryHit.from_api(item) for item in _result_items(data)]
