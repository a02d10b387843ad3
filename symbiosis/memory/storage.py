"""Client for the remote memory service (a single action-routed endpoint)."""

from __future__ import annotations

import json
import logging
from typing import Any, List, Mapping, Optional, Sequence

import httpx

from .errors import MemoryServiceError

logger = logging.getLogger(__name__)

DISABLED_SENTINEL = "SKIP"

# Spreadsheet script endpoints reject a CORS preflight, so JSON travels as text/plain.
_HEADERS = {"Content-Type": "text/plain"}


def storage_enabled(url: Optional[str]) -> bool:
    return bool(url) and url.strip() != DISABLED_SENTINEL


class MemoryServiceClient:
    """Posts ``{"action": ...}`` payloads to the memory endpoint.

    When the endpoint is missing or set to ``SKIP`` every call becomes a no-op
    and :attr:`enabled` is false; callers check it before dispatching.
    """

    def __init__(
        self,
        url: Optional[str],
        *,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.url = url.strip() if url else None
        self.enabled = storage_enabled(self.url)
        self._client = httpx.AsyncClient(
            timeout=timeout,
            transport=transport,
            headers=_HEADERS,
            follow_redirects=True,
        )
        self.requests_sent = 0

    async def _post(self, payload: Mapping[str, Any]) -> httpx.Response:
        if not self.enabled or self.url is None:
            raise MemoryServiceError("memory service is disabled")
        body = json.dumps(payload, ensure_ascii=False)
        logger.debug("Memory request: %s", body)
        self.requests_sent += 1
        try:
            response = await self._client.post(self.url, content=body.encode("utf-8"))
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise MemoryServiceError(f"{payload.get('action')} failed: {exc}") from exc
        return response

    async def get_recent_chat(self) -> Mapping[str, Any]:
        response = await self._post({"action": "get_recent_chat"})
        try:
            data = response.json()
        except ValueError as exc:
            raise MemoryServiceError(f"get_recent_chat returned invalid JSON: {exc}") from exc
        if not isinstance(data, Mapping):
            raise MemoryServiceError("get_recent_chat returned a non-object payload")
        return data

    async def retrieve(self, keywords: Sequence[str]) -> List[str]:
        """Return matching memory snippets; an unparseable body means no matches."""

        response = await self._post({"action": "retrieve", "keywords": list(keywords)})
        try:
            data = json.loads(response.text)
        except ValueError:
            logger.warning("Retrieve response was not JSON: %.200s", response.text)
            return []
        memories = data.get("memories") if isinstance(data, Mapping) else None
        if not isinstance(memories, list):
            return []
        return [str(item) for item in memories if item not in (None, "")]

    async def store(self, *, entities: str, topics: str, fact: str) -> None:
        await self._post({"action": "store", "entities": entities, "topics": topics, "fact": fact})

    async def log_chat(self, *, role: str, content: str) -> None:
        await self._post({"action": "log_chat", "role": role, "content": content})

    async def aclose(self) -> None:
        await self._client.aclose()


__all__ = ["DISABLED_SENTINEL", "MemoryServiceClient", "storage_enabled"]
