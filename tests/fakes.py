from __future__ import annotations

import asyncio
import json
from datetime import date
from typing import Any, Iterable, List, Mapping, Optional, Sequence

import httpx

from symbiosis.memory.manager import MemoryPipeline
from symbiosis.memory.storage import MemoryServiceClient

MEMORY_URL = "https://memory.test/exec"


class FakeLLMClient:
    """Queues replies per message role: ``system`` for synthesis, ``user`` for generation."""

    def __init__(
        self,
        *,
        synthesis: Iterable[Any] = (),
        generation: Iterable[Any] = (),
        delay: float = 0.0,
    ) -> None:
        self.queues = {"system": list(synthesis), "user": list(generation)}
        self.calls: List[Mapping[str, Any]] = []
        self.delay = delay

    async def chat(self, messages: Sequence[Mapping[str, Any]], *, model: Optional[str] = None) -> str:
        message = messages[0]
        self.calls.append({"role": message["role"], "content": message["content"], "model": model})
        if self.delay:
            await asyncio.sleep(self.delay)
        queue = self.queues[message["role"]]
        if not queue:
            raise AssertionError(f"No reply queued for role {message['role']!r}")
        reply = queue.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        return reply

    def prompts(self, role: str) -> List[str]:
        return [call["content"] for call in self.calls if call["role"] == role]

    async def aclose(self) -> None:
        return None


class FakeMemoryService:
    """In-memory stand-in for the spreadsheet endpoint, served over httpx.MockTransport."""

    def __init__(
        self,
        *,
        history: Optional[List[List[str]]] = None,
        facts: Optional[Iterable[str]] = None,
        fail_actions: Iterable[str] = (),
        raw_retrieve: Optional[str] = None,
        hold_actions: Iterable[str] = (),
    ) -> None:
        self.history = history
        self.facts = list(facts or [])
        self.fail_actions = set(fail_actions)
        self.raw_retrieve = raw_retrieve
        self.requests: List[Mapping[str, Any]] = []
        self.hold_actions = set(hold_actions)
        self.release: Optional[asyncio.Event] = asyncio.Event() if self.hold_actions else None

    def handler(self, request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content.decode("utf-8"))
        self.requests.append(payload)
        action = payload["action"]
        if action in self.fail_actions:
            return httpx.Response(500, text="Internal error")
        if action == "get_recent_chat":
            body = {} if self.history is None else {"history": self.history}
            return httpx.Response(200, json=body)
        if action == "retrieve":
            if self.raw_retrieve is not None:
                return httpx.Response(200, text=self.raw_retrieve)
            terms = [term.lower() for term in payload["keywords"]]
            hits = [fact for fact in self.facts if any(term in fact.lower() for term in terms)]
            return httpx.Response(200, json={"memories": hits})
        if action == "store":
            self.facts.append(payload["fact"])
        return httpx.Response(200, json={"status": "ok"})

    async def held_handler(self, request: httpx.Request) -> httpx.Response:
        """Like :meth:`handler`, but parks ``hold_actions`` until :attr:`release` is set."""

        if self.release is not None and json.loads(request.content.decode("utf-8"))["action"] in self.hold_actions:
            await self.release.wait()
        return self.handler(request)

    def actions(self, name: Optional[str] = None) -> List[Mapping[str, Any]]:
        if name is None:
            return list(self.requests)
        return [payload for payload in self.requests if payload["action"] == name]

    def client(self, url: Optional[str] = MEMORY_URL, **kwargs: Any) -> MemoryServiceClient:
        handler = self.held_handler if self.hold_actions else self.handler
        return MemoryServiceClient(url, transport=httpx.MockTransport(handler), **kwargs)


def synthesis_reply(
    *,
    entities: str = "Arvin",
    topics: str = "Preference",
    keywords: str = "Arvin",
    fact: Any = None,
) -> str:
    return json.dumps(
        {"entities": entities, "topics": topics, "search_keywords": keywords, "new_fact": fact}
    )


def generation_reply(response: str = "Noted.", *, mood: str = "NEUTRAL", wrap: bool = False) -> str:
    body = json.dumps(
        {
            "response": response,
            "mood": mood,
            "roots": [
                {
                    "label": "LIFE",
                    "mood": "JOYFUL",
                    "branches": [{"label": "Home", "mood": "AFFECTIONATE", "leaves": []}],
                }
            ],
            "links": [],
        }
    )
    return f"Sure! ```json\n{body}\n```" if wrap else body


def make_pipeline(
    llm: FakeLLMClient,
    memory: MemoryServiceClient,
    **kwargs: Any,
) -> MemoryPipeline:
    kwargs.setdefault("today", lambda: date(2024, 3, 15))
    return MemoryPipeline(llm_client=llm, memory=memory, **kwargs)  # type: ignore[arg-type]
