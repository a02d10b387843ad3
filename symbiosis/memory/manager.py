"""High-level orchestration for one conversational turn."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from typing import Callable, Optional

from .clients import LLMClient
from .effects import SideEffectQueue, call_with_deadline
from .schemas import ChatMessage, Mode, SessionContext, TurnResult
from .storage import MemoryServiceClient
from .tools import Generator, Retriever, SessionRestorer, Synthesizer, format_date

logger = logging.getLogger(__name__)


def _today() -> date:
    return datetime.now(timezone.utc).date()


@dataclass
class MemoryPipeline:
    """Run synthesis, retrieval and generation for each user turn.

    Session state lives in the :class:`SessionContext` the caller passes in;
    every turn returns an updated copy instead of mutating shared state.
    """

    llm_client: LLMClient
    memory: MemoryServiceClient
    identity: str = "Arvin"
    request_timeout: Optional[float] = None
    synthesis_model: Optional[str] = None
    today: Callable[[], date] = _today
    effects: SideEffectQueue = field(default_factory=SideEffectQueue)

    def __post_init__(self) -> None:
        self.restorer = SessionRestorer(memory=self.memory, timeout=self.request_timeout)
        self.synthesizer = Synthesizer(
            llm=self.llm_client,
            identity=self.identity,
            model=self.synthesis_model,
            timeout=self.request_timeout,
        )
        self.retriever = Retriever(memory=self.memory, timeout=self.request_timeout)
        self.generator = Generator(
            llm=self.llm_client,
            memory=self.memory,
            effects=self.effects,
            identity=self.identity,
            timeout=self.request_timeout,
        )

    async def restore_session(self, *, cancel: Optional[asyncio.Event] = None) -> SessionContext:
        history = await self.restorer.restore(cancel=cancel)
        return SessionContext(history=tuple(history or ()), restored=True)

    async def process_turn(
        self,
        user_text: str,
        session: Optional[SessionContext] = None,
        mode: Mode = Mode.CONVERSATION,
        *,
        cancel: Optional[asyncio.Event] = None,
    ) -> TurnResult:
        session = session or SessionContext()
        history = session.history
        self._log_user_input(user_text)

        synthesis = await self.synthesizer.synthesize(
            user_text, history, format_date(self.today()), cancel=cancel
        )
        context = await self.retriever.retrieve(
            synthesis.search_keywords, history, user_text, cancel=cancel
        )
        generation = await self.generator.generate(
            user_text, history, context, mode, synthesis, cancel=cancel
        )

        updated = replace(
            session.extend(
                ChatMessage.now("user", user_text),
                ChatMessage.now("assistant", generation.response),
            ),
            last_context=context,
        )
        return TurnResult(generation=generation, synthesis=synthesis, context=context, session=updated)

    def _log_user_input(self, user_text: str) -> None:
        if not self.memory.enabled:
            return
        self.effects.submit(
            call_with_deadline(
                self.memory.log_chat(role="user", content=user_text),
                timeout=self.request_timeout,
                label="log_chat",
            ),
            label="log_chat:user",
        )

    async def drain(self) -> None:
        await self.effects.drain()


__all__ = ["MemoryPipeline"]
