from __future__ import annotations

import asyncio
import logging
import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Callable, List, Mapping, Optional, Sequence

from dateutil import parser as dateutil_parser

from .clients import LLMClient
from .effects import SideEffectQueue, call_with_deadline
from .errors import GenerationError, TurnCancelledError
from .parsing import ParseFailure, extract_json
from .prompts import build_generation_prompt, build_synthesis_prompt
from .schemas import (
    ChatMessage,
    GenerationResult,
    KnowledgeGraph,
    Mode,
    Mood,
    RetrievedContext,
    SynthesisResult,
    render_history,
)
from .storage import MemoryServiceClient

logger = logging.getLogger(__name__)

_ALPHA_RE = re.compile(r"[A-Za-z]+")
_ZONE_NAME_RE = re.compile(r"\s*\([^)]*\)\s*$")
_GMT_OFFSET_RE = re.compile(r"\b(?:GMT|UTC)(?=[+-]\d{2}:?\d{2}\b)")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_date(day: date) -> str:
    """Render ``day`` as ``Mar 5, 2024``."""

    return f"{day:%b} {day.day}, {day.year}"


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a history timestamp; naive values are read as UTC.

    ISO-8601 is tried first. Anything else goes through ``dateutil`` so that
    spreadsheet cells (``3/15/2024 10:00:00``) and ``Date.toString()`` output
    (``Fri Mar 15 2024 10:00:00 GMT+0100 (Central European Standard Time)``)
    still feed gap detection.
    """

    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        parsed = _parse_lenient(text)
        if parsed is None:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_lenient(text: str) -> Optional[datetime]:
    # dateutil reads "GMT+0100" with POSIX sign semantics; keep only the offset.
    text = _GMT_OFFSET_RE.sub("", _ZONE_NAME_RE.sub("", text)).strip()
    try:
        return dateutil_parser.parse(text)
    except (ValueError, OverflowError):
        return None


@dataclass
class SessionRestorer:
    """Rehydrate recent conversation history from the memory service."""

    memory: MemoryServiceClient
    clock: Callable[[], datetime] = _utcnow
    gap_hours: float = 6.0
    timeout: Optional[float] = None

    async def restore(self, *, cancel: Optional[asyncio.Event] = None) -> Optional[List[ChatMessage]]:
        if not self.memory.enabled:
            return None

        logger.info("Restoring short-term memory")
        try:
            data = await call_with_deadline(
                self.memory.get_recent_chat(),
                timeout=self.timeout,
                cancel=cancel,
                label="get_recent_chat",
            )
        except TurnCancelledError:
            raise
        except Exception as exc:
            logger.error("Session restore failed: %s", exc)
            return None

        rows = data.get("history")
        if not isinstance(rows, list):
            logger.warning("Session restore returned no history list")
            return None

        history: List[ChatMessage] = []
        for row in rows:
            try:
                history.append(ChatMessage.from_row(row))
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping history row: %s", exc)

        note = self._gap_note(history)
        if note is not None:
            history.append(note)
        logger.info("Session restored: %s msgs", len(history))
        return history

    def _gap_note(self, history: Sequence[ChatMessage]) -> Optional[ChatMessage]:
        if not history:
            return None
        last_time = parse_timestamp(history[-1].timestamp)
        if last_time is None:
            return None
        hours = (self.clock() - last_time).total_seconds() / 3600
        if hours <= self.gap_hours:
            return None
        logger.info("Time gap detected: %.1f hours", hours)
        return ChatMessage(
            role="system",
            content=(
                f"[SYSTEM_NOTE: The user has returned after {math.floor(hours)} hours. "
                "Treat this as a new session context, but retain previous memories.]"
            ),
        )


@dataclass
class Synthesizer:
    """Extract entities, topics, search keywords and a new fact in one call."""

    llm: LLMClient
    identity: str = "Arvin"
    fallback_min_length: int = 3
    model: Optional[str] = None
    timeout: Optional[float] = None

    async def synthesize(
        self,
        user_text: str,
        history: Sequence[ChatMessage],
        current_date: str,
        *,
        cancel: Optional[asyncio.Event] = None,
    ) -> SynthesisResult:
        prompt = build_synthesis_prompt(
            identity=self.identity,
            today=current_date,
            history=render_history(history),
            user_text=user_text,
        )
        logger.info("Synthesizing input")
        try:
            raw = await call_with_deadline(
                self.llm.chat([{"role": "system", "content": prompt}], model=self.model),
                timeout=self.timeout,
                cancel=cancel,
                label="synthesis",
            )
        except TurnCancelledError:
            raise
        except Exception as exc:
            logger.error("Synthesizer failed: %s", exc)
            return self.fallback(user_text)

        parsed = extract_json(raw)
        if isinstance(parsed, ParseFailure):
            logger.warning("Synthesizer returned unparseable output (%s): %s", parsed.reason, raw)
            return self.fallback(user_text)

        result = SynthesisResult(
            entities=_as_text(parsed.get("entities")),
            topics=_as_text(parsed.get("topics")),
            search_keywords=_as_text(parsed.get("search_keywords")),
            new_fact=_as_fact(parsed.get("new_fact")),
        )
        logger.debug("Synthesis decision: %s", result)
        return result

    def fallback(self, user_text: str) -> SynthesisResult:
        words = [word for word in user_text.split(" ") if len(word) > self.fallback_min_length]
        return SynthesisResult(search_keywords=", ".join(words))


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return ", ".join(str(item).strip() for item in value if item is not None)
    return str(value).strip()


def _as_fact(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass
class Retriever:
    """Keyword lookup against the memory service with sticky follow-up context."""

    memory: MemoryServiceClient
    sticky_min_length: int = 4
    sticky_limit: int = 3
    timeout: Optional[float] = None

    def sticky_keywords(self, history: Sequence[ChatMessage]) -> List[str]:
        last_reply = next((msg for msg in reversed(history) if msg.role == "assistant"), None)
        if last_reply is None:
            return []
        words = [
            word
            for word in last_reply.content.split(" ")
            if len(word) > self.sticky_min_length and _ALPHA_RE.fullmatch(word)
        ]
        return words[: self.sticky_limit]

    def build_query(self, keywords: str, history: Sequence[ChatMessage], user_text: str) -> List[str]:
        query = keywords or user_text
        sticky = self.sticky_keywords(history)
        if sticky:
            query = f"{query}, {', '.join(sticky)}"
            logger.info("Sticky context added: %s", ", ".join(sticky))
        return [term.strip() for term in query.split(",") if term.strip()]

    async def retrieve(
        self,
        keywords: str,
        history: Sequence[ChatMessage],
        user_text: str = "",
        *,
        cancel: Optional[asyncio.Event] = None,
    ) -> Optional[RetrievedContext]:
        if not self.memory.enabled:
            return None
        terms = self.build_query(keywords, history, user_text)
        if not terms:
            return None

        logger.info("Searching memory for: %s", terms)
        try:
            memories = await call_with_deadline(
                self.memory.retrieve(terms),
                timeout=self.timeout,
                cancel=cancel,
                label="retrieve",
            )
        except TurnCancelledError:
            raise
        except Exception as exc:
            logger.error("Memory retrieval failed: %s", exc)
            return None

        if not memories:
            logger.info("No relevant memories found")
            return None
        logger.info("Memories found: %s", memories)
        return RetrievedContext(memories=tuple(memories))


@dataclass
class Generator:
    """Produce the final reply and dispatch storage/logging side effects."""

    llm: LLMClient
    memory: MemoryServiceClient
    effects: SideEffectQueue = field(default_factory=SideEffectQueue)
    identity: str = "Arvin"
    model: Optional[str] = None
    timeout: Optional[float] = None

    def build_prompt(
        self,
        user_text: str,
        history: Sequence[ChatMessage],
        context: Optional[RetrievedContext],
        mode: Mode,
    ) -> str:
        return build_generation_prompt(
            identity=self.identity,
            mode=mode,
            context=context.render() if context else None,
            history=render_history(history),
            user_text=user_text,
        )

    async def generate(
        self,
        user_text: str,
        history: Sequence[ChatMessage],
        context: Optional[RetrievedContext],
        mode: Mode = Mode.CONVERSATION,
        synthesis: Optional[SynthesisResult] = None,
        *,
        cancel: Optional[asyncio.Event] = None,
    ) -> GenerationResult:
        prompt = self.build_prompt(user_text, history, context, mode)
        logger.info("Generating response (%s)", mode.value)
        try:
            raw = await call_with_deadline(
                self.llm.chat([{"role": "user", "content": prompt}], model=self.model),
                timeout=self.timeout,
                cancel=cancel,
                label="generation",
            )
        except TurnCancelledError:
            raise
        except Exception as exc:
            logger.error("Generation failed: %s", exc)
            raise GenerationError(str(exc)) from exc

        result = self.parse(raw)
        if synthesis is not None:
            self.dispatch_store(synthesis)
        if result.parsed:
            self.dispatch_log(result.response)
        return result

    @staticmethod
    def parse(raw: str) -> GenerationResult:
        parsed = extract_json(raw)
        if isinstance(parsed, ParseFailure):
            logger.warning("Generation output unparseable (%s)", parsed.reason)
            return GenerationResult(response=raw.strip(), parsed=False)
        return _generation_from_payload(parsed)

    def dispatch_store(self, synthesis: SynthesisResult) -> None:
        if not self.memory.enabled or not synthesis.has_fact:
            return
        self.effects.submit(
            call_with_deadline(
                self.memory.store(
                    entities=synthesis.entities,
                    topics=synthesis.topics,
                    fact=synthesis.new_fact or "",
                ),
                timeout=self.timeout,
                label="store",
            ),
            label="store",
        )

    def dispatch_log(self, response: str) -> None:
        if not self.memory.enabled:
            return
        self.effects.submit(
            call_with_deadline(
                self.memory.log_chat(role="assistant", content=response),
                timeout=self.timeout,
                label="log_chat",
            ),
            label="log_chat:assistant",
            quiet=True,
        )


def _generation_from_payload(payload: Mapping[str, Any]) -> GenerationResult:
    response = payload.get("response")
    return GenerationResult(
        response="" if response is None else str(response),
        mood=Mood.parse(payload.get("mood"), allow_global=True),
        graph=KnowledgeGraph.from_payload(payload),
    )


__all__ = [
    "Generator",
    "Retriever",
    "SessionRestorer",
    "Synthesizer",
    "format_date",
    "parse_timestamp",
]
