"""Runtime helpers for running the companion memory pipeline."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, TextIO

import httpx

from .clients import OPENROUTER_BASE_URL, LLMClient
from .manager import MemoryPipeline
from .schemas import Mode, SessionContext, TurnResult, dumps_payload
from .storage import MemoryServiceClient

logger = logging.getLogger(__name__)

MEMORY_URL_ENV = "SYMBIOSIS_MEMORY_URL"


@dataclass
class CompanionRuntime:
    """High level runtime owning the clients, the pipeline and the session."""

    memory_url: Optional[str] = None
    llm_url: Optional[str] = OPENROUTER_BASE_URL
    llm_model: str = "openai/gpt-4o-mini"
    llm_provider: str = "openrouter"
    synthesis_model: Optional[str] = None
    api_key: Optional[str] = None
    identity: str = "Arvin"
    request_timeout: Optional[float] = 60.0
    mode: Mode = Mode.CONVERSATION
    memory_transport: Optional[httpx.AsyncBaseTransport] = None
    llm_client: Optional[LLMClient] = None
    session: SessionContext = field(default_factory=SessionContext)

    def __post_init__(self) -> None:
        if self.memory_url is None:
            self.memory_url = os.environ.get(MEMORY_URL_ENV)

        if self.llm_client is None:
            self.llm_client = LLMClient(
                base_url=self.llm_url,
                model=self.llm_model,
                provider=self.llm_provider,
                api_key=self.api_key,
                timeout=self.request_timeout,
            )
        self.memory = MemoryServiceClient(
            self.memory_url,
            timeout=self.request_timeout,
            transport=self.memory_transport,
        )
        self.pipeline = MemoryPipeline(
            llm_client=self.llm_client,
            memory=self.memory,
            identity=self.identity,
            request_timeout=self.request_timeout,
            synthesis_model=self.synthesis_model,
        )
        if not self.memory.enabled:
            logger.info("Memory service disabled; running on local history only")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def start(self) -> SessionContext:
        if not self.session.restored:
            self.session = await self.pipeline.restore_session()
        return self.session

    async def chat(self, content: str, *, mode: Optional[Mode] = None) -> TurnResult:
        result = await self.pipeline.process_turn(content, self.session, mode or self.mode)
        self.session = result.session
        return result

    async def close(self) -> None:
        await self.pipeline.drain()
        await self.memory.aclose()
        if self.llm_client is not None:
            await self.llm_client.aclose()


def _parse_turn(raw_line: str) -> Optional[Mapping[str, Any]]:
    """Read one input line as a turn.

    A line starting with ``{`` is a JSON event with ``content`` and an
    optional ``mode``; any other non-blank line is the user's message as
    typed. Blank lines and ``#`` comments yield ``None``.
    """

    line = raw_line.strip()
    if not line or line.startswith("#"):
        return None
    if not line.startswith("{"):
        return {"content": line, "mode": None}
    try:
        event = json.loads(line)
    except json.JSONDecodeError as exc:
        logger.error("Malformed JSON line: %s", line)
        raise SystemExit(1) from exc
    if not isinstance(event, Mapping) or "content" not in event:
        logger.error("Each line must include a 'content' field: %s", line)
        raise SystemExit(1)
    mode = event.get("mode")
    if mode:
        try:
            mode = Mode(mode)
        except ValueError as exc:
            choices = ", ".join(item.value for item in Mode)
            logger.error("Unknown mode %r (expected one of: %s): %s", mode, choices, line)
            raise SystemExit(1) from exc
    return {"content": str(event["content"]), "mode": mode or None}


async def _run_stream(runtime: CompanionRuntime, stream: TextIO) -> int:
    await runtime.start()
    failures = 0
    try:
        while True:
            raw_line = await asyncio.to_thread(stream.readline)
            if not raw_line:
                break
            event = _parse_turn(raw_line)
            if event is None:
                continue
            try:
                result = await runtime.chat(event["content"], mode=event["mode"])
            except Exception as exc:
                failures += 1
                logger.error("Turn failed: %s", exc)
                print(json.dumps({"error": "generation failed"}))
                continue
            print(dumps_payload(result.to_payload()), flush=True)
    finally:
        await runtime.close()
    return 1 if failures else 0


def main(argv: Optional[Iterable[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Chat with the memory-backed companion")
    parser.add_argument(
        "--memory-url",
        default=None,
        help=f"Memory service endpoint, or SKIP to disable storage (env: {MEMORY_URL_ENV})",
    )
    parser.add_argument("--llm-url", default=None, help="Base URL of the chat completions API")
    parser.add_argument("--llm-model", default="openai/gpt-4o-mini", help="Model used for replies")
    parser.add_argument(
        "--synthesis-model",
        default=None,
        help="Optional cheaper model for the synthesis call",
    )
    parser.add_argument(
        "--llm-provider",
        choices=["openrouter", "openai", "vllm"],
        default="openrouter",
        help="LLM provider type",
    )
    parser.add_argument("--identity", default="Arvin", help="Name assumed for first-person input")
    parser.add_argument(
        "--interrogate",
        action="store_true",
        help="Use interrogation mode (asks follow-up questions, never repeats one)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=60.0,
        help="Deadline in seconds for each external call (0 disables)",
    )
    parser.add_argument(
        "--input",
        type=Path,
        help=(
            "Optional file of turns, one per line: plain text or JSON "
            "{\"content\": ..., \"mode\": ...}. Defaults to standard input."
        ),
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging to trace prompt/response payloads.",
    )

    args = parser.parse_args(list(argv) if argv is not None else None)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    llm_url = args.llm_url
    if llm_url is None and args.llm_provider == "openrouter":
        llm_url = OPENROUTER_BASE_URL

    runtime = CompanionRuntime(
        memory_url=args.memory_url,
        llm_url=llm_url,
        llm_model=args.llm_model,
        llm_provider=args.llm_provider,
        synthesis_model=args.synthesis_model,
        identity=args.identity,
        request_timeout=args.timeout or None,
        mode=Mode.INTERROGATION if args.interrogate else Mode.CONVERSATION,
    )

    if args.input:
        with args.input.open("r", encoding="utf-8") as fh:
            return asyncio.run(_run_stream(runtime, fh))
    return asyncio.run(_run_stream(runtime, sys.stdin))


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    raise SystemExit(main())
