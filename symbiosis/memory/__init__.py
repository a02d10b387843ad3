"""Conversational memory pipeline for the Symbiosis companion.

Each user turn runs three stages in order

* synthesis: one model call extracting entities, topics, search keywords and
  an optional long-term fact,
* retrieval: a keyword lookup against the remote memory service, widened with
  sticky context from the previous assistant reply, and
* generation: the final reply with a mood-tagged knowledge graph, after which
  storage and chat logging run as detached side effects.

Recent history is restored once at startup, independently of the turns.
"""

from .clients import LLMClient
from .effects import SideEffectQueue, call_with_deadline
from .errors import (
    GenerationError,
    MemoryServiceError,
    ServiceTimeoutError,
    SymbiosisError,
    TurnCancelledError,
)
from .manager import MemoryPipeline
from .parsing import ParseFailure, extract_json
from .runtime import CompanionRuntime, main as runtime_main
from .schemas import (
    ChatMessage,
    GenerationResult,
    GraphBranch,
    GraphLeaf,
    GraphLink,
    GraphRoot,
    KnowledgeGraph,
    Mode,
    Mood,
    RetrievedContext,
    SessionContext,
    SynthesisResult,
    TurnResult,
)
from .storage import DISABLED_SENTINEL, MemoryServiceClient
from .tools import Generator, Retriever, SessionRestorer, Synthesizer

__all__ = [
    "ChatMessage",
    "CompanionRuntime",
    "DISABLED_SENTINEL",
    "GenerationError",
    "GenerationResult",
    "Generator",
    "GraphBranch",
    "GraphLeaf",
    "GraphLink",
    "GraphRoot",
    "KnowledgeGraph",
    "LLMClient",
    "MemoryPipeline",
    "MemoryServiceClient",
    "MemoryServiceError",
    "Mode",
    "Mood",
    "ParseFailure",
    "Retriever",
    "RetrievedContext",
    "ServiceTimeoutError",
    "SessionContext",
    "SessionRestorer",
    "SideEffectQueue",
    "SymbiosisError",
    "SynthesisResult",
    "Synthesizer",
    "TurnCancelledError",
    "TurnResult",
    "call_with_deadline",
    "extract_json",
    "runtime_main",
]
