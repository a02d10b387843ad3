"""Typed data structures used by the conversational memory pipeline."""

from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

MAX_ROOTS = 3
MAX_BRANCHES = 5
MAX_LEAVES = 5


def _default_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class Mood(str, Enum):
    NEUTRAL = "NEUTRAL"
    AFFECTIONATE = "AFFECTIONATE"
    CRYPTIC = "CRYPTIC"
    HATE = "HATE"
    JOYFUL = "JOYFUL"
    CURIOUS = "CURIOUS"
    SAD = "SAD"
    QUESTION = "QUESTION"
    GLOBAL = "GLOBAL"

    @classmethod
    def parse(cls, value: object, *, allow_global: bool = False) -> "Mood":
        """Map free model text onto the closed mood set, defaulting to NEUTRAL."""

        text = str(value or "").strip().upper()
        if text == "GLOBAL_MOOD":
            text = cls.GLOBAL.value
        try:
            mood = cls(text)
        except ValueError:
            return cls.NEUTRAL
        if mood is cls.GLOBAL and not allow_global:
            return cls.NEUTRAL
        return mood


GRAPH_MOODS: Tuple[Mood, ...] = tuple(mood for mood in Mood if mood is not Mood.GLOBAL)


class Mode(str, Enum):
    CONVERSATION = "conversation"
    INTERROGATION = "interrogation"


@dataclass(frozen=True)
class ChatMessage:
    """A single turn of conversation history."""

    role: str
    content: str
    timestamp: Optional[str] = None

    @classmethod
    def from_row(cls, row: Sequence[Any]) -> "ChatMessage":
        """Build a message from a remote ``[timestamp, role, content]`` row."""

        if isinstance(row, (str, bytes)) or len(row) < 3:
            raise ValueError(f"Malformed history row: {row!r}")
        timestamp, role, content = row[0], row[1], row[2]
        return cls(
            role=str(role),
            content="" if content is None else str(content),
            timestamp=None if timestamp in (None, "") else str(timestamp),
        )

    @classmethod
    def now(cls, role: str, content: str) -> "ChatMessage":
        return cls(role=role, content=content, timestamp=_default_timestamp())


def render_history(history: Iterable[ChatMessage]) -> str:
    """Serialise history as ``ROLE: content`` lines in chronological order."""

    return "\n".join(f"{msg.role.upper()}: {msg.content}" for msg in history)


@dataclass(frozen=True)
class SynthesisResult:
    """Entities, topics, keywords and an optional fact extracted from one turn."""

    entities: str = ""
    topics: str = ""
    search_keywords: str = ""
    new_fact: Optional[str] = None

    @property
    def has_fact(self) -> bool:
        if self.new_fact is None:
            return False
        fact = self.new_fact.strip()
        return bool(fact) and fact.lower() != "null"

    def to_payload(self) -> Mapping[str, Any]:
        return {
            "entities": self.entities,
            "topics": self.topics,
            "search_keywords": self.search_keywords,
            "new_fact": self.new_fact,
        }


@dataclass(frozen=True)
class RetrievedContext:
    """Memory snippets recalled for the current turn. Never empty."""

    memories: Tuple[str, ...]
    header: str = "MEMORIES FOUND:"

    def __post_init__(self) -> None:
        if not self.memories:
            raise ValueError("RetrievedContext requires at least one memory")

    def render(self) -> str:
        return self.header + "\n" + "\n".join(self.memories)

    def to_payload(self) -> Mapping[str, Any]:
        return {"memories": list(self.memories)}


def _one_token(value: object) -> str:
    parts = str(value or "").split()
    return parts[0] if parts else ""


@dataclass(frozen=True)
class GraphLeaf:
    text: str
    mood: Mood = Mood.NEUTRAL

    def to_payload(self) -> Mapping[str, Any]:
        return {"text": self.text, "mood": self.mood.value}


@dataclass(frozen=True)
class GraphBranch:
    label: str
    mood: Mood = Mood.NEUTRAL
    leaves: Tuple[GraphLeaf, ...] = ()

    def to_payload(self) -> Mapping[str, Any]:
        return {
            "label": self.label,
            "mood": self.mood.value,
            "leaves": [leaf.to_payload() for leaf in self.leaves],
        }


@dataclass(frozen=True)
class GraphRoot:
    label: str
    mood: Mood = Mood.NEUTRAL
    branches: Tuple[GraphBranch, ...] = ()

    def to_payload(self) -> Mapping[str, Any]:
        return {
            "label": self.label,
            "mood": self.mood.value,
            "branches": [branch.to_payload() for branch in self.branches],
        }


@dataclass(frozen=True)
class GraphLink:
    """Cross reference between two node labels anywhere in the forest."""

    source: str
    target: str

    def to_payload(self) -> Mapping[str, Any]:
        return {"source": self.source, "target": self.target}


@dataclass(frozen=True)
class KnowledgeGraph:
    """Mood-tagged forest of roots, branches and leaves plus named links."""

    roots: Tuple[GraphRoot, ...] = ()
    links: Tuple[GraphLink, ...] = ()

    @property
    def labels(self) -> set[str]:
        names: set[str] = set()
        for root in self.roots:
            names.add(root.label)
            names.update(branch.label for branch in root.branches)
        return names

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "KnowledgeGraph":
        """Normalise model output: truncate lists, keep one token per label."""

        roots: List[GraphRoot] = []
        for raw_root in _as_list(payload.get("roots"))[:MAX_ROOTS]:
            if not isinstance(raw_root, Mapping):
                continue
            label = _one_token(raw_root.get("label")).upper()
            if not label:
                continue
            branches: List[GraphBranch] = []
            for raw_branch in _as_list(raw_root.get("branches"))[:MAX_BRANCHES]:
                if not isinstance(raw_branch, Mapping):
                    continue
                branch_label = _one_token(raw_branch.get("label"))
                if not branch_label:
                    continue
                leaves = []
                for raw_leaf in _as_list(raw_branch.get("leaves"))[:MAX_LEAVES]:
                    if isinstance(raw_leaf, Mapping):
                        text, mood = _one_token(raw_leaf.get("text")), raw_leaf.get("mood")
                    else:
                        text, mood = _one_token(raw_leaf), None
                    if text:
                        leaves.append(GraphLeaf(text=text, mood=Mood.parse(mood)))
                branches.append(
                    GraphBranch(
                        label=branch_label,
                        mood=Mood.parse(raw_branch.get("mood")),
                        leaves=tuple(leaves),
                    )
                )
            roots.append(
                GraphRoot(label=label, mood=Mood.parse(raw_root.get("mood")), branches=tuple(branches))
            )

        graph = cls(roots=tuple(roots))
        known = graph.labels
        links = []
        for raw_link in _as_list(payload.get("links")):
            if not isinstance(raw_link, Mapping):
                continue
            source = _one_token(raw_link.get("source"))
            target = _one_token(raw_link.get("target"))
            resolved_source = _resolve_label(source, known)
            resolved_target = _resolve_label(target, known)
            if resolved_source and resolved_target:
                links.append(GraphLink(source=resolved_source, target=resolved_target))
        return replace(graph, links=tuple(links))

    def to_payload(self) -> Mapping[str, Any]:
        return {
            "roots": [root.to_payload() for root in self.roots],
            "links": [link.to_payload() for link in self.links],
        }


def _as_list(value: object) -> List[Any]:
    return list(value) if isinstance(value, (list, tuple)) else []


def _resolve_label(name: str, known: set[str]) -> Optional[str]:
    # Root labels are upper-cased, so a link may still use the model's casing.
    if name in known:
        return name
    if name.upper() in known:
        return name.upper()
    return None


@dataclass(frozen=True)
class GenerationResult:
    """Conversational reply, global mood and knowledge graph for one turn."""

    response: str
    mood: Mood = Mood.NEUTRAL
    graph: KnowledgeGraph = field(default_factory=KnowledgeGraph)
    parsed: bool = True

    def to_payload(self) -> Mapping[str, Any]:
        payload: Dict[str, Any] = {"response": self.response, "mood": self.mood.value}
        payload.update(self.graph.to_payload())
        return payload


@dataclass(frozen=True)
class SessionContext:
    """Caller-owned state threaded through every turn."""

    history: Tuple[ChatMessage, ...] = ()
    restored: bool = False
    last_context: Optional[RetrievedContext] = None

    def extend(self, *messages: ChatMessage) -> "SessionContext":
        return replace(self, history=self.history + tuple(messages))


@dataclass(frozen=True)
class TurnResult:
    generation: GenerationResult
    synthesis: SynthesisResult
    context: Optional[RetrievedContext]
    session: SessionContext

    def to_payload(self) -> Mapping[str, Any]:
        return {
            "generation": self.generation.to_payload(),
            "synthesis": self.synthesis.to_payload(),
            "context": self.context.to_payload() if self.context else None,
        }


def dumps_payload(data: Mapping[str, Any]) -> str:
    """Render ``data`` as formatted JSON for terminal output."""

    return json.dumps(data, ensure_ascii=False, indent=2)


__all__ = [
    "ChatMessage",
    "GRAPH_MOODS",
    "GenerationResult",
    "GraphBranch",
    "GraphLeaf",
    "GraphLink",
    "GraphRoot",
    "KnowledgeGraph",
    "Mode",
    "Mood",
    "RetrievedContext",
    "SessionContext",
    "SynthesisResult",
    "TurnResult",
    "dumps_payload",
    "render_history",
]
