from __future__ import annotations

import pytest

from symbiosis.memory.schemas import (
    ChatMessage,
    GenerationResult,
    KnowledgeGraph,
    Mood,
    RetrievedContext,
    SessionContext,
    SynthesisResult,
    render_history,
)


def test_chat_message_from_row_maps_fields() -> None:
    msg = ChatMessage.from_row(["2024-03-01T10:00:00Z", "user", "hello"])
    assert msg == ChatMessage(role="user", content="hello", timestamp="2024-03-01T10:00:00Z")


def test_chat_message_from_short_row_rejected() -> None:
    with pytest.raises(ValueError):
        ChatMessage.from_row(["2024-03-01", "user"])


def test_render_history_uses_upper_role_lines() -> None:
    history = [ChatMessage("user", "hi"), ChatMessage("assistant", "hello there")]
    assert render_history(history) == "USER: hi\nASSISTANT: hello there"


@pytest.mark.parametrize(
    ("fact", "expected"),
    [(None, False), ("", False), ("null", False), ("NULL", False), ("Arvin likes tea.", True)],
)
def test_synthesis_has_fact(fact, expected) -> None:
    assert SynthesisResult(new_fact=fact).has_fact is expected


def test_retrieved_context_renders_header() -> None:
    context = RetrievedContext(memories=("Arvin lives in Tokyo.", "Arvin likes jazz."))
    assert context.render() == "MEMORIES FOUND:\nArvin lives in Tokyo.\nArvin likes jazz."


def test_retrieved_context_cannot_be_empty() -> None:
    with pytest.raises(ValueError):
        RetrievedContext(memories=())


def test_mood_parse_maps_unknown_to_neutral() -> None:
    assert Mood.parse("joyful") is Mood.JOYFUL
    assert Mood.parse("ECSTATIC") is Mood.NEUTRAL
    assert Mood.parse(None) is Mood.NEUTRAL
    assert Mood.parse("GLOBAL_MOOD") is Mood.NEUTRAL
    assert Mood.parse("GLOBAL_MOOD", allow_global=True) is Mood.GLOBAL


def test_graph_enforces_cardinality_and_single_tokens() -> None:
    payload = {
        "roots": [
            {
                "label": "the music i like",
                "mood": "JOYFUL",
                "branches": [
                    {
                        "label": f"Branch{i} extra",
                        "mood": "CURIOUS",
                        "leaves": [{"text": f"leaf{j} words", "mood": "SAD"} for j in range(7)],
                    }
                    for i in range(8)
                ],
            },
            {"label": "FOOD", "mood": "HATE", "branches": []},
            {"label": "WORK", "mood": "NEUTRAL", "branches": []},
            {"label": "TRAVEL", "mood": "NEUTRAL", "branches": []},
        ],
        "links": [],
    }
    graph = KnowledgeGraph.from_payload(payload)

    assert [root.label for root in graph.roots] == ["THE", "FOOD", "WORK"]
    first = graph.roots[0]
    assert first.mood is Mood.JOYFUL
    assert len(first.branches) == 5
    assert first.branches[0].label == "Branch0"
    assert len(first.branches[0].leaves) == 5
    assert first.branches[0].leaves[0].text == "leaf0"
    assert first.branches[0].leaves[0].mood is Mood.SAD


def test_graph_links_reference_labels_by_name() -> None:
    payload = {
        "roots": [
            {"label": "MUSIC", "mood": "JOYFUL", "branches": [{"label": "Jazz", "mood": "JOYFUL"}]},
            {"label": "FAMILY", "mood": "AFFECTIONATE", "branches": []},
        ],
        "links": [
            {"source": "music", "target": "FAMILY"},
            {"source": "Jazz", "target": "FAMILY"},
            {"source": "Jazz", "target": "Nowhere"},
        ],
    }
    graph = KnowledgeGraph.from_payload(payload)
    assert [(link.source, link.target) for link in graph.links] == [
        ("MUSIC", "FAMILY"),
        ("Jazz", "FAMILY"),
    ]


def test_generation_payload_flattens_graph() -> None:
    result = GenerationResult(response="Hi", mood=Mood.GLOBAL)
    assert result.to_payload() == {"response": "Hi", "mood": "GLOBAL", "roots": [], "links": []}


def test_session_extend_returns_new_context() -> None:
    session = SessionContext()
    updated = session.extend(ChatMessage("user", "hi"))
    assert session.history == ()
    assert updated.history == (ChatMessage("user", "hi"),)
