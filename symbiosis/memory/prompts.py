"""Prompt templates for the synthesis and generation calls."""

from __future__ import annotations

from typing import Optional

from .schemas import GRAPH_MOODS, MAX_BRANCHES, MAX_LEAVES, MAX_ROOTS, Mode

TOPIC_CATEGORIES = (
    "Identity",
    "Preference",
    "Location",
    "Relationship",
    "History",
    "Work",
    "Dream",
    "Health",
)


SYNTHESIS_PROMPT = """
USER_IDENTITY: {identity}, unless said otherwise
CURRENT_DATE: {today}
CONTEXT:
{history}

CURRENT INPUT: "{user_text}"

TASK:
1. ENTITIES: Return a comma-separated list of ALL people/places involved.
   - Include the implied subject (e.g. if user says "me" or "I", write "{identity}").

2. TOPICS: Broad categories ({categories}).

3. KEYWORDS: Extract 3-5 specific search terms from the input. Include synonyms.
   - If user asks "What is {identity}'s MBTI?", keywords must be: "{identity}, MBTI"
   - If user asks "Where does Meidy work?", keywords must be: "Meidy, Work, Job, Office"
   - CRITICAL: This is used for database retrieval. Be specific.

4. FACT: Extract NEW long-term info as a standalone declarative sentence.
   - Write in the third person.
   - CONVERT RELATIVE TIME TO ABSOLUTE DATES (YYYY or Month YYYY).
   - If user says "2 years ago", calculate the year based on CURRENT_DATE.
   - Do NOT use words like "currently", "recently", "ago", or "now".
   - Always write the time in the info unless it's a general fact.
   - If it is a QUESTION, CHIT-CHAT, or NO NEW INFO, return null.

Return JSON only: {{
    "entities": "...",
    "topics": "...",
    "search_keywords": "...",
    "new_fact": "..." (or null)
}}
""".strip()


CONVERSATION_PERSONA = """
You are {identity}'s digital companion.
1. Answer accordingly. Never use bullet points. Never use tables. Just use pure text.
2. Construct a KNOWLEDGE GRAPH (FOREST).
""".strip()


INTERROGATION_PERSONA = """
You are an inquisitive researcher helping {identity} document their life.
YOU ARE IN 'INTERROGATION MODE'.

CRITICAL INSTRUCTION: READ THE HISTORY AND MEMORIES FIRST.
1. Look at "MEMORIES FOUND" and "CONVERSATION HISTORY".
2. BEFORE asking a question, check: "Did the user ALREADY answer this in the conversation?"
3. If the answer exists (even partially), DO NOT ASK IT AGAIN. Move to the next logical follow-up.
4. If the user just answered a question, acknowledge it briefly ("Understood.", "I see."), then ask a DIFFERENT deepening question.

GOAL:
- Dig for NEW information only.
- If the user says "I told you", assume you missed it and ask for clarification on a *detail*, not the main fact.
- Keep the graph simple (Roots = The Topic, Branches = What you are asking about).
""".strip()


GENERATION_PROMPT = """
{persona}
{context}

CONVERSATION HISTORY:
{history}

User: "{user_text}"

STRUCTURE:
- ROOTS: Array of MAX {max_roots} objects (decide if the user needs more than 1). (Keep it simple).
- ROOT LABEL: MUST be exactly 1 word. UPPERCASE. (e.g. "MUSIC", not "THE MUSIC I LIKE").
- BRANCHES: Max {max_branches} branches. Label MUST be exactly 1 word.
- LEAVES: Max {max_leaves} leaves per branch. Text MUST be exactly 1 word.

CRITICAL: DO NOT USE PHRASES. SINGLE WORDS ONLY.

MOODS: [{moods}]

**IMPORTANT: Assign a specific MOOD to every ROOT and BRANCH based on sentiment:**
- If the branch is "SPINACH" (which {identity} hates), mood must be "HATE".
- If the branch is "MUSIC" (which {identity} likes), mood must be "JOYFUL".
- If the branch is "FAMILY", mood might be "AFFECTIONATE".

Return JSON:
{{
  "response": "...",
  "mood": "GLOBAL_MOOD",
  "roots": [
     {{
       "label": "ROOT_LABEL",
       "mood": "SPECIFIC_MOOD",
       "branches": [
          {{
            "label": "SUB_TOPIC",
            "mood": "SPECIFIC_MOOD",
            "leaves": [ {{"text":"DETAIL", "mood":"MOOD"}} ]
          }}
       ]
     }},
     {{ ...Optional 2nd Root... }}
  ],
  "links": [
     {{ "source": "ROOT_LABEL_1", "target": "ROOT_LABEL_2" }},
     {{ "source": "SUB_TOPIC_1", "target": "OTHER_LABEL" }}
  ]
}}
""".strip()


def build_synthesis_prompt(*, identity: str, today: str, history: str, user_text: str) -> str:
    return SYNTHESIS_PROMPT.format(
        identity=identity,
        today=today,
        history=history,
        user_text=user_text,
        categories=", ".join(TOPIC_CATEGORIES),
    )


def build_generation_prompt(
    *,
    identity: str,
    mode: Mode,
    context: Optional[str],
    history: str,
    user_text: str,
) -> str:
    persona = INTERROGATION_PERSONA if mode is Mode.INTERROGATION else CONVERSATION_PERSONA
    return GENERATION_PROMPT.format(
        persona=persona.format(identity=identity),
        context=context or "",
        history=history,
        user_text=user_text,
        max_roots=MAX_ROOTS,
        max_branches=MAX_BRANCHES,
        max_leaves=MAX_LEAVES,
        moods=", ".join(mood.value for mood in GRAPH_MOODS),
        identity=identity,
    )


__all__ = [
    "CONVERSATION_PERSONA",
    "GENERATION_PROMPT",
    "INTERROGATION_PERSONA",
    "SYNTHESIS_PROMPT",
    "TOPIC_CATEGORIES",
    "build_generation_prompt",
    "build_synthesis_prompt",
]
