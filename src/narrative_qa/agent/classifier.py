"""Deterministic keyword-based intent classification.

Keyword sets are checked in a fixed priority order: knowledge management,
then hypothesis, then retrieval. The first matching set wins, so "show me my
profile" is knowledge management and never retrieval. No model inference is
involved.
"""

from __future__ import annotations

from narrative_qa.types import Intent

KNOWLEDGE_KEYWORDS: tuple[str, ...] = (
    "show me",
    "list",
    "my profile",
    "update profile",
    "save profile",
    "get profile",
    "view profile",
    "edit profile",
    "delete profile",
    "create profile",
    "profile for",
    "profiles",
)

HYPOTHESIS_KEYWORDS: tuple[str, ...] = (
    "theory",
    "hypothesis",
    "evidence for",
    "validate",
    "analyze theory",
    "test theory",
    "theory about",
    "my theory",
    "theories",
)

RETRIEVAL_KEYWORDS: tuple[str, ...] = (
    "who is",
    "what is",
    "tell me about",
    "what happens",
    "when does",
    "where is",
    "why does",
    "how does",
    "explain",
    "describe",
    "what does",
    "who does",
)

_PRIORITY: tuple[tuple[Intent, tuple[str, ...]], ...] = (
    (Intent.KNOWLEDGE_MANAGEMENT, KNOWLEDGE_KEYWORDS),
    (Intent.HYPOTHESIS, HYPOTHESIS_KEYWORDS),
    (Intent.RETRIEVAL, RETRIEVAL_KEYWORDS),
)


def classify(query: str) -> Intent:
    lowered = query.lower()
    for intent, keywords in _PRIORITY:
        if any(keyword in lowered for keyword in keywords):
            return intent
    return Intent.UNKNOWN


def matched_keyword(query: str) -> str | None:
    """The keyword that decided `classify`, for routing logs."""
    lowered = query.lower()
    for _, keywords in _PRIORITY:
        for keyword in keywords:
            if keyword in lowered:
                return keyword
    return None
