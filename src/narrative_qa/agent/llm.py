"""Text-completion collaborator contract and its LangChain adapter."""

from __future__ import annotations

from typing import Any, Protocol

from langchain_core.prompts import ChatPromptTemplate

from narrative_qa.errors import InferenceError


class CompletionClient(Protocol):
    """Opaque completion endpoint: prompt in, text out, may fail."""

    def complete(self, prompt: str, *, system: str | None = None) -> str:
        """Return the model's text for one prompt."""


_PROMPT = ChatPromptTemplate.from_messages(
    [
        ("system", "{system}"),
        ("human", "{input}"),
    ]
)

_DEFAULT_SYSTEM = "You are a careful assistant for questions about a serialized story."


class LangChainCompletionClient:
    """Runs a prompt through any LangChain chat model.

    Every failure, and an empty reply, is reported as `InferenceError` so the
    router can apply its fallback policy.
    """

    def __init__(self, llm: Any) -> None:
        self._chain = _PROMPT | llm

    def complete(self, prompt: str, *, system: str | None = None) -> str:
        try:
            message = self._chain.invoke({"system": system or _DEFAULT_SYSTEM, "input": prompt})
        except Exception as exc:
            raise InferenceError(f"Completion request failed: {exc}") from exc

        text = _message_text(message)
        if not text.strip():
            raise InferenceError("Completion returned empty content")
        return text


def _message_text(message: Any) -> str:
    content = getattr(message, "content", message)
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict) and "text" in item:
                parts.append(str(item["text"]))
            else:
                parts.append(str(item))
        return " ".join(parts).strip()
    return str(content)
