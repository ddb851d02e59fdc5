"""Handler contract, invocation request model and result aggregation."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Protocol

import pydantic
import structlog
from pydantic import BaseModel, ConfigDict, Field, field_validator

from narrative_qa.errors import ValidationError
from narrative_qa.obs.tracing import Timer, preview
from narrative_qa.types import Citation, NoEvidence, NuanceFinding

logger = structlog.get_logger(__name__)


class Identity(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    user_id: str = Field(min_length=1, alias="userId")
    display_name: str = Field(min_length=1, alias="displayName")

    @field_validator("user_id", "display_name")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value


class InvocationRequest(BaseModel):
    """Router input. Identity fields are mandatory; memory may be empty."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    query: str = Field(min_length=1)
    identity: Identity
    memory_context: str = Field(default="", alias="memoryContext")
    unit_scope: list[str] | None = Field(default=None, alias="unitScope")
    focus_speaker: str | None = Field(default=None, alias="focusSpeaker")

    @field_validator("query")
    @classmethod
    def _query_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("query must not be blank")
        return value


def validate_invocation(payload: InvocationRequest | dict[str, Any]) -> InvocationRequest:
    if isinstance(payload, InvocationRequest):
        return payload
    try:
        return InvocationRequest.model_validate(payload)
    except pydantic.ValidationError as exc:
        fields = sorted(
            {".".join(str(part) for part in error["loc"]) for error in exc.errors()}
        )
        raise ValidationError(
            f"Invalid invocation request: {exc}",
            user_message=(
                "Your request is missing required information: "
                f"{', '.join(fields)}. Please sign in again and resend your question."
                if any(name.startswith("identity") for name in fields)
                else f"Please check these fields and try again: {', '.join(fields)}."
            ),
        ) from exc


@dataclass(slots=True)
class HandlerResult:
    """What a handler reports back to the router."""

    content: str
    agents_invoked: list[str]
    tools_used: list[str] = field(default_factory=list)
    evidence: list[Citation] | NoEvidence | None = None
    nuances: list[NuanceFinding] = field(default_factory=list)
    profile_updates: list[str] = field(default_factory=list)

    @property
    def citations(self) -> list[Citation]:
        return list(self.evidence) if isinstance(self.evidence, list) else []

    @property
    def has_direct_evidence(self) -> bool:
        return bool(self.citations)


class Handler(Protocol):
    """One specialized response strategy."""

    name: str

    def invoke(self, request: InvocationRequest) -> HandlerResult:
        """Answer one request or raise."""


class LoggedHandler:
    """Wraps a handler with start/finish/failure events; errors still propagate."""

    def __init__(self, inner: Handler) -> None:
        self.inner = inner
        self.name = inner.name

    def invoke(self, request: InvocationRequest) -> HandlerResult:
        log = logger.bind(handler=self.name, user_id=request.identity.user_id)
        log.info("handler_invoked", query=preview(request.query, 50))
        with Timer() as timer:
            try:
                result = self.inner.invoke(request)
            except Exception as exc:
                log.warning(
                    "handler_failed",
                    error_type=type(exc).__name__,
                    error=str(exc),
                    elapsed_ms=round(timer.lap_ms(), 2),
                )
                raise
        log.info(
            "handler_completed",
            elapsed_ms=round(timer.elapsed_ms, 2),
            citations=len(result.citations),
        )
        return result


def logged(handler: Handler) -> Handler:
    return handler if isinstance(handler, LoggedHandler) else LoggedHandler(handler)


def _unique(items: Iterable[Any]) -> list[Any]:
    seen: list[Any] = []
    for item in items:
        if item not in seen:
            seen.append(item)
    return seen


def aggregate_results(sections: list[tuple[str, HandlerResult]]) -> HandlerResult:
    """Concatenate handler outputs under labeled section breaks.

    Citations and profile updates are unioned; only exact duplicate citations
    are removed.
    """

    if not sections:
        raise ValueError("aggregate_results needs at least one section")

    content = "\n\n".join(f"## {label}\n\n{result.content}" for label, result in sections)
    citations = _unique(c for _, result in sections for c in result.citations)
    no_evidence = next(
        (r.evidence for _, r in sections if isinstance(r.evidence, NoEvidence)), None
    )
    return HandlerResult(
        content=content,
        agents_invoked=[name for _, result in sections for name in result.agents_invoked],
        tools_used=_unique(tool for _, result in sections for tool in result.tools_used),
        evidence=citations if citations else no_evidence,
        nuances=[finding for _, result in sections for finding in result.nuances],
        profile_updates=_unique(
            key for _, result in sections for key in result.profile_updates
        ),
    )


class CompositeHandler:
    """Runs several handlers in sequence for one request and aggregates them.

    Registered under its own name, so the router still dispatches to exactly
    one handler. A failing member fails the whole composite.
    """

    def __init__(self, name: str, members: list[tuple[str, Handler]]) -> None:
        if not members:
            raise ValueError("CompositeHandler needs at least one member")
        self.name = name
        self.members = members

    def invoke(self, request: InvocationRequest) -> HandlerResult:
        sections = [(label, handler.invoke(request)) for label, handler in self.members]
        combined = aggregate_results(sections)
        combined.agents_invoked.insert(0, self.name)
        return combined
