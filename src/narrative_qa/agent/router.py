"""Intent routing with a single retrieval fallback."""

from __future__ import annotations

from collections.abc import Mapping
from enum import Enum
from typing import Any

import structlog

from narrative_qa.agent.classifier import classify, matched_keyword
from narrative_qa.agent.handlers.base import (
    Handler,
    HandlerResult,
    InvocationRequest,
    logged,
    validate_invocation,
)
from narrative_qa.config import RouterConfig
from narrative_qa.errors import NarrativeQAError, RouterExhausted, ValidationError
from narrative_qa.obs.tracing import Timer, preview
from narrative_qa.types import AgentInvocationResult, Intent, InvocationMetadata

logger = structlog.get_logger(__name__)

DEFAULT_ROUTES: Mapping[Intent, str] = {
    Intent.RETRIEVAL: "retrieval",
    Intent.HYPOTHESIS: "hypothesis",
    Intent.KNOWLEDGE_MANAGEMENT: "knowledge",
    Intent.UNKNOWN: "retrieval",
}


class RouterState(str, Enum):
    CLASSIFY = "CLASSIFY"
    DISPATCH = "DISPATCH"
    HANDLE = "HANDLE"
    HANDLE_FALLBACK = "HANDLE_FALLBACK"
    AGGREGATE = "AGGREGATE"
    DONE = "DONE"
    FAILED = "FAILED"


def _user_message(exc: Exception) -> str:
    if isinstance(exc, NarrativeQAError):
        return exc.user_message
    return RouterExhausted.default_user_message


class AgentRouter:
    """Classifies a request, dispatches it to one handler and reports the outcome.

    The routing table is fixed at construction. A failing primary handler gets
    exactly one retry through the fallback handler; validation failures are
    never retried. Each `invoke` keeps its state on the stack, so a router is
    shared freely between requests.
    """

    def __init__(
        self,
        handlers: list[Handler],
        config: RouterConfig | None = None,
        routes: Mapping[Intent, str] | None = None,
    ) -> None:
        self.config = config or RouterConfig()
        self.routes = dict(routes or DEFAULT_ROUTES)
        self.handlers = {handler.name: logged(handler) for handler in handlers}

        missing = {name for name in self.routes.values() if name not in self.handlers}
        if self.config.fallback_handler not in self.handlers:
            missing.add(self.config.fallback_handler)
        if missing:
            raise ValueError(f"Routes reference unknown handlers: {sorted(missing)}")
        unrouted = set(Intent) - set(self.routes)
        if unrouted:
            raise ValueError(f"No route for intents: {sorted(i.value for i in unrouted)}")

    def invoke(self, payload: InvocationRequest | dict[str, Any]) -> AgentInvocationResult:
        with Timer() as timer:
            result = self._run(payload, timer)
        result.metadata.processing_time_ms = round(timer.elapsed_ms, 2)
        return result

    def _run(self, payload: InvocationRequest | dict[str, Any], timer: Timer) -> AgentInvocationResult:
        router_name = self.config.router_name
        try:
            request = validate_invocation(payload)
        except ValidationError as exc:
            logger.info("request_rejected", error=str(exc))
            return self._terminal(exc.user_message, "rejected", [router_name], None, exc)

        state = RouterState.CLASSIFY
        intent = classify(request.query)
        log = logger.bind(user_id=request.identity.user_id, intent=intent.value)
        log.info(
            "query_classified",
            query=preview(request.query, 50),
            keyword=matched_keyword(request.query),
        )

        state = RouterState.DISPATCH
        handler_name = self.routes[intent]
        if intent is Intent.UNKNOWN:
            log.info("unknown_intent_defaulted", handler=handler_name)
        log.info("routing_decision", handler=handler_name, state=state.value)

        state = RouterState.HANDLE
        errors: list[str] = []
        try:
            outcome = self.handlers[handler_name].invoke(request)
            status = "ok"
            agents = [router_name, *outcome.agents_invoked]
        except ValidationError as exc:
            return self._terminal(exc.user_message, "rejected", [router_name, handler_name], intent, exc)
        except Exception as exc:
            errors.append(f"{handler_name}: {type(exc).__name__}: {exc}")
            state = RouterState.HANDLE_FALLBACK
            fallback_name = self.config.fallback_handler
            log.warning(
                "fallback_invoked",
                failed_handler=handler_name,
                fallback=fallback_name,
                error_type=type(exc).__name__,
                state=state.value,
            )
            try:
                outcome = self.handlers[fallback_name].invoke(request)
            except Exception as fallback_exc:
                exhausted = RouterExhausted(
                    f"Primary {handler_name} and fallback {fallback_name} both failed"
                )
                exhausted.__cause__ = fallback_exc
                errors.append(f"{fallback_name}: {type(fallback_exc).__name__}: {fallback_exc}")
                log.error(
                    "router_exhausted",
                    state=RouterState.FAILED.value,
                    errors=errors,
                    elapsed_ms=round(timer.lap_ms(), 2),
                )
                return self._terminal(
                    exhausted.user_message,
                    "failed",
                    [router_name, handler_name, fallback_name],
                    intent,
                    exhausted,
                    errors=errors,
                )
            status = "fallback"
            agents = [router_name, handler_name, *outcome.agents_invoked]

        state = RouterState.AGGREGATE
        result = self._aggregate(outcome, agents, intent, status, errors)
        log.info("request_completed", state=RouterState.DONE.value, status=status, agents=agents)
        return result

    def _aggregate(
        self,
        outcome: HandlerResult,
        agents: list[str],
        intent: Intent,
        status: str,
        errors: list[str],
    ) -> AgentInvocationResult:
        return AgentInvocationResult(
            content=outcome.content,
            metadata=InvocationMetadata(
                agents_invoked=agents,
                tools_used=list(outcome.tools_used),
                processing_time_ms=0.0,
                intent=intent,
                status=status,
                citations=outcome.citations,
                profile_updates=list(outcome.profile_updates),
                errors=errors,
            ),
        )

    def _terminal(
        self,
        content: str,
        status: str,
        agents: list[str],
        intent: Intent | None,
        exc: Exception,
        *,
        errors: list[str] | None = None,
    ) -> AgentInvocationResult:
        return AgentInvocationResult(
            content=content or _user_message(exc),
            metadata=InvocationMetadata(
                agents_invoked=agents,
                tools_used=[],
                processing_time_ms=0.0,
                intent=intent,
                status=status,
                errors=errors if errors is not None else [f"{type(exc).__name__}: {exc}"],
            ),
        )
