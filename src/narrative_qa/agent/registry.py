"""Tool registry built on Pydantic v2 models."""

from __future__ import annotations

from collections.abc import Callable
from time import perf_counter
from typing import Any

import pydantic
from langchain_core.tools import StructuredTool
from pydantic import BaseModel, ConfigDict, Field

from narrative_qa.errors import ValidationError
from narrative_qa.types import ToolTrace

ToolObserver = Callable[[ToolTrace], None]


class ToolSpec(BaseModel):
    """Declarative tool specification for registration and validation."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str
    description: str
    args_schema: type[BaseModel]
    handler: Callable[[BaseModel], str]
    tags: list[str] = Field(default_factory=list)

    def invoke(self, payload: dict[str, Any]) -> str:
        try:
            data = self.args_schema.model_validate(payload)
        except pydantic.ValidationError as exc:
            fields = ", ".join(
                ".".join(str(part) for part in error["loc"]) for error in exc.errors()
            )
            raise ValidationError(
                f"Invalid input for tool {self.name}: {exc}",
                user_message=f"The {self.name} request has invalid fields: {fields}.",
            ) from exc
        return self.handler(data)


class ToolRegistry:
    """Stores tool specs and exports LangChain-compatible tool objects.

    Observers are passed per call, so one registry is safe to share between
    concurrent requests.
    """

    def __init__(self) -> None:
        self._tools: dict[str, ToolSpec] = {}

    def register(self, spec: ToolSpec) -> None:
        if spec.name in self._tools:
            raise ValueError(f"Tool already registered: {spec.name}")
        self._tools[spec.name] = spec

    def execute(
        self,
        name: str,
        payload: dict[str, Any],
        *,
        observer: ToolObserver | None = None,
    ) -> str:
        spec = self._tools.get(name)
        if spec is None:
            raise KeyError(f"Unknown tool: {name}")
        return self._execute_spec(spec, payload, observer)

    def as_langchain_tools(self, observer: ToolObserver | None = None) -> list[StructuredTool]:
        tools: list[StructuredTool] = []
        for spec in self._tools.values():
            tools.append(
                StructuredTool.from_function(
                    name=spec.name,
                    description=spec.description,
                    args_schema=spec.args_schema,
                    func=self._build_function(spec, observer),
                )
            )
        return tools

    def specs(self) -> list[ToolSpec]:
        return list(self._tools.values())

    def _build_function(
        self, spec: ToolSpec, observer: ToolObserver | None
    ) -> Callable[..., str]:
        def _callable(**kwargs: Any) -> str:
            return self._execute_spec(spec, kwargs, observer)

        return _callable

    def _execute_spec(
        self, spec: ToolSpec, payload: dict[str, Any], observer: ToolObserver | None
    ) -> str:
        start = perf_counter()
        output = spec.invoke(payload)
        latency_ms = (perf_counter() - start) * 1000.0

        if observer is not None:
            observer(
                ToolTrace(
                    name=spec.name,
                    input_payload=payload,
                    output_preview=output[:320],
                    latency_ms=latency_ms,
                )
            )
        return output
