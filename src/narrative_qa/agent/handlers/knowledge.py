"""Profile management: get, update and list user-scoped profiles."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import structlog

from narrative_qa.agent.handlers.base import HandlerResult, InvocationRequest
from narrative_qa.agent.handlers.retrieval import with_memory
from narrative_qa.agent.llm import CompletionClient
from narrative_qa.agent.registry import ToolRegistry
from narrative_qa.agent.tools import PROFILE_TYPES
from narrative_qa.types import ToolTrace

logger = structlog.get_logger(__name__)


class Operation(str, Enum):
    GET = "GET"
    UPDATE = "UPDATE"
    LIST = "LIST"
    UNKNOWN = "UNKNOWN"


GET_KEYWORDS = (
    "show", "get", "view", "display", "see", "what is", "tell me about", "find", "retrieve",
)
UPDATE_KEYWORDS = (
    "update", "save", "edit", "modify", "change", "set", "add to", "remove from",
)
LIST_KEYWORDS = (
    "list", "show all", "show me all", "all my", "my profiles", "what profiles", "which profiles",
)

_TYPE_MARKERS: tuple[tuple[str, str], ...] = (
    ("character", "CHARACTER"),
    ("location", "LOCATION"),
    ("episode", "UNIT"),
    ("unit", "UNIT"),
    ("fragment", "FRAGMENT_GROUP"),
    ("theor", "THEORY"),
)

_COMMAND_WORDS = frozenset(
    {"show", "get", "view", "display", "find", "retrieve", "update", "save", "edit",
     "modify", "change", "set", "add", "remove", "list", "what", "tell", "please", "can", "i"}
)

_QUOTED = re.compile(r"[\"']([^\"']+)[\"']")
_CAPITALIZED = re.compile(r"\b([A-Z][a-z]+(?:\s+[A-Z][a-z]+)*)\b")
_SET_PHRASE = re.compile(
    r"\bset\s+(?:the\s+|my\s+)?(?P<field>[a-z_][a-z0-9_ ]*?)\s+to\s+(?P<value>[^,;\n]+)",
    re.IGNORECASE,
)
_JSON_FENCE = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL)
_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)

TYPE_QUESTION = (
    "I need to know what type of profile you're looking for. Please specify: "
    "character, location, unit, fragment group, or theory."
)
UPDATE_GUIDANCE = (
    "I couldn't work out what you want to update. Please say:\n"
    "1. The profile type (character, location, unit, fragment group, theory)\n"
    "2. The profile name, for example in quotes\n"
    "3. What to change, for example: set role to detective"
)
USAGE_GUIDANCE = (
    "I can help you manage your profiles:\n"
    "- View a profile, e.g. \"Show me the character profile for 'Rena'\"\n"
    "- Update a profile, e.g. \"Update character profile 'Rena': set role to detective\"\n"
    "- List profiles, e.g. \"List all my character profiles\""
)


@dataclass(slots=True)
class ProfileOperation:
    kind: Operation
    profile_type: str | None = None
    profile_id: str | None = None
    updates: dict[str, Any] = field(default_factory=dict)


def normalize_profile_id(raw: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", raw.lower()).strip("-")


def extract_profile_type(query: str) -> str | None:
    lowered = query.lower()
    for marker, profile_type in _TYPE_MARKERS:
        if re.search(rf"\b{marker}", lowered):
            return profile_type
    return None


def _locate_profile_id(query: str) -> tuple[str | None, str]:
    """Return the normalized id and the query text with that id removed."""
    quoted = _QUOTED.search(query)
    if quoted:
        rest = query[: quoted.start()] + " " + query[quoted.end() :]
        return normalize_profile_id(quoted.group(1)) or None, rest
    for match in _CAPITALIZED.finditer(query):
        words = match.group(1).split()
        while words and words[0].lower() in _COMMAND_WORDS:
            words.pop(0)
        if words:
            name = " ".join(words)
            return normalize_profile_id(name), query.replace(name, " ", 1)
    return None, query


def extract_profile_id(query: str) -> str | None:
    """Quoted text wins; otherwise the first capitalized name that is not a command word."""
    return _locate_profile_id(query)[0]


def _mentions(text: str, keywords: tuple[str, ...]) -> bool:
    return any(re.search(rf"\b{re.escape(keyword)}\b", text) for keyword in keywords)


def parse_set_phrases(query: str) -> dict[str, str]:
    updates: dict[str, str] = {}
    for match in _SET_PHRASE.finditer(query):
        name = "_".join(match.group("field").split()).lower()
        value = match.group("value").strip().strip("\"'").strip()
        if name and value:
            updates[name] = value
    return updates


def classify_operation(query: str) -> ProfileOperation:
    """GET wins over UPDATE unless an update verb appears outside the profile name."""
    profile_id, rest = _locate_profile_id(query)
    profile_type = extract_profile_type(rest)
    lowered = rest.lower()

    if profile_id and _mentions(lowered, GET_KEYWORDS) and not _mentions(lowered, UPDATE_KEYWORDS):
        return ProfileOperation(Operation.GET, profile_type, profile_id)
    if profile_id and _mentions(lowered, UPDATE_KEYWORDS):
        return ProfileOperation(
            Operation.UPDATE, profile_type, profile_id, parse_set_phrases(query)
        )
    if _mentions(lowered, LIST_KEYWORDS) or "profiles" in lowered:
        return ProfileOperation(Operation.LIST, profile_type)
    return ProfileOperation(Operation.UNKNOWN, profile_type, profile_id)


def extract_json_block(text: str) -> dict[str, Any] | None:
    match = _JSON_FENCE.search(text) or _JSON_OBJECT.search(text)
    if not match:
        return None
    try:
        data = json.loads(match.group(1) if match.re is _JSON_FENCE else match.group(0))
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def update_extraction_prompt(query: str) -> str:
    return (
        "The user wants to update a profile. Their request:\n\n"
        f'"{query}"\n\n'
        "Extract:\n"
        f"1. Profile type ({', '.join(PROFILE_TYPES)})\n"
        "2. Profile id\n"
        "3. The fields to update and their new values\n\n"
        'Respond in JSON: {"profileType": "...", "profileId": "...", "updates": {...}}'
    )


class KnowledgeHandler:
    """Deterministic profile operations executed through the tool registry.

    Every tool call carries the caller's user id, so one user's profiles are
    never visible to another.
    """

    name = "knowledge"

    def __init__(self, registry: ToolRegistry, *, llm: CompletionClient | None = None) -> None:
        self.registry = registry
        self.llm = llm

    def invoke(self, request: InvocationRequest) -> HandlerResult:
        operation = classify_operation(request.query)
        logger.info(
            "profile_operation_classified",
            operation=operation.kind.value,
            profile_type=operation.profile_type,
            profile_id=operation.profile_id,
        )
        traces: list[ToolTrace] = []
        user_id = request.identity.user_id

        if operation.kind is Operation.GET:
            content, updates = self._get(user_id, operation, traces), []
        elif operation.kind is Operation.UPDATE:
            content, updates = self._update(request, operation, traces)
        elif operation.kind is Operation.LIST:
            content, updates = self._list(user_id, operation, traces), []
        else:
            content, updates = USAGE_GUIDANCE, []

        return HandlerResult(
            content=content,
            agents_invoked=[self.name],
            tools_used=[trace.name for trace in traces],
            profile_updates=updates,
        )

    def _call(self, tool: str, payload: dict[str, Any], traces: list[ToolTrace]) -> Any:
        return json.loads(self.registry.execute(tool, payload, observer=traces.append))

    def _get(self, user_id: str, operation: ProfileOperation, traces: list[ToolTrace]) -> str:
        if operation.profile_type is None:
            return TYPE_QUESTION
        result = self._call(
            "get_profile",
            {
                "user_id": user_id,
                "profile_type": operation.profile_type,
                "profile_id": operation.profile_id,
            },
            traces,
        )
        label = operation.profile_type.lower().replace("_", " ")
        if not result["found"]:
            return (
                f'I couldn\'t find a {label} profile for "{operation.profile_id}". '
                "Would you like to create one?"
            )
        return f"{label.title()} profile \"{operation.profile_id}\":\n{_render_fields(result['profile'])}"

    def _update(
        self,
        request: InvocationRequest,
        operation: ProfileOperation,
        traces: list[ToolTrace],
    ) -> tuple[str, list[str]]:
        profile_type = operation.profile_type
        profile_id = operation.profile_id
        updates: dict[str, Any] = dict(operation.updates)

        if not updates and self.llm is not None:
            reply = self.llm.complete(
                with_memory(update_extraction_prompt(request.query), request.memory_context)
            )
            extracted = extract_json_block(reply) or {}
            if isinstance(extracted.get("updates"), dict):
                updates = extracted["updates"]
                profile_type = profile_type or extracted.get("profileType")
                profile_id = normalize_profile_id(str(extracted.get("profileId") or "")) or profile_id

        if not updates or not profile_id:
            return UPDATE_GUIDANCE, []
        if profile_type is None:
            return TYPE_QUESTION, []

        result = self._call(
            "update_profile",
            {
                "user_id": request.identity.user_id,
                "profile_type": profile_type,
                "profile_id": profile_id,
                "updates": updates,
            },
            traces,
        )
        action = "created" if result["created"] else "updated"
        label = str(profile_type).lower().replace("_", " ")
        return (
            f'Profile {action}. The {label} profile for "{profile_id}" now has:\n'
            f"{_render_fields(result['profile'])}",
            [result["key"]],
        )

    def _list(self, user_id: str, operation: ProfileOperation, traces: list[ToolTrace]) -> str:
        items = self._call(
            "list_profiles",
            {"user_id": user_id, "profile_type": operation.profile_type},
            traces,
        )
        if not items:
            label = f"{operation.profile_type.lower().replace('_', ' ')} " if operation.profile_type else ""
            return f"You don't have any {label}profiles yet. Would you like to create one?"

        grouped: dict[str, list[str]] = {}
        for item in items:
            grouped.setdefault(item["profileType"], []).append(item["profileId"])
        sections = [
            f"{profile_type.replace('_', ' ').title()} ({len(ids)}):\n"
            + "\n".join(f"- {profile_id}" for profile_id in ids)
            for profile_type, ids in grouped.items()
        ]
        return "Your profiles:\n\n" + "\n\n".join(sections)


def _render_fields(profile: dict[str, Any]) -> str:
    lines = []
    for key in sorted(profile):
        value = profile[key]
        if isinstance(value, (dict, list)):
            value = json.dumps(value, ensure_ascii=False)
        lines.append(f"- {key}: {value}")
    return "\n".join(lines)
