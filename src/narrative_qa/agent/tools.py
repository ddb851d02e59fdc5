"""Built-in tool implementations for the narrative QA engine."""

from __future__ import annotations

import json
from typing import Annotated, Any, Literal

from pydantic import BaseModel, BeforeValidator, Field

from narrative_qa.agent.registry import ToolRegistry, ToolSpec
from narrative_qa.profiles.store import ProfileStore, profile_key
from narrative_qa.retrieval.search import SearchRequest, SemanticSearch


def _upper(value: Any) -> Any:
    return value.strip().upper() if isinstance(value, str) else value


ProfileType = Annotated[
    Literal["CHARACTER", "LOCATION", "UNIT", "FRAGMENT_GROUP", "THEORY"], BeforeValidator(_upper)
]
PROFILE_TYPES: tuple[str, ...] = ("CHARACTER", "LOCATION", "UNIT", "FRAGMENT_GROUP", "THEORY")


class _ProfileInput(BaseModel):
    user_id: str = Field(min_length=1)


class GetProfileInput(_ProfileInput):
    profile_type: ProfileType
    profile_id: str = Field(min_length=1)


class ListProfilesInput(_ProfileInput):
    profile_type: ProfileType | None = None


class UpdateProfileInput(_ProfileInput):
    profile_type: ProfileType
    profile_id: str = Field(min_length=1)
    updates: dict[str, Any] = Field(min_length=1)


def register_builtin_tools(
    registry: ToolRegistry,
    search: SemanticSearch,
    profiles: ProfileStore,
) -> None:
    """Register the default tool set.

    Tools:
    - `semantic_search`: ranked, scoped passages for a query.
    - `get_profile` / `list_profiles` / `update_profile`: per-user profile
      records keyed by type and id.

    Every tool returns JSON text.
    """

    def _search(input_data: SearchRequest) -> str:
        return json.dumps(search.search(input_data).to_dict(), ensure_ascii=False)

    def _get_profile(input_data: GetProfileInput) -> str:
        key = profile_key(input_data.profile_type, input_data.profile_id)
        profile = profiles.get(input_data.user_id, key)
        return json.dumps(
            {"found": profile is not None, "key": key, "profile": profile},
            ensure_ascii=False,
        )

    def _list_profiles(input_data: ListProfilesInput) -> str:
        prefix = f"{input_data.profile_type}#" if input_data.profile_type else ""
        items = []
        for key, profile in profiles.list_profiles(input_data.user_id, prefix):
            profile_type, _, profile_id = key.partition("#")
            items.append(
                {
                    "key": key,
                    "profileType": profile_type,
                    "profileId": profile_id,
                    "profile": profile,
                }
            )
        return json.dumps(items, ensure_ascii=False)

    def _update_profile(input_data: UpdateProfileInput) -> str:
        key = profile_key(input_data.profile_type, input_data.profile_id)
        existing = profiles.get(input_data.user_id, key)
        profile = {
            **(existing or {"profileType": input_data.profile_type}),
            **input_data.updates,
        }
        profiles.put(input_data.user_id, key, profile)
        return json.dumps(
            {"key": key, "created": existing is None, "profile": profile},
            ensure_ascii=False,
        )

    registry.register(
        ToolSpec(
            name="semantic_search",
            description="Search corpus passages by meaning, optionally scoped to units.",
            args_schema=SearchRequest,
            handler=_search,
            tags=["retrieval"],
        )
    )
    registry.register(
        ToolSpec(
            name="get_profile",
            description="Fetch one of the user's profiles by type and id.",
            args_schema=GetProfileInput,
            handler=_get_profile,
            tags=["profiles"],
        )
    )
    registry.register(
        ToolSpec(
            name="list_profiles",
            description="List the user's profiles, optionally of one type.",
            args_schema=ListProfilesInput,
            handler=_list_profiles,
            tags=["profiles"],
        )
    )
    registry.register(
        ToolSpec(
            name="update_profile",
            description="Create or update fields on one of the user's profiles.",
            args_schema=UpdateProfileInput,
            handler=_update_profile,
            tags=["profiles", "write"],
        )
    )
