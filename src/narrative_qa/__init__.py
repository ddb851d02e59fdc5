"""Narrative QA package."""

from .config import EngineSettings, NuanceConfig, RouterConfig, SearchConfig

__all__ = ["EngineSettings", "NuanceConfig", "RouterConfig", "SearchConfig"]
