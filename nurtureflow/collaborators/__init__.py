"""Collaborator factory and initialization."""

from __future__ import annotations

import os
from typing import Optional

from ..config import MatcherConfig, NurtureflowConfig, load_config
from .base import (
    AgentDirectory,
    AgentMatcher,
    Collaborators,
    CrmStore,
    Mailer,
    Messenger,
    VoiceCaller,
)
from .http import HttpCollaborator
from .inmemory import InMemoryCrm, InMemoryMailer, InMemoryMessenger, InMemoryVoiceCaller

_collaborators_instance: Collaborators | None = None


def build_matcher(config: MatcherConfig) -> Optional[AgentMatcher]:
    """Create the matcher used by the heuristic assignment strategy."""
    from ..assignment import LLMAgentMatcher, ScoringMatcher

    if config.backend == "none":
        return None
    if config.backend == "llm":
        return LLMAgentMatcher(config.model)
    return ScoringMatcher()


def get_collaborators(
    backend: Optional[str] = None, config: Optional[NurtureflowConfig] = None
) -> Collaborators:
    """Factory function to get the configured collaborators.

    The in-memory backend is process-local and shared between calls so that
    seeded contacts and recorded side effects stay visible.
    """

    global _collaborators_instance
    if _collaborators_instance is not None and backend is None and config is None:
        return _collaborators_instance

    config = config or load_config()
    backend = (
        backend
        or os.getenv("NURTUREFLOW_COLLABORATORS")
        or config.collaborators.backend
    ).lower()
    matcher = build_matcher(config.matcher)

    if backend == "inmemory":
        crm = InMemoryCrm()
        _collaborators_instance = Collaborators(
            voice=InMemoryVoiceCaller(),
            messaging=InMemoryMessenger(),
            email=InMemoryMailer(),
            crm=crm,
            agents=crm,
            matcher=matcher,
        )
    elif backend == "http":
        settings = config.collaborators
        if not settings.base_url:
            raise ValueError("collaborators.base_url is required for the http backend")
        client = HttpCollaborator(
            settings.base_url,
            api_key=settings.api_key,
            timeout=settings.timeout_seconds,
        )
        _collaborators_instance = Collaborators(
            voice=client,
            messaging=client,
            email=client,
            crm=client,
            agents=client,
            matcher=matcher,
        )
    else:
        raise ValueError(f"Unsupported collaborator backend: {backend}")

    return _collaborators_instance


__all__ = [
    "AgentDirectory",
    "AgentMatcher",
    "Collaborators",
    "CrmStore",
    "HttpCollaborator",
    "InMemoryCrm",
    "InMemoryMailer",
    "InMemoryMessenger",
    "InMemoryVoiceCaller",
    "Mailer",
    "Messenger",
    "VoiceCaller",
    "build_matcher",
    "get_collaborators",
]
