"""
Domain models. ORM tables live in ``opsdrift.models.database`` and request
bodies in ``opsdrift.models.api_models``.
"""

from .git_state import (
    SyncStatus,
    SyncReason,
    NodeRole,
    OfflineThresholds,
    NodeGitState,
    RegistryEntry,
    RepoPairSummary,
    FamilySummary,
    AttentionItem,
)

__all__ = [
    "SyncStatus",
    "SyncReason",
    "NodeRole",
    "OfflineThresholds",
    "NodeGitState",
    "RegistryEntry",
    "RepoPairSummary",
    "FamilySummary",
    "AttentionItem",
]
