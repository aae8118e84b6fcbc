"""
Selectors - offline detection, grouping, family inference and filtering.

Small pure helpers shared by the classifier, the family aggregator and the
query layer. Nothing in here touches the store or the clock; callers pass
``now`` explicitly.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from opsdrift.models.git_state import (
    FamilyMembership,
    FamilySource,
    FamilySummary,
    InstanceStatus,
    NodeGitState,
    OfflineThresholds,
    RegistryEntry,
    RepoGroup,
    RepoPairSummary,
    SyncStatus,
)
from opsdrift.utils.error_handling import FilterValidationError
from opsdrift.utils.timeutils import elapsed_ms


# =============================================================================
# OFFLINE DETECTION
# =============================================================================

def is_offline(state: Optional[NodeGitState], threshold_ms: int, now: datetime) -> bool:
    """A missing report, or one older than ``threshold_ms``, is offline."""
    if state is None or state.last_seen is None:
        return True
    return elapsed_ms(state.last_seen, now) > threshold_ms


def instance_status(state: Optional[NodeGitState], thresholds: OfflineThresholds, now: datetime) -> InstanceStatus:
    """online within the offline threshold, offline until stale, unknown after that."""
    if state is None or state.last_seen is None:
        return InstanceStatus.UNKNOWN
    age = elapsed_ms(state.last_seen, now)
    if age <= thresholds.server_offline_ms:
        return InstanceStatus.ONLINE
    if age <= thresholds.stale_ms:
        return InstanceStatus.OFFLINE
    return InstanceStatus.UNKNOWN


# =============================================================================
# GROUP DETECTION
# =============================================================================

def detect_group(
    repo_id: str,
    registry: Optional[RegistryEntry] = None,
    ai_team_prefixes: Sequence[str] = (),
) -> RepoGroup:
    """Registry flags first, then the AI-team name prefixes."""
    if registry is not None and registry.is_ai_team:
        return RepoGroup.AI_TEAM
    lower = repo_id.lower()
    if any(lower.startswith(prefix) for prefix in ai_team_prefixes):
        return RepoGroup.AI_TEAM
    if registry is not None and registry.project_slug:
        return RepoGroup.PROJECT
    return RepoGroup.STUDIO


# =============================================================================
# FAMILY MEMBERSHIP
# =============================================================================

@dataclass(frozen=True)
class CompiledFamilyPattern:
    regex: "re.Pattern[str]"
    family: str
    display: Optional[str] = None


def compile_family_patterns(patterns: Iterable) -> List[CompiledFamilyPattern]:
    """Accepts FamilyPattern models or plain dicts with pattern/family/display."""
    compiled = []
    for item in patterns:
        if isinstance(item, Mapping):
            pattern, family, display = item["pattern"], item["family"], item.get("display")
        else:
            pattern, family, display = item.pattern, item.family, item.display
        compiled.append(CompiledFamilyPattern(re.compile(pattern, re.IGNORECASE), family, display))
    return compiled


def resolve_family(
    repo_id: str,
    registry: Optional[RegistryEntry],
    patterns: Sequence[CompiledFamilyPattern] = (),
) -> Optional[FamilyMembership]:
    """
    Family for a repository.

    An explicit registry ``family_key`` is authoritative. The name patterns are
    a migration aid only and produce an ``inferred`` membership.
    """
    if registry is not None and registry.family_key:
        return FamilyMembership(key=registry.family_key, source=FamilySource.CONFIGURED)
    for compiled in patterns:
        if compiled.regex.match(repo_id):
            return FamilyMembership(
                key=compiled.family,
                source=FamilySource.INFERRED,
                display_name=compiled.display,
            )
    return None


def humanize_repo_name(repo_id: str) -> str:
    """``ai-chad-5401`` -> ``Chad``; ``kodiack-dashboard-5500`` -> ``Kodiack Dashboard``."""
    name = re.sub(r"^ai-", "", repo_id)
    name = re.sub(r"-\d+$", "", name)
    name = name.replace("-", " ").replace("_", " ")
    return " ".join(word.capitalize() for word in name.split())


def display_name_for(
    repo_id: str,
    registry: Optional[RegistryEntry],
    family: Optional[FamilyMembership] = None,
) -> str:
    if registry is not None and registry.display_name:
        return registry.display_name
    if family is not None and family.display_name:
        return family.display_name
    return humanize_repo_name(repo_id)


# =============================================================================
# FILTERING
# =============================================================================

GROUP_VALUES = [group.value for group in RepoGroup]
STATE_VALUES = [status.value for status in SyncStatus]
INSTANCE_GROUP_VALUES = ["ai-team", "studio", "studio-core", "project"]


@dataclass
class SummaryFilters:
    group: Optional[RepoGroup] = None
    service_id: Optional[str] = None
    project_slug: Optional[str] = None
    state: Optional[SyncStatus] = None
    active_only: bool = True


@dataclass
class FamilyFilters:
    group: Optional[str] = None
    state: Optional[SyncStatus] = None


def _parse_bool(field: str, value) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("true", "1", "yes"):
        return True
    if text in ("false", "0", "no"):
        return False
    raise FilterValidationError(field, value, ["true", "false"])


def parse_summary_filters(
    group: Optional[str] = None,
    service_id: Optional[str] = None,
    project_slug: Optional[str] = None,
    state: Optional[str] = None,
    active_only=None,
) -> SummaryFilters:
    """Validate raw query values; unknown enum values are rejected, never passed on."""
    filters = SummaryFilters()
    if group:
        if group not in GROUP_VALUES:
            raise FilterValidationError("group", group, GROUP_VALUES)
        filters.group = RepoGroup(group)
    if service_id:
        filters.service_id = service_id
    if project_slug:
        filters.project_slug = project_slug
    if state:
        if state not in STATE_VALUES:
            raise FilterValidationError("state", state, STATE_VALUES)
        filters.state = SyncStatus(state)
    if active_only is not None and active_only != "":
        filters.active_only = _parse_bool("active_only", active_only)
    return filters


def parse_family_filters(group: Optional[str] = None, state: Optional[str] = None) -> FamilyFilters:
    filters = FamilyFilters()
    if group:
        if group not in INSTANCE_GROUP_VALUES:
            raise FilterValidationError("group", group, INSTANCE_GROUP_VALUES)
        filters.group = group
    if state:
        if state not in STATE_VALUES:
            raise FilterValidationError("state", state, STATE_VALUES)
        filters.state = SyncStatus(state)
    return filters


def apply_filters(repos: Iterable[RepoPairSummary], filters: Optional[SummaryFilters]) -> List[RepoPairSummary]:
    filtered = list(repos)
    if filters is None:
        filters = SummaryFilters()

    if filters.group:
        filtered = [r for r in filtered if r.group == filters.group]
    if filters.service_id:
        filtered = [r for r in filtered if r.service_id == filters.service_id]
    if filters.project_slug:
        filtered = [r for r in filtered if r.project_slug == filters.project_slug]
    if filters.state:
        filtered = [r for r in filtered if r.sync.state == filters.state]
    if filters.active_only:
        filtered = [r for r in filtered if r.is_active]

    return filtered


def apply_family_filters(families: Iterable[FamilySummary], filters: Optional[FamilyFilters]) -> List[FamilySummary]:
    filtered = list(families)
    if filters is None:
        return filtered
    if filters.group:
        filtered = [f for f in filtered if f.instance_group == filters.group]
    if filters.state:
        filtered = [f for f in filtered if f.sync.state == filters.state]
    return filtered


# =============================================================================
# HELPERS
# =============================================================================

def count_by_state(states: Iterable[SyncStatus]) -> Dict[str, int]:
    """Counts per status plus a total; every status key is always present."""
    counts = {"total": 0}
    counts.update({status.value: 0 for status in SyncStatus})
    for state in states:
        counts[state.value] += 1
        counts["total"] += 1
    return counts


def sort_by_severity(repos: Iterable[RepoPairSummary]) -> List[RepoPairSummary]:
    """Most severe first, then by repo id for a stable listing."""
    return sorted(repos, key=lambda r: (r.sync.state.severity, r.repo_id))
