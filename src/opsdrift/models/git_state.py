"""
Domain types for git state reconciliation.

This module is the data contract shared by the classifier, the family
aggregator, the attention feed and the API layer. Everything here is a plain
dataclass or enum; persistence lives in ``models.database``.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from opsdrift.utils.timeutils import ensure_utc, isoformat


# =============================================================================
# ENUMERATIONS
# =============================================================================

class SyncStatus(str, Enum):
    """Synchronization status of a repository or family."""
    GREEN = "green"
    YELLOW = "yellow"
    ORANGE = "orange"
    RED = "red"
    GRAY = "gray"

    @property
    def severity(self) -> int:
        """Sort key, most severe first."""
        return _STATUS_SEVERITY[self]


_STATUS_SEVERITY = {
    SyncStatus.RED: 0,
    SyncStatus.ORANGE: 1,
    SyncStatus.YELLOW: 2,
    SyncStatus.GRAY: 3,
    SyncStatus.GREEN: 4,
}


class SyncReason(str, Enum):
    """Causes attached to a non-green status."""
    HASH_MISMATCH = "hash_mismatch"
    SERVER_DIRTY = "server_dirty"
    PC_DIRTY = "pc_dirty"
    AHEAD = "ahead"
    BEHIND = "behind"
    DIVERGED = "diverged"
    WRONG_BRANCH = "wrong_branch"
    SERVER_OFFLINE = "server_offline"
    PC_OFFLINE = "pc_offline"
    SERVER_MISSING = "server_missing"
    PC_MISSING = "pc_missing"
    ORIGIN_UNREACHABLE = "origin_unreachable"
    AWAITING_CONFIG = "awaiting_config"
    MISSING_PATHS = "missing_paths"

    @property
    def is_reachability(self) -> bool:
        """True for reasons that only say a side could not be observed."""
        return self in _REACHABILITY_REASONS


_REACHABILITY_REASONS = frozenset({
    SyncReason.SERVER_OFFLINE,
    SyncReason.PC_OFFLINE,
    SyncReason.SERVER_MISSING,
    SyncReason.PC_MISSING,
})


class NodeRole(str, Enum):
    """Which observer produced a report."""
    SERVER = "server"
    PC = "pc"


class RepoGroup(str, Enum):
    STUDIO = "studio"
    AI_TEAM = "ai-team"
    PROJECT = "project"


class FamilySource(str, Enum):
    """How a repository was assigned to its family."""
    CONFIGURED = "configured"
    INFERRED = "inferred"


class InstanceStatus(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"
    UNKNOWN = "unknown"


class AttentionLevel(str, Enum):
    WARN = "warn"
    URGENT = "urgent"


class AttentionSource(str, Enum):
    GIT = "git"
    DB = "db"
    DROPLET = "droplet"


# =============================================================================
# THRESHOLDS
# =============================================================================

@dataclass(frozen=True)
class OfflineThresholds:
    """Fixed staleness configuration, in milliseconds."""
    pc_offline_ms: int = 90_000
    server_offline_ms: int = 90_000
    stale_ms: int = 300_000
    origin_escalation_ms: int = 900_000

    def offline_ms(self, role: NodeRole) -> int:
        if role == NodeRole.SERVER:
            return self.server_offline_ms
        return self.pc_offline_ms


# =============================================================================
# OBSERVER STATE
# =============================================================================

@dataclass
class NodeGitState:
    """A single observer's report for one repository."""
    node_id: str
    branch: str = ""
    head: str = ""
    head_short: str = ""
    path: Optional[str] = None
    dirty: bool = False
    ahead: int = 0
    behind: int = 0
    last_commit_message: Optional[str] = None
    last_commit_time: Optional[datetime] = None
    last_seen: Optional[datetime] = None
    changed_at: Optional[datetime] = None

    def __post_init__(self):
        # Absent counts are zero; unknown-ness is carried by offline/missing reasons.
        self.ahead = max(int(self.ahead or 0), 0)
        self.behind = max(int(self.behind or 0), 0)
        self.dirty = bool(self.dirty)
        self.branch = self.branch or ""
        self.head = self.head or ""
        if not self.head_short:
            self.head_short = self.head[:7]
        self.last_commit_time = ensure_utc(self.last_commit_time)
        self.last_seen = ensure_utc(self.last_seen)
        self.changed_at = ensure_utc(self.changed_at)

    def content_key(self) -> tuple:
        """The fields whose change marks a new drift-relevant state."""
        return (self.branch, self.head, self.dirty, self.ahead, self.behind)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "node_id": self.node_id,
            "path": self.path,
            "branch": self.branch,
            "head": self.head,
            "head_short": self.head_short,
            "dirty": self.dirty,
            "ahead": self.ahead,
            "behind": self.behind,
            "last_commit_message": self.last_commit_message,
            "last_commit_time": isoformat(self.last_commit_time),
            "last_seen": isoformat(self.last_seen),
        }


# =============================================================================
# REGISTRY
# =============================================================================

@dataclass
class RegistryEntry:
    """Operator-maintained metadata for one repository."""
    repo_id: str
    display_name: Optional[str] = None
    family_key: Optional[str] = None
    service_id: Optional[str] = None
    project_slug: Optional[str] = None
    instance_group: Optional[str] = None
    github_url: Optional[str] = None
    server_path: Optional[str] = None
    pc_path: Optional[str] = None
    pm2_name: Optional[str] = None
    server_node_id: Optional[str] = None
    is_active: bool = True
    is_ai_team: bool = False
    auto_discovered: bool = False
    auto_update: bool = False
    notes: Optional[str] = None
    origin_unreachable_since: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.origin_unreachable_since = ensure_utc(self.origin_unreachable_since)
        self.updated_at = ensure_utc(self.updated_at)

    def missing_config(self) -> List[str]:
        """Names of the wiring fields that are still empty."""
        missing = []
        if not self.github_url:
            missing.append("github_url")
        if not self.server_path:
            missing.append("server_path")
        if not self.pc_path:
            missing.append("pc_path")
        return missing

    def to_dict(self) -> Dict[str, Any]:
        return {
            "repo_id": self.repo_id,
            "display_name": self.display_name,
            "family_key": self.family_key,
            "service_id": self.service_id,
            "project_slug": self.project_slug,
            "instance_group": self.instance_group,
            "github_url": self.github_url,
            "server_path": self.server_path,
            "pc_path": self.pc_path,
            "pm2_name": self.pm2_name,
            "server_node_id": self.server_node_id,
            "is_active": self.is_active,
            "is_ai_team": self.is_ai_team,
            "auto_discovered": self.auto_discovered,
            "auto_update": self.auto_update,
            "notes": self.notes,
            "origin_unreachable_since": isoformat(self.origin_unreachable_since),
            "updated_at": isoformat(self.updated_at),
        }


@dataclass(frozen=True)
class FamilyMembership:
    """A repository's family, tagged with how the assignment was made."""
    key: str
    source: FamilySource = FamilySource.CONFIGURED
    display_name: Optional[str] = None

    @property
    def inferred(self) -> bool:
        return self.source == FamilySource.INFERRED


# =============================================================================
# CLASSIFIED SUMMARIES
# =============================================================================

@dataclass
class SyncBlock:
    """Computed status plus the full reason set."""
    state: SyncStatus
    reasons: List[SyncReason] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "reasons": [reason.value for reason in self.reasons],
        }


@dataclass
class RepoPairSummary:
    """One repository with its latest server and pc states and computed sync."""
    repo_id: str
    sync: SyncBlock
    group: RepoGroup = RepoGroup.STUDIO
    server: Optional[NodeGitState] = None
    pc: Optional[NodeGitState] = None
    registry: Optional[RegistryEntry] = None
    family: Optional[FamilyMembership] = None
    display_name: Optional[str] = None
    drift_detected_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def key(self) -> str:
        return self.repo_id

    @property
    def service_id(self) -> Optional[str]:
        return self.registry.service_id if self.registry else None

    @property
    def project_slug(self) -> Optional[str]:
        return self.registry.project_slug if self.registry else None

    @property
    def instance_id(self) -> str:
        """Identifier used for this repo inside a family."""
        return self.service_id or self.repo_id

    @property
    def is_active(self) -> bool:
        return self.registry.is_active if self.registry else True

    def to_dict(self) -> Dict[str, Any]:
        registry = None
        if self.registry:
            registry = {
                "display_name": self.registry.display_name,
                "github_url": self.registry.github_url,
                "notes": self.registry.notes,
                "is_active": self.registry.is_active,
                "auto_discovered": self.registry.auto_discovered,
                "is_ai_team": self.registry.is_ai_team,
            }
        return {
            "key": self.key,
            "repo": self.repo_id,
            "repo_id": self.repo_id,
            "display_name": self.display_name,
            "group": self.group.value,
            "service_id": self.service_id,
            "project_slug": self.project_slug,
            "family_key": self.family.key if self.family else None,
            "family_source": self.family.source.value if self.family else None,
            "server": self.server.to_dict() if self.server else None,
            "pc": self.pc.to_dict() if self.pc else None,
            "sync": self.sync.to_dict(),
            "registry": registry,
            "drift_detected_at": isoformat(self.drift_detected_at),
            "updated_at": isoformat(self.updated_at),
        }


@dataclass
class InstanceState:
    """One family member as seen by the server observer."""
    service_id: str
    repo_id: str
    status: InstanceStatus
    repo_path: Optional[str] = None
    node_id: Optional[str] = None
    branch: Optional[str] = None
    head: Optional[str] = None
    head_short: Optional[str] = None
    dirty: bool = False
    ahead: int = 0
    behind: int = 0
    last_commit_message: Optional[str] = None
    last_commit_time: Optional[datetime] = None
    last_seen: Optional[datetime] = None
    pm2_name: Optional[str] = None

    @property
    def online(self) -> bool:
        return self.status == InstanceStatus.ONLINE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "service_id": self.service_id,
            "repo_id": self.repo_id,
            "repo_path": self.repo_path,
            "node_id": self.node_id,
            "branch": self.branch,
            "head": self.head,
            "head_short": self.head_short,
            "dirty": self.dirty,
            "ahead": self.ahead,
            "behind": self.behind,
            "last_commit_message": self.last_commit_message,
            "last_seen": isoformat(self.last_seen),
            "status": self.status.value,
        }


@dataclass
class FamilySyncBlock:
    state: SyncStatus
    reasons: List[SyncReason] = field(default_factory=list)
    in_sync_count: int = 0
    out_of_sync_instances: List[str] = field(default_factory=list)
    dirty_instances: List[str] = field(default_factory=list)
    offline_instances: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "reasons": [reason.value for reason in self.reasons],
            "in_sync_count": self.in_sync_count,
            "out_of_sync_instances": list(self.out_of_sync_instances),
            "dirty_instances": list(self.dirty_instances),
            "offline_instances": list(self.offline_instances),
        }


@dataclass
class FamilySummary:
    """Rollup over the instances that share one family key."""
    family_key: str
    instances: List[InstanceState]
    sync: FamilySyncBlock
    display_name: Optional[str] = None
    instance_group: Optional[str] = None
    is_ai_team: bool = False
    family_source: FamilySource = FamilySource.CONFIGURED
    desired_head: Optional[str] = None
    desired_branch: Optional[str] = None
    auto_update: bool = False
    notes: Optional[str] = None
    github_url: Optional[str] = None
    updated_at: Optional[datetime] = None

    @property
    def instance_count(self) -> int:
        return len(self.instances)

    @property
    def desired_head_short(self) -> Optional[str]:
        return self.desired_head[:7] if self.desired_head else None

    def instance(self, service_id: str) -> Optional[InstanceState]:
        for inst in self.instances:
            if inst.service_id == service_id:
                return inst
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "family_key": self.family_key,
            "display_name": self.display_name or self.family_key,
            "instance_group": self.instance_group,
            "is_ai_team": self.is_ai_team,
            "family_source": self.family_source.value,
            "desired_head": self.desired_head,
            "desired_head_short": self.desired_head_short,
            "desired_branch": self.desired_branch,
            "instances": [inst.to_dict() for inst in self.instances],
            "instance_count": self.instance_count,
            "sync": self.sync.to_dict(),
            "auto_update": self.auto_update,
            "notes": self.notes,
            "github_url": self.github_url,
            "updated_at": isoformat(self.updated_at),
        }


# =============================================================================
# ATTENTION FEED INPUTS AND OUTPUTS
# =============================================================================

@dataclass
class DbDriftRecord:
    """Database-schema drift record produced by the schema tracker."""
    db_key: str
    status: Optional[str] = None
    attention_level: Optional[str] = None
    schema_hash: Optional[str] = None
    last_error: Optional[str] = None
    last_ok_at: Optional[datetime] = None
    drift_detected_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_seen: Optional[datetime] = None
    db_name: Optional[str] = None
    db_type: Optional[str] = None
    repo_slug: Optional[str] = None
    tables_count: Optional[int] = None

    def __post_init__(self):
        self.last_ok_at = ensure_utc(self.last_ok_at)
        self.drift_detected_at = ensure_utc(self.drift_detected_at)
        self.updated_at = ensure_utc(self.updated_at)
        self.last_seen = ensure_utc(self.last_seen)


@dataclass
class NodeHealthRecord:
    """Per-node process summary reported by the node sensor."""
    node_id: str
    running_count: int = 0
    stopped_count: int = 0
    errored_count: int = 0
    total_services: Optional[int] = None
    droplet_name: Optional[str] = None
    degraded_since: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.running_count = int(self.running_count or 0)
        self.stopped_count = int(self.stopped_count or 0)
        self.errored_count = int(self.errored_count or 0)
        self.degraded_since = ensure_utc(self.degraded_since)
        self.updated_at = ensure_utc(self.updated_at)


@dataclass
class AttentionItem:
    """A severity-tagged anomaly, normalised across sources."""
    type: AttentionSource
    entity_id: str
    attention_level: AttentionLevel
    age_seconds: int
    summary: str
    title: Optional[str] = None
    deep_link: Optional[str] = None
    diagnostics: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "entity_id": self.entity_id,
            "title": self.title or self.entity_id,
            "attention_level": self.attention_level.value,
            "age_seconds": self.age_seconds,
            "summary": self.summary,
            "deep_link": self.deep_link,
            "diagnostics": self.diagnostics,
        }


# =============================================================================
# SYNC DISPATCH
# =============================================================================

@dataclass
class InstanceSyncResult:
    """Outcome of one corrective operation."""
    service_id: str
    success: bool
    repo_id: Optional[str] = None
    repo_path: Optional[str] = None
    node_id: Optional[str] = None
    target: Optional[str] = None
    old_head: Optional[str] = None
    new_head: Optional[str] = None
    error: Optional[str] = None
    message: Optional[str] = None
    action: Optional[str] = None

    @property
    def outcome(self) -> str:
        return "success" if self.success else "failure"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "service_id": self.service_id,
            "repo_id": self.repo_id,
            "repo_path": self.repo_path,
            "node_id": self.node_id,
            "target": self.target,
            "outcome": self.outcome,
            "success": self.success,
            "old_head": self.old_head,
            "new_head": self.new_head,
            "error": self.error,
            "message": self.message,
            "action": self.action,
        }


@dataclass
class FamilySyncResult:
    """Per-instance results of one family dispatch."""
    family_key: str
    results: List[InstanceSyncResult] = field(default_factory=list)
    desired_head: Optional[str] = None
    branch: Optional[str] = None
    dry_run: bool = False
    message: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def synced(self) -> int:
        return sum(1 for result in self.results if result.success)

    @property
    def failed(self) -> int:
        return sum(1 for result in self.results if not result.success)

    @property
    def success(self) -> bool:
        return self.failed == 0

    def by_instance(self) -> Dict[str, InstanceSyncResult]:
        return {result.service_id: result for result in self.results}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "family_key": self.family_key,
            "desired_head": self.desired_head,
            "branch": self.branch,
            "dry_run": self.dry_run,
            "synced": self.synced,
            "failed": self.failed,
            "results": [result.to_dict() for result in self.results],
            "message": self.message,
            "requires_refresh": not self.dry_run and bool(self.results),
            "started_at": isoformat(self.started_at),
            "finished_at": isoformat(self.finished_at),
        }
