"""
Pydantic models for the drift engine API.

Request bodies for the command endpoints:
- Family and single-repo sync
- Registry upsert
- Observer report ingestion
"""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from opsdrift.models.git_state import NodeGitState, NodeRole, RegistryEntry

# =============================================================================
# SYNC
# =============================================================================

class SyncFamilyRequest(BaseModel):
    """Request to reset out-of-sync family members to the quorum head."""
    family_key: str = Field(..., min_length=1, description="Family to reconcile")
    dry_run: bool = Field(False, description="Report planned actions without executing them")

class SyncRepoRequest(BaseModel):
    """Request to reset one repository's server instance to its remote branch."""
    repo_id: str = Field(..., min_length=1, description="Repository id (registry slug)")

# =============================================================================
# REGISTRY
# =============================================================================

class RegistryUpsertRequest(BaseModel):
    """Create or update a registry entry; omitted fields keep their stored value."""
    repo_slug: str = Field(..., min_length=1, max_length=200)
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
    is_active: Optional[bool] = None
    is_ai_team: Optional[bool] = None
    auto_discovered: Optional[bool] = None
    auto_update: Optional[bool] = None
    notes: Optional[str] = None

    def to_fields(self) -> Dict[str, Any]:
        """Only the fields the caller actually set."""
        return self.model_dump(exclude={"repo_slug"}, exclude_none=True)

# =============================================================================
# OBSERVER REPORTS
# =============================================================================

class NodeReportRequest(BaseModel):
    """One observer's view of one repository."""
    repo_id: str = Field(..., min_length=1)
    node_id: str = Field(..., min_length=1)
    role: NodeRole = Field(..., description="server or pc")
    branch: str = ""
    head: str = ""
    path: Optional[str] = None
    dirty: bool = False
    ahead: int = Field(0, ge=0)
    behind: int = Field(0, ge=0)
    last_commit_message: Optional[str] = None
    last_commit_time: Optional[datetime] = None
    last_seen: Optional[datetime] = Field(None, description="Defaults to the time of receipt")
    origin_reachable: Optional[bool] = Field(None, description="Whether the last fetch from origin succeeded")

    def to_state(self, received_at: datetime) -> NodeGitState:
        return NodeGitState(
            node_id=self.node_id,
            branch=self.branch,
            head=self.head,
            path=self.path,
            dirty=self.dirty,
            ahead=self.ahead,
            behind=self.behind,
            last_commit_message=self.last_commit_message,
            last_commit_time=self.last_commit_time,
            last_seen=self.last_seen or received_at,
        )


__all__ = [
    "SyncFamilyRequest",
    "SyncRepoRequest",
    "RegistryUpsertRequest",
    "NodeReportRequest",
    "RegistryEntry",
]
