"""
SQLAlchemy Database Models for the drift engine.

Observer reports, repo registry, schema-drift records, node process summaries
and the family sync audit log.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    JSON, Boolean, DateTime, Integer, String, Text, Index, UniqueConstraint
)
from sqlalchemy.orm import Mapped, declarative_base, mapped_column
from sqlalchemy.sql import func

Base = declarative_base()

# =============================================
# BASE MODEL CLASS
# =============================================

class TimestampedModel(Base):
    """Base model with common timestamp fields"""
    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

# =============================================
# REGISTRY
# =============================================

class RepoRegistry(TimestampedModel):
    """Operator-maintained metadata per repository"""
    __tablename__ = "repo_registry"

    repo_slug: Mapped[str] = mapped_column(String(200), primary_key=True)
    display_name: Mapped[Optional[str]] = mapped_column(String(200))
    family_key: Mapped[Optional[str]] = mapped_column(String(100))
    service_id: Mapped[Optional[str]] = mapped_column(String(100))
    project_slug: Mapped[Optional[str]] = mapped_column(String(100))
    instance_group: Mapped[Optional[str]] = mapped_column(String(50))
    github_url: Mapped[Optional[str]] = mapped_column(Text)
    server_path: Mapped[Optional[str]] = mapped_column(Text)
    pc_path: Mapped[Optional[str]] = mapped_column(Text)
    pm2_name: Mapped[Optional[str]] = mapped_column(String(100))
    server_node_id: Mapped[Optional[str]] = mapped_column(String(100))

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_ai_team: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    auto_discovered: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    auto_update: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    origin_unreachable_since: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index('idx_repo_registry_family', 'family_key'),
    )

# =============================================
# OBSERVER REPORTS
# =============================================

class NodeGitStateRecord(Base):
    """Latest git state reported by one observer node for one repository"""
    __tablename__ = "node_git_states"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    repo_id: Mapped[str] = mapped_column(String(200), nullable=False)
    node_id: Mapped[str] = mapped_column(String(100), nullable=False)
    node_role: Mapped[str] = mapped_column(String(10), nullable=False)

    branch: Mapped[str] = mapped_column(String(200), default="", nullable=False)
    head: Mapped[str] = mapped_column(String(64), default="", nullable=False)
    path: Mapped[Optional[str]] = mapped_column(Text)
    dirty: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    ahead: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    behind: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_commit_message: Mapped[Optional[str]] = mapped_column(Text)
    last_commit_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    last_seen: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    changed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        UniqueConstraint('repo_id', 'node_id', name='uq_node_git_states_repo_node'),
        Index('idx_node_git_states_role', 'node_role'),
    )

# =============================================
# ATTENTION SOURCES
# =============================================

class DbSchemaState(Base):
    """Schema tracker output per database"""
    __tablename__ = "db_schema_states"

    db_key: Mapped[str] = mapped_column(String(200), primary_key=True)
    repo_slug: Mapped[Optional[str]] = mapped_column(String(200))
    db_name: Mapped[Optional[str]] = mapped_column(String(200))
    db_type: Mapped[Optional[str]] = mapped_column(String(50))
    status: Mapped[Optional[str]] = mapped_column(String(20))
    attention_level: Mapped[Optional[str]] = mapped_column(String(10))
    schema_hash: Mapped[Optional[str]] = mapped_column(String(64))
    tables_count: Mapped[Optional[int]] = mapped_column(Integer)
    last_error: Mapped[Optional[str]] = mapped_column(Text)
    last_ok_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    drift_detected_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    last_seen: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), server_default=func.now())


class NodeProcessSummary(Base):
    """Process counts per node from the node sensor"""
    __tablename__ = "node_process_summaries"

    node_id: Mapped[str] = mapped_column(String(100), primary_key=True)
    droplet_name: Mapped[Optional[str]] = mapped_column(String(100))
    total_services: Mapped[Optional[int]] = mapped_column(Integer)
    running_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    stopped_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    errored_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    degraded_since: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), server_default=func.now())

# =============================================
# AUDIT
# =============================================

class FamilySyncEvent(Base):
    """One family sync dispatch"""
    __tablename__ = "family_sync_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    family_key: Mapped[str] = mapped_column(String(100), nullable=False)
    desired_head: Mapped[Optional[str]] = mapped_column(String(64))
    branch: Mapped[Optional[str]] = mapped_column(String(200))
    success_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    fail_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    dry_run: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    results: Mapped[Optional[list]] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index('idx_family_sync_events_family', 'family_key'),
    )
