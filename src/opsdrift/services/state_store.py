"""
State Store Accessor - reads observer reports and registry metadata, and
writes observer reports and the sync audit log.

The engine never writes classified status back: every read recomputes it from
whatever snapshot is visible at read time.
"""

import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from opsdrift.models.database import (
    DbSchemaState,
    FamilySyncEvent,
    NodeGitStateRecord,
    NodeProcessSummary,
    RepoRegistry,
)
from opsdrift.models.git_state import (
    DbDriftRecord,
    FamilySyncResult,
    NodeGitState,
    NodeHealthRecord,
    NodeRole,
    RegistryEntry,
)
from opsdrift.utils.error_handling import StoreUnavailableError
from opsdrift.utils.timeutils import ensure_utc, utc_now

logger = logging.getLogger(__name__)

RepoStates = Dict[str, Tuple[Optional[NodeGitState], Optional[NodeGitState]]]

REGISTRY_FIELDS = (
    "display_name", "family_key", "service_id", "project_slug", "instance_group",
    "github_url", "server_path", "pc_path", "pm2_name", "server_node_id",
    "is_active", "is_ai_team", "auto_discovered", "auto_update", "notes",
)


class StateStore(ABC):
    """Read/write contract the drift service depends on."""

    @abstractmethod
    async def list_registry(self, active_only: bool = False) -> List[RegistryEntry]:
        ...

    @abstractmethod
    async def get_registry_entry(self, repo_id: str) -> Optional[RegistryEntry]:
        ...

    @abstractmethod
    async def upsert_registry_entry(self, repo_id: str, **fields) -> RegistryEntry:
        ...

    @abstractmethod
    async def set_origin_reachable(self, repo_id: str, reachable: bool, at: datetime) -> None:
        ...

    @abstractmethod
    async def record_node_state(self, repo_id: str, role: NodeRole, state: NodeGitState) -> bool:
        ...

    @abstractmethod
    async def load_repo_states(self) -> RepoStates:
        ...

    @abstractmethod
    async def list_db_drift_records(self, levels: Iterable[str] = ("warn", "urgent")) -> List[DbDriftRecord]:
        ...

    @abstractmethod
    async def list_node_health_records(self) -> List[NodeHealthRecord]:
        ...

    @abstractmethod
    async def record_sync_event(self, result: FamilySyncResult) -> None:
        ...


# =============================================================================
# ROW CONVERSION
# =============================================================================

def registry_from_row(row: RepoRegistry) -> RegistryEntry:
    return RegistryEntry(
        repo_id=row.repo_slug,
        display_name=row.display_name,
        family_key=row.family_key,
        service_id=row.service_id,
        project_slug=row.project_slug,
        instance_group=row.instance_group,
        github_url=row.github_url,
        server_path=row.server_path,
        pc_path=row.pc_path,
        pm2_name=row.pm2_name,
        server_node_id=row.server_node_id,
        is_active=bool(row.is_active),
        is_ai_team=bool(row.is_ai_team),
        auto_discovered=bool(row.auto_discovered),
        auto_update=bool(row.auto_update),
        notes=row.notes,
        origin_unreachable_since=row.origin_unreachable_since,
        updated_at=row.updated_at,
    )


def state_from_row(row: NodeGitStateRecord) -> NodeGitState:
    return NodeGitState(
        node_id=row.node_id,
        branch=row.branch,
        head=row.head,
        path=row.path,
        dirty=row.dirty,
        ahead=row.ahead,
        behind=row.behind,
        last_commit_message=row.last_commit_message,
        last_commit_time=row.last_commit_time,
        last_seen=row.last_seen,
        changed_at=row.changed_at,
    )


def _newer(current: Optional[NodeGitState], candidate: NodeGitState) -> NodeGitState:
    if current is None or current.last_seen is None:
        return candidate
    if candidate.last_seen is not None and candidate.last_seen > current.last_seen:
        return candidate
    return current


# =============================================================================
# SQL IMPLEMENTATION
# =============================================================================

class SqlStateStore(StateStore):
    """SQLAlchemy-backed store; one short-lived session per call."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    @asynccontextmanager
    async def _session(self):
        try:
            async with self.session_factory() as session:
                yield session
        except IntegrityError:
            raise
        except (DBAPIError, OSError) as e:
            raise StoreUnavailableError(f"State store unavailable: {e}") from e

    # ---------------------------------------------------------------- registry

    async def list_registry(self, active_only: bool = False) -> List[RegistryEntry]:
        async with self._session() as session:
            stmt = select(RepoRegistry).order_by(RepoRegistry.repo_slug)
            if active_only:
                stmt = stmt.where(RepoRegistry.is_active.is_(True))
            rows = (await session.execute(stmt)).scalars().all()
            return [registry_from_row(row) for row in rows]

    async def get_registry_entry(self, repo_id: str) -> Optional[RegistryEntry]:
        async with self._session() as session:
            row = await session.get(RepoRegistry, repo_id)
            return registry_from_row(row) if row else None

    async def upsert_registry_entry(self, repo_id: str, **fields) -> RegistryEntry:
        """Set the given non-null fields; everything else keeps its stored value."""
        unknown = set(fields) - set(REGISTRY_FIELDS)
        if unknown:
            raise ValueError(f"Unknown registry fields: {sorted(unknown)}")

        async with self._session() as session:
            row = await session.get(RepoRegistry, repo_id)
            if row is None:
                row = RepoRegistry(repo_slug=repo_id)
                session.add(row)
                logger.info(f"Registering repo {repo_id}")
            for name, value in fields.items():
                if value is not None:
                    setattr(row, name, value)
            row.updated_at = utc_now()
            await session.commit()
            await session.refresh(row)
            return registry_from_row(row)

    async def set_origin_reachable(self, repo_id: str, reachable: bool, at: datetime) -> None:
        """Start or clear the origin-unreachable clock for a registered repo."""
        async with self._session() as session:
            row = await session.get(RepoRegistry, repo_id)
            if row is None:
                return
            if reachable:
                row.origin_unreachable_since = None
            elif row.origin_unreachable_since is None:
                row.origin_unreachable_since = at
            await session.commit()

    # ------------------------------------------------------- observer reports

    async def record_node_state(self, repo_id: str, role: NodeRole, state: NodeGitState) -> bool:
        """
        Store one observer report.

        Reports are last-write-wins per (repo, node) keyed on ``last_seen``: a
        report older than the stored one is discarded and False is returned.
        ``changed_at`` only moves when the drift-relevant content changes.
        The stored row is locked for the compare-and-write, so concurrent
        writers for one (repo, node) are applied in ``last_seen`` order.
        """
        seen = ensure_utc(state.last_seen) or utc_now()
        try:
            return await self._write_node_state(repo_id, role, state, seen)
        except IntegrityError:
            # A concurrent first report for this (repo, node) inserted the row first.
            logger.info(f"Concurrent first report for {repo_id} from {state.node_id}; retrying")
            return await self._write_node_state(repo_id, role, state, seen)

    async def _write_node_state(self, repo_id: str, role: NodeRole, state: NodeGitState, seen: datetime) -> bool:
        async with self._session() as session:
            stmt = (
                select(NodeGitStateRecord)
                .where(
                    NodeGitStateRecord.repo_id == repo_id,
                    NodeGitStateRecord.node_id == state.node_id,
                )
                .with_for_update()
            )
            row = (await session.execute(stmt)).scalar_one_or_none()

            if row is not None:
                stored_seen = ensure_utc(row.last_seen)
                if stored_seen is not None and seen < stored_seen:
                    logger.warning(
                        f"Discarding out-of-order report for {repo_id} from {state.node_id}: "
                        f"{seen.isoformat()} < {stored_seen.isoformat()}"
                    )
                    return False
                previous = state_from_row(row)
                changed = previous.content_key() != state.content_key()
            else:
                row = NodeGitStateRecord(repo_id=repo_id, node_id=state.node_id)
                session.add(row)
                changed = True

            row.node_role = NodeRole(role).value
            row.branch = state.branch
            row.head = state.head
            row.path = state.path
            row.dirty = state.dirty
            row.ahead = state.ahead
            row.behind = state.behind
            row.last_commit_message = state.last_commit_message
            row.last_commit_time = state.last_commit_time
            row.last_seen = seen
            if changed or row.changed_at is None:
                row.changed_at = seen

            await session.commit()
            return True

    async def load_repo_states(self) -> RepoStates:
        """Latest state per role for every repo; the most recently seen node wins."""
        async with self._session() as session:
            rows = (await session.execute(select(NodeGitStateRecord))).scalars().all()

        states: Dict[str, Dict[str, Optional[NodeGitState]]] = {}
        for row in rows:
            slot = states.setdefault(row.repo_id, {NodeRole.SERVER.value: None, NodeRole.PC.value: None})
            if row.node_role not in slot:
                continue
            slot[row.node_role] = _newer(slot[row.node_role], state_from_row(row))

        return {
            repo_id: (slot[NodeRole.SERVER.value], slot[NodeRole.PC.value])
            for repo_id, slot in states.items()
        }

    # ------------------------------------------------------- attention inputs

    async def list_db_drift_records(self, levels: Iterable[str] = ("warn", "urgent")) -> List[DbDriftRecord]:
        async with self._session() as session:
            stmt = select(DbSchemaState).where(DbSchemaState.attention_level.in_(list(levels)))
            rows = (await session.execute(stmt)).scalars().all()
        return [
            DbDriftRecord(
                db_key=row.db_key,
                status=row.status,
                attention_level=row.attention_level,
                schema_hash=row.schema_hash,
                last_error=row.last_error,
                last_ok_at=row.last_ok_at,
                drift_detected_at=row.drift_detected_at,
                updated_at=row.updated_at,
                last_seen=row.last_seen,
                db_name=row.db_name,
                db_type=row.db_type,
                repo_slug=row.repo_slug,
                tables_count=row.tables_count,
            )
            for row in rows
        ]

    async def list_node_health_records(self) -> List[NodeHealthRecord]:
        async with self._session() as session:
            rows = (await session.execute(select(NodeProcessSummary))).scalars().all()
        return [
            NodeHealthRecord(
                node_id=row.node_id,
                running_count=row.running_count,
                stopped_count=row.stopped_count,
                errored_count=row.errored_count,
                total_services=row.total_services,
                droplet_name=row.droplet_name,
                degraded_since=row.degraded_since,
                updated_at=row.updated_at,
            )
            for row in rows
        ]

    # ------------------------------------------------------------------ audit

    async def record_sync_event(self, result: FamilySyncResult) -> None:
        async with self._session() as session:
            session.add(FamilySyncEvent(
                family_key=result.family_key,
                desired_head=result.desired_head,
                branch=result.branch,
                success_count=result.synced,
                fail_count=result.failed,
                dry_run=result.dry_run,
                results=[item.to_dict() for item in result.results],
            ))
            await session.commit()
