"""
Drift Service - runs the engine over the current store snapshot.

Every query is one classification pass with a single fixed ``now`` so that all
staleness checks in that pass agree with each other.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from opsdrift.core.attention_feed import AttentionFeed, collect_attention_feed
from opsdrift.core.classifier import classify_block, drift_detected_at
from opsdrift.core.family_aggregator import aggregate_families, aggregate_family, group_by_family
from opsdrift.core.selectors import (
    CompiledFamilyPattern,
    FamilyFilters,
    SummaryFilters,
    apply_family_filters,
    apply_filters,
    count_by_state,
    detect_group,
    display_name_for,
    resolve_family,
    sort_by_severity,
)
from opsdrift.core.sync_dispatcher import SyncDispatcher
from opsdrift.models.git_state import (
    FamilySummary,
    FamilySyncResult,
    InstanceSyncResult,
    NodeGitState,
    NodeRole,
    OfflineThresholds,
    RegistryEntry,
    RepoPairSummary,
)
from opsdrift.services.state_store import StateStore
from opsdrift.utils.error_handling import ResourceNotFoundError
from opsdrift.utils.timeutils import utc_now

logger = logging.getLogger(__name__)


class DriftService:
    """Query and command surface over the store, the engine and the dispatcher."""

    def __init__(
        self,
        store: StateStore,
        thresholds: OfflineThresholds,
        family_patterns: Sequence[CompiledFamilyPattern] = (),
        ai_team_prefixes: Sequence[str] = (),
        dispatcher: Optional[SyncDispatcher] = None,
    ):
        self.store = store
        self.thresholds = thresholds
        self.family_patterns = list(family_patterns)
        self.ai_team_prefixes = [prefix.lower() for prefix in ai_team_prefixes]
        self.dispatcher = dispatcher

    # =========================================================================
    # CLASSIFICATION PASS
    # =========================================================================

    def summarize(
        self,
        repo_id: str,
        server: Optional[NodeGitState],
        pc: Optional[NodeGitState],
        registry: Optional[RegistryEntry],
        now: datetime,
    ) -> RepoPairSummary:
        """Classify one repo and attach grouping metadata."""
        # A repo seen by an observer but never registered is awaiting configuration.
        effective_registry = registry or RegistryEntry(repo_id=repo_id, auto_discovered=True)
        block = classify_block(server, pc, self.thresholds, effective_registry, now)
        family = resolve_family(repo_id, registry, self.family_patterns)
        return RepoPairSummary(
            repo_id=repo_id,
            sync=block,
            group=detect_group(repo_id, registry, self.ai_team_prefixes),
            server=server,
            pc=pc,
            registry=registry,
            family=family,
            display_name=display_name_for(repo_id, registry, family),
            drift_detected_at=drift_detected_at(server, pc, block, self.thresholds, effective_registry),
            updated_at=now,
        )

    async def _classify_all(self, now: datetime) -> List[RepoPairSummary]:
        registry = {entry.repo_id: entry for entry in await self.store.list_registry()}
        states = await self.store.load_repo_states()

        repo_ids = sorted(set(registry) | set(states))
        summaries = []
        for repo_id in repo_ids:
            server, pc = states.get(repo_id, (None, None))
            summaries.append(self.summarize(repo_id, server, pc, registry.get(repo_id), now))

        logger.debug(f"Classified {len(summaries)} repos at {now.isoformat()}")
        return summaries

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def get_summary(
        self,
        filters: Optional[SummaryFilters] = None,
        now: Optional[datetime] = None,
    ) -> Tuple[List[RepoPairSummary], Dict[str, int]]:
        """Classified repos matching ``filters``, most severe first, plus counts."""
        now = now or utc_now()
        repos = sort_by_severity(apply_filters(await self._classify_all(now), filters))
        return repos, count_by_state(r.sync.state for r in repos)

    async def get_repo(self, repo_id: str, now: Optional[datetime] = None) -> RepoPairSummary:
        now = now or utc_now()
        registry = await self.store.get_registry_entry(repo_id)
        states = await self.store.load_repo_states()
        if registry is None and repo_id not in states:
            raise ResourceNotFoundError(f"Unknown repository: {repo_id}")
        server, pc = states.get(repo_id, (None, None))
        return self.summarize(repo_id, server, pc, registry, now)

    async def get_family_summaries(
        self,
        filters: Optional[FamilyFilters] = None,
        now: Optional[datetime] = None,
    ) -> Tuple[List[FamilySummary], Dict[str, int]]:
        now = now or utc_now()
        summaries = [s for s in await self._classify_all(now) if s.is_active]
        results = apply_family_filters(aggregate_families(summaries, self.thresholds, now), filters)
        return results, count_by_state(f.sync.state for f in results)

    async def get_family(self, family_key: str, now: Optional[datetime] = None) -> FamilySummary:
        now = now or utc_now()
        summaries = [s for s in await self._classify_all(now) if s.is_active]
        families, _ = group_by_family(summaries)
        members = families.get(family_key)
        if not members:
            raise ResourceNotFoundError(f"No instances found for family: {family_key}")
        return aggregate_family(members, self.thresholds, now, family_key=family_key)

    async def get_attention_feed(self, now: Optional[datetime] = None) -> AttentionFeed:
        now = now or utc_now()

        async def git_source():
            return [s for s in await self._classify_all(now) if s.is_active]

        return await collect_attention_feed(
            git_source,
            self.store.list_db_drift_records,
            self.store.list_node_health_records,
            now,
        )

    # =========================================================================
    # COMMANDS
    # =========================================================================

    def _require_dispatcher(self) -> SyncDispatcher:
        if self.dispatcher is None:
            raise RuntimeError("Sync dispatcher is not configured")
        return self.dispatcher

    async def sync_family(self, family_key: str, dry_run: bool = False) -> FamilySyncResult:
        """Aggregate the family fresh, then dispatch to its out-of-sync members."""
        dispatcher = self._require_dispatcher()
        family = await self.get_family(family_key)
        return await dispatcher.sync_family(family, dry_run=dry_run)

    async def sync_repo(self, repo_id: str) -> InstanceSyncResult:
        dispatcher = self._require_dispatcher()
        repo = await self.get_repo(repo_id)
        return await dispatcher.sync_repo(repo)

    async def ingest_report(
        self,
        repo_id: str,
        role: NodeRole,
        state: NodeGitState,
        origin_reachable: Optional[bool] = None,
    ) -> bool:
        """Store an observer report; False when it was older than the stored one."""
        accepted = await self.store.record_node_state(repo_id, role, state)
        if accepted and origin_reachable is not None:
            await self.store.set_origin_reachable(repo_id, origin_reachable, state.last_seen or utc_now())
        return accepted

    async def list_registry(self, active_only: bool = False) -> List[RegistryEntry]:
        return await self.store.list_registry(active_only=active_only)

    async def upsert_registry(self, repo_id: str, **fields) -> RegistryEntry:
        return await self.store.upsert_registry_entry(repo_id, **fields)
