"""
Attention feed builder.

Merges three heterogeneous anomaly sources into one severity-ordered list:
classified git drift, database-schema drift records and node process health.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from opsdrift.models.git_state import (
    AttentionItem,
    AttentionLevel,
    AttentionSource,
    DbDriftRecord,
    NodeGitState,
    NodeHealthRecord,
    RepoPairSummary,
    SyncReason,
    SyncStatus,
)
from opsdrift.utils.timeutils import age_seconds, isoformat

logger = logging.getLogger(__name__)

SOURCE_OK = "ok"
SOURCE_UNAVAILABLE = "unavailable"

_LEVEL_RANK = {AttentionLevel.URGENT: 0, AttentionLevel.WARN: 1}


@dataclass
class AttentionFeed:
    """The feed plus per-source bookkeeping."""
    items: List[AttentionItem] = field(default_factory=list)
    sources: Dict[str, str] = field(default_factory=dict)

    @property
    def overall(self) -> str:
        if any(item.attention_level == AttentionLevel.URGENT for item in self.items):
            return "urgent"
        if self.items:
            return "warn"
        return "none"

    @property
    def counts(self) -> Dict[str, int]:
        counts = {
            "total": len(self.items),
            "urgent": sum(1 for item in self.items if item.attention_level == AttentionLevel.URGENT),
            "warn": sum(1 for item in self.items if item.attention_level == AttentionLevel.WARN),
        }
        for source in AttentionSource:
            counts[source.value] = sum(1 for item in self.items if item.type == source)
        return counts

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attention": {"overall": self.overall, "counts": self.counts},
            "sources": dict(self.sources),
            "items": [item.to_dict() for item in self.items],
        }


# =============================================================================
# GIT
# =============================================================================

def _reachable_sides(repo: RepoPairSummary) -> List[Tuple[str, NodeGitState]]:
    reasons = set(repo.sync.reasons)
    sides = []
    if repo.server is not None and SyncReason.SERVER_OFFLINE not in reasons:
        sides.append(("server", repo.server))
    if repo.pc is not None and SyncReason.PC_OFFLINE not in reasons:
        sides.append(("pc", repo.pc))
    return sides


def _count_text(ahead: int, behind: int) -> str:
    if ahead and behind:
        return f"{ahead} ahead, {behind} behind"
    if ahead:
        return f"{ahead} commits to push"
    return f"{behind} commits behind"


def git_summary_text(repo: RepoPairSummary) -> str:
    """
    Human summary for a drifting repo.

    Precedence: uncommitted changes, then ahead/behind counts, then the SHA
    mismatch call-out only when no ahead/behind count explains the mismatch.
    """
    reasons = set(repo.sync.reasons)
    parts: List[str] = []

    dirty_sides = []
    if SyncReason.SERVER_DIRTY in reasons:
        dirty_sides.append("server")
    if SyncReason.PC_DIRTY in reasons:
        dirty_sides.append("pc")
    if dirty_sides:
        parts.append(f"uncommitted changes on {' and '.join(dirty_sides)}")

    counted = []
    if reasons & {SyncReason.AHEAD, SyncReason.BEHIND, SyncReason.DIVERGED}:
        counted = [(label, side) for label, side in _reachable_sides(repo) if side.ahead or side.behind]
    if len(counted) == 1:
        _, side = counted[0]
        parts.append(_count_text(side.ahead, side.behind))
    else:
        # Each side's counts are relative to its own upstream.
        parts.extend(f"{label} {_count_text(side.ahead, side.behind)}" for label, side in counted)

    if SyncReason.HASH_MISMATCH in reasons and not counted:
        parts.append("SHA mismatch (force push?)")
    if SyncReason.WRONG_BRANCH in reasons:
        parts.append("branch mismatch")
    if SyncReason.ORIGIN_UNREACHABLE in reasons:
        parts.append("origin unreachable")

    branch = (repo.server.branch if repo.server else None) or (repo.pc.branch if repo.pc else None) or "unknown"
    if not parts:
        return f"Drift on {branch}"
    return f"{branch}: {', '.join(parts)}"


def git_items(repos: Iterable[RepoPairSummary], now: datetime) -> List[AttentionItem]:
    items = []
    for repo in repos:
        if repo.sync.state not in (SyncStatus.ORANGE, SyncStatus.RED):
            continue
        since = repo.drift_detected_at
        if since is None:
            seen = [s.last_seen for s in (repo.server, repo.pc) if s is not None and s.last_seen]
            since = max(seen) if seen else None
        items.append(AttentionItem(
            type=AttentionSource.GIT,
            entity_id=repo.repo_id,
            title=repo.display_name or repo.repo_id,
            attention_level=AttentionLevel.URGENT if repo.sync.state == SyncStatus.RED else AttentionLevel.WARN,
            age_seconds=age_seconds(since, now),
            summary=git_summary_text(repo),
            deep_link=f"/git-database?repo={repo.repo_id}",
            diagnostics={
                "status": repo.sync.state.value,
                "reasons": [reason.value for reason in repo.sync.reasons],
                "server_head": repo.server.head_short if repo.server else None,
                "pc_head": repo.pc.head_short if repo.pc else None,
                "drift_detected_at": isoformat(repo.drift_detected_at),
            },
        ))
    return items


# =============================================================================
# DATABASE SCHEMA
# =============================================================================

def db_items(records: Iterable[DbDriftRecord], now: datetime) -> List[AttentionItem]:
    """Upstream-computed warn/urgent records pass through unchanged in level."""
    items = []
    for record in records:
        try:
            level = AttentionLevel(record.attention_level)
        except ValueError:
            continue
        if record.last_error:
            summary = f"Error: {record.last_error[:50]}"
        else:
            summary = f"Schema drift on {record.db_name or record.db_key} ({record.tables_count or 0} tables)"
        items.append(AttentionItem(
            type=AttentionSource.DB,
            entity_id=record.db_key,
            title=record.db_name or record.db_key,
            attention_level=level,
            age_seconds=age_seconds(record.drift_detected_at or record.updated_at, now),
            summary=summary,
            deep_link=f"/git-database?db={record.db_key}",
            diagnostics={
                "status": record.status,
                "schema_hash": record.schema_hash,
                "db_type": record.db_type,
                "repo_slug": record.repo_slug,
                "last_ok_at": isoformat(record.last_ok_at),
            },
        ))
    return items


# =============================================================================
# NODE HEALTH
# =============================================================================

def droplet_items(records: Iterable[NodeHealthRecord], now: datetime) -> List[AttentionItem]:
    items = []
    for record in records:
        if record.stopped_count <= 0 and record.errored_count <= 0:
            continue
        if record.errored_count > 0:
            level = AttentionLevel.URGENT
            summary = f"{record.errored_count} errored, {record.stopped_count} stopped"
        else:
            level = AttentionLevel.WARN
            summary = f"{record.stopped_count} services stopped"
        items.append(AttentionItem(
            type=AttentionSource.DROPLET,
            entity_id=record.node_id,
            title=record.droplet_name or record.node_id,
            attention_level=level,
            age_seconds=age_seconds(record.degraded_since or record.updated_at, now),
            summary=summary,
            deep_link=f"/servers?node={record.node_id}",
            diagnostics={
                "running": record.running_count,
                "stopped": record.stopped_count,
                "errored": record.errored_count,
                "total": record.total_services,
            },
        ))
    return items


# =============================================================================
# FEED
# =============================================================================

def sort_items(items: Iterable[AttentionItem]) -> List[AttentionItem]:
    """urgent before warn, then the oldest anomaly first."""
    return sorted(items, key=lambda item: (_LEVEL_RANK[item.attention_level], -item.age_seconds))


def build_attention_feed(
    git_summaries: Iterable[RepoPairSummary],
    db_records: Iterable[DbDriftRecord],
    node_records: Iterable[NodeHealthRecord],
    now: datetime,
) -> List[AttentionItem]:
    items = git_items(git_summaries, now) + db_items(db_records, now) + droplet_items(node_records, now)
    return sort_items(items)


SourceLoader = Callable[[], Awaitable[list]]


async def collect_attention_feed(
    git_source: SourceLoader,
    db_source: SourceLoader,
    node_source: SourceLoader,
    now: datetime,
) -> AttentionFeed:
    """
    Query the sources concurrently and build the feed.

    A failing source contributes zero items and is reported as unavailable;
    the other sources still render.
    """
    feed = AttentionFeed()
    loaded: Dict[str, list] = {}

    names = (AttentionSource.GIT.value, AttentionSource.DB.value, AttentionSource.DROPLET.value)
    results = await asyncio.gather(
        *(loader() for loader in (git_source, db_source, node_source)),
        return_exceptions=True,
    )
    for name, result in zip(names, results):
        if isinstance(result, Exception):
            logger.warning(f"Attention source '{name}' unavailable: {result}")
            loaded[name] = []
            feed.sources[name] = SOURCE_UNAVAILABLE
        elif isinstance(result, BaseException):
            raise result
        else:
            loaded[name] = list(result)
            feed.sources[name] = SOURCE_OK

    feed.items = build_attention_feed(
        loaded[AttentionSource.GIT.value],
        loaded[AttentionSource.DB.value],
        loaded[AttentionSource.DROPLET.value],
        now,
    )
    logger.debug(f"Attention feed built: {feed.counts}, sources={feed.sources}")
    return feed


def filter_items(items: Iterable[AttentionItem], level: Optional[AttentionLevel] = None) -> List[AttentionItem]:
    if level is None:
        return list(items)
    return [item for item in items if item.attention_level == level]
