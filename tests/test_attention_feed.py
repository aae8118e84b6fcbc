"""
Tests for the attention feed: per-source mapping, ordering and resilience.
"""

import asyncio
from datetime import timedelta

import pytest

from conftest import HEAD_A, HEAD_B, make_state
from opsdrift.core.attention_feed import (
    SOURCE_OK,
    SOURCE_UNAVAILABLE,
    build_attention_feed,
    collect_attention_feed,
    db_items,
    droplet_items,
    git_summary_text,
    sort_items,
)
from opsdrift.models.git_state import (
    AttentionItem,
    AttentionLevel,
    AttentionSource,
    DbDriftRecord,
    NodeHealthRecord,
    RepoPairSummary,
    SyncBlock,
    SyncReason,
    SyncStatus,
)


def git_repo(repo_id, state, reasons, server=None, pc=None, drift_age_s=None, now=None):
    drift_at = now - timedelta(seconds=drift_age_s) if drift_age_s is not None else None
    return RepoPairSummary(
        repo_id=repo_id,
        sync=SyncBlock(state=state, reasons=reasons),
        server=server,
        pc=pc,
        drift_detected_at=drift_at,
    )


def item(level, age, entity="x"):
    return AttentionItem(
        type=AttentionSource.GIT,
        entity_id=entity,
        attention_level=level,
        age_seconds=age,
        summary="",
    )


class TestGitItems:
    """Git drift mapping."""

    def test_only_orange_and_red_become_items(self, now):
        repos = [
            git_repo("green", SyncStatus.GREEN, []),
            git_repo("gray", SyncStatus.GRAY, [SyncReason.PC_OFFLINE]),
            git_repo("yellow", SyncStatus.YELLOW, [SyncReason.AWAITING_CONFIG]),
            git_repo("orange", SyncStatus.ORANGE, [SyncReason.HASH_MISMATCH]),
            git_repo("red", SyncStatus.RED, [SyncReason.ORIGIN_UNREACHABLE]),
        ]

        items = build_attention_feed(repos, [], [], now)

        levels = {i.entity_id: i.attention_level for i in items}
        assert levels == {"orange": AttentionLevel.WARN, "red": AttentionLevel.URGENT}

    def test_summary_precedence(self, now):
        repo = git_repo(
            "api",
            SyncStatus.ORANGE,
            [SyncReason.SERVER_DIRTY, SyncReason.AHEAD],
            server=make_state(head=HEAD_A, dirty=True, branch="main"),
            pc=make_state(node_id="pc-1", head=HEAD_B, ahead=2),
        )

        assert git_summary_text(repo) == "main: uncommitted changes on server, 2 commits to push"

    def test_hash_mismatch_call_out(self):
        repo = git_repo(
            "api",
            SyncStatus.ORANGE,
            [SyncReason.HASH_MISMATCH],
            server=make_state(head=HEAD_A),
            pc=make_state(node_id="pc-1", head=HEAD_B),
        )

        assert git_summary_text(repo) == "main: SHA mismatch (force push?)"

    def test_ahead_and_behind(self):
        repo = git_repo(
            "api",
            SyncStatus.ORANGE,
            [SyncReason.AHEAD, SyncReason.BEHIND],
            server=make_state(head=HEAD_A, behind=4),
            pc=make_state(node_id="pc-1", head=HEAD_B, ahead=1),
        )

        assert git_summary_text(repo) == "main: server 4 commits behind, pc 1 commits to push"

    def test_counts_stay_with_their_side(self):
        repo = git_repo(
            "api",
            SyncStatus.ORANGE,
            [SyncReason.DIVERGED, SyncReason.AHEAD],
            server=make_state(head=HEAD_A, ahead=1, behind=2),
            pc=make_state(node_id="pc-1", head=HEAD_B, ahead=5),
        )

        assert git_summary_text(repo) == "main: server 1 ahead, 2 behind, pc 5 commits to push"

    def test_single_side_diverged(self):
        repo = git_repo(
            "api",
            SyncStatus.ORANGE,
            [SyncReason.DIVERGED],
            server=make_state(head=HEAD_A, ahead=2, behind=3),
            pc=make_state(node_id="pc-1", head=HEAD_B),
        )

        assert git_summary_text(repo) == "main: 2 ahead, 3 behind"

    def test_age_from_drift_start(self, now):
        repo = git_repo("api", SyncStatus.ORANGE, [SyncReason.HASH_MISMATCH], drift_age_s=3600, now=now)

        (git_item,) = build_attention_feed([repo], [], [], now)

        assert git_item.age_seconds == 3600
        assert git_item.deep_link == "/git-database?repo=api"


class TestOtherSources:
    """Database schema and node health mapping."""

    def test_db_records_pass_through(self, now):
        records = [
            DbDriftRecord(db_key="pg:main", attention_level="urgent", last_error="connection refused",
                          drift_detected_at=now - timedelta(minutes=5)),
            DbDriftRecord(db_key="pg:aux", attention_level="warn", db_name="aux", tables_count=12,
                          updated_at=now - timedelta(minutes=1)),
            DbDriftRecord(db_key="pg:ok", attention_level="none"),
        ]

        items = {i.entity_id: i for i in db_items(records, now)}

        assert set(items) == {"pg:main", "pg:aux"}
        assert items["pg:main"].attention_level == AttentionLevel.URGENT
        assert items["pg:main"].age_seconds == 300
        assert items["pg:main"].summary == "Error: connection refused"
        assert items["pg:aux"].age_seconds == 60
        assert items["pg:aux"].summary == "Schema drift on aux (12 tables)"

    def test_node_health_levels(self, now):
        records = [
            NodeHealthRecord(node_id="healthy", running_count=10),
            NodeHealthRecord(node_id="stopped", running_count=8, stopped_count=2),
            NodeHealthRecord(node_id="errored", running_count=8, stopped_count=1, errored_count=1),
        ]

        items = {i.entity_id: i for i in droplet_items(records, now)}

        assert set(items) == {"stopped", "errored"}
        assert items["stopped"].attention_level == AttentionLevel.WARN
        assert items["stopped"].summary == "2 services stopped"
        assert items["errored"].attention_level == AttentionLevel.URGENT
        assert items["errored"].summary == "1 errored, 1 stopped"


class TestOrdering:
    """urgent first, then oldest first."""

    def test_urgent_before_warn_regardless_of_age(self):
        ordered = sort_items([
            item(AttentionLevel.WARN, 99999, "old-warn"),
            item(AttentionLevel.URGENT, 5, "new-urgent"),
        ])

        assert [i.entity_id for i in ordered] == ["new-urgent", "old-warn"]

    def test_oldest_first_within_level(self):
        ordered = sort_items([
            item(AttentionLevel.URGENT, 10, "young"),
            item(AttentionLevel.URGENT, 500, "old"),
            item(AttentionLevel.WARN, 1, "w1"),
            item(AttentionLevel.WARN, 2, "w2"),
        ])

        assert [i.entity_id for i in ordered] == ["old", "young", "w2", "w1"]


class TestResilience:
    """One failing source never blanks the feed."""

    @pytest.mark.asyncio
    async def test_failing_db_source(self, now):
        async def git_source():
            return [git_repo("api", SyncStatus.ORANGE, [SyncReason.HASH_MISMATCH])]

        async def db_source():
            raise RuntimeError('relation "db_schema_states" does not exist')

        async def node_source():
            return [NodeHealthRecord(node_id="node-1", errored_count=1)]

        feed = await collect_attention_feed(git_source, db_source, node_source, now)

        assert feed.sources == {"git": SOURCE_OK, "db": SOURCE_UNAVAILABLE, "droplet": SOURCE_OK}
        assert {i.type for i in feed.items} == {AttentionSource.GIT, AttentionSource.DROPLET}
        assert feed.counts["total"] == 2
        assert feed.counts["db"] == 0
        assert feed.overall == "urgent"

    @pytest.mark.asyncio
    async def test_all_sources_failing_renders_empty(self, now):
        async def broken():
            raise ConnectionError("store unreachable")

        feed = await collect_attention_feed(broken, broken, broken, now)

        assert feed.items == []
        assert feed.overall == "none"
        assert feed.to_dict()["attention"]["counts"]["total"] == 0

    @pytest.mark.asyncio
    async def test_sources_load_concurrently(self, now):
        started = []
        release = asyncio.Event()

        def waiting(name):
            async def source():
                started.append(name)
                if len(started) == 3:
                    release.set()
                await release.wait()
                return []
            return source

        feed = await asyncio.wait_for(
            collect_attention_feed(waiting("git"), waiting("db"), waiting("node"), now), timeout=1.0
        )

        assert sorted(started) == ["db", "git", "node"]
        assert set(feed.sources.values()) == {SOURCE_OK}
