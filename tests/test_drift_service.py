"""
Tests for the drift service over an in-memory store.
"""

from datetime import timedelta

import pytest
from unittest.mock import AsyncMock

from conftest import HEAD_A, HEAD_B, make_state
from opsdrift.config.settings import DEFAULT_FAMILY_PATTERNS
from opsdrift.core.remote_exec import RemoteExecResult
from opsdrift.core.selectors import compile_family_patterns, parse_family_filters, parse_summary_filters
from opsdrift.core.sync_dispatcher import SyncDispatcher
from opsdrift.models.git_state import (
    DbDriftRecord,
    FamilySource,
    NodeHealthRecord,
    NodeRole,
    RepoGroup,
    SyncReason,
    SyncStatus,
)
from opsdrift.services.drift_service import DriftService
from opsdrift.utils.error_handling import ResourceNotFoundError
from opsdrift.utils.timeutils import utc_now


@pytest.fixture
def executor():
    mock = AsyncMock()
    mock.execute = AsyncMock(side_effect=lambda req: RemoteExecResult(old_head=HEAD_B, new_head=req.target))
    return mock


@pytest.fixture
def service(memory_store, thresholds, executor):
    return DriftService(
        store=memory_store,
        thresholds=thresholds,
        family_patterns=compile_family_patterns(DEFAULT_FAMILY_PATTERNS),
        ai_team_prefixes=["ai-chad"],
        dispatcher=SyncDispatcher(executor, timeout=1.0, store=memory_store),
    )


def seed_family(store, heads):
    for index, head in enumerate(heads, start=1):
        repo_id = f"ai-chad-540{index}"
        store.add_repo(
            repo_id,
            server=make_state(head=head, path=f"/var/www/{repo_id}"),
            pc=make_state(node_id="pc-1", head=head),
        )


class TestSummary:
    """Repo classification pass."""

    @pytest.mark.asyncio
    async def test_unregistered_repo_awaits_config(self, service, memory_store, now):
        memory_store.add_repo("scratch", server=make_state(), pc=make_state(node_id="pc-1"), registry=False)

        repos, counts = await service.get_summary(now=now)

        assert repos[0].sync.state == SyncStatus.YELLOW
        assert repos[0].sync.reasons == [SyncReason.AWAITING_CONFIG]
        assert counts["yellow"] == 1

    @pytest.mark.asyncio
    async def test_registered_repo_without_reports_is_gray(self, service, memory_store, now):
        memory_store.add_repo("quiet")

        repo = await service.get_repo("quiet", now=now)

        assert repo.sync.state == SyncStatus.GRAY
        assert set(repo.sync.reasons) == {SyncReason.SERVER_MISSING, SyncReason.PC_MISSING}

    @pytest.mark.asyncio
    async def test_filters_and_counts(self, service, memory_store, now):
        memory_store.add_repo("ok", server=make_state(), pc=make_state(node_id="pc-1"))
        memory_store.add_repo("drift", server=make_state(head=HEAD_A), pc=make_state(node_id="pc-1", head=HEAD_B))

        repos, counts = await service.get_summary(parse_summary_filters(state="orange"), now=now)

        assert [r.repo_id for r in repos] == ["drift"]
        assert counts["total"] == 1

    @pytest.mark.asyncio
    async def test_pattern_family_and_group(self, service, memory_store, now):
        seed_family(memory_store, [HEAD_A])

        repo = await service.get_repo("ai-chad-5401", now=now)

        assert repo.group == RepoGroup.AI_TEAM
        assert repo.family.source == FamilySource.INFERRED
        assert repo.display_name == "Chad"

    @pytest.mark.asyncio
    async def test_unknown_repo(self, service):
        with pytest.raises(ResourceNotFoundError):
            await service.get_repo("nope")


class TestFamilies:
    """Family rollups through the service."""

    @pytest.mark.asyncio
    async def test_family_quorum(self, service, memory_store, now):
        seed_family(memory_store, [HEAD_A, HEAD_A, HEAD_B])

        families, counts = await service.get_family_summaries(now=now)

        (family,) = families
        assert family.family_key == "ai-chad"
        assert family.desired_head == HEAD_A
        assert family.sync.out_of_sync_instances == ["ai-chad-5403"]
        assert counts["orange"] == 1

    @pytest.mark.asyncio
    async def test_family_filter(self, service, memory_store, now):
        seed_family(memory_store, [HEAD_A, HEAD_A])

        families, _ = await service.get_family_summaries(parse_family_filters(state="red"), now=now)

        assert families == []

    @pytest.mark.asyncio
    async def test_sync_family_dispatches_and_audits(self, service, memory_store, executor):
        for index, head in enumerate([HEAD_A, HEAD_A, HEAD_B], start=1):
            repo_id = f"ai-chad-540{index}"
            memory_store.add_repo(repo_id, server=make_state(head=head, seen_ago_s=0, now=utc_now()))

        result = await service.sync_family("ai-chad")

        assert result.synced == 1
        assert executor.execute.await_count == 1
        assert memory_store.events == [result]

    @pytest.mark.asyncio
    async def test_sync_unknown_family(self, service):
        with pytest.raises(ResourceNotFoundError):
            await service.sync_family("ai-nobody")


class TestAttention:
    """Attention feed through the service."""

    @pytest.mark.asyncio
    async def test_failing_source_degrades(self, service, memory_store, now):
        memory_store.add_repo("drift", server=make_state(head=HEAD_A), pc=make_state(node_id="pc-1", head=HEAD_B))
        memory_store.fail_db = True
        memory_store.node_records = [NodeHealthRecord(node_id="node-1", stopped_count=2,
                                                      updated_at=now - timedelta(minutes=3))]

        feed = await service.get_attention_feed(now=now)

        assert feed.sources["db"] == "unavailable"
        assert feed.counts["total"] == 2
        assert [item.type.value for item in feed.items] == ["droplet", "git"]

    @pytest.mark.asyncio
    async def test_db_urgent_first(self, service, memory_store, now):
        memory_store.add_repo("drift", server=make_state(head=HEAD_A), pc=make_state(node_id="pc-1", head=HEAD_B))
        memory_store.db_records = [DbDriftRecord(db_key="pg:main", attention_level="urgent", updated_at=now)]

        feed = await service.get_attention_feed(now=now)

        assert feed.items[0].entity_id == "pg:main"
        assert feed.overall == "urgent"


class TestIngest:
    @pytest.mark.asyncio
    async def test_ingest_marks_origin(self, service, memory_store, now):
        memory_store.add_repo("api")

        accepted = await service.ingest_report("api", NodeRole.SERVER, make_state(), origin_reachable=False)

        assert accepted is True
        assert memory_store.registry["api"].origin_unreachable_since is not None
