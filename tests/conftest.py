"""
Pytest configuration and shared factories for the drift engine tests.
"""

import os
import sys
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest
import pytest_asyncio

# Update the path to ensure 'src' is in our import path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from opsdrift.models.git_state import (  # noqa: E402
    FamilySyncResult,
    NodeGitState,
    NodeRole,
    OfflineThresholds,
    RegistryEntry,
)
from opsdrift.services.state_store import StateStore  # noqa: E402

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)

HEAD_A = "a" * 40
HEAD_B = "b" * 40
HEAD_C = "c" * 40


def make_state(
    node_id: str = "studio-dev",
    head: str = HEAD_A,
    branch: str = "main",
    dirty: bool = False,
    ahead: int = 0,
    behind: int = 0,
    seen_ago_s: float = 10,
    now: datetime = NOW,
    **kwargs,
) -> NodeGitState:
    """NodeGitState last seen ``seen_ago_s`` seconds before ``now``."""
    return NodeGitState(
        node_id=node_id,
        head=head,
        branch=branch,
        dirty=dirty,
        ahead=ahead,
        behind=behind,
        last_seen=now - timedelta(seconds=seen_ago_s),
        **kwargs,
    )


def make_registry(repo_id: str, **kwargs) -> RegistryEntry:
    """Fully configured registry entry unless overridden."""
    defaults = dict(
        github_url=f"https://github.com/example/{repo_id}",
        server_path=f"/var/www/{repo_id}",
        pc_path=f"C:/Projects/{repo_id}",
    )
    defaults.update(kwargs)
    return RegistryEntry(repo_id=repo_id, **defaults)


class InMemoryStateStore(StateStore):
    """Dict-backed store for service and API tests."""

    def __init__(self):
        self.registry: Dict[str, RegistryEntry] = {}
        self.states: Dict[str, Dict[str, Optional[NodeGitState]]] = {}
        self.db_records: list = []
        self.node_records: list = []
        self.events: List[FamilySyncResult] = []
        self.fail_db = False
        self.fail_nodes = False

    def add_repo(self, repo_id, server=None, pc=None, registry=True, **registry_fields):
        if registry:
            self.registry[repo_id] = make_registry(repo_id, **registry_fields)
        self.states[repo_id] = {NodeRole.SERVER.value: server, NodeRole.PC.value: pc}

    async def list_registry(self, active_only=False):
        entries = sorted(self.registry.values(), key=lambda e: e.repo_id)
        return [e for e in entries if e.is_active] if active_only else entries

    async def get_registry_entry(self, repo_id):
        return self.registry.get(repo_id)

    async def upsert_registry_entry(self, repo_id, **fields):
        entry = self.registry.get(repo_id) or RegistryEntry(repo_id=repo_id)
        for name, value in fields.items():
            if value is not None:
                setattr(entry, name, value)
        self.registry[repo_id] = entry
        return entry

    async def set_origin_reachable(self, repo_id, reachable, at):
        entry = self.registry.get(repo_id)
        if entry is None:
            return
        if reachable:
            entry.origin_unreachable_since = None
        elif entry.origin_unreachable_since is None:
            entry.origin_unreachable_since = at

    async def record_node_state(self, repo_id, role, state):
        slot = self.states.setdefault(repo_id, {NodeRole.SERVER.value: None, NodeRole.PC.value: None})
        current = slot.get(NodeRole(role).value)
        if current is not None and current.last_seen and state.last_seen and state.last_seen < current.last_seen:
            return False
        slot[NodeRole(role).value] = state
        return True

    async def load_repo_states(self):
        return {
            repo_id: (slot.get(NodeRole.SERVER.value), slot.get(NodeRole.PC.value))
            for repo_id, slot in self.states.items()
        }

    async def list_db_drift_records(self, levels=("warn", "urgent")):
        if self.fail_db:
            raise RuntimeError('relation "db_schema_states" does not exist')
        return [r for r in self.db_records if r.attention_level in levels]

    async def list_node_health_records(self):
        if self.fail_nodes:
            raise RuntimeError("node sensor table missing")
        return list(self.node_records)

    async def record_sync_event(self, result):
        self.events.append(result)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def thresholds():
    return OfflineThresholds()


@pytest.fixture
def memory_store():
    return InMemoryStateStore()


@pytest_asyncio.fixture
async def sql_store():
    """SqlStateStore over a fresh in-memory sqlite database."""
    from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
    from sqlalchemy.pool import StaticPool

    from opsdrift.database import init_database
    from opsdrift.services.state_store import SqlStateStore

    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await init_database(engine)
    store = SqlStateStore(async_sessionmaker(engine, expire_on_commit=False))
    try:
        yield store
    finally:
        await engine.dispose()
