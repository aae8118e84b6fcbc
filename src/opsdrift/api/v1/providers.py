"""
Dependency injection providers for services.
"""
from functools import lru_cache

from fastapi import Depends

from opsdrift.config.settings import Settings, get_settings
from opsdrift.core.remote_exec import RemoteExecutor, create_executor
from opsdrift.core.selectors import compile_family_patterns
from opsdrift.core.sync_dispatcher import SyncDispatcher
from opsdrift.database import get_session_factory
from opsdrift.services.drift_service import DriftService
from opsdrift.services.state_store import SqlStateStore, StateStore


@lru_cache(maxsize=1)
def get_state_store() -> StateStore:
    """Singleton SQL state store bound to the process-wide session factory."""
    return SqlStateStore(get_session_factory())


@lru_cache(maxsize=1)
def get_remote_executor() -> RemoteExecutor:
    return create_executor(get_settings())


@lru_cache(maxsize=1)
def get_compiled_family_patterns():
    return compile_family_patterns(get_settings().get_family_patterns())


def get_sync_dispatcher(
    executor: RemoteExecutor = Depends(get_remote_executor),
    store: StateStore = Depends(get_state_store),
    settings: Settings = Depends(get_settings),
) -> SyncDispatcher:
    return SyncDispatcher(executor, timeout=settings.remote_exec_timeout_s, store=store)


def get_drift_service(
    store: StateStore = Depends(get_state_store),
    dispatcher: SyncDispatcher = Depends(get_sync_dispatcher),
    settings: Settings = Depends(get_settings),
) -> DriftService:
    """FastAPI dependency to get a DriftService instance."""
    return DriftService(
        store=store,
        thresholds=settings.get_offline_thresholds(),
        family_patterns=get_compiled_family_patterns(),
        ai_team_prefixes=settings.ai_team_prefixes,
        dispatcher=dispatcher,
    )
