"""
Sync Dispatcher - fans corrective resets out to out-of-sync family members.

Each instance is an independent unit of work: results are collected per
instance, a failure never rolls back or discards another instance's success,
and no status is marked green here. The next observer report decides that.
"""

import asyncio
import logging
from typing import List, Optional

from opsdrift.core.remote_exec import RemoteExecRequest, RemoteExecutor
from opsdrift.models.git_state import (
    FamilySummary,
    FamilySyncResult,
    InstanceState,
    InstanceSyncResult,
    RepoPairSummary,
)
from opsdrift.utils.error_handling import RemoteExecError
from opsdrift.utils.timeutils import utc_now

logger = logging.getLogger(__name__)


class SyncDispatcher:
    """Issues fetch/reset operations through a ``RemoteExecutor``."""

    def __init__(self, executor: RemoteExecutor, timeout: float = 10.0, store=None):
        self.executor = executor
        self.timeout = timeout
        self.store = store

    async def run_request(self, request: RemoteExecRequest) -> InstanceSyncResult:
        """Run one request under the timeout; always returns a result."""
        base = dict(
            service_id=request.service_id,
            repo_id=request.repo_id,
            repo_path=request.repo_path,
            node_id=request.node_id,
            target=request.target,
        )
        try:
            outcome = await asyncio.wait_for(self.executor.execute(request), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.error(f"Sync of {request.service_id} timed out after {self.timeout}s")
            return InstanceSyncResult(success=False, error=f"Timed out after {self.timeout}s", **base)
        except RemoteExecError as e:
            logger.error(f"Sync of {request.service_id} failed: {e}")
            return InstanceSyncResult(success=False, error=str(e), old_head=e.old_head, **base)
        except Exception as e:
            logger.error(f"Unexpected error syncing {request.service_id}: {e}")
            return InstanceSyncResult(success=False, error=str(e), **base)

        return InstanceSyncResult(
            success=True,
            old_head=outcome.old_head,
            new_head=outcome.new_head,
            message=outcome.message,
            **base,
        )

    def plan(self, family: FamilySummary, pm2_names: Optional[dict] = None) -> List[RemoteExecRequest]:
        """Requests for every member in ``out_of_sync_instances``."""
        if not family.desired_head:
            return []
        pm2_names = pm2_names or {}
        requests = []
        for service_id in family.sync.out_of_sync_instances:
            inst: Optional[InstanceState] = family.instance(service_id)
            if inst is None:
                continue
            requests.append(RemoteExecRequest(
                service_id=inst.service_id,
                repo_id=inst.repo_id,
                repo_path=inst.repo_path,
                target=family.desired_head,
                node_id=inst.node_id,
                pm2_name=inst.pm2_name or pm2_names.get(inst.service_id),
            ))
        return requests

    async def sync_family(self, family: FamilySummary, dry_run: bool = False) -> FamilySyncResult:
        """
        Reset every out-of-sync member of ``family`` to its desired head.

        Args:
            family: A freshly aggregated family summary
            dry_run: Report the planned actions without executing them

        Returns:
            FamilySyncResult with exactly one result per targeted instance
        """
        result = FamilySyncResult(
            family_key=family.family_key,
            desired_head=family.desired_head,
            branch=family.desired_branch,
            dry_run=dry_run,
            started_at=utc_now(),
        )

        if not family.desired_head:
            result.message = "No online quorum; desired head unknown"
            result.finished_at = utc_now()
            return result

        requests = self.plan(family)
        if not requests:
            result.message = "All online instances already at desired head"
            result.finished_at = utc_now()
            return result

        if dry_run:
            result.results = [
                InstanceSyncResult(
                    service_id=req.service_id,
                    success=True,
                    repo_id=req.repo_id,
                    repo_path=req.repo_path,
                    node_id=req.node_id,
                    target=req.target,
                    action=f"git fetch --all && git reset --hard {req.target[:7]}"
                    + (f" && pm2 restart {req.pm2_name}" if req.pm2_name else ""),
                )
                for req in requests
            ]
            result.message = f"Would sync {len(requests)} instance(s)"
            result.finished_at = utc_now()
            return result

        logger.info(
            f"Syncing family {family.family_key}: {len(requests)} instance(s) to {family.desired_head_short}"
        )
        result.results = list(await asyncio.gather(*(self.run_request(req) for req in requests)))
        result.finished_at = utc_now()
        result.message = f"{result.synced} synced, {result.failed} failed"
        logger.info(f"Family {family.family_key} sync finished: {result.message}")

        await self._audit(result)
        return result

    async def sync_repo(self, repo: RepoPairSummary) -> InstanceSyncResult:
        """Reset the server instance of one repo to its tracked remote branch."""
        server = repo.server
        registry = repo.registry
        branch = (server.branch if server and server.branch else None) or "main"
        request = RemoteExecRequest(
            service_id=repo.instance_id,
            repo_id=repo.repo_id,
            repo_path=(server.path if server and server.path else None) or (registry.server_path if registry else None),
            target=f"origin/{branch}",
            node_id=(server.node_id if server else None) or (registry.server_node_id if registry else None),
            pm2_name=registry.pm2_name if registry else None,
        )
        logger.info(f"Syncing repo {repo.repo_id} to {request.target}")
        return await self.run_request(request)

    async def _audit(self, result: FamilySyncResult) -> None:
        if self.store is None:
            return
        try:
            await self.store.record_sync_event(result)
        except Exception as e:
            # Results were already produced; the audit trail is secondary.
            logger.error(f"Failed to record sync event for {result.family_key}: {e}")
