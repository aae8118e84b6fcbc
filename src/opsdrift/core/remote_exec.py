"""
Remote execution channel for corrective git operations.

Two executors share one contract:

- ``ShellRemoteExecutor`` runs git directly against working trees reachable
  from this host;
- ``AgentRemoteExecutor`` asks the node agent on the target machine to do it
  over HTTP.

Both raise ``RemoteExecError`` on failure. Timeouts are applied by the caller.
"""

import asyncio
import contextlib
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import aiohttp

from opsdrift.utils.error_handling import RemoteExecError

logger = logging.getLogger(__name__)


@dataclass
class RemoteExecRequest:
    """One corrective operation against one instance."""
    service_id: str
    repo_id: str
    repo_path: Optional[str]
    target: str
    node_id: Optional[str] = None
    pm2_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "service_id": self.service_id,
            "repo_id": self.repo_id,
            "repo_path": self.repo_path,
            "target": self.target,
            "node_id": self.node_id,
            "pm2_name": self.pm2_name,
        }


@dataclass
class RemoteExecResult:
    old_head: Optional[str] = None
    new_head: Optional[str] = None
    message: Optional[str] = None


class RemoteExecutor(ABC):
    """Performs a fetch + hard reset of one instance to a target ref."""

    @abstractmethod
    async def execute(self, request: RemoteExecRequest) -> RemoteExecResult:
        ...

    async def close(self) -> None:
        return None


class ShellRemoteExecutor(RemoteExecutor):
    """Runs git (and optionally pm2) as subprocesses, never through a shell."""

    def __init__(self, fetch_timeout: float = 8.0, restart: bool = True):
        self.fetch_timeout = fetch_timeout
        self.restart = restart

    async def _run(self, args: List[str], timeout: Optional[float] = None) -> Tuple[int, str, str]:
        proc = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            raise RemoteExecError(f"'{' '.join(args[:4])}' timed out after {timeout}s")
        finally:
            # Runs on timeout and on cancellation; the child never outlives the call.
            if proc.returncode is None:
                with contextlib.suppress(ProcessLookupError):
                    proc.kill()
                await proc.wait()
        return proc.returncode, stdout.decode(errors="replace").strip(), stderr.decode(errors="replace").strip()

    async def _git(self, path: str, *args: str, timeout: Optional[float] = None) -> str:
        code, out, err = await self._run(["git", "-C", path, *args], timeout=timeout)
        if code != 0:
            raise RemoteExecError(f"git {args[0]} failed: {err or out or f'exit {code}'}")
        return out

    async def execute(self, request: RemoteExecRequest) -> RemoteExecResult:
        if not request.repo_path:
            raise RemoteExecError(f"No repository path for {request.service_id}")

        old_head = await self._git(request.repo_path, "rev-parse", "HEAD")
        try:
            await self._git(request.repo_path, "fetch", "--all", "--prune", timeout=self.fetch_timeout)
            await self._git(request.repo_path, "reset", "--hard", request.target)
            new_head = await self._git(request.repo_path, "rev-parse", "HEAD")
        except RemoteExecError as e:
            raise RemoteExecError(str(e), old_head=old_head) from e

        message = f"Reset {request.service_id} {old_head[:7]} -> {new_head[:7]}"
        if self.restart and request.pm2_name:
            message += await self._restart(request.pm2_name)

        return RemoteExecResult(old_head=old_head, new_head=new_head, message=message)

    async def _restart(self, pm2_name: str) -> str:
        """Restart after a completed reset; failure is reported in the message only."""
        try:
            code, _, err = await self._run(["pm2", "restart", pm2_name], timeout=self.fetch_timeout)
        except RemoteExecError as e:
            code, err = None, str(e)
        if code == 0:
            return f", restarted {pm2_name}"
        logger.warning(f"pm2 restart {pm2_name} failed: {err}")
        return f", restart of {pm2_name} failed"


class AgentRemoteExecutor(RemoteExecutor):
    """Delegates the operation to the agent running on the target node."""

    def __init__(self, base_url: str, token: Optional[str] = None, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                headers=self._headers(),
            )
        return self._session

    async def execute(self, request: RemoteExecRequest) -> RemoteExecResult:
        session = await self._get_session()
        url = f"{self.base_url}/exec/git-sync"
        try:
            async with session.post(url, json=request.to_dict()) as response:
                payload = await response.json(content_type=None)
                if response.status >= 400:
                    detail = (payload or {}).get("error") if isinstance(payload, dict) else None
                    raise RemoteExecError(f"Agent returned {response.status}: {detail or response.reason}")
        except aiohttp.ClientError as e:
            raise RemoteExecError(f"Agent request failed: {e}") from e

        payload = payload or {}
        if not payload.get("success", False):
            raise RemoteExecError(payload.get("error") or "Agent reported failure", old_head=payload.get("old_head"))
        return RemoteExecResult(
            old_head=payload.get("old_head"),
            new_head=payload.get("new_head"),
            message=payload.get("message"),
        )

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()


def create_executor(settings) -> RemoteExecutor:
    """Executor for the configured ``remote_exec_mode``."""
    if settings.remote_exec_mode == "agent":
        return AgentRemoteExecutor(
            base_url=settings.agent_base_url,
            token=settings.agent_token,
            timeout=settings.remote_exec_timeout_s,
        )
    return ShellRemoteExecutor(
        fetch_timeout=settings.git_fetch_timeout_s,
        restart=settings.restart_after_sync,
    )
