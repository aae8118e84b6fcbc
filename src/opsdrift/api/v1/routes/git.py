"""
Git drift API endpoints.

Queries classify on every read; commands dispatch corrective resets and ask the
caller to refresh rather than reporting optimistic state.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends

from opsdrift.core.selectors import parse_family_filters, parse_summary_filters
from opsdrift.models.api_models import (
    NodeReportRequest,
    RegistryUpsertRequest,
    SyncFamilyRequest,
    SyncRepoRequest,
)
from opsdrift.api.v1.providers import get_drift_service
from opsdrift.services.drift_service import DriftService
from opsdrift.utils.timeutils import utc_now

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/git", tags=["Git Drift"])


@router.get("/summary")
async def get_git_summary(
    group: Optional[str] = None,
    service_id: Optional[str] = None,
    project_slug: Optional[str] = None,
    state: Optional[str] = None,
    active_only: Optional[str] = None,
    service: DriftService = Depends(get_drift_service),
):
    """Classified repos with per-status counts"""
    filters = parse_summary_filters(group, service_id, project_slug, state, active_only)
    repos, counts = await service.get_summary(filters)
    return {
        "success": True,
        "repos": [repo.to_dict() for repo in repos],
        "counts": counts,
        "timestamp": utc_now().isoformat(),
    }


@router.get("/repos/{repo_id}")
async def get_git_repo(repo_id: str, service: DriftService = Depends(get_drift_service)):
    repo = await service.get_repo(repo_id)
    return {"success": True, "repo": repo.to_dict()}


@router.get("/families")
async def get_families(
    group: Optional[str] = None,
    state: Optional[str] = None,
    service: DriftService = Depends(get_drift_service),
):
    """Family rollups with per-status counts"""
    filters = parse_family_filters(group, state)
    families, counts = await service.get_family_summaries(filters)
    return {
        "success": True,
        "families": [family.to_dict() for family in families],
        "counts": counts,
        "timestamp": utc_now().isoformat(),
    }


@router.get("/families/{family_key}")
async def get_family(family_key: str, service: DriftService = Depends(get_drift_service)):
    family = await service.get_family(family_key)
    return {"success": True, "family": family.to_dict()}


@router.post("/sync-family")
async def sync_family(request: SyncFamilyRequest, service: DriftService = Depends(get_drift_service)):
    """Reset out-of-sync members of a family to the quorum head"""
    result = await service.sync_family(request.family_key, dry_run=request.dry_run)
    return {**result.to_dict(), "timestamp": utc_now().isoformat()}


@router.post("/sync-repo")
async def sync_repo(request: SyncRepoRequest, service: DriftService = Depends(get_drift_service)):
    result = await service.sync_repo(request.repo_id)
    return {
        "success": result.success,
        "result": result.to_dict(),
        "requires_refresh": True,
        "timestamp": utc_now().isoformat(),
    }


@router.post("/reports")
async def ingest_report(request: NodeReportRequest, service: DriftService = Depends(get_drift_service)):
    """Observer report ingestion; stale reports are acknowledged but not applied"""
    accepted = await service.ingest_report(
        request.repo_id,
        request.role,
        request.to_state(utc_now()),
        origin_reachable=request.origin_reachable,
    )
    return {"success": True, "accepted": accepted}


@router.get("/registry")
async def list_registry(
    active_only: Optional[str] = None,
    service: DriftService = Depends(get_drift_service),
):
    filters = parse_summary_filters(active_only=active_only if active_only is not None else "false")
    entries = await service.list_registry(active_only=filters.active_only)
    return {"success": True, "repos": [entry.to_dict() for entry in entries], "count": len(entries)}


@router.post("/registry")
async def upsert_registry(request: RegistryUpsertRequest, service: DriftService = Depends(get_drift_service)):
    entry = await service.upsert_registry(request.repo_slug, **request.to_fields())
    return {"success": True, "repo": entry.to_dict()}
