"""
Operations attention feed.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends

from opsdrift.core.attention_feed import filter_items
from opsdrift.models.git_state import AttentionLevel
from opsdrift.api.v1.providers import get_drift_service
from opsdrift.services.drift_service import DriftService
from opsdrift.utils.error_handling import FilterValidationError
from opsdrift.utils.timeutils import utc_now

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/operations", tags=["Operations"])

LEVEL_VALUES = [level.value for level in AttentionLevel]


@router.get("/attention")
async def get_attention(
    level: Optional[str] = None,
    service: DriftService = Depends(get_drift_service),
):
    """Severity-ordered anomalies across git, database schema and node health.

    Always renders: a source that fails to load shows as unavailable with zero
    items instead of failing the response.
    """
    if level and level not in LEVEL_VALUES:
        raise FilterValidationError("level", level, LEVEL_VALUES)

    feed = await service.get_attention_feed()
    payload = feed.to_dict()
    if level:
        payload["items"] = [item.to_dict() for item in filter_items(feed.items, AttentionLevel(level))]
    return {"success": True, **payload, "timestamp": utc_now().isoformat()}
