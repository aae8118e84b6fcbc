"""
Pure drift engine: classifier, family aggregator, attention feed, and the
sync dispatcher with its remote execution channel.
"""

from .classifier import classify, classify_block, drift_detected_at
from .family_aggregator import aggregate_family, aggregate_families, group_by_family
from .attention_feed import AttentionFeed, build_attention_feed, collect_attention_feed
from .sync_dispatcher import SyncDispatcher

__all__ = [
    "classify",
    "classify_block",
    "drift_detected_at",
    "aggregate_family",
    "aggregate_families",
    "group_by_family",
    "AttentionFeed",
    "build_attention_feed",
    "collect_attention_feed",
    "SyncDispatcher",
]
