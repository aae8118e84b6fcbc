"""
Drift classifier.

Turns the two independently reported git states of one repository (the server
observer and the pc observer) into a ``SyncStatus`` plus the full set of
``SyncReason`` values that explain it.

The classifier is a pure function of its inputs. The caller passes ``now``
explicitly and must keep it fixed for one classification/aggregation pass so
that staleness checks agree with each other.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from opsdrift.core.selectors import is_offline
from opsdrift.models.git_state import (
    NodeGitState,
    NodeRole,
    OfflineThresholds,
    RegistryEntry,
    SyncBlock,
    SyncReason,
    SyncStatus,
)
from opsdrift.utils.timeutils import elapsed_ms

logger = logging.getLogger(__name__)

_MISSING = {NodeRole.SERVER: SyncReason.SERVER_MISSING, NodeRole.PC: SyncReason.PC_MISSING}
_OFFLINE = {NodeRole.SERVER: SyncReason.SERVER_OFFLINE, NodeRole.PC: SyncReason.PC_OFFLINE}
_DIRTY = {NodeRole.SERVER: SyncReason.SERVER_DIRTY, NodeRole.PC: SyncReason.PC_DIRTY}


def _config_reasons(registry_entry: RegistryEntry) -> List[SyncReason]:
    """awaiting_config when the repo is discovered but not wired up."""
    missing = registry_entry.missing_config()
    if not missing:
        return []
    reasons = [SyncReason.AWAITING_CONFIG]
    # An operator-configured entry that still lacks a path is called out separately.
    if not registry_entry.auto_discovered and ("server_path" in missing or "pc_path" in missing):
        reasons.append(SyncReason.MISSING_PATHS)
    return reasons


def _reachable_state(
    role: NodeRole,
    state: Optional[NodeGitState],
    thresholds: OfflineThresholds,
    now: datetime,
    reasons: List[SyncReason],
) -> Optional[NodeGitState]:
    """Return the state when it can be judged, else record why not."""
    if state is None:
        reasons.append(_MISSING[role])
        return None
    if is_offline(state, thresholds.offline_ms(role), now):
        reasons.append(_OFFLINE[role])
        return None
    return state


def _divergence_reasons(sides: List[NodeGitState]) -> List[SyncReason]:
    """Union of each side's own diverged, ahead or behind verdict."""
    found = set()
    for side in sides:
        if side.ahead > 0 and side.behind > 0:
            found.add(SyncReason.DIVERGED)
        elif side.ahead > 0:
            found.add(SyncReason.AHEAD)
        elif side.behind > 0:
            found.add(SyncReason.BEHIND)
    return [r for r in (SyncReason.DIVERGED, SyncReason.AHEAD, SyncReason.BEHIND) if r in found]


def origin_escalated(
    registry_entry: Optional[RegistryEntry],
    thresholds: OfflineThresholds,
    now: datetime,
) -> bool:
    """origin_unreachable that has persisted past the escalation threshold."""
    if registry_entry is None or registry_entry.origin_unreachable_since is None:
        return False
    return elapsed_ms(registry_entry.origin_unreachable_since, now) >= thresholds.origin_escalation_ms


def classify(
    server: Optional[NodeGitState],
    pc: Optional[NodeGitState],
    thresholds: OfflineThresholds,
    registry_entry: Optional[RegistryEntry],
    now: datetime,
) -> Tuple[SyncStatus, List[SyncReason]]:
    """
    Classify one repository.

    Args:
        server: Latest server-observer report, or None when never reported
        pc: Latest pc-observer report, or None when never reported
        thresholds: Offline/staleness thresholds
        registry_entry: Registry metadata; None skips the configuration check
        now: Reference time for every staleness comparison in this pass

    Returns:
        (status, reasons). Never raises for any combination of absent or
        stale inputs.
    """
    if registry_entry is not None:
        config_reasons = _config_reasons(registry_entry)
        if config_reasons:
            return SyncStatus.YELLOW, config_reasons

    reasons: List[SyncReason] = []

    server_state = _reachable_state(NodeRole.SERVER, server, thresholds, now, reasons)
    pc_state = _reachable_state(NodeRole.PC, pc, thresholds, now, reasons)
    sides = [s for s in (server_state, pc_state) if s is not None]

    if server_state is not None and server_state.dirty:
        reasons.append(SyncReason.SERVER_DIRTY)
    if pc_state is not None and pc_state.dirty:
        reasons.append(SyncReason.PC_DIRTY)

    divergence = _divergence_reasons(sides)
    reasons.extend(divergence)

    if server_state is not None and pc_state is not None:
        if server_state.head != pc_state.head and not divergence:
            # Heads differ with no ahead/behind to explain it: force-push or reset heuristic.
            reasons.append(SyncReason.HASH_MISMATCH)
        if server_state.branch and pc_state.branch and server_state.branch != pc_state.branch:
            reasons.append(SyncReason.WRONG_BRANCH)

    escalated = False
    if registry_entry is not None and registry_entry.origin_unreachable_since is not None:
        reasons.append(SyncReason.ORIGIN_UNREACHABLE)
        escalated = origin_escalated(registry_entry, thresholds, now)

    if not reasons:
        return SyncStatus.GREEN, []

    if all(reason.is_reachability for reason in reasons):
        return SyncStatus.GRAY, reasons

    if escalated:
        return SyncStatus.RED, reasons

    return SyncStatus.ORANGE, reasons


def classify_block(
    server: Optional[NodeGitState],
    pc: Optional[NodeGitState],
    thresholds: OfflineThresholds,
    registry_entry: Optional[RegistryEntry],
    now: datetime,
) -> SyncBlock:
    status, reasons = classify(server, pc, thresholds, registry_entry, now)
    return SyncBlock(state=status, reasons=reasons)


def drift_detected_at(
    server: Optional[NodeGitState],
    pc: Optional[NodeGitState],
    block: SyncBlock,
    thresholds: OfflineThresholds,
    registry_entry: Optional[RegistryEntry] = None,
) -> Optional[datetime]:
    """
    When the current drift began, as far as the reports can tell.

    Content drift starts at the latest state change among the reachable sides;
    offline-only drift starts when the silence crossed its threshold; an
    unreachable origin starts at ``origin_unreachable_since``.
    """
    if block.state in (SyncStatus.GREEN, SyncStatus.YELLOW):
        return None

    reasons = set(block.reasons)
    candidates = []

    if block.state == SyncStatus.GRAY:
        for role, state in ((NodeRole.SERVER, server), (NodeRole.PC, pc)):
            if _OFFLINE[role] in reasons and state is not None and state.last_seen is not None:
                candidates.append(state.last_seen + timedelta(milliseconds=thresholds.offline_ms(role)))
        return max(candidates) if candidates else None

    changed = []
    for role, state in ((NodeRole.SERVER, server), (NodeRole.PC, pc)):
        if state is None or _OFFLINE[role] in reasons:
            continue
        stamp = state.changed_at or state.last_seen
        if stamp is not None:
            changed.append(stamp)

    if SyncReason.ORIGIN_UNREACHABLE in reasons and registry_entry is not None:
        content = reasons - {SyncReason.ORIGIN_UNREACHABLE} - {r for r in reasons if r.is_reachability}
        if not content:
            return registry_entry.origin_unreachable_since

    if not changed:
        return None
    return max(changed)
