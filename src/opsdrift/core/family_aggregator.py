"""
Family aggregator.

A family is a set of repository instances expected to run identical code, for
example several deployed copies of one worker on different ports. No single
instance is ground truth, so aggregation is two passes:

1. vote: among instances whose server observer is online, the head held by the
   largest subset becomes ``desired_head``;
2. classify: every instance is compared against that winner.
"""

import logging
from collections import Counter, OrderedDict
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from opsdrift.core.selectors import display_name_for, instance_status
from opsdrift.models.git_state import (
    FamilySource,
    FamilySummary,
    FamilySyncBlock,
    InstanceState,
    OfflineThresholds,
    RepoGroup,
    RepoPairSummary,
    SyncReason,
    SyncStatus,
)

logger = logging.getLogger(__name__)

_LATEST = datetime.max.replace(tzinfo=timezone.utc)


def build_instance(
    member: RepoPairSummary,
    thresholds: OfflineThresholds,
    now: datetime,
    instance_id: Optional[str] = None,
) -> InstanceState:
    """Project a repo summary onto the instance view used inside a family."""
    server = member.server
    registry = member.registry
    status = instance_status(server, thresholds, now)
    return InstanceState(
        service_id=instance_id or member.instance_id,
        repo_id=member.repo_id,
        status=status,
        repo_path=(server.path if server and server.path else None) or (registry.server_path if registry else None),
        node_id=(server.node_id if server else None) or (registry.server_node_id if registry else None),
        branch=server.branch if server else None,
        head=server.head if server else None,
        head_short=server.head_short if server else None,
        dirty=server.dirty if server else False,
        ahead=server.ahead if server else 0,
        behind=server.behind if server else 0,
        last_commit_message=server.last_commit_message if server else None,
        last_commit_time=server.last_commit_time if server else None,
        last_seen=server.last_seen if server else None,
        pm2_name=registry.pm2_name if registry else None,
    )


def instance_ids(members: Iterable[RepoPairSummary]) -> Dict[str, str]:
    """
    Map each member repo to a family-unique instance id.

    Members sharing a service id are told apart by their repo id.
    """
    members = list(members)
    shared = Counter(m.instance_id for m in members)
    ids = {}
    for member in members:
        if shared[member.instance_id] > 1:
            logger.warning(f"Service id {member.instance_id} is shared within its family; using repo id {member.repo_id}")
            ids[member.repo_id] = member.repo_id
        else:
            ids[member.repo_id] = member.instance_id
    return ids


def vote_desired_head(instances: Iterable[InstanceState]) -> Optional[str]:
    """
    Plurality head among online instances.

    Ties go to the head whose commit is oldest, so two instances updating at the
    same moment but reporting in a different order do not make the target flap.
    """
    online = [inst for inst in instances if inst.online and inst.head]
    if not online:
        return None

    votes = Counter(inst.head for inst in online)
    top = max(votes.values())
    tied = [head for head, count in votes.items() if count == top]
    if len(tied) == 1:
        return tied[0]

    def commit_time(head: str) -> datetime:
        times = [inst.last_commit_time for inst in online if inst.head == head and inst.last_commit_time]
        return min(times) if times else _LATEST

    return min(tied, key=lambda head: (commit_time(head), head))


def _rollup_state(online_count: int, out_of_sync: List[str], dirty: List[str]) -> SyncStatus:
    if online_count == 0:
        return SyncStatus.GRAY
    if not out_of_sync and not dirty:
        return SyncStatus.GREEN
    if len(out_of_sync) * 2 > online_count:
        # Most of the family disagrees with the quorum: more urgent than a straggler.
        return SyncStatus.RED
    return SyncStatus.ORANGE


def aggregate_family(
    members: List[RepoPairSummary],
    thresholds: OfflineThresholds,
    now: datetime,
    family_key: Optional[str] = None,
) -> FamilySummary:
    """
    Aggregate the members of one family into a rollup summary.

    Never raises for empty or all-offline input: zero online members yields a
    gray summary with no desired head.
    """
    if family_key is None:
        family_key = next((m.family.key for m in members if m.family), "unknown")

    ids = instance_ids(members)
    instances = sorted(
        (build_instance(member, thresholds, now, ids[member.repo_id]) for member in members),
        key=lambda inst: inst.service_id,
    )
    online = [inst for inst in instances if inst.online]
    desired_head = vote_desired_head(instances)

    out_of_sync: List[str] = []
    dirty: List[str] = []
    offline: List[str] = []
    for inst in instances:
        if not inst.online:
            offline.append(inst.service_id)
            continue
        if desired_head is not None and inst.head != desired_head:
            out_of_sync.append(inst.service_id)
        if inst.dirty:
            dirty.append(inst.service_id)

    state = _rollup_state(len(online), out_of_sync, dirty)

    reasons: List[SyncReason] = []
    if out_of_sync:
        reasons.append(SyncReason.HASH_MISMATCH)
    if dirty:
        reasons.append(SyncReason.SERVER_DIRTY)
    if offline:
        reasons.append(SyncReason.SERVER_OFFLINE)
    if not instances:
        reasons.append(SyncReason.SERVER_MISSING)

    problems = set(out_of_sync) | set(dirty) | set(offline)
    in_sync_count = sum(1 for inst in instances if inst.service_id not in problems)

    desired_branch = next(
        (inst.branch for inst in online if desired_head and inst.head == desired_head and inst.branch),
        None,
    )

    summary = FamilySummary(
        family_key=family_key,
        instances=instances,
        sync=FamilySyncBlock(
            state=state,
            reasons=reasons,
            in_sync_count=in_sync_count,
            out_of_sync_instances=out_of_sync,
            dirty_instances=dirty,
            offline_instances=offline,
        ),
        desired_head=desired_head,
        desired_branch=desired_branch,
        updated_at=now,
    )
    _apply_family_metadata(summary, members)

    logger.debug(
        f"Family {family_key}: {state.value}, desired={summary.desired_head_short}, "
        f"online={len(online)}/{len(instances)}, out_of_sync={out_of_sync}"
    )
    return summary


def _apply_family_metadata(summary: FamilySummary, members: List[RepoPairSummary]) -> None:
    registries = [m.registry for m in members if m.registry is not None]
    memberships = [m.family for m in members if m.family is not None]

    summary.family_source = (
        FamilySource.CONFIGURED
        if any(not membership.inferred for membership in memberships) or not memberships
        else FamilySource.INFERRED
    )
    summary.is_ai_team = any(m.group == RepoGroup.AI_TEAM for m in members)
    summary.instance_group = next(
        (r.instance_group for r in registries if r.instance_group),
        "ai-team" if summary.is_ai_team else "studio",
    )
    summary.auto_update = any(r.auto_update for r in registries)
    summary.notes = next((r.notes for r in registries if r.notes), None)
    summary.github_url = next((r.github_url for r in registries if r.github_url), None)

    family_display = next((m.display_name for m in memberships if m.display_name), None)
    if family_display:
        summary.display_name = family_display
    elif members:
        first = sorted(members, key=lambda m: m.repo_id)[0]
        summary.display_name = display_name_for(first.repo_id, None, first.family)
    else:
        summary.display_name = summary.family_key


def group_by_family(
    summaries: Iterable[RepoPairSummary],
) -> Tuple["OrderedDict[str, List[RepoPairSummary]]", List[RepoPairSummary]]:
    """Split repo summaries into family member lists and standalone repos."""
    families: Dict[str, List[RepoPairSummary]] = OrderedDict()
    singles: List[RepoPairSummary] = []
    for summary in sorted(summaries, key=lambda s: s.repo_id):
        if summary.family is None:
            singles.append(summary)
            continue
        families.setdefault(summary.family.key, []).append(summary)
    return families, singles


def aggregate_families(
    summaries: Iterable[RepoPairSummary],
    thresholds: OfflineThresholds,
    now: datetime,
) -> List[FamilySummary]:
    """Aggregate every family present in ``summaries``, most severe first."""
    families, _ = group_by_family(summaries)
    results = [
        aggregate_family(members, thresholds, now, family_key=key)
        for key, members in families.items()
    ]
    return sorted(results, key=lambda f: (f.sync.state.severity, f.family_key))
