"""
Tests for selectors: grouping, family inference, display names and filters.
"""

import pytest

from conftest import make_registry, make_state
from opsdrift.config.settings import DEFAULT_FAMILY_PATTERNS
from opsdrift.core.selectors import (
    STATE_VALUES,
    SummaryFilters,
    apply_filters,
    compile_family_patterns,
    count_by_state,
    detect_group,
    humanize_repo_name,
    parse_family_filters,
    parse_summary_filters,
    resolve_family,
    sort_by_severity,
)
from opsdrift.models.git_state import FamilySource, RepoGroup, RepoPairSummary, SyncBlock, SyncStatus
from opsdrift.utils.error_handling import FilterValidationError


def summary(repo_id, state=SyncStatus.GREEN, **registry_fields):
    registry = make_registry(repo_id, **registry_fields) if registry_fields else None
    return RepoPairSummary(repo_id=repo_id, sync=SyncBlock(state=state), registry=registry)


class TestGrouping:
    """Group detection and family membership."""

    def test_group_precedence(self):
        prefixes = ["ai-chad"]
        assert detect_group("ai-chad-5401", None, prefixes) == RepoGroup.AI_TEAM
        assert detect_group("billing", make_registry("billing", is_ai_team=True), prefixes) == RepoGroup.AI_TEAM
        assert detect_group("portal", make_registry("portal", project_slug="acme"), prefixes) == RepoGroup.PROJECT
        assert detect_group("dashboard", None, prefixes) == RepoGroup.STUDIO

    def test_configured_family_wins_over_pattern(self):
        patterns = compile_family_patterns(DEFAULT_FAMILY_PATTERNS)
        registry = make_registry("ai-chad-5401", family_key="chad-workers")

        membership = resolve_family("ai-chad-5401", registry, patterns)

        assert membership.key == "chad-workers"
        assert membership.source == FamilySource.CONFIGURED

    def test_pattern_family_is_inferred(self):
        patterns = compile_family_patterns(DEFAULT_FAMILY_PATTERNS)

        membership = resolve_family("ai-jen-5402", None, patterns)

        assert membership.key == "ai-jen"
        assert membership.inferred
        assert membership.display_name == "Jen"

    def test_no_family(self):
        patterns = compile_family_patterns([{"pattern": r"^ai-chad-\d+$", "family": "ai-chad"}])
        assert resolve_family("dashboard", None, patterns) is None

    @pytest.mark.parametrize("repo_id, expected", [
        ("ai-chad-5401", "Chad"),
        ("kodiack-dashboard-5500", "Kodiack Dashboard"),
        ("ops_tools", "Ops Tools"),
    ])
    def test_humanize(self, repo_id, expected):
        assert humanize_repo_name(repo_id) == expected


class TestFilters:
    """Query filter validation and application."""

    def test_unknown_state_rejected_with_allowed_values(self):
        with pytest.raises(FilterValidationError) as exc_info:
            parse_summary_filters(state="purple")

        assert exc_info.value.field == "state"
        assert exc_info.value.allowed == STATE_VALUES
        assert "green" in str(exc_info.value)

    def test_unknown_group_rejected(self):
        with pytest.raises(FilterValidationError):
            parse_summary_filters(group="everyone")

    def test_bad_active_only_rejected(self):
        with pytest.raises(FilterValidationError):
            parse_summary_filters(active_only="maybe")

    def test_family_group_values(self):
        assert parse_family_filters(group="studio-core").group == "studio-core"
        with pytest.raises(FilterValidationError):
            parse_family_filters(group="ai")

    def test_apply_filters(self):
        repos = [
            summary("a", SyncStatus.ORANGE, project_slug="acme"),
            summary("b", SyncStatus.GREEN, project_slug="acme"),
            summary("c", SyncStatus.ORANGE, is_active=False),
        ]

        filtered = apply_filters(repos, parse_summary_filters(state="orange"))
        assert [r.repo_id for r in filtered] == ["a"]

        everything = apply_filters(repos, SummaryFilters(active_only=False, state=SyncStatus.ORANGE))
        assert [r.repo_id for r in everything] == ["a", "c"]

        by_project = apply_filters(repos, parse_summary_filters(project_slug="acme", active_only="true"))
        assert [r.repo_id for r in by_project] == ["a", "b"]


class TestHelpers:
    def test_counts_include_every_state(self):
        counts = count_by_state([SyncStatus.RED, SyncStatus.RED, SyncStatus.GRAY])

        assert counts == {"total": 3, "green": 0, "yellow": 0, "orange": 0, "red": 2, "gray": 1}

    def test_sort_by_severity(self):
        repos = [summary("z", SyncStatus.GREEN), summary("b", SyncStatus.RED), summary("a", SyncStatus.RED)]

        assert [r.repo_id for r in sort_by_severity(repos)] == ["a", "b", "z"]

    def test_state_clamps_negative_counts(self):
        state = make_state(ahead=-3, behind=None)

        assert state.ahead == 0
        assert state.behind == 0
        assert state.head_short == state.head[:7]
