"""
Tests for the approval workflow domain types.

Covers:
- ApprovalWorkflowDefinition stage layout validation and ordering
- REQUEST_TRANSITIONS state machine shape
- Actor role checks and RoleBasedRequestAuthority
- ApprovalRequest derived properties
- ContentVersion / VersionDiff helpers and DeterministicClock
"""

from dataclasses import FrozenInstanceError
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from content_kernel.domain.clock import DeterministicClock
from content_kernel.domain.versioning import (
    ContentVersion,
    LineChange,
    LineChangeKind,
    VersionDiff,
    revert_summary,
)
from content_kernel.domain.workflow import (
    REQUEST_TRANSITIONS,
    TERMINAL_STATUSES,
    Actor,
    ApprovalRequest,
    ApprovalStage,
    ApprovalStatus,
    ApprovalWorkflowDefinition,
    RoleBasedRequestAuthority,
)
from content_kernel.exceptions import MalformedWorkflowError


def _request(**overrides) -> ApprovalRequest:
    fields = dict(
        request_id=uuid4(),
        content_id=uuid4(),
        workflow_id=uuid4(),
        version_number=1,
        current_stage=1,
        submitted_by=uuid4(),
    )
    fields.update(overrides)
    return ApprovalRequest(**fields)


class TestWorkflowDefinitionLayout:

    def test_stages_sorted_by_number(self):
        definition = ApprovalWorkflowDefinition(
            campaign_id="c",
            name="w",
            stages=(
                ApprovalStage(2, approver_role="editor"),
                ApprovalStage(1, approver_role="creator"),
            ),
        )
        assert [s.stage_number for s in definition.stages] == [1, 2]
        assert definition.stage(1).approver_role == "creator"
        assert definition.stage_count == 2
        assert definition.is_last(2)
        assert not definition.is_last(1)

    def test_empty_stage_list_rejected(self):
        with pytest.raises(MalformedWorkflowError):
            ApprovalWorkflowDefinition(campaign_id="c", name="w", stages=())

    def test_duplicate_stage_numbers_rejected(self):
        with pytest.raises(MalformedWorkflowError, match="duplicate"):
            ApprovalWorkflowDefinition(
                campaign_id="c",
                name="w",
                stages=(
                    ApprovalStage(1, approver_role="a"),
                    ApprovalStage(1, approver_role="b"),
                ),
            )

    def test_gap_in_stage_numbers_rejected(self):
        with pytest.raises(MalformedWorkflowError, match="contiguous"):
            ApprovalWorkflowDefinition(
                campaign_id="c",
                name="w",
                stages=(
                    ApprovalStage(1, approver_role="a"),
                    ApprovalStage(3, approver_role="b"),
                ),
            )

    def test_numbering_must_start_at_one(self):
        with pytest.raises(MalformedWorkflowError):
            ApprovalWorkflowDefinition(
                campaign_id="c",
                name="w",
                stages=(ApprovalStage(0, approver_role="a"),),
            )

    def test_stage_needs_role_or_approver(self):
        with pytest.raises(MalformedWorkflowError, match="neither"):
            ApprovalWorkflowDefinition(
                campaign_id="c", name="w", stages=(ApprovalStage(1),),
            )

    def test_specific_approver_only_stage_is_valid(self):
        approver = uuid4()
        definition = ApprovalWorkflowDefinition(
            campaign_id="c", name="w", stages=(ApprovalStage(1, approver_id=approver),),
        )
        assert definition.stage(1).describe_slot() == f"approver {approver}"

    def test_definition_is_frozen(self, standard_definition):
        with pytest.raises(FrozenInstanceError):
            standard_definition.name = "renamed"


class TestRequestStateMachine:

    def test_pending_may_reach_every_status(self):
        assert REQUEST_TRANSITIONS[ApprovalStatus.PENDING] == frozenset(ApprovalStatus)

    @pytest.mark.parametrize("status", sorted(TERMINAL_STATUSES, key=lambda s: s.value))
    def test_terminal_statuses_have_no_exits(self, status):
        assert REQUEST_TRANSITIONS[status] == frozenset()

    def test_request_flags(self):
        assert _request().is_active
        rejected = _request(status=ApprovalStatus.REJECTED)
        assert rejected.is_terminal
        assert not rejected.is_active


class TestActorsAndAuthority:

    def test_has_role(self):
        actor = Actor(uuid4(), ("editor", "legal"))
        assert actor.has_role("legal")
        assert not actor.has_role("marketer")
        assert not actor.has_role(None)
        assert actor.primary_role == "editor"
        assert Actor(uuid4()).primary_role is None

    def test_submitter_may_cancel(self):
        submitter = uuid4()
        authority = RoleBasedRequestAuthority()
        request = _request(submitted_by=submitter)
        assert authority.can_cancel(Actor(submitter), request)
        assert authority.can_skip(Actor(submitter), request)

    def test_admin_role_may_cancel(self):
        authority = RoleBasedRequestAuthority(admin_roles=frozenset({"campaign_manager"}))
        assert authority.can_cancel(Actor(uuid4(), ("campaign_manager",)), _request())
        assert not authority.can_cancel(Actor(uuid4(), ("admin",)), _request())

    def test_other_actor_may_not_cancel(self):
        authority = RoleBasedRequestAuthority()
        assert not authority.can_cancel(Actor(uuid4(), ("editor",)), _request())


class TestVersionValueObjects:

    def test_body_elision_flag(self):
        version = ContentVersion(
            content_id=uuid4(),
            version_number=1,
            author_id=uuid4(),
            created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        )
        assert not version.has_body

    def test_diff_partitions(self):
        diff = VersionDiff(
            content_id=uuid4(),
            from_version=1,
            to_version=2,
            changes=(
                LineChange(LineChangeKind.REMOVED, 1, "old"),
                LineChange(LineChangeKind.ADDED, 1, "new"),
                LineChange(LineChangeKind.ADDED, 2, "extra"),
            ),
        )
        assert not diff.is_empty
        assert [c.text for c in diff.additions] == ["new", "extra"]
        assert [c.text for c in diff.deletions] == ["old"]

    def test_revert_summary(self):
        assert revert_summary(3) == "Reverted to version 3"


class TestDeterministicClock:

    def test_now_is_stable_until_advanced(self):
        clock = DeterministicClock()
        assert clock.now() == clock.now()
        start = clock.now()
        clock.advance(5)
        assert clock.now() - start == timedelta(seconds=5)

    def test_advance_days_and_tick(self):
        clock = DeterministicClock()
        start = clock.now()
        clock.advance_days(2)
        assert clock.tick() == start + timedelta(days=2, seconds=1)

    def test_set_time_resets_offset(self):
        clock = DeterministicClock()
        clock.advance(100)
        target = datetime(2025, 6, 1, tzinfo=timezone.utc)
        clock.set_time(target)
        assert clock.now() == target
