"""
End-to-end approval scenarios through ContentWorkflowCore.

Each operation runs in its own committed transaction, exactly as a caller
would use the core.

Covers:
- Happy path: creator -> editor -> marketer, notifications delivered in order
- Rejection with feedback, then resubmission of a newer version
- Stale pin: a version appended mid-review notifies but never fails the request
- Version history: diff, revert, purge through the core
- Notification gateway failures never affect operation outcomes
"""

from datetime import timedelta
from uuid import uuid4

import pytest

from content_kernel.domain.versioning import LineChangeKind
from content_kernel.domain.workflow import ApprovalActionKind, ApprovalStatus
from content_kernel.exceptions import (
    CancellationNotPermittedError,
    RequestTerminalError,
    StageNotReachedError,
)
from tests.conftest import (
    CREATOR_ID,
    EDITOR_ID,
    MARKETER_ID,
    SCHEDULER_ID,
    SECOND_EDITOR_ID,
    optional_legal_definition,
    three_stage_definition,
)


@pytest.fixture
def workflow(core):
    return core.register_workflow(three_stage_definition())


class TestHappyPath:

    def test_three_stage_approval(
        self, core, gateway, workflow, new_content, creator, editor, marketer,
        deterministic_clock,
    ):
        content_id = new_content()
        request = core.submit_for_approval(content_id, 1, workflow.workflow_id, creator)
        assert (request.status, request.current_stage) == (ApprovalStatus.PENDING, 1)

        deterministic_clock.advance(60)
        assert core.record_approval_action(
            request.request_id, creator, "approve",
        ).current_stage == 2

        deterministic_clock.advance(60)
        assert core.record_approval_action(
            request.request_id, editor, ApprovalActionKind.APPROVE,
        ).current_stage == 3

        deterministic_clock.advance(60)
        final = core.record_approval_action(request.request_id, marketer, "approve")
        assert final.status == ApprovalStatus.APPROVED
        assert final.resolved_at == deterministic_clock.now()

        actions = core.list_approval_actions(request.request_id)
        assert [(a.stage_number, a.approver_id) for a in actions] == [
            (1, CREATOR_ID), (2, EDITOR_ID), (3, MARKETER_ID),
        ]

        assert gateway.kinds() == [
            "approval_requested",
            "approval_requested",
            "approval_requested",
            "approval_requested",
            "approved",
        ]
        assert [e.recipient_id for e in gateway.published] == [
            CREATOR_ID, EDITOR_ID, SECOND_EDITOR_ID, MARKETER_ID, CREATOR_ID,
        ]
        sequences = [e.sequence for e in gateway.published]
        assert sequences == sorted(sequences)

        status = core.get_approval_status(content_id)
        assert status.request_id == request.request_id
        assert status.status == ApprovalStatus.APPROVED

    def test_skipping_ahead_is_refused(self, core, workflow, new_content, creator, editor):
        content_id = new_content()
        request = core.submit_for_approval(content_id, 1, workflow.workflow_id, creator)
        with pytest.raises(StageNotReachedError):
            core.record_approval_action(request.request_id, editor, "approve", stage_number=2)
        assert core.get_approval_request(request.request_id).current_stage == 1

    def test_operations_share_correlation_id(
        self, core, workflow, new_content, creator, captured_logs,
    ):
        content_id = new_content()
        core.submit_for_approval(content_id, 1, workflow.workflow_id, creator)

        submitted = [r for r in captured_logs() if r["message"] == "approval_submitted"][-1]
        assert submitted["operation"] == "submit_for_approval"
        same_op = [
            r for r in captured_logs()
            if r.get("correlation_id") == submitted["correlation_id"]
        ]
        assert {"approval_submitted", "notify_events_enqueued"} <= {
            r["message"] for r in same_op
        }


class TestRejectAndResubmit:

    def test_rejection_then_new_version_resubmitted(
        self, core, gateway, workflow, new_content, creator, editor, deterministic_clock,
    ):
        content_id = new_content("Launch copy v1\n")
        first = core.submit_for_approval(content_id, 1, workflow.workflow_id, creator)
        core.record_approval_action(first.request_id, creator, "approve")

        rejected = core.record_approval_action(
            first.request_id, editor, "reject", feedback="Tone is off for this audience",
        )
        assert rejected.status == ApprovalStatus.REJECTED
        assert rejected.current_stage == 2

        rejection = gateway.published[-1]
        assert rejection.kind.value == "rejected"
        assert rejection.recipient_id == CREATOR_ID
        assert rejection.feedback == "Tone is off for this audience"

        with pytest.raises(RequestTerminalError):
            core.record_approval_action(first.request_id, editor, "approve")

        deterministic_clock.advance(3600)
        v2 = core.append_version(content_id, "Launch copy v2\n", creator, summary="tone fix")
        second = core.submit_for_approval(
            content_id, v2.version_number, workflow.workflow_id, creator,
        )
        assert second.request_id != first.request_id
        assert second.current_stage == 1
        assert not second.is_stale

        # The rejected request's history is untouched.
        history = core.list_approval_actions(first.request_id)
        assert [a.action for a in history] == [
            ApprovalActionKind.APPROVE, ApprovalActionKind.REJECT,
        ]


class TestStalePin:

    def test_new_version_mid_review(
        self, core, gateway, workflow, new_content, creator, editor, marketer,
    ):
        content_id = new_content()
        request = core.submit_for_approval(content_id, 1, workflow.workflow_id, creator)
        core.record_approval_action(request.request_id, creator, "approve")

        core.append_version(content_id, "Edited during review\n", creator)

        status = core.get_approval_status(content_id)
        assert status.status == ApprovalStatus.PENDING
        assert status.version_number == 1
        assert status.latest_version_number == 2
        assert status.is_stale

        superseded = [e for e in gateway.published if e.kind.value == "version_superseded"]
        assert {e.recipient_id for e in superseded} == {EDITOR_ID, SECOND_EDITOR_ID}
        assert all(e.version_number == 2 for e in superseded)

        # Approval continues against the pinned version.
        core.record_approval_action(request.request_id, editor, "approve")
        final = core.record_approval_action(request.request_id, marketer, "approve")
        assert final.status == ApprovalStatus.APPROVED
        assert final.version_number == 1
        assert final.is_stale

    def test_revert_also_notifies(self, core, gateway, workflow, new_content, creator):
        content_id = new_content()
        core.append_version(content_id, "second\n", creator)
        core.submit_for_approval(content_id, 2, workflow.workflow_id, creator)

        reverted = core.revert_to_version(content_id, 1, creator)

        assert reverted.version_number == 3
        assert gateway.kinds()[-1] == "version_superseded"
        assert core.get_approval_status(content_id).is_stale


class TestCancelAndSkip:

    def test_cancel_rules(self, core, workflow, new_content, creator, editor, admin):
        content_id = new_content()
        request = core.submit_for_approval(content_id, 1, workflow.workflow_id, creator)

        with pytest.raises(CancellationNotPermittedError):
            core.cancel_approval_request(request.request_id, editor)

        cancelled = core.cancel_approval_request(request.request_id, admin)
        assert cancelled.status == ApprovalStatus.CANCELLED
        with pytest.raises(RequestTerminalError):
            core.cancel_approval_request(request.request_id, creator)

    def test_scheduler_skips_overdue_optional_stage(
        self, core, new_content, creator, editor, marketer, deterministic_clock,
    ):
        workflow = core.register_workflow(optional_legal_definition())
        content_id = new_content()
        request = core.submit_for_approval(content_id, 1, workflow.workflow_id, creator)
        core.record_approval_action(request.request_id, editor, "approve")

        deterministic_clock.advance_days(3)
        skipped = core.skip_overdue_optional_stages(
            deterministic_clock.now(), timedelta(days=2), SCHEDULER_ID,
        )
        assert [r.request_id for r in skipped] == [request.request_id]

        skip_action = core.list_approval_actions(request.request_id)[-1]
        assert skip_action.action == ApprovalActionKind.SKIP
        assert skip_action.approver_id == SCHEDULER_ID
        assert skip_action.approver_role == "scheduler"

        final = core.record_approval_action(request.request_id, marketer, "approve")
        assert final.status == ApprovalStatus.APPROVED


class TestVersionHistory:

    def test_diff_and_revert(self, core, new_content, creator):
        content_id = new_content("title\nbody\nfooter\n")
        core.append_version(content_id, "title\nnew body\nfooter\n", creator)

        diff = core.diff_versions(content_id, 1, 2)
        kinds = [c.kind for c in diff.changes]
        assert LineChangeKind.REMOVED in kinds
        assert LineChangeKind.ADDED in kinds
        assert core.diff_versions(content_id, 2, 2).changes == ()

        core.revert_to_version(content_id, 1, creator)
        assert core.get_version(content_id, 3).body == "title\nbody\nfooter\n"
        assert [v.version_number for v in core.list_versions(content_id)] == [1, 2, 3]

    def test_purge_uses_configured_retention(
        self, core, new_content, creator, deterministic_clock,
    ):
        content_id = new_content()
        core.append_version(content_id, "v2\n", creator)
        deterministic_clock.advance_days(core.settings.retention_days + 1)

        assert core.purge_expired_versions() == 1
        assert [v.version_number for v in core.list_versions(content_id)] == [2]


class TestNotificationFailures:

    def test_gateway_outage_does_not_fail_operations(
        self, core, gateway, workflow, new_content, creator, captured_logs,
    ):
        gateway.fail_times = 100
        content_id = new_content()
        request = core.submit_for_approval(content_id, 1, workflow.workflow_id, creator)
        assert request.is_active
        assert gateway.published == []
        assert any(
            r["message"] == "notification_delivery_failed" for r in captured_logs()
        )

        gateway.fail_times = 0
        core.relay_notifications()
        assert gateway.kinds() == ["approval_requested"]

    def test_core_without_gateway(self, make_core, new_content, creator):
        quiet = make_core()
        workflow = quiet.register_workflow(three_stage_definition(campaign_id=str(uuid4())))
        content_id = new_content()
        request = quiet.submit_for_approval(content_id, 1, workflow.workflow_id, creator)

        assert quiet.relay_notifications().dispatched == 0
        assert quiet.notification_status_counts() == {"pending": 1}
        assert len(quiet.list_notify_events(request.request_id)) == 1
