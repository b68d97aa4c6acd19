"""
Concurrency tests for version numbering and approval transitions.

Every thread uses its own ContentWorkflowCore, so the in-process keyed
lock is bypassed and the database alone must serialize the writers
(BEGIN IMMEDIATE on SQLite, row locks on PostgreSQL).

Covers:
- N concurrent appends to one content item yield exactly 1..N
- Concurrent submissions of one content item leave one pending request
- Concurrent approvals of the same stage advance it exactly once
- An approval without a stage number binds to the stage seen at call time
- One core's keyed lock serializes its own callers
"""

from concurrent.futures import ThreadPoolExecutor
from threading import Barrier, Event

import pytest

from content_kernel.domain.workflow import ApprovalActionKind, ApprovalStatus
from content_kernel.exceptions import (
    DuplicateActionError,
    DuplicateActiveRequestError,
    RequestTerminalError,
)
from tests.conftest import EDITOR_ID, double_edit_definition, three_stage_definition

pytestmark = pytest.mark.slow_locks

THREADS = 8


def _run_concurrently(tasks):
    """Start every task at once; return (results, errors) in task order."""
    barrier = Barrier(len(tasks))

    def _wrapped(task):
        barrier.wait()
        try:
            return task(), None
        except Exception as exc:
            return None, exc

    with ThreadPoolExecutor(max_workers=len(tasks)) as pool:
        outcomes = list(pool.map(_wrapped, tasks))
    return [r for r, _ in outcomes], [e for _, e in outcomes if e is not None]


class TestConcurrentAppends:

    def test_version_numbers_have_no_gaps_or_duplicates(self, make_core, new_content, creator):
        content_id = new_content()
        cores = [make_core() for _ in range(THREADS)]

        results, errors = _run_concurrently([
            (lambda c=c, i=i: c.append_version(content_id, f"edit {i}\n", creator))
            for i, c in enumerate(cores)
        ])

        assert errors == []
        numbers = sorted(v.version_number for v in results)
        assert numbers == list(range(2, THREADS + 2))
        listed = make_core().list_versions(content_id)
        assert [v.version_number for v in listed] == list(range(1, THREADS + 2))

    def test_single_core_serializes_callers(self, core, new_content, creator):
        content_id = new_content()

        results, errors = _run_concurrently([
            (lambda i=i: core.append_version(content_id, f"edit {i}\n", creator))
            for i in range(THREADS)
        ])

        assert errors == []
        assert sorted(v.version_number for v in results) == list(range(2, THREADS + 2))


class TestConcurrentSubmissions:

    def test_only_one_pending_request(self, make_core, new_content, creator):
        content_id = new_content()
        workflow = make_core().register_workflow(three_stage_definition())
        cores = [make_core() for _ in range(THREADS)]

        results, errors = _run_concurrently([
            (lambda c=c: c.submit_for_approval(content_id, 1, workflow.workflow_id, creator))
            for c in cores
        ])

        successes = [r for r in results if r is not None]
        assert len(successes) == 1
        assert len(errors) == THREADS - 1
        assert all(isinstance(e, DuplicateActiveRequestError) for e in errors)

        status = make_core().get_approval_status(content_id)
        assert status.request_id == successes[0].request_id


class TestConcurrentApprovals:

    def test_same_stage_advances_once(
        self, make_core, new_content, creator, editor, second_editor,
    ):
        setup = make_core()
        workflow = setup.register_workflow(three_stage_definition())
        content_id = new_content()
        request = setup.submit_for_approval(content_id, 1, workflow.workflow_id, creator)
        setup.record_approval_action(request.request_id, creator, "approve")

        approvers = [editor, second_editor] * (THREADS // 2)
        cores = [make_core() for _ in approvers]

        results, errors = _run_concurrently([
            (lambda c=c, a=a: c.record_approval_action(
                request.request_id, a, "approve", stage_number=2,
            ))
            for c, a in zip(cores, approvers)
        ])

        final = setup.get_approval_request(request.request_id)
        assert final.current_stage == 3
        assert final.status == ApprovalStatus.PENDING

        stage_two = [
            a for a in setup.list_approval_actions(request.request_id)
            if a.stage_number == 2
        ]
        assert len(stage_two) == 1
        assert stage_two[0].action == ApprovalActionKind.APPROVE

        # Losers either saw the stage already passed (no-op) or hit a
        # duplicate decision of their own.
        assert all(r is None or r.current_stage == 3 for r in results)
        assert all(isinstance(e, DuplicateActionError) for e in errors)

        stage_three_events = [
            e for e in setup.list_notify_events(request.request_id)
            if e.stage_number == 3
        ]
        assert len(stage_three_events) == 1

    def test_approve_and_cancel_race(self, make_core, new_content, creator, admin):
        setup = make_core()
        workflow = setup.register_workflow(three_stage_definition())
        content_id = new_content()
        request = setup.submit_for_approval(content_id, 1, workflow.workflow_id, creator)

        results, errors = _run_concurrently([
            lambda: make_core().record_approval_action(request.request_id, creator, "approve"),
            lambda: make_core().cancel_approval_request(request.request_id, admin),
        ])

        final = setup.get_approval_request(request.request_id)
        assert final.status == ApprovalStatus.CANCELLED
        if errors:
            # Cancel won; the approve found a terminal request.
            assert isinstance(errors[0], RequestTerminalError)
            assert final.current_stage == 1
        else:
            assert final.current_stage == 2

    def test_same_role_stages_without_stage_number(
        self, make_core, new_content, creator, editor, second_editor,
    ):
        setup = make_core()
        workflow = setup.register_workflow(double_edit_definition())
        content_id = new_content()
        request = setup.submit_for_approval(content_id, 1, workflow.workflow_id, creator)

        winner, loser = make_core(), make_core()
        stage_read = Event()
        winner_done = Event()
        read_stage = loser._current_stage

        def _read_then_wait(request_id):
            stage = read_stage(request_id)
            stage_read.set()
            winner_done.wait(timeout=10)
            return stage

        loser._current_stage = _read_then_wait

        def _win():
            stage_read.wait(timeout=10)
            try:
                return winner.record_approval_action(request.request_id, editor, "approve")
            finally:
                winner_done.set()

        results, errors = _run_concurrently([
            _win,
            lambda: loser.record_approval_action(request.request_id, second_editor, "approve"),
        ])

        assert errors == []
        assert [r.current_stage for r in results] == [2, 2]

        final = setup.get_approval_request(request.request_id)
        assert (final.status, final.current_stage) == (ApprovalStatus.PENDING, 2)
        actions = setup.list_approval_actions(request.request_id)
        assert [(a.stage_number, a.approver_id) for a in actions] == [(1, EDITOR_ID)]

    def test_same_role_stages_race_freely(
        self, make_core, new_content, creator, editor, second_editor,
    ):
        setup = make_core()
        workflow = setup.register_workflow(double_edit_definition())
        content_id = new_content()
        request = setup.submit_for_approval(content_id, 1, workflow.workflow_id, creator)

        results, errors = _run_concurrently([
            lambda: make_core().record_approval_action(request.request_id, editor, "approve"),
            lambda: make_core().record_approval_action(
                request.request_id, second_editor, "approve",
            ),
        ])

        assert errors == []
        final = setup.get_approval_request(request.request_id)
        actions = setup.list_approval_actions(request.request_id)
        # One approval per stage actually passed; never two for the same stage.
        assert [a.stage_number for a in actions] == list(range(1, final.current_stage))
        assert final.status == ApprovalStatus.PENDING
