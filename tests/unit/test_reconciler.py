"""Unit tests for a full Scheduler reconciliation pass."""

from __future__ import annotations

import threading
from datetime import UTC, datetime

import pytest

from conftest import entry
from scheduler_operator.builders.cronjob_builder import build_cronjob
from scheduler_operator.context import ReconcileContext
from scheduler_operator.errors import ConflictError, ReconcileCancelled, StoreError
from scheduler_operator.models import ScheduleEntry, Scheduler
from scheduler_operator.registry import ResourceRegistry
from scheduler_operator.services.reconciler import SchedulerReconciler


def _ready(store, name="nightly"):
    conditions = store.scheduler_status(name)["conditions"]
    return next(c for c in conditions if c["type"] == "Ready")


def _image(store, name):
    return store.child(name)["spec"]["jobTemplate"]["spec"]["template"]["spec"]["containers"][0][
        "image"
    ]


class TestReconcile:
    def test_creates_one_child_per_entry_and_reports_ready(self, store, reconciler):
        """A fresh Scheduler gets one CronJob per entry and a Ready=True status."""
        store.add_scheduler("nightly", [entry("a"), entry("b"), entry("c")], generation=4)

        result = reconciler.reconcile("default", "nightly")

        assert result.ok
        assert result.requeue_after is None
        assert result.status_written is True
        assert store.child_names() == ["nightly-a", "nightly-b", "nightly-c"]
        status = store.scheduler_status("nightly")
        assert status["observedGeneration"] == 4
        assert status["active"] == []
        ready = _ready(store)
        assert ready["status"] == "True"
        assert ready["message"] == "All 3 schedule(s) reconciled"
        assert ready["lastTransitionTime"] == "2025-01-01T12:00:00Z"

    def test_second_pass_writes_nothing(self, store, reconciler):
        store.add_scheduler("nightly", [entry("a"), entry("b")])
        reconciler.reconcile("default", "nightly")
        store.writes.clear()

        result = reconciler.reconcile("default", "nightly")

        assert result.ok
        assert result.status_written is False
        assert store.writes == []

    def test_changed_entry_updates_only_that_child(self, store, reconciler):
        store.add_scheduler("nightly", [entry("a"), entry("b")])
        reconciler.reconcile("default", "nightly")
        uid_before = store.child("nightly-a")["metadata"]["uid"]
        store.writes.clear()

        store.set_schedules("nightly", [entry("a", image="busybox:1.37"), entry("b")])
        reconciler.reconcile("default", "nightly")

        assert ("update", "nightly-a") in store.writes
        assert not any(op == "create" or name == "nightly-b" for op, name in store.writes)
        assert _image(store, "nightly-a") == "busybox:1.37"
        assert store.child("nightly-a")["metadata"]["uid"] == uid_before
        assert store.scheduler_status("nightly")["observedGeneration"] == 2

    def test_removed_entry_child_is_deleted(self, store, reconciler):
        store.add_scheduler("nightly", [entry("a"), entry("b")])
        reconciler.reconcile("default", "nightly")

        store.set_schedules("nightly", [entry("a")])
        result = reconciler.reconcile("default", "nightly")

        assert result.ok
        assert store.child_names() == ["nightly-a"]
        assert _ready(store)["message"] == "All 1 schedule(s) reconciled"

    def test_empty_schedule_list_removes_all_children(self, store, reconciler):
        store.add_scheduler("nightly", [entry("a"), entry("b")])
        reconciler.reconcile("default", "nightly")

        store.set_schedules("nightly", [])
        reconciler.reconcile("default", "nightly")

        assert store.child_names() == []
        assert _ready(store)["status"] == "True"

    def test_labeled_child_of_another_owner_survives(self, store, reconciler):
        """Label collisions are not enough to delete or report a CronJob."""
        store.add_scheduler("nightly", [entry("a")])
        previous = Scheduler.from_dict(
            {"metadata": {"name": "nightly", "namespace": "default", "uid": "uid-previous"}}
        )
        store.put_child(build_cronjob(previous, ScheduleEntry(name="legacy", image="x")))
        store.set_child_status("nightly-legacy", {"active": [{"name": "nightly-legacy-1"}]})

        result = reconciler.reconcile("default", "nightly")

        assert result.ok
        assert store.child_names() == ["nightly-a", "nightly-legacy"]
        assert store.scheduler_status("nightly")["active"] == []

    def test_partial_failure_is_reported_and_requeued(self, store, reconciler):
        store.add_scheduler("nightly", [entry("a"), entry("b"), entry("c")])
        store.fail_on("create", "nightly-b")

        result = reconciler.reconcile("default", "nightly")

        assert not result.ok
        assert result.requeue_after == 30.0
        assert store.child_names() == ["nightly-a", "nightly-c"]
        ready = _ready(store)
        assert ready["status"] == "False"
        assert ready["reason"] == "ReconcileError"
        assert ready["message"].startswith("1 error(s) during reconciliation: create nightly-b")

    def test_recovery_flips_ready_and_moves_transition_time(self, store, registry):
        moments = iter(
            [datetime(2025, 1, 1, 12, 0, tzinfo=UTC), datetime(2025, 1, 1, 12, 5, tzinfo=UTC)]
        )
        reconciler = SchedulerReconciler(store, registry=registry, clock=lambda: next(moments))
        store.add_scheduler("nightly", [entry("a")])
        store.fail_on("create", "nightly-a")
        reconciler.reconcile("default", "nightly")
        assert _ready(store)["status"] == "False"

        store.failures.clear()
        reconciler.reconcile("default", "nightly")

        ready = _ready(store)
        assert ready["status"] == "True"
        assert ready["lastTransitionTime"] == "2025-01-01T12:05:00Z"

    def test_running_children_are_listed_as_active(self, store, reconciler):
        store.add_scheduler("nightly", [entry("b"), entry("a"), entry("c")])
        reconciler.reconcile("default", "nightly")
        store.set_child_status(
            "nightly-b",
            {"active": [{"name": "nightly-b-1"}], "lastScheduleTime": "2025-01-01T11:55:00Z"},
        )
        store.set_child_status("nightly-a", {"active": [{"name": "nightly-a-1"}]})
        store.set_child_status(
            "nightly-c",
            {
                "lastScheduleTime": "2025-01-01T11:00:00Z",
                "lastSuccessfulTime": "2025-01-01T11:00:30Z",
            },
        )

        reconciler.reconcile("default", "nightly")

        status = store.scheduler_status("nightly")
        assert [ref["name"] for ref in status["active"]] == ["nightly-a", "nightly-b"]
        assert status["lastScheduleTime"] == "2025-01-01T11:55:00Z"

        store.writes.clear()
        reconciler.reconcile("default", "nightly")
        assert store.writes == []

    def test_foreign_status_fields_are_preserved(self, store, reconciler):
        store.add_scheduler("nightly", [entry("a")], status={"note": "kept"})

        reconciler.reconcile("default", "nightly")

        assert store.scheduler_status("nightly")["note"] == "kept"

    def test_missing_scheduler_is_a_no_op(self, store, reconciler):
        result = reconciler.reconcile("default", "absent")

        assert result.found is False
        assert result.ok
        assert store.writes == []

    def test_deleting_scheduler_is_left_alone(self, store, reconciler):
        body = store.add_scheduler("nightly", [entry("a")])
        body["metadata"]["deletionTimestamp"] = "2025-01-01T11:59:00Z"

        result = reconciler.reconcile("default", "nightly")

        assert result.ok
        assert store.writes == []

    def test_fetch_failure_is_raised(self, store, reconciler):
        store.add_scheduler("nightly", [entry("a")])
        store.fail_on("get_scheduler", "nightly")

        with pytest.raises(StoreError):
            reconciler.reconcile("default", "nightly")
        assert store.writes == []

    def test_status_conflict_is_raised(self, store, reconciler):
        store.add_scheduler("nightly", [entry("a")])
        store.fail_on("update_status", "nightly", ConflictError("modified", status=409))

        with pytest.raises(ConflictError):
            reconciler.reconcile("default", "nightly")
        # Children were still reconciled before the status write
        assert store.child_names() == ["nightly-a"]

    def test_cancellation_skips_status_write(self, store, reconciler, monkeypatch):
        store.add_scheduler("nightly", [entry("a"), entry("b")])
        stopped = threading.Event()
        original_create = store.create_child

        def create_child(obj, *, ctx):
            created = original_create(obj, ctx=ctx)
            stopped.set()
            return created

        monkeypatch.setattr(store, "create_child", create_child)

        with pytest.raises(ReconcileCancelled):
            reconciler.reconcile("default", "nightly", ReconcileContext(stopped=stopped))

        assert store.child_names() == ["nightly-a"]
        assert ("update_status", "nightly") not in store.writes

    def test_list_failure_keeps_previous_active(self, store, reconciler):
        previous_active = [{"name": "nightly-a", "namespace": "default"}]
        store.add_scheduler(
            "nightly",
            [entry("a")],
            status={"active": previous_active, "lastScheduleTime": "2024-12-31T00:00:00Z"},
        )
        store.fail_on("list", "default")

        result = reconciler.reconcile("default", "nightly")

        assert [e.operation for e in result.errors] == ["list", "list"]
        status = store.scheduler_status("nightly")
        assert status["active"] == previous_active
        assert status["lastScheduleTime"] == "2024-12-31T00:00:00Z"
        assert _ready(store)["message"].endswith("(and 1 more)")


def test_reconciler_requires_both_kinds(store):
    with pytest.raises(ValueError, match="Scheduler"):
        SchedulerReconciler(store, registry=ResourceRegistry())
