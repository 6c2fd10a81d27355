"""Shared fixtures: an in-memory store that behaves like the Kubernetes API."""

from __future__ import annotations

import copy
from datetime import UTC, datetime
from typing import Any

import pytest

from scheduler_operator.context import ReconcileContext
from scheduler_operator.errors import (
    AlreadyExistsError,
    ConflictError,
    NotFoundError,
    StoreError,
)
from scheduler_operator.models import Scheduler
from scheduler_operator.registry import build_default_registry
from scheduler_operator.services.reconciler import SchedulerReconciler

FIXED_NOW = datetime(2025, 1, 1, 12, 0, 0, tzinfo=UTC)


def _matches(labels: dict[str, str], selector: str) -> bool:
    for term in selector.split(","):
        key, _, value = term.partition("=")
        if labels.get(key) != value:
            return False
    return True


class FakeStore:
    """In-memory store implementing the Store contract.

    Records every write in ``writes`` as ``(operation, name)`` and applies a
    couple of server-side defaults to created CronJobs, like the API server does.
    """

    def __init__(self) -> None:
        self.schedulers: dict[tuple[str, str], dict[str, Any]] = {}
        self.children: dict[tuple[str, str], dict[str, Any]] = {}
        self.writes: list[tuple[str, str]] = []
        self.events: list[dict[str, str]] = []
        self.failures: dict[tuple[str, str], Exception] = {}
        self._counter = 0

    def _next(self) -> str:
        self._counter += 1
        return str(self._counter)

    def fail_on(self, operation: str, name: str, error: Exception | None = None) -> None:
        self.failures[(operation, name)] = error or StoreError(f"{operation} {name} failed")

    def _maybe_fail(self, operation: str, name: str) -> None:
        error = self.failures.get((operation, name))
        if error is not None:
            raise error

    # Test helpers

    def add_scheduler(
        self,
        name: str,
        schedules: list[dict[str, Any]],
        *,
        namespace: str = "default",
        uid: str | None = None,
        generation: int = 1,
        status: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        body = {
            "apiVersion": "scheduling.deesup.com/v1",
            "kind": "Scheduler",
            "metadata": {
                "name": name,
                "namespace": namespace,
                "uid": uid or f"uid-{name}",
                "generation": generation,
                "resourceVersion": self._next(),
            },
            "spec": {"schedules": copy.deepcopy(schedules)},
        }
        if status is not None:
            body["status"] = copy.deepcopy(status)
        self.schedulers[(namespace, name)] = body
        return body

    def set_schedules(
        self, name: str, schedules: list[dict[str, Any]], *, namespace: str = "default"
    ) -> None:
        body = self.schedulers[(namespace, name)]
        body["spec"]["schedules"] = copy.deepcopy(schedules)
        body["metadata"]["generation"] += 1
        body["metadata"]["resourceVersion"] = self._next()

    def scheduler_status(self, name: str, *, namespace: str = "default") -> dict[str, Any]:
        return self.schedulers[(namespace, name)].get("status") or {}

    def put_child(self, obj: dict[str, Any]) -> dict[str, Any]:
        stored = copy.deepcopy(obj)
        metadata = stored["metadata"]
        metadata.setdefault("uid", f"uid-{metadata['name']}")
        metadata["resourceVersion"] = self._next()
        stored.setdefault("status", {})
        self.children[(metadata["namespace"], metadata["name"])] = stored
        return stored

    def set_child_status(
        self, name: str, status: dict[str, Any], *, namespace: str = "default"
    ) -> None:
        self.children[(namespace, name)]["status"] = copy.deepcopy(status)

    def child_names(self, namespace: str = "default") -> list[str]:
        return sorted(name for ns, name in self.children if ns == namespace)

    def child(self, name: str, namespace: str = "default") -> dict[str, Any]:
        return self.children[(namespace, name)]

    # Store contract

    def get_scheduler(self, namespace: str, name: str, *, ctx: ReconcileContext) -> Scheduler:
        ctx.check()
        self._maybe_fail("get_scheduler", name)
        body = self.schedulers.get((namespace, name))
        if body is None:
            raise NotFoundError(f"scheduler {namespace}/{name} not found", status=404)
        return Scheduler.from_dict(copy.deepcopy(body))

    def list_schedulers(self, namespace: str, *, ctx: ReconcileContext) -> list[Scheduler]:
        ctx.check()
        return [
            Scheduler.from_dict(copy.deepcopy(body))
            for (ns, _), body in sorted(self.schedulers.items())
            if ns == namespace
        ]

    def get_child(self, namespace: str, name: str, *, ctx: ReconcileContext) -> dict[str, Any]:
        ctx.check()
        self._maybe_fail("get", name)
        obj = self.children.get((namespace, name))
        if obj is None:
            raise NotFoundError(f"cronjob {namespace}/{name} not found", status=404)
        return copy.deepcopy(obj)

    def list_children(
        self, namespace: str, label_selector: str, *, ctx: ReconcileContext
    ) -> list[dict[str, Any]]:
        ctx.check()
        self._maybe_fail("list", namespace)
        return [
            copy.deepcopy(obj)
            for (ns, _), obj in sorted(self.children.items())
            if ns == namespace and _matches(obj["metadata"].get("labels") or {}, label_selector)
        ]

    def create_child(self, obj: dict[str, Any], *, ctx: ReconcileContext) -> dict[str, Any]:
        ctx.check()
        name = obj["metadata"]["name"]
        self._maybe_fail("create", name)
        if (obj["metadata"]["namespace"], name) in self.children:
            raise AlreadyExistsError(f"cronjob {name} already exists", status=409)
        stored = copy.deepcopy(obj)
        # Server-side defaults the controller never sets
        stored["spec"].setdefault("concurrencyPolicy", "Allow")
        stored["spec"].setdefault("suspend", False)
        stored["spec"].setdefault("successfulJobsHistoryLimit", 3)
        stored = self.put_child(stored)
        self.writes.append(("create", name))
        return copy.deepcopy(stored)

    def update_child(self, obj: dict[str, Any], *, ctx: ReconcileContext) -> dict[str, Any]:
        ctx.check()
        metadata = obj["metadata"]
        name = metadata["name"]
        self._maybe_fail("update", name)
        current = self.children.get((metadata["namespace"], name))
        if current is None:
            raise NotFoundError(f"cronjob {name} not found", status=404)
        if metadata.get("resourceVersion") != current["metadata"]["resourceVersion"]:
            raise ConflictError(f"cronjob {name} was modified", status=409)
        stored = copy.deepcopy(obj)
        stored["status"] = current.get("status") or {}
        stored = self.put_child(stored)
        self.writes.append(("update", name))
        return copy.deepcopy(stored)

    def delete_child(self, namespace: str, name: str, *, ctx: ReconcileContext) -> None:
        ctx.check()
        self._maybe_fail("delete", name)
        if self.children.pop((namespace, name), None) is None:
            raise NotFoundError(f"cronjob {name} not found", status=404)
        self.writes.append(("delete", name))

    def update_scheduler_status(
        self, scheduler: Scheduler, status: dict[str, Any], *, ctx: ReconcileContext
    ) -> None:
        ctx.check()
        self._maybe_fail("update_status", scheduler.name)
        body = self.schedulers.get((scheduler.namespace, scheduler.name))
        if body is None:
            raise NotFoundError(f"scheduler {scheduler.key} not found", status=404)
        if scheduler.resource_version != body["metadata"]["resourceVersion"]:
            raise ConflictError(f"scheduler {scheduler.key} was modified", status=409)
        body["status"] = copy.deepcopy(status)
        body["metadata"]["resourceVersion"] = self._next()
        self.writes.append(("update_status", scheduler.name))

    def emit_event(
        self,
        scheduler: Scheduler,
        *,
        reason: str,
        message: str,
        type_: str = "Normal",
        ctx: ReconcileContext,
    ) -> None:
        if ctx.cancelled:
            return
        self.events.append({"reason": reason, "message": message, "type": type_})


def entry(name: str, image: str = "busybox:1.36", cron: str = "*/5 * * * *", **extra: Any):
    data: dict[str, Any] = {"name": name, "image": image, "cronExpression": cron}
    data.update(extra)
    return data


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def ctx() -> ReconcileContext:
    return ReconcileContext()


@pytest.fixture
def registry():
    return build_default_registry()


@pytest.fixture
def reconciler(store: FakeStore, registry) -> SchedulerReconciler:
    return SchedulerReconciler(store, registry=registry, clock=lambda: FIXED_NOW)
