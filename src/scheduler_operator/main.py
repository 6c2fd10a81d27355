from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager, suppress
from typing import Any

import kopf
from kubernetes import config
from prometheus_client import start_http_server

from . import logging as structured_logging
from .config import OperatorConfig
from .constants import (
    API_GROUP,
    API_GROUP_VERSION,
    CONTROLLER_ID,
    CRONJOB_PLURAL,
    LABEL_APP,
    SCHEDULER_KIND,
    SCHEDULER_PLURAL,
)
from .context import ReconcileContext
from .errors import ReconcileCancelled, StoreError
from .registry import build_default_registry
from .services.reconciler import ReconcileResult, SchedulerReconciler
from .store import KubernetesStore

CONFIG = OperatorConfig.from_env()


class KeyedLocks:
    """One lock per resource key so a resync never overlaps a change handler.

    Each key also counts the threads holding or waiting for its lock, and
    ``discard`` only forgets a key nobody is using. A recreated resource with
    the same name therefore never gets a second lock while a pass is running.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}
        self._users: dict[str, int] = {}

    def _lock_for(self, key: str) -> threading.Lock:
        # Caller holds the guard
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = threading.Lock()
        return lock

    def get(self, key: str) -> threading.Lock:
        with self._guard:
            return self._lock_for(key)

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        """Acquire the lock for ``key`` for the duration of the block."""
        with self._guard:
            lock = self._lock_for(key)
            self._users[key] = self._users.get(key, 0) + 1
        try:
            with lock:
                yield
        finally:
            with self._guard:
                self._users[key] -= 1
                if not self._users[key]:
                    del self._users[key]

    def discard(self, key: str) -> bool:
        """Forget the lock for ``key`` unless a thread holds or waits for it."""
        with self._guard:
            if self._users.get(key):
                return False
            self._locks.pop(key, None)
            return True

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


_locks = KeyedLocks()


def _load_kube_config() -> None:
    """Load in-cluster config, falling back to the local kubeconfig."""
    # Load cluster config if running in cluster; fallback to local for tests
    try:
        config.load_incluster_config()
    except config.ConfigException:
        try:
            config.load_kube_config()
        except config.ConfigException:
            structured_logging.logger.warning(
                "No Kubernetes configuration found",
                controller=SCHEDULER_KIND,
                event="startup",
                reason="KubeConfigMissing",
            )


@kopf.on.startup()
def configure(settings: kopf.OperatorSettings, memo: kopf.Memo, **_: Any) -> None:
    """Configure kopf, logging and metrics, and build the reconciler."""
    structured_logging.setup_structured_logging(CONFIG.log_level)

    # Keep kopf bookkeeping out of .status, which this operator compares and writes
    settings.persistence.progress_storage = kopf.AnnotationsProgressStorage(prefix=API_GROUP)
    settings.persistence.diffbase_storage = kopf.AnnotationsDiffBaseStorage(prefix=API_GROUP)
    settings.posting.level = 0
    settings.networking.request_timeout = CONFIG.request_timeout
    settings.execution.max_workers = CONFIG.max_workers

    if CONFIG.metrics_port:
        with suppress(Exception):
            start_http_server(CONFIG.metrics_port)

    _load_kube_config()

    registry = build_default_registry()
    memo.registry = registry
    memo.reconciler = SchedulerReconciler(
        KubernetesStore(registry, field_manager=CONFIG.field_manager),
        registry=registry,
        requeue_delay=CONFIG.requeue_delay,
    )
    structured_logging.logger.info(
        "Scheduler operator configured",
        controller=SCHEDULER_KIND,
        event="startup",
        reason="Configured",
        kinds=registry.kinds(),
        requeue_delay=CONFIG.requeue_delay,
        resync_interval=CONFIG.resync_interval,
    )


def run_reconcile(
    reconciler: SchedulerReconciler,
    namespace: str,
    name: str,
    *,
    stopped: Any = None,
    locks: KeyedLocks = _locks,
    operator_config: OperatorConfig = CONFIG,
) -> ReconcileResult:
    """Invoke one reconciliation pass and translate the outcome for kopf.

    Raises kopf.TemporaryError when the pass must be retried after a delay.
    """
    ctx = ReconcileContext(
        stopped=stopped,
        timeout=operator_config.reconcile_timeout or None,
        request_timeout=operator_config.request_timeout,
    )
    with locks.hold(f"{namespace}/{name}"):
        try:
            result = reconciler.reconcile(namespace, name, ctx)
        except (StoreError, ReconcileCancelled) as e:
            raise kopf.TemporaryError(str(e), delay=operator_config.requeue_delay) from e

    if result.requeue_after is not None:
        raise kopf.TemporaryError(
            f"{len(result.errors)} error(s) during reconciliation, first: {result.errors[0]}",
            delay=result.requeue_after,
        )
    return result


@kopf.on.create(API_GROUP_VERSION, SCHEDULER_PLURAL)
@kopf.on.update(API_GROUP_VERSION, SCHEDULER_PLURAL)
@kopf.on.resume(API_GROUP_VERSION, SCHEDULER_PLURAL)
def reconcile_scheduler(name: str, namespace: str, memo: kopf.Memo, **_: Any) -> None:
    """Reconcile a Scheduler when it is created, changed or resumed."""
    run_reconcile(memo.reconciler, namespace, name)


@kopf.timer(API_GROUP_VERSION, SCHEDULER_PLURAL, interval=CONFIG.resync_interval, idle=10)
def resync_scheduler(name: str, namespace: str, memo: kopf.Memo, stopped: Any, **_: Any) -> None:
    """Periodic pass that picks up CronJob execution-state changes."""
    run_reconcile(memo.reconciler, namespace, name, stopped=stopped)


@kopf.on.delete(API_GROUP_VERSION, SCHEDULER_PLURAL, optional=True)
def on_delete_scheduler(name: str, namespace: str, uid: str, **_: Any) -> None:
    """Forget per-Scheduler state once the resource is deleted."""
    # CronJobs carry an owner reference and are removed by cascade deletion
    _locks.discard(f"{namespace}/{name}")
    structured_logging.logger.info(
        "Scheduler deleted",
        controller=SCHEDULER_KIND,
        resource=f"{namespace}/{name}",
        uid=uid,
        event="delete",
        reason="Deleted",
    )


@kopf.on.event("batch", "v1", CRONJOB_PLURAL, labels={LABEL_APP: CONTROLLER_ID})
def handle_cronjob_event(event: dict[str, Any], memo: kopf.Memo, **_: Any) -> None:
    """Run a pass for the Scheduler controlling a changed or deleted CronJob."""
    cronjob = event.get("object") or {}
    metadata = cronjob.get("metadata") or {}
    namespace = metadata.get("namespace")
    owner = next(
        (
            ref
            for ref in metadata.get("ownerReferences") or []
            if ref.get("controller")
            and ref.get("kind") == SCHEDULER_KIND
            and ref.get("apiVersion") == API_GROUP_VERSION
        ),
        None,
    )
    if owner is None or not namespace:
        return

    try:
        run_reconcile(memo.reconciler, namespace, owner["name"])
    except kopf.TemporaryError as e:
        # Event handlers are not retried; the resync timer picks this up
        structured_logging.logger.warning(
            f"CronJob-triggered reconciliation deferred: {e}",
            controller=SCHEDULER_KIND,
            resource=f"{namespace}/{owner['name']}",
            uid=owner.get("uid"),
            child=metadata.get("name"),
            event="cronjob",
            reason="ReconcileDeferred",
        )
