"""Reconciliation pass for one Scheduler: sync, cleanup, status, persist."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from time import monotonic
from typing import Any, Callable

from .. import metrics
from ..builders.cronjob_builder import child_label_selector
from ..constants import CRONJOB_KIND, DEFAULT_REQUEUE_DELAY, SCHEDULER_KIND, STATUS_FIELDS
from ..context import ReconcileContext
from ..errors import ChildError, NotFoundError, ReconcileCancelled, StoreError
from ..logging import logger
from ..models import Scheduler
from ..registry import ResourceRegistry
from ..store import Store
from ..utils.ownership import is_owned_by
from ..utils.timestamps import utcnow
from .garbage_collector import OrphanCollector
from .status import StatusAggregator, owned_status
from .synchronizer import DesiredStateSynchronizer


@dataclass
class ReconcileResult:
    """What the trigger layer should do next.

    ``requeue_after`` is None when nothing is needed until the next trigger.
    """

    requeue_after: float | None = None
    errors: list[ChildError] = field(default_factory=list)
    status_written: bool = False
    found: bool = True

    @property
    def ok(self) -> bool:
        return not self.errors


class SchedulerReconciler:
    """Runs reconciliation passes for Scheduler resources against a store."""

    def __init__(
        self,
        store: Store,
        *,
        registry: ResourceRegistry,
        requeue_delay: float = DEFAULT_REQUEUE_DELAY,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        for kind in (SCHEDULER_KIND, CRONJOB_KIND):
            if kind not in registry:
                raise ValueError(f"resource registry has no entry for {kind}")
        self._store = store
        self._registry = registry
        self._requeue_delay = requeue_delay
        self._synchronizer = DesiredStateSynchronizer(store)
        self._collector = OrphanCollector(store)
        self._aggregator = StatusAggregator(clock)

    @property
    def registry(self) -> ResourceRegistry:
        return self._registry

    def reconcile(
        self, namespace: str, name: str, ctx: ReconcileContext | None = None
    ) -> ReconcileResult:
        """Run one reconciliation pass for the Scheduler ``namespace/name``.

        Raises:
            StoreError: fetching the Scheduler or writing its status failed (retryable)
            ReconcileCancelled: the context was cancelled; status is not written
        """
        ctx = ctx or ReconcileContext()
        resource = f"{namespace}/{name}"
        kind = self._registry.get(SCHEDULER_KIND).kind
        started_at = monotonic()
        try:
            logger.info(
                "Starting scheduler reconciliation",
                controller=kind,
                resource=resource,
                event="reconcile",
                reason="ReconcileStarted",
            )
            try:
                scheduler = self._store.get_scheduler(namespace, name, ctx=ctx)
            except NotFoundError:
                logger.info(
                    "Scheduler not found; nothing to reconcile",
                    controller=kind,
                    resource=resource,
                    event="reconcile",
                    reason="NotFound",
                )
                metrics.RECONCILE_TOTAL.labels(kind=kind, result="not_found").inc()
                return ReconcileResult(found=False)

            if scheduler.deletion_timestamp:
                logger.info(
                    "Scheduler is being deleted; owned CronJobs are removed by cascade",
                    controller=kind,
                    resource=resource,
                    uid=scheduler.uid,
                    event="reconcile",
                    reason="Deleting",
                )
                metrics.RECONCILE_TOTAL.labels(kind=kind, result="deleting").inc()
                return ReconcileResult()

            result = self._reconcile(scheduler, ctx)
            metrics.RECONCILE_TOTAL.labels(
                kind=kind, result="success" if result.ok else "partial"
            ).inc()
            return result
        except ReconcileCancelled as e:
            logger.warning(
                f"Scheduler reconciliation cancelled: {e}",
                controller=kind,
                resource=resource,
                event="reconcile",
                reason="ReconcileCancelled",
            )
            metrics.RECONCILE_TOTAL.labels(kind=kind, result="cancelled").inc()
            raise
        except StoreError as e:
            logger.error(
                f"Scheduler reconciliation failed: {e}",
                controller=kind,
                resource=resource,
                event="reconcile",
                reason="ReconcileFailed",
            )
            metrics.RECONCILE_TOTAL.labels(kind=kind, result="error").inc()
            raise
        finally:
            metrics.RECONCILE_DURATION.labels(kind=kind).observe(monotonic() - started_at)

    def _reconcile(self, scheduler: Scheduler, ctx: ReconcileContext) -> ReconcileResult:
        sync = self._synchronizer.sync(scheduler, ctx)
        cleanup = self._collector.collect(scheduler, sync.desired, ctx)
        errors = [*sync.errors, *cleanup.errors]

        children = self._observe_children(scheduler, errors, ctx)
        owned = self._aggregator.aggregate(scheduler, children, errors)

        ctx.check()
        status_written = False
        previous = scheduler.status or {}
        if owned != owned_status(previous):
            self._store.update_scheduler_status(scheduler, self._merge(previous, owned), ctx=ctx)
            status_written = True

        summary = {
            "controller": "Scheduler",
            "resource": scheduler.key,
            "uid": scheduler.uid,
            "event": "reconcile",
            "created": len(sync.created),
            "updated": len(sync.updated),
            "unchanged": len(sync.unchanged),
            "deleted": len(cleanup.deleted),
            "status_written": status_written,
        }
        if errors:
            logger.warning(
                f"Scheduler reconciliation completed with {len(errors)} error(s)",
                reason="ReconcilePartial",
                **summary,
            )
        else:
            logger.info(
                "Scheduler reconciliation completed", reason="ReconcileSucceeded", **summary
            )
        return ReconcileResult(
            requeue_after=self._requeue_delay if errors else None,
            errors=errors,
            status_written=status_written,
        )

    def _observe_children(
        self, scheduler: Scheduler, errors: list[ChildError], ctx: ReconcileContext
    ) -> list[dict[str, Any]] | None:
        """List the children this Scheduler controls, or None if listing failed."""
        selector = child_label_selector(scheduler.name)
        try:
            children = self._store.list_children(scheduler.namespace, selector, ctx=ctx)
        except StoreError as e:
            errors.append(ChildError(selector, "list", str(e)))
            return None
        return [c for c in children if is_owned_by(c, scheduler.uid)]

    @staticmethod
    def _merge(previous: dict[str, Any], owned: dict[str, Any]) -> dict[str, Any]:
        """Replace our fields in the previous status and keep everyone else's."""
        merged = {k: v for k, v in previous.items() if k not in STATUS_FIELDS}
        merged.update(owned)
        return merged
