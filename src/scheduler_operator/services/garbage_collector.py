from __future__ import annotations

from dataclasses import dataclass, field

from .. import metrics
from ..builders.cronjob_builder import child_label_selector
from ..context import ReconcileContext
from ..errors import ChildError, NotFoundError, StoreError
from ..logging import logger
from ..models import Scheduler
from ..store import Store
from ..utils.ownership import controller_owner_uid


@dataclass
class CollectOutcome:
    """Names deleted, skipped for a foreign owner, and failures of one cleanup run."""

    deleted: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    errors: list[ChildError] = field(default_factory=list)


class OrphanCollector:
    """Deletes CronJobs owned by a Scheduler that no schedule entry wants anymore."""

    def __init__(self, store: Store) -> None:
        self._store = store

    def collect(
        self, scheduler: Scheduler, desired: set[str], ctx: ReconcileContext
    ) -> CollectOutcome:
        outcome = CollectOutcome()
        selector = child_label_selector(scheduler.name)
        try:
            children = self._store.list_children(scheduler.namespace, selector, ctx=ctx)
        except StoreError as e:
            outcome.errors.append(ChildError(selector, "list", str(e)))
            logger.error(
                f"Failed to list CronJobs for cleanup: {e}",
                controller="Scheduler",
                resource=scheduler.key,
                uid=scheduler.uid,
                event="cleanup",
                reason="CronJobListFailed",
            )
            return outcome

        for child in children:
            name = child["metadata"]["name"]
            if name in desired:
                continue
            owner_uid = controller_owner_uid(child)
            if owner_uid != scheduler.uid:
                # Labels collide but the back-reference names someone else
                outcome.skipped.append(name)
                logger.warning(
                    "Skipping labeled CronJob owned by another resource",
                    controller="Scheduler",
                    resource=scheduler.key,
                    uid=scheduler.uid,
                    child=name,
                    event="cleanup",
                    reason="CronJobOwnerMismatch",
                    owner_uid=owner_uid,
                )
                continue
            self._delete(scheduler, name, outcome, ctx)
        return outcome

    def _delete(
        self, scheduler: Scheduler, name: str, outcome: CollectOutcome, ctx: ReconcileContext
    ) -> None:
        """Delete one orphan. A child that is already gone is neither counted nor reported."""
        try:
            self._store.delete_child(scheduler.namespace, name, ctx=ctx)
        except NotFoundError:
            logger.info(
                "Orphaned CronJob already deleted",
                controller="Scheduler",
                resource=scheduler.key,
                uid=scheduler.uid,
                child=name,
                event="cleanup",
                reason="CronJobNotFound",
            )
            return
        except StoreError as e:
            outcome.errors.append(ChildError(name, "delete", str(e)))
            metrics.CHILD_OPERATIONS_TOTAL.labels(operation="delete", result="error").inc()
            logger.error(
                f"Failed to delete orphaned CronJob: {e}",
                controller="Scheduler",
                resource=scheduler.key,
                uid=scheduler.uid,
                child=name,
                event="cleanup",
                reason="CronJobDeleteFailed",
            )
            return

        outcome.deleted.append(name)
        metrics.CHILD_OPERATIONS_TOTAL.labels(operation="delete", result="success").inc()
        logger.info(
            "Orphaned CronJob deleted",
            controller="Scheduler",
            resource=scheduler.key,
            uid=scheduler.uid,
            child=name,
            event="cleanup",
            reason="CronJobDeleted",
        )
        self._store.emit_event(
            scheduler,
            reason="CronJobDeleted",
            message=f"Orphaned CronJob '{name}' deleted",
            ctx=ctx,
        )
