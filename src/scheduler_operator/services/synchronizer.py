"""Drives managed CronJobs toward the schedule entries of a Scheduler."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Callable

from .. import metrics
from ..builders.cronjob_builder import build_cronjob
from ..context import ReconcileContext
from ..errors import AlreadyExistsError, ChildError, NotFoundError, StoreError
from ..logging import logger
from ..models import ScheduleEntry, Scheduler
from ..store import Store
from ..utils.diff import owned_fields_equal
from ..utils.ownership import check_adoptable


@dataclass
class SyncOutcome:
    """Result of one sync run: desired child names plus what happened to each."""

    desired: set[str] = field(default_factory=set)
    created: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    errors: list[ChildError] = field(default_factory=list)


def needs_update(target: dict[str, Any], existing: dict[str, Any]) -> bool:
    """Whether the stored CronJob differs from the rendered one in any field we own."""
    if not owned_fields_equal(target["spec"], existing.get("spec") or {}):
        return True
    existing_meta = existing.get("metadata") or {}
    labels = existing_meta.get("labels") or {}
    if any(labels.get(k) != v for k, v in target["metadata"]["labels"].items()):
        return True
    owner = target["metadata"]["ownerReferences"][0]
    refs = existing_meta.get("ownerReferences") or []
    return not any(ref.get("uid") == owner["uid"] and ref.get("controller") for ref in refs)


def merge_into_existing(target: dict[str, Any], existing: dict[str, Any]) -> dict[str, Any]:
    """Overwrite the fields this controller owns, keeping the store's metadata."""
    merged = copy.deepcopy(existing)
    merged.pop("status", None)
    merged["apiVersion"] = target["apiVersion"]
    merged["kind"] = target["kind"]
    merged["spec"] = copy.deepcopy(target["spec"])

    metadata = merged.setdefault("metadata", {})
    metadata["labels"] = {**(metadata.get("labels") or {}), **target["metadata"]["labels"]}
    owner = target["metadata"]["ownerReferences"][0]
    refs = [
        ref
        for ref in metadata.get("ownerReferences") or []
        if ref.get("uid") != owner["uid"] and not ref.get("controller")
    ]
    metadata["ownerReferences"] = [*refs, copy.deepcopy(owner)]
    return merged


class DesiredStateSynchronizer:
    """Creates, adopts and updates one CronJob per schedule entry."""

    def __init__(
        self,
        store: Store,
        *,
        builder: Callable[[Scheduler, ScheduleEntry], dict[str, Any]] = build_cronjob,
    ) -> None:
        self._store = store
        self._builder = builder

    def sync(self, scheduler: Scheduler, ctx: ReconcileContext) -> SyncOutcome:
        """Create or update one CronJob per schedule entry.

        A failure on one entry is recorded in the outcome and the remaining
        entries are still processed. Cancellation is not recorded; it propagates.
        """
        outcome = SyncOutcome()
        seen: set[str] = set()
        for entry in scheduler.schedules:
            child_key = scheduler.child_key(entry)
            if entry.name in seen:
                self._record(
                    scheduler,
                    outcome,
                    ctx,
                    ChildError(child_key, "build", f"duplicate schedule name {entry.name!r}"),
                )
                continue
            seen.add(entry.name)
            outcome.desired.add(child_key)
            self._sync_entry(scheduler, entry, child_key, outcome, ctx)
        return outcome

    def _sync_entry(
        self,
        scheduler: Scheduler,
        entry: ScheduleEntry,
        child_key: str,
        outcome: SyncOutcome,
        ctx: ReconcileContext,
    ) -> None:
        try:
            target = self._builder(scheduler, entry)
        except (KeyError, TypeError, ValueError) as e:
            self._record(scheduler, outcome, ctx, ChildError(child_key, "build", str(e)))
            return

        try:
            existing = self._store.get_child(scheduler.namespace, child_key, ctx=ctx)
        except NotFoundError:
            existing = None
        except StoreError as e:
            self._record(scheduler, outcome, ctx, ChildError(child_key, "get", str(e)))
            return

        if existing is None:
            try:
                self._store.create_child(target, ctx=ctx)
            except AlreadyExistsError:
                # Created by someone else since the lookup; compare against it instead
                try:
                    existing = self._store.get_child(scheduler.namespace, child_key, ctx=ctx)
                except StoreError as e:
                    self._record(scheduler, outcome, ctx, ChildError(child_key, "get", str(e)))
                    return
            except StoreError as e:
                self._record(scheduler, outcome, ctx, ChildError(child_key, "create", str(e)))
                return
            else:
                outcome.created.append(child_key)
                metrics.CHILD_OPERATIONS_TOTAL.labels(operation="create", result="success").inc()
                logger.info(
                    "CronJob created",
                    controller="Scheduler",
                    resource=scheduler.key,
                    uid=scheduler.uid,
                    child=child_key,
                    event="sync",
                    reason="CronJobCreated",
                )
                self._store.emit_event(
                    scheduler,
                    reason="CronJobCreated",
                    message=f"CronJob '{child_key}' created",
                    ctx=ctx,
                )
                return

        can_adopt, adoption_reason = check_adoptable(existing, scheduler.uid)
        if not can_adopt:
            self._record(
                scheduler,
                outcome,
                ctx,
                ChildError(child_key, "adopt", f"cannot adopt CronJob: {adoption_reason}"),
            )
            return

        if not needs_update(target, existing):
            outcome.unchanged.append(child_key)
            metrics.CHILD_OPERATIONS_TOTAL.labels(operation="skip", result="success").inc()
            logger.debug(
                "CronJob up to date",
                controller="Scheduler",
                resource=scheduler.key,
                uid=scheduler.uid,
                child=child_key,
                event="sync",
                reason="CronJobUnchanged",
            )
            return

        try:
            self._store.update_child(merge_into_existing(target, existing), ctx=ctx)
        except StoreError as e:
            self._record(scheduler, outcome, ctx, ChildError(child_key, "update", str(e)))
            return

        outcome.updated.append(child_key)
        metrics.CHILD_OPERATIONS_TOTAL.labels(operation="update", result="success").inc()
        logger.info(
            "CronJob updated",
            controller="Scheduler",
            resource=scheduler.key,
            uid=scheduler.uid,
            child=child_key,
            event="sync",
            reason="CronJobUpdated",
            adoption_reason=adoption_reason,
        )
        self._store.emit_event(
            scheduler,
            reason="CronJobUpdated",
            message=f"CronJob '{child_key}' updated",
            ctx=ctx,
        )

    def _record(
        self,
        scheduler: Scheduler,
        outcome: SyncOutcome,
        ctx: ReconcileContext,
        error: ChildError,
    ) -> None:
        """Record a per-entry failure, log it and emit a Warning event."""
        outcome.errors.append(error)
        metrics.CHILD_OPERATIONS_TOTAL.labels(operation=error.operation, result="error").inc()
        logger.error(
            f"Failed to {error.operation} CronJob: {error.message}",
            controller="Scheduler",
            resource=scheduler.key,
            uid=scheduler.uid,
            child=error.child,
            event="sync",
            reason="CronJobSyncFailed",
        )
        self._store.emit_event(
            scheduler,
            reason="CronJobSyncFailed",
            message=f"Failed to {error.operation} CronJob '{error.child}': {error.message}",
            type_="Warning",
            ctx=ctx,
        )
