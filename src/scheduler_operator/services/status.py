"""Status aggregation for Schedulers: active children, last schedule time, Ready."""

from __future__ import annotations

import copy
from datetime import datetime
from typing import Any, Callable, Sequence

from ..constants import (
    COND_READY,
    REASON_RECONCILE_ERROR,
    REASON_RECONCILE_SUCCESS,
    STATUS_FIELDS,
)
from ..errors import ChildError
from ..models import ActiveChildRef, Condition, Scheduler
from ..utils.timestamps import format_timestamp, parse_timestamp, utcnow

STATE_PENDING = "Pending"
STATE_RUNNING = "Running"
STATE_SUCCEEDED = "Succeeded"
STATE_FAILED = "Failed"


def execution_state(child: dict[str, Any]) -> str:
    """Classify the most recent execution of a CronJob from its status."""
    status = child.get("status") or {}
    if status.get("active"):
        return STATE_RUNNING
    last_schedule = parse_timestamp(status.get("lastScheduleTime"))
    if last_schedule is None:
        return STATE_PENDING
    last_success = parse_timestamp(status.get("lastSuccessfulTime"))
    if last_success is not None and last_success >= last_schedule:
        return STATE_SUCCEEDED
    return STATE_FAILED


def active_refs(children: Sequence[dict[str, Any]]) -> list[dict[str, Any]]:
    """References to the running children, sorted by name."""
    refs = []
    for child in children:
        if execution_state(child) != STATE_RUNNING:
            continue
        metadata = child.get("metadata") or {}
        refs.append(
            ActiveChildRef(
                name=metadata.get("name", ""),
                namespace=metadata.get("namespace", ""),
                uid=metadata.get("uid") or "",
            )
        )
    return [ref.to_dict() for ref in sorted(refs)]


def latest_schedule_time(children: Sequence[dict[str, Any]]) -> str | None:
    """Most recent lastScheduleTime across children, or None if none ran yet."""
    parsed = (parse_timestamp((c.get("status") or {}).get("lastScheduleTime")) for c in children)
    times = [t for t in parsed if t is not None]
    return format_timestamp(max(times)) if times else None


def set_condition(
    conditions: Sequence[dict[str, Any]],
    *,
    type_: str,
    status: str,
    reason: str,
    message: str,
    now: datetime,
) -> list[dict[str, Any]]:
    """Return a new condition list with ``type_`` set.

    ``lastTransitionTime`` only moves when the condition status changes.
    Conditions of other types are kept in place.
    """
    previous = next((c for c in conditions if c.get("type") == type_), None)
    if previous is not None and previous.get("status") == status and previous.get(
        "lastTransitionTime"
    ):
        transition = previous["lastTransitionTime"]
    else:
        transition = format_timestamp(now)
    condition = Condition(
        type=type_,
        status=status,
        reason=reason,
        message=message,
        last_transition_time=transition,
    ).to_dict()

    result: list[dict[str, Any]] = []
    replaced = False
    for existing in conditions:
        if existing.get("type") == type_:
            if not replaced:
                result.append(condition)
                replaced = True
            continue
        result.append(copy.deepcopy(existing))
    if not replaced:
        result.append(condition)
    return result


def error_message(errors: Sequence[ChildError]) -> str:
    """Ready condition message for a pass that recorded errors."""
    message = f"{len(errors)} error(s) during reconciliation: {errors[0]}"
    if len(errors) > 1:
        message += f" (and {len(errors) - 1} more)"
    return message


def owned_status(status: dict[str, Any]) -> dict[str, Any]:
    """The part of a status document this controller writes."""
    return {k: status[k] for k in STATUS_FIELDS if status.get(k) is not None}


class StatusAggregator:
    """Builds the owned status fields from the observed children and errors."""

    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock

    def aggregate(
        self,
        scheduler: Scheduler,
        children: Sequence[dict[str, Any]] | None,
        errors: Sequence[ChildError],
    ) -> dict[str, Any]:
        """Compute the owned status fields.

        ``children`` is the post-cleanup child set, or None when it could not be
        listed, in which case the previous active list and schedule time are kept.
        """
        previous = scheduler.status or {}
        status: dict[str, Any] = {"observedGeneration": scheduler.generation}

        if children is None:
            last_schedule = previous.get("lastScheduleTime")
            active = copy.deepcopy(previous.get("active") or [])
        else:
            last_schedule = latest_schedule_time(children)
            active = active_refs(children)
        if last_schedule is not None:
            status["lastScheduleTime"] = last_schedule
        status["active"] = active

        if errors:
            cond_status, reason, message = "False", REASON_RECONCILE_ERROR, error_message(errors)
        else:
            cond_status = "True"
            reason = REASON_RECONCILE_SUCCESS
            message = f"All {len(scheduler.schedules)} schedule(s) reconciled"
        status["conditions"] = set_condition(
            previous.get("conditions") or [],
            type_=COND_READY,
            status=cond_status,
            reason=reason,
            message=message,
            now=self._clock(),
        )
        return status
