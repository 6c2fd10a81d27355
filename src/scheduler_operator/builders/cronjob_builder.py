from __future__ import annotations

import copy
from typing import Any

from ..constants import (
    API_GROUP_VERSION,
    CONTAINER_NAME,
    CONTROLLER_ID,
    CRONJOB_API_VERSION,
    CRONJOB_KIND,
    LABEL_APP,
    LABEL_SCHEDULE,
    LABEL_SCHEDULER,
    SCHEDULER_KIND,
)
from ..models import ScheduleEntry, Scheduler


def child_labels(scheduler_name: str, schedule_name: str | None = None) -> dict[str, str]:
    """Labels identifying a CronJob as managed by this controller for one Scheduler."""
    labels = {LABEL_APP: CONTROLLER_ID, LABEL_SCHEDULER: scheduler_name}
    if schedule_name is not None:
        labels[LABEL_SCHEDULE] = schedule_name
    return labels


def child_label_selector(scheduler_name: str) -> str:
    """Label selector matching every CronJob managed for the named Scheduler."""
    return ",".join(f"{k}={v}" for k, v in child_labels(scheduler_name).items())


def owner_reference(scheduler: Scheduler) -> dict[str, Any]:
    """Controller owner reference pointing back at the Scheduler."""
    return {
        "apiVersion": API_GROUP_VERSION,
        "kind": SCHEDULER_KIND,
        "name": scheduler.name,
        "uid": scheduler.uid,
        "controller": True,
        "blockOwnerDeletion": True,
    }


def build_cronjob(scheduler: Scheduler, entry: ScheduleEntry) -> dict[str, Any]:
    """Render the CronJob manifest for one schedule entry.

    This function is pure: the same scheduler and entry always produce an equal
    manifest. Cron syntax and image references are not validated here.
    """
    env = [copy.deepcopy(e) for e in entry.env]
    env_from = [copy.deepcopy(e) for e in entry.env_from]

    container: dict[str, Any] = {
        "name": CONTAINER_NAME,
        "image": entry.image,
        "args": list(entry.params),
        "env": env,
        "envFrom": env_from,
    }

    manifest: dict[str, Any] = {
        "apiVersion": CRONJOB_API_VERSION,
        "kind": CRONJOB_KIND,
        "metadata": {
            "name": scheduler.child_key(entry),
            "namespace": scheduler.namespace,
            "labels": child_labels(scheduler.name, entry.name),
            "ownerReferences": [owner_reference(scheduler)],
        },
        "spec": {
            "schedule": entry.cron_expression,
            "jobTemplate": {
                "spec": {
                    "template": {
                        "spec": {
                            "restartPolicy": "OnFailure",
                            "containers": [container],
                        },
                    },
                }
            },
        },
    }
    return manifest
