"""Domain types for the Scheduler resource and its managed CronJobs."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any

from .constants import CRONJOB_API_VERSION, CRONJOB_KIND


@dataclass(frozen=True)
class ScheduleEntry:
    """One desired scheduled job from ``spec.schedules``."""

    name: str
    image: str = ""
    cron_expression: str = ""
    params: tuple[str, ...] = ()
    env: tuple[dict[str, Any], ...] = ()
    env_from: tuple[dict[str, Any], ...] = ()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ScheduleEntry:
        return cls(
            name=str(data.get("name") or ""),
            image=str(data.get("image") or ""),
            cron_expression=str(data.get("cronExpression") or ""),
            params=tuple(str(p) for p in data.get("params") or []),
            env=tuple(copy.deepcopy(e) for e in data.get("env") or []),
            env_from=tuple(copy.deepcopy(e) for e in data.get("envFrom") or []),
        )


@dataclass
class Scheduler:
    """The parent resource: a named list of schedule entries plus its status."""

    name: str
    namespace: str
    uid: str = ""
    generation: int = 0
    schedules: list[ScheduleEntry] = field(default_factory=list)
    status: dict[str, Any] = field(default_factory=dict)
    deletion_timestamp: str | None = None
    resource_version: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"

    def child_key(self, entry: ScheduleEntry) -> str:
        return f"{self.name}-{entry.name}"

    @classmethod
    def from_dict(cls, body: dict[str, Any]) -> Scheduler:
        metadata = body.get("metadata") or {}
        spec = body.get("spec") or {}
        return cls(
            name=metadata.get("name", ""),
            namespace=metadata.get("namespace", ""),
            uid=metadata.get("uid", ""),
            generation=int(metadata.get("generation") or 0),
            schedules=[ScheduleEntry.from_dict(s) for s in spec.get("schedules") or []],
            status=copy.deepcopy(body.get("status") or {}),
            deletion_timestamp=metadata.get("deletionTimestamp"),
            resource_version=metadata.get("resourceVersion"),
            raw=copy.deepcopy(body),
        )


@dataclass(frozen=True)
class Condition:
    """A status condition in its Kubernetes wire shape."""

    type: str
    status: str
    reason: str
    message: str
    last_transition_time: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "status": self.status,
            "reason": self.reason,
            "message": self.message,
            "lastTransitionTime": self.last_transition_time,
        }


@dataclass(frozen=True, order=True)
class ActiveChildRef:
    """Reference to a running CronJob, listed in the Scheduler status."""

    name: str
    namespace: str
    uid: str = ""
    kind: str = CRONJOB_KIND
    api_version: str = CRONJOB_API_VERSION

    def to_dict(self) -> dict[str, Any]:
        return {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "namespace": self.namespace,
            "name": self.name,
            "uid": self.uid,
        }
