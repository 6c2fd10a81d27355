"""Capability table of the resource kinds this operator reads and writes.

The registry is built once at startup and handed to the store and the
reconciler; nothing in the package keeps it as module state.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Callable

from .constants import (
    API_GROUP,
    API_VERSION,
    CRONJOB_API_VERSION,
    CRONJOB_KIND,
    CRONJOB_PLURAL,
    SCHEDULER_KIND,
    SCHEDULER_PLURAL,
)
from .models import Scheduler


def _identity(obj: dict[str, Any]) -> dict[str, Any]:
    return copy.deepcopy(obj)


def _default_cronjob(obj: dict[str, Any]) -> dict[str, Any]:
    decoded = copy.deepcopy(obj)
    decoded.setdefault("apiVersion", CRONJOB_API_VERSION)
    decoded.setdefault("kind", CRONJOB_KIND)
    metadata = decoded.setdefault("metadata", {})
    if metadata.get("labels") is None:
        metadata["labels"] = {}
    if metadata.get("ownerReferences") is None:
        metadata["ownerReferences"] = []
    if decoded.get("spec") is None:
        decoded["spec"] = {}
    if decoded.get("status") is None:
        decoded["status"] = {}
    return decoded


@dataclass(frozen=True)
class ResourceKind:
    """API coordinates and decoder for one resource kind."""

    kind: str
    group: str
    version: str
    plural: str
    namespaced: bool = True
    decode: Callable[[dict[str, Any]], Any] = field(default=_identity, compare=False)

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}" if self.group else self.version


class ResourceRegistry:
    """Maps a kind name to its API coordinates and decoder."""

    def __init__(self) -> None:
        self._kinds: dict[str, ResourceKind] = {}

    def register(self, resource_kind: ResourceKind) -> None:
        existing = self._kinds.get(resource_kind.kind)
        if existing is not None and existing != resource_kind:
            raise ValueError(f"kind {resource_kind.kind} already registered as {existing}")
        self._kinds[resource_kind.kind] = resource_kind

    def get(self, kind: str) -> ResourceKind:
        try:
            return self._kinds[kind]
        except KeyError:
            raise KeyError(f"unknown resource kind: {kind}") from None

    def decode(self, kind: str, obj: dict[str, Any]) -> Any:
        return self.get(kind).decode(obj)

    def __contains__(self, kind: object) -> bool:
        return kind in self._kinds

    def kinds(self) -> list[str]:
        return sorted(self._kinds)


def build_default_registry() -> ResourceRegistry:
    """Registry with the Scheduler and CronJob kinds."""
    registry = ResourceRegistry()
    registry.register(
        ResourceKind(
            kind=SCHEDULER_KIND,
            group=API_GROUP,
            version=API_VERSION,
            plural=SCHEDULER_PLURAL,
            decode=Scheduler.from_dict,
        )
    )
    group, version = CRONJOB_API_VERSION.split("/")
    registry.register(
        ResourceKind(
            kind=CRONJOB_KIND,
            group=group,
            version=version,
            plural=CRONJOB_PLURAL,
            decode=_default_cronjob,
        )
    )
    return registry
