"""Store contract used by the reconciler and its Kubernetes implementation."""

from __future__ import annotations

import copy
from contextlib import suppress
from typing import Any, Callable, Protocol

import urllib3
from kubernetes import client

from .constants import CONTROLLER_ID, CRONJOB_KIND, SCHEDULER_KIND
from .context import ReconcileContext
from .errors import AlreadyExistsError, ConflictError, NotFoundError, StoreError
from .models import Scheduler
from .registry import ResourceRegistry


class Store(Protocol):
    def get_scheduler(self, namespace: str, name: str, *, ctx: ReconcileContext) -> Scheduler: ...

    def list_schedulers(self, namespace: str, *, ctx: ReconcileContext) -> list[Scheduler]: ...

    def get_child(self, namespace: str, name: str, *, ctx: ReconcileContext) -> dict[str, Any]: ...

    def list_children(
        self, namespace: str, label_selector: str, *, ctx: ReconcileContext
    ) -> list[dict[str, Any]]: ...

    def create_child(self, obj: dict[str, Any], *, ctx: ReconcileContext) -> dict[str, Any]: ...

    def update_child(self, obj: dict[str, Any], *, ctx: ReconcileContext) -> dict[str, Any]: ...

    def delete_child(self, namespace: str, name: str, *, ctx: ReconcileContext) -> None: ...

    def update_scheduler_status(
        self, scheduler: Scheduler, status: dict[str, Any], *, ctx: ReconcileContext
    ) -> None: ...

    def emit_event(
        self,
        scheduler: Scheduler,
        *,
        reason: str,
        message: str,
        type_: str = "Normal",
        ctx: ReconcileContext,
    ) -> None: ...


def _translate(
    e: client.exceptions.ApiException,
    what: str,
    *,
    on_conflict: type[StoreError] = ConflictError,
) -> StoreError:
    """Map an API error status to the store error taxonomy."""
    detail = f"{what}: {e.status} {e.reason}"
    if e.status == 404:
        return NotFoundError(detail, status=e.status)
    if e.status == 409:
        return on_conflict(detail, status=e.status)
    return StoreError(detail, status=e.status)


class KubernetesStore:
    """Store backed by the Kubernetes API.

    Schedulers are read and written through ``CustomObjectsApi`` using the
    coordinates in the resource registry; CronJobs through ``BatchV1Api``.
    CronJobs are returned as camelCase dicts.
    """

    def __init__(
        self,
        registry: ResourceRegistry,
        *,
        field_manager: str = CONTROLLER_ID,
        custom_api: Any = None,
        batch_api: Any = None,
        core_api: Any = None,
    ) -> None:
        self._registry = registry
        self._field_manager = field_manager
        self._custom_api = custom_api or client.CustomObjectsApi()
        self._batch_api = batch_api or client.BatchV1Api()
        self._core_api = core_api
        self._serializer = client.ApiClient()

    def _call(
        self,
        ctx: ReconcileContext,
        what: str,
        fn: Callable[..., Any],
        *args: Any,
        on_conflict: type[StoreError] = ConflictError,
        **kwargs: Any,
    ) -> Any:
        """Call the API with the context's timeout, translating its errors."""
        ctx.check()
        timeout = ctx.request_timeout()
        if timeout is not None:
            kwargs["_request_timeout"] = timeout
        try:
            return fn(*args, **kwargs)
        except client.exceptions.ApiException as e:
            raise _translate(e, what, on_conflict=on_conflict) from e
        except (urllib3.exceptions.HTTPError, OSError) as e:
            raise StoreError(f"{what}: {e}") from e

    def _cronjob_to_dict(self, obj: Any) -> dict[str, Any]:
        if not isinstance(obj, dict):
            obj = self._serializer.sanitize_for_serialization(obj)
        return self._registry.decode(CRONJOB_KIND, obj)

    def get_scheduler(self, namespace: str, name: str, *, ctx: ReconcileContext) -> Scheduler:
        kind = self._registry.get(SCHEDULER_KIND)
        body = self._call(
            ctx,
            f"get {kind.kind} {namespace}/{name}",
            self._custom_api.get_namespaced_custom_object,
            group=kind.group,
            version=kind.version,
            namespace=namespace,
            plural=kind.plural,
            name=name,
        )
        return self._registry.decode(SCHEDULER_KIND, body)

    def list_schedulers(self, namespace: str, *, ctx: ReconcileContext) -> list[Scheduler]:
        kind = self._registry.get(SCHEDULER_KIND)
        result = self._call(
            ctx,
            f"list {kind.plural} in {namespace}",
            self._custom_api.list_namespaced_custom_object,
            group=kind.group,
            version=kind.version,
            namespace=namespace,
            plural=kind.plural,
        )
        return [self._registry.decode(SCHEDULER_KIND, item) for item in result.get("items", [])]

    def get_child(self, namespace: str, name: str, *, ctx: ReconcileContext) -> dict[str, Any]:
        obj = self._call(
            ctx,
            f"get CronJob {namespace}/{name}",
            self._batch_api.read_namespaced_cron_job,
            name=name,
            namespace=namespace,
        )
        return self._cronjob_to_dict(obj)

    def list_children(
        self, namespace: str, label_selector: str, *, ctx: ReconcileContext
    ) -> list[dict[str, Any]]:
        result = self._call(
            ctx,
            f"list CronJobs in {namespace} ({label_selector})",
            self._batch_api.list_namespaced_cron_job,
            namespace=namespace,
            label_selector=label_selector,
        )
        return [self._cronjob_to_dict(item) for item in result.items or []]

    def create_child(self, obj: dict[str, Any], *, ctx: ReconcileContext) -> dict[str, Any]:
        metadata = obj["metadata"]
        created = self._call(
            ctx,
            f"create CronJob {metadata['namespace']}/{metadata['name']}",
            self._batch_api.create_namespaced_cron_job,
            namespace=metadata["namespace"],
            body=obj,
            field_manager=self._field_manager,
            on_conflict=AlreadyExistsError,
        )
        return self._cronjob_to_dict(created)

    def update_child(self, obj: dict[str, Any], *, ctx: ReconcileContext) -> dict[str, Any]:
        metadata = obj["metadata"]
        updated = self._call(
            ctx,
            f"update CronJob {metadata['namespace']}/{metadata['name']}",
            self._batch_api.replace_namespaced_cron_job,
            name=metadata["name"],
            namespace=metadata["namespace"],
            body=obj,
            field_manager=self._field_manager,
        )
        return self._cronjob_to_dict(updated)

    def delete_child(self, namespace: str, name: str, *, ctx: ReconcileContext) -> None:
        self._call(
            ctx,
            f"delete CronJob {namespace}/{name}",
            self._batch_api.delete_namespaced_cron_job,
            name=name,
            namespace=namespace,
            propagation_policy="Background",
        )

    def update_scheduler_status(
        self, scheduler: Scheduler, status: dict[str, Any], *, ctx: ReconcileContext
    ) -> None:
        kind = self._registry.get(SCHEDULER_KIND)
        body = copy.deepcopy(scheduler.raw)
        body["status"] = status
        self._call(
            ctx,
            f"update {kind.kind} status {scheduler.key}",
            self._custom_api.replace_namespaced_custom_object_status,
            group=kind.group,
            version=kind.version,
            namespace=scheduler.namespace,
            plural=kind.plural,
            name=scheduler.name,
            body=body,
            field_manager=self._field_manager,
        )

    def emit_event(
        self,
        scheduler: Scheduler,
        *,
        reason: str,
        message: str,
        type_: str = "Normal",
        ctx: ReconcileContext,
    ) -> None:
        # Events are best-effort and never outlive the invocation
        if ctx.cancelled:
            return
        with suppress(Exception):
            core_api = self._core_api or client.CoreV1Api()
            kind = self._registry.get(SCHEDULER_KIND)
            involved = client.V1ObjectReference(
                api_version=kind.api_version,
                kind=kind.kind,
                name=scheduler.name,
                namespace=scheduler.namespace,
                uid=scheduler.uid or None,
            )
            event = client.CoreV1Event(
                metadata=client.V1ObjectMeta(generate_name=f"{scheduler.name}-"),
                type=type_,
                reason=reason,
                message=message,
                involved_object=involved,
            )
            kwargs: dict[str, Any] = {}
            timeout = ctx.request_timeout()
            if timeout is not None:
                kwargs["_request_timeout"] = timeout
            core_api.create_namespaced_event(namespace=scheduler.namespace, body=event, **kwargs)
