#!/usr/bin/env python3
from __future__ import annotations

import argparse
from contextlib import suppress
from typing import Callable, Iterable

from kubernetes import config

from scheduler_operator import logging as structured_logging
from scheduler_operator.config import OperatorConfig
from scheduler_operator.context import ReconcileContext
from scheduler_operator.errors import ReconcileCancelled, StoreError
from scheduler_operator.registry import build_default_registry
from scheduler_operator.services.reconciler import SchedulerReconciler
from scheduler_operator.store import KubernetesStore


def reconcile_all(
    reconciler: SchedulerReconciler,
    namespace: str,
    names: Iterable[str],
    new_context: Callable[[], ReconcileContext],
) -> int:
    """Reconcile each named Scheduler once and return the number of failed passes.

    A pass fails when it records errors or raises; the remaining Schedulers are
    still reconciled.
    """
    failed = 0
    for name in names:
        resource = f"{namespace}/{name}"
        try:
            result = reconciler.reconcile(namespace, name, new_context())
        except (StoreError, ReconcileCancelled) as e:
            failed += 1
            print(f"Failed to reconcile Scheduler {resource}: {e}")
            continue
        if not result.found:
            print(f"Scheduler {resource} not found")
        elif result.ok:
            print(f"Reconciled Scheduler {resource}")
        else:
            failed += 1
            print(f"Reconciled Scheduler {resource} with {len(result.errors)} error(s)")
            for error in result.errors:
                print(f"  {error}")
    return failed


def main() -> int:
    parser = argparse.ArgumentParser(description="Run one reconciliation pass for Schedulers")
    parser.add_argument("--namespace", required=True)
    parser.add_argument("--name", help="reconcile only this Scheduler")
    args = parser.parse_args()

    operator_config = OperatorConfig.from_env()
    structured_logging.setup_structured_logging(operator_config.log_level)

    # Load kube config (in-cluster or local)
    with suppress(config.ConfigException):
        config.load_incluster_config()
    with suppress(config.ConfigException):
        config.load_kube_config()

    registry = build_default_registry()
    store = KubernetesStore(registry, field_manager=f"{operator_config.field_manager}-once")
    reconciler = SchedulerReconciler(
        store, registry=registry, requeue_delay=operator_config.requeue_delay
    )

    def new_context() -> ReconcileContext:
        return ReconcileContext(
            timeout=operator_config.reconcile_timeout or None,
            request_timeout=operator_config.request_timeout,
        )

    if args.name:
        names = [args.name]
    else:
        try:
            names = [s.name for s in store.list_schedulers(args.namespace, ctx=new_context())]
        except (StoreError, ReconcileCancelled) as e:
            print(f"Failed to list Schedulers in {args.namespace}: {e}")
            return 1

    return 1 if reconcile_all(reconciler, args.namespace, names, new_context) else 0


if __name__ == "__main__":
    raise SystemExit(main())
