from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping

from .constants import CONTROLLER_ID, DEFAULT_REQUEUE_DELAY
from .errors import ConfigError

REQUEUE_DELAY_ENV = "SCHEDULER_REQUEUE_DELAY"
RESYNC_INTERVAL_ENV = "SCHEDULER_RESYNC_INTERVAL"
RECONCILE_TIMEOUT_ENV = "SCHEDULER_RECONCILE_TIMEOUT"
REQUEST_TIMEOUT_ENV = "SCHEDULER_REQUEST_TIMEOUT"
MAX_WORKERS_ENV = "SCHEDULER_MAX_WORKERS"
METRICS_PORT_ENV = "SCHEDULER_METRICS_PORT"
FIELD_MANAGER_ENV = "SCHEDULER_FIELD_MANAGER"
LOG_LEVEL_ENV = "SCHEDULER_LOG_LEVEL"

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def _float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError as e:
        raise ConfigError(f"{key} must be a number, got {raw!r}") from e
    if value < 0:
        raise ConfigError(f"{key} must not be negative, got {raw!r}")
    return value


def _int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ConfigError(f"{key} must be an integer, got {raw!r}") from e
    if value < 0:
        raise ConfigError(f"{key} must not be negative, got {raw!r}")
    return value


@dataclass(frozen=True)
class OperatorConfig:
    """Operator settings read from the environment at startup."""

    requeue_delay: float = DEFAULT_REQUEUE_DELAY
    resync_interval: float = 300.0
    reconcile_timeout: float = 120.0
    request_timeout: float = 30.0
    max_workers: int = 4
    metrics_port: int = 8080
    field_manager: str = CONTROLLER_ID
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> OperatorConfig:
        env = os.environ if env is None else env
        log_level = (env.get(LOG_LEVEL_ENV) or "INFO").strip().upper()
        if log_level not in _LOG_LEVELS:
            raise ConfigError(f"{LOG_LEVEL_ENV} must be one of {sorted(_LOG_LEVELS)}")
        max_workers = _int(env, MAX_WORKERS_ENV, 4)
        if max_workers == 0:
            raise ConfigError(f"{MAX_WORKERS_ENV} must be at least 1")
        resync_interval = _float(env, RESYNC_INTERVAL_ENV, 300.0)
        if resync_interval == 0:
            raise ConfigError(f"{RESYNC_INTERVAL_ENV} must be greater than zero")
        return cls(
            requeue_delay=_float(env, REQUEUE_DELAY_ENV, DEFAULT_REQUEUE_DELAY),
            resync_interval=resync_interval,
            reconcile_timeout=_float(env, RECONCILE_TIMEOUT_ENV, 120.0),
            request_timeout=_float(env, REQUEST_TIMEOUT_ENV, 30.0),
            max_workers=max_workers,
            metrics_port=_int(env, METRICS_PORT_ENV, 8080),
            field_manager=(env.get(FIELD_MANAGER_ENV) or CONTROLLER_ID).strip(),
            log_level=log_level,
        )
