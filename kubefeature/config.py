"""Configuration loading from environment variables."""

from __future__ import annotations

import os

from kubefeature.models.config import (
    APIConfig,
    DefinitionsConfig,
    KubeFeatureConfig,
    LogConfig,
    ReconcilerConfig,
    StateStoreConfig,
)


def _env(key: str, default: str = "") -> str:
    return os.environ.get(f"KUBEFEATURE_{key}", default)


def _env_int(key: str, default: int, min_val: int | None = None, max_val: int | None = None) -> int:
    val = int(_env(key, str(default)))
    if min_val is not None:
        val = max(val, min_val)
    if max_val is not None:
        val = min(val, max_val)
    return val


def _env_float(key: str, default: float, min_val: float | None = None, max_val: float | None = None) -> float:
    val = float(_env(key, str(default)))
    if min_val is not None:
        val = max(val, min_val)
    if max_val is not None:
        val = min(val, max_val)
    return val


def _validate_log_level(value: str) -> str:
    valid = {"debug", "info", "warning", "error"}
    if value.lower() not in valid:
        raise ValueError(f"Invalid log level: {value}. Must be one of {valid}")
    return value.lower()


def _validate_backend(value: str) -> str:
    valid = {"memory", "sqlite"}
    if value.lower() not in valid:
        raise ValueError(f"Invalid state backend: {value}. Must be one of {valid}")
    return value.lower()


def load_config() -> KubeFeatureConfig:
    """Load configuration from KUBEFEATURE_* environment variables."""
    backoff_base = _env_float("BACKOFF_BASE", 5.0, min_val=0.1, max_val=60.0)
    return KubeFeatureConfig(
        reconciler=ReconcilerConfig(
            remote_timeout_seconds=_env_float("REMOTE_TIMEOUT", 30.0, min_val=1.0, max_val=300.0),
            workers=_env_int("RECONCILE_WORKERS", 10, min_val=1, max_val=100),
            backoff_base_seconds=backoff_base,
            backoff_max_seconds=_env_float("BACKOFF_MAX", 300.0, min_val=backoff_base, max_val=3600.0),
            not_ready_requeue_seconds=_env_float("NOT_READY_REQUEUE", 20.0, min_val=1.0, max_val=600.0),
        ),
        state=StateStoreConfig(
            backend=_validate_backend(_env("STATE_BACKEND", "memory")),
            path=_env("STATE_PATH", "kubefeature-state.db"),
        ),
        definitions=DefinitionsConfig(
            path=_env("DEFINITIONS_PATH", ""),
            poll_seconds=_env_int("DEFINITIONS_POLL", 30, min_val=5, max_val=3600),
            management_namespace=_env("MANAGEMENT_NAMESPACE", "default"),
        ),
        api=APIConfig(
            port=_env_int("API_PORT", 8080, min_val=1024, max_val=65535),
        ),
        log=LogConfig(
            level=_validate_log_level(_env("LOG_LEVEL", "info")),
        ),
    )
