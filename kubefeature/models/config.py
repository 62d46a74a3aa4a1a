"""Configuration data structures."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class ReconcilerConfig:
    """Reconciler timing configuration."""

    remote_timeout_seconds: float = 30.0
    workers: int = 10
    backoff_base_seconds: float = 5.0
    backoff_max_seconds: float = 300.0
    not_ready_requeue_seconds: float = 20.0


@dataclass
class StateStoreConfig:
    """Ledger persistence configuration."""

    backend: str = "memory"
    path: str = "kubefeature-state.db"


@dataclass
class DefinitionsConfig:
    """Feature definition source configuration."""

    path: str = ""
    poll_seconds: int = 30
    management_namespace: str = "default"


@dataclass
class APIConfig:
    """REST API configuration."""

    port: int = 8080


@dataclass
class LogConfig:
    """Logging configuration."""

    level: str = "info"


@dataclass
class KubeFeatureConfig:
    """Top-level kubefeature configuration."""

    reconciler: ReconcilerConfig = field(default_factory=ReconcilerConfig)
    state: StateStoreConfig = field(default_factory=StateStoreConfig)
    definitions: DefinitionsConfig = field(default_factory=DefinitionsConfig)
    api: APIConfig = field(default_factory=APIConfig)
    log: LogConfig = field(default_factory=LogConfig)
