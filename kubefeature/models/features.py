"""Feature definition data structures.

A FeatureDefinition is owned by an authority outside this package; the
reconciler only reads it.  Every field is immutable for the duration of a
reconcile.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum


class SyncMode(StrEnum):
    """How configuration changes after the first deployment are handled."""

    ONE_TIME = "OneTime"
    CONTINUOUS = "Continuous"


class FeatureKind(StrEnum):
    """Feature kinds known to the driver registry."""

    POLICY_ENGINE = "PolicyEngine"
    METRICS_STACK = "MetricsStack"
    WORKLOAD_ROLES = "WorkloadRoles"


class InstallationMode(StrEnum):
    """What the metrics stack installs on top of the operator."""

    CUSTOM = "Custom"
    KUBE_STATE_METRICS = "KubeStateMetrics"
    KUBE_PROMETHEUS = "KubePrometheus"


@dataclass(frozen=True)
class ConfigSourceRef:
    """Reference to a ConfigMap in the management cluster."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass(frozen=True)
class ClusterRef:
    """A managed workload cluster, addressed by namespace/name."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass(frozen=True)
class PolicyEngineConfig:
    """Policy engine (Kyverno) configuration."""

    replicas: int = 1
    policy_refs: tuple[ConfigSourceRef, ...] = ()


@dataclass(frozen=True)
class MetricsStackConfig:
    """Metrics stack (Prometheus) configuration."""

    installation_mode: InstallationMode = InstallationMode.CUSTOM
    storage_class_name: str | None = None
    storage_quantity: str | None = None
    policy_refs: tuple[ConfigSourceRef, ...] = ()


@dataclass(frozen=True)
class WorkloadRolesConfig:
    """ClusterRole and Role documents to create in the workload cluster."""

    role_refs: tuple[ConfigSourceRef, ...] = ()


FeatureConfig = PolicyEngineConfig | MetricsStackConfig | WorkloadRolesConfig


@dataclass(frozen=True)
class FeatureDefinition:
    """Central definition of which features go to which clusters.

    ``features`` maps each enabled feature kind to its per-feature
    configuration.  The selector is opaque here: matching happens outside.
    """

    name: str
    selector: str
    sync_mode: SyncMode = SyncMode.ONE_TIME
    features: dict[FeatureKind, FeatureConfig] = field(default_factory=dict)
    generation: int = 1

    def config_for(self, kind: FeatureKind) -> FeatureConfig | None:
        return self.features.get(kind)
