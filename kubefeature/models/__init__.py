"""Core data structures for kubefeature."""

from kubefeature.models.config import KubeFeatureConfig
from kubefeature.models.features import (
    ClusterRef,
    ConfigSourceRef,
    FeatureConfig,
    FeatureDefinition,
    FeatureKind,
    InstallationMode,
    MetricsStackConfig,
    PolicyEngineConfig,
    SyncMode,
    WorkloadRolesConfig,
)
from kubefeature.models.state import (
    ClusterFeatureState,
    DefinitionStatus,
    FeatureStatus,
    Readiness,
    ResourceIdentity,
    StateKey,
)

__all__ = [
    "ClusterFeatureState",
    "ClusterRef",
    "ConfigSourceRef",
    "DefinitionStatus",
    "FeatureConfig",
    "FeatureDefinition",
    "FeatureKind",
    "FeatureStatus",
    "InstallationMode",
    "KubeFeatureConfig",
    "MetricsStackConfig",
    "PolicyEngineConfig",
    "Readiness",
    "ResourceIdentity",
    "StateKey",
    "SyncMode",
    "WorkloadRolesConfig",
]
