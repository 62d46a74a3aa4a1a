"""Policy engine feature (Kyverno).

The backing workload is the Kyverno Deployment; per-config resources are
the policies found in the referenced ConfigMaps.
"""

from __future__ import annotations

from typing import Any

from kubefeature.drivers.base import FeatureDriver, load_documents
from kubefeature.drivers.manifests import (
    KYVERNO_DEPLOYMENT,
    KYVERNO_NAMESPACE,
    KYVERNO_YAML,
    change_replicas,
)
from kubefeature.errors import ConfigInvalid
from kubefeature.models.features import ConfigSourceRef, FeatureConfig, FeatureKind, PolicyEngineConfig
from kubefeature.models.state import ResourceIdentity


class PolicyEngineFeature(FeatureDriver):
    kind = FeatureKind.POLICY_ENGINE

    @property
    def workload(self) -> ResourceIdentity:
        return ResourceIdentity("apps/v1", "Deployment", KYVERNO_NAMESPACE, KYVERNO_DEPLOYMENT)

    def validate(self, config: FeatureConfig) -> None:
        if not isinstance(config, PolicyEngineConfig):
            raise ConfigInvalid(f"expected PolicyEngineConfig, got {type(config).__name__}")
        if config.replicas < 1:
            raise ConfigInvalid(f"replicas must be at least 1, got {config.replicas}")

    def workload_manifests(self, config: FeatureConfig) -> list[dict[str, Any]]:
        self.validate(config)
        assert isinstance(config, PolicyEngineConfig)
        return load_documents(change_replicas(KYVERNO_YAML, config.replicas), "bundled kyverno")

    def list_config_refs(self, config: FeatureConfig) -> list[ConfigSourceRef]:
        if not isinstance(config, PolicyEngineConfig):
            return []
        return list(config.policy_refs)
