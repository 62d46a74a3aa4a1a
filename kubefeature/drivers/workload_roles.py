"""Workload roles feature.

Copies ClusterRole and Role documents kept in management-cluster ConfigMaps
to the workload cluster.  There is no backing workload, so the readiness
gate always reports Ready.
"""

from __future__ import annotations

from typing import Any

from kubefeature.drivers.base import FeatureDriver
from kubefeature.errors import ConfigInvalid
from kubefeature.models.features import ConfigSourceRef, FeatureConfig, FeatureKind, WorkloadRolesConfig

RBAC_API_VERSION = "rbac.authorization.k8s.io/v1"
_ROLE_KINDS = frozenset({"ClusterRole", "Role"})


class WorkloadRolesFeature(FeatureDriver):
    kind = FeatureKind.WORKLOAD_ROLES

    def validate(self, config: FeatureConfig) -> None:
        if not isinstance(config, WorkloadRolesConfig):
            raise ConfigInvalid(f"expected WorkloadRolesConfig, got {type(config).__name__}")

    def check_manifest(self, manifest: dict[str, Any], source: str) -> None:
        api_version, kind = manifest.get("apiVersion"), manifest.get("kind")
        if api_version != RBAC_API_VERSION or kind not in _ROLE_KINDS:
            raise ConfigInvalid(f"{source}: only ClusterRole and Role are allowed, got {api_version}/{kind}")
        if kind == "Role" and not (manifest.get("metadata") or {}).get("namespace"):
            raise ConfigInvalid(f"{source}: Role requires metadata.namespace")

    def list_config_refs(self, config: FeatureConfig) -> list[ConfigSourceRef]:
        if not isinstance(config, WorkloadRolesConfig):
            return []
        return list(config.role_refs)
