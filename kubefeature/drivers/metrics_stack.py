"""Metrics stack feature (Prometheus operator).

Installation modes:
    Custom            -- operator plus referenced resources only.
    KubeStateMetrics  -- also kube-state-metrics and a Prometheus instance
                         scraping it.
    KubePrometheus    -- also a cluster-wide Prometheus instance.

Resources implied by the mode are part of the desired set, so switching
modes garbage-collects what the previous mode created.
"""

from __future__ import annotations

from typing import Any

from kubefeature.drivers.base import FeatureDriver, load_documents
from kubefeature.drivers.manifests import (
    KUBE_STATE_METRICS_YAML,
    PROMETHEUS_NAMESPACE,
    PROMETHEUS_OPERATOR_DEPLOYMENT,
    PROMETHEUS_OPERATOR_YAML,
)
from kubefeature.errors import ConfigInvalid
from kubefeature.models.features import (
    ConfigSourceRef,
    FeatureConfig,
    FeatureKind,
    InstallationMode,
    MetricsStackConfig,
)
from kubefeature.models.state import ResourceIdentity

DEFAULT_STORAGE_QUANTITY = "40Gi"


def _prometheus_instance(name: str, config: MetricsStackConfig, monitor_selector: dict[str, Any]) -> dict[str, Any]:
    spec: dict[str, Any] = {
        "replicas": 1,
        "serviceAccountName": "prometheus-operator",
        "serviceMonitorSelector": monitor_selector,
    }
    if config.storage_class_name:
        spec["storage"] = {
            "volumeClaimTemplate": {
                "spec": {
                    "storageClassName": config.storage_class_name,
                    "resources": {
                        "requests": {"storage": config.storage_quantity or DEFAULT_STORAGE_QUANTITY},
                    },
                },
            },
        }
    return {
        "apiVersion": "monitoring.coreos.com/v1",
        "kind": "Prometheus",
        "metadata": {"name": name, "namespace": PROMETHEUS_NAMESPACE},
        "spec": spec,
    }


class MetricsStackFeature(FeatureDriver):
    kind = FeatureKind.METRICS_STACK

    @property
    def workload(self) -> ResourceIdentity:
        return ResourceIdentity("apps/v1", "Deployment", PROMETHEUS_NAMESPACE, PROMETHEUS_OPERATOR_DEPLOYMENT)

    def validate(self, config: FeatureConfig) -> None:
        if not isinstance(config, MetricsStackConfig):
            raise ConfigInvalid(f"expected MetricsStackConfig, got {type(config).__name__}")
        if config.storage_quantity and not config.storage_class_name:
            raise ConfigInvalid("storage_quantity requires storage_class_name")

    def workload_manifests(self, config: FeatureConfig) -> list[dict[str, Any]]:
        self.validate(config)
        return load_documents(PROMETHEUS_OPERATOR_YAML, "bundled prometheus-operator")

    def extra_manifests(self, config: FeatureConfig) -> list[dict[str, Any]]:
        assert isinstance(config, MetricsStackConfig)
        if config.installation_mode is InstallationMode.KUBE_STATE_METRICS:
            manifests = load_documents(KUBE_STATE_METRICS_YAML, "bundled kube-state-metrics")
            manifests.append(
                _prometheus_instance(
                    "kube-state-metrics",
                    config,
                    {"matchLabels": {"app.kubernetes.io/name": "kube-state-metrics"}},
                )
            )
            return manifests
        if config.installation_mode is InstallationMode.KUBE_PROMETHEUS:
            return [_prometheus_instance("k8s", config, {})]
        return []

    def list_config_refs(self, config: FeatureConfig) -> list[ConfigSourceRef]:
        if not isinstance(config, MetricsStackConfig):
            return []
        return list(config.policy_refs)
