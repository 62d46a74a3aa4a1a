"""Feature drivers: one per add-on kind, selected through DriverRegistry."""

from kubefeature.drivers.base import FeatureDriver
from kubefeature.drivers.metrics_stack import MetricsStackFeature
from kubefeature.drivers.policy_engine import PolicyEngineFeature
from kubefeature.drivers.registry import DriverRegistry, build_registry
from kubefeature.drivers.workload_roles import WorkloadRolesFeature

__all__ = [
    "DriverRegistry",
    "FeatureDriver",
    "MetricsStackFeature",
    "PolicyEngineFeature",
    "WorkloadRolesFeature",
    "build_registry",
]
