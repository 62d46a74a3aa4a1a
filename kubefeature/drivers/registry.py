"""Driver registry.

Built once at startup and handed to the reconciler; there is no module
level driver table.
"""

from __future__ import annotations

from collections.abc import Iterable

from kubefeature.drivers.base import FeatureDriver
from kubefeature.drivers.metrics_stack import MetricsStackFeature
from kubefeature.drivers.policy_engine import PolicyEngineFeature
from kubefeature.drivers.workload_roles import WorkloadRolesFeature
from kubefeature.errors import UnknownFeatureKind
from kubefeature.models.features import FeatureKind
from kubefeature.sources.base import ConfigSourceStore


class DriverRegistry:
    def __init__(self, drivers: Iterable[FeatureDriver] = ()) -> None:
        self._drivers: dict[FeatureKind, FeatureDriver] = {}
        for driver in drivers:
            self.register(driver)

    def register(self, driver: FeatureDriver) -> None:
        if driver.kind in self._drivers:
            raise ValueError(f"driver for {driver.kind.value} already registered")
        self._drivers[driver.kind] = driver

    def get(self, kind: FeatureKind) -> FeatureDriver:
        try:
            return self._drivers[kind]
        except KeyError:
            raise UnknownFeatureKind(f"no driver registered for feature kind {kind}") from None

    def kinds(self) -> list[FeatureKind]:
        return sorted(self._drivers)


def build_registry(sources: ConfigSourceStore) -> DriverRegistry:
    """Registry with every built-in feature kind."""
    return DriverRegistry(
        [PolicyEngineFeature(sources), MetricsStackFeature(sources), WorkloadRolesFeature(sources)]
    )
