"""Shared fixtures for kubefeature tests.

Everything runs against in-memory fakes: a config source store, a fleet of
in-memory clusters and the in-memory state store.  No test touches a real
Kubernetes API server.
"""

from __future__ import annotations

from typing import Any

import pytest

from kubefeature.drivers.base import DeployProgress, FeatureDriver
from kubefeature.drivers.metrics_stack import MetricsStackFeature
from kubefeature.drivers.policy_engine import PolicyEngineFeature
from kubefeature.drivers.registry import DriverRegistry
from kubefeature.drivers.workload_roles import WorkloadRolesFeature
from kubefeature.fingerprint import FingerprintEngine
from kubefeature.models.features import (
    ClusterRef,
    ConfigSourceRef,
    FeatureConfig,
    FeatureDefinition,
    FeatureKind,
    MetricsStackConfig,
    PolicyEngineConfig,
    SyncMode,
)
from kubefeature.models.state import ResourceIdentity, StateKey
from kubefeature.reconciler import ClusterFeatureReconciler
from kubefeature.remote.base import RemoteObjectAPI
from kubefeature.remote.memory import InMemoryFleet, InMemoryRemoteCluster
from kubefeature.sources.memory import InMemoryConfigSourceStore
from kubefeature.store.base import InMemoryStateStore

CLUSTER = ClusterRef(namespace="default", name="prod-eu-1")
REF_A = ConfigSourceRef(namespace="default", name="policies-a")
REF_B = ConfigSourceRef(namespace="default", name="policies-b")


# ---------------------------------------------------------------------------
# Manifest helpers
# ---------------------------------------------------------------------------


def policy_yaml(name: str, action: str = "Audit") -> str:
    """A single Kyverno ClusterPolicy document."""
    return (
        "apiVersion: kyverno.io/v1\n"
        "kind: ClusterPolicy\n"
        "metadata:\n"
        f"  name: {name}\n"
        "spec:\n"
        f"  validationFailureAction: {action}\n"
    )


def policies_yaml(*names: str) -> str:
    return "---\n".join(policy_yaml(n) for n in names)


def policy_id(name: str) -> ResourceIdentity:
    return ResourceIdentity("kyverno.io/v1", "ClusterPolicy", "", name)


# ---------------------------------------------------------------------------
# Definition helpers
# ---------------------------------------------------------------------------


def make_definition(
    sync_mode: SyncMode = SyncMode.CONTINUOUS,
    refs: tuple[ConfigSourceRef, ...] = (REF_A, REF_B),
    name: str = "fleet-policies",
    generation: int = 1,
    metrics: MetricsStackConfig | None = None,
    policy: bool = True,
) -> FeatureDefinition:
    features: dict[FeatureKind, FeatureConfig] = {}
    if policy:
        features[FeatureKind.POLICY_ENGINE] = PolicyEngineConfig(replicas=1, policy_refs=refs)
    if metrics is not None:
        features[FeatureKind.METRICS_STACK] = metrics
    return FeatureDefinition(
        name=name,
        selector="env=prod",
        sync_mode=sync_mode,
        features=features,
        generation=generation,
    )


def policy_key(cluster: ClusterRef = CLUSTER, definition: str = "fleet-policies") -> StateKey:
    return StateKey(cluster=cluster, definition=definition, feature=FeatureKind.POLICY_ENGINE)


async def install_ready_workload(remote: RemoteObjectAPI, driver: FeatureDriver, config: FeatureConfig) -> None:
    """Install the backing workload and mark every replica ready."""
    await driver.install_workload(remote, config)
    assert isinstance(remote, InMemoryRemoteCluster)
    obj = remote.objects[driver.workload]
    replicas = obj["spec"].get("replicas", 1)
    remote.set_status(driver.workload, {"replicas": replicas, "readyReplicas": replicas})


# ---------------------------------------------------------------------------
# Spy drivers
# ---------------------------------------------------------------------------


class CountingPolicyEngine(PolicyEngineFeature):
    """PolicyEngineFeature that counts Deploy and Undeploy calls."""

    def __init__(self, sources: InMemoryConfigSourceStore) -> None:
        super().__init__(sources)
        self.deploy_calls = 0
        self.undeploy_calls = 0

    async def deploy(
        self,
        remote: RemoteObjectAPI,
        config: FeatureConfig,
        applicant: str,
        progress: DeployProgress | None = None,
    ) -> set[ResourceIdentity]:
        self.deploy_calls += 1
        return await super().deploy(remote, config, applicant, progress)

    async def undeploy(self, remote: RemoteObjectAPI, applicant: str, kinds: set[tuple[str, str]]) -> None:
        self.undeploy_calls += 1
        await super().undeploy(remote, applicant, kinds)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sources() -> InMemoryConfigSourceStore:
    return InMemoryConfigSourceStore(
        {
            REF_A: policies_yaml("require-labels", "disallow-latest-tag"),
            REF_B: policies_yaml("restrict-host-path"),
        }
    )


@pytest.fixture
def fleet() -> InMemoryFleet:
    fleet = InMemoryFleet()
    fleet.add(CLUSTER)
    return fleet


@pytest.fixture
def remote(fleet: InMemoryFleet) -> InMemoryRemoteCluster:
    return fleet.clusters[CLUSTER]


@pytest.fixture
def policy_driver(sources: InMemoryConfigSourceStore) -> CountingPolicyEngine:
    return CountingPolicyEngine(sources)


@pytest.fixture
def registry(sources: InMemoryConfigSourceStore, policy_driver: CountingPolicyEngine) -> DriverRegistry:
    return DriverRegistry([policy_driver, MetricsStackFeature(sources), WorkloadRolesFeature(sources)])


@pytest.fixture
def state_store() -> InMemoryStateStore:
    return InMemoryStateStore()


@pytest.fixture
def reconciler(
    registry: DriverRegistry,
    state_store: InMemoryStateStore,
    fleet: InMemoryFleet,
    sources: InMemoryConfigSourceStore,
) -> ClusterFeatureReconciler:
    return ClusterFeatureReconciler(
        registry=registry,
        store=state_store,
        connector=fleet,
        fingerprints=FingerprintEngine(sources),
        remote_timeout=2.0,
        not_ready_requeue=1.0,
    )


@pytest.fixture
async def ready_remote(
    remote: InMemoryRemoteCluster,
    policy_driver: CountingPolicyEngine,
) -> InMemoryRemoteCluster:
    """The test cluster with a ready Kyverno already installed."""
    await install_ready_workload(remote, policy_driver, PolicyEngineConfig())
    return remote


def objects_of_kind(remote: InMemoryRemoteCluster, kind: str) -> dict[ResourceIdentity, Any]:
    return {i: o for i, o in remote.objects.items() if i.kind == kind}
