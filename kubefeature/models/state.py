"""Per (cluster, feature) reconcile state and the status surface."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum

from kubefeature.models.features import ClusterRef, FeatureKind, SyncMode


class Readiness(StrEnum):
    """Backing-workload readiness as observed on the last reconcile."""

    ABSENT = "Absent"
    INSTALLING = "Installing"
    NOT_READY = "NotReady"
    READY = "Ready"


@dataclass(frozen=True, order=True)
class ResourceIdentity:
    """Uniquely names a generated resource on a workload cluster.

    ``namespace`` is empty for cluster-scoped resources.
    """

    api_version: str
    kind: str
    namespace: str
    name: str

    def __str__(self) -> str:
        if self.namespace:
            return f"{self.kind}/{self.namespace}/{self.name}"
        return f"{self.kind}/{self.name}"

    @property
    def group_version_kind(self) -> tuple[str, str]:
        return (self.api_version, self.kind)


@dataclass(frozen=True)
class StateKey:
    """Identifies one ClusterFeatureState record."""

    cluster: ClusterRef
    definition: str
    feature: FeatureKind

    def __str__(self) -> str:
        return f"{self.definition}/{self.feature}/{self.cluster}"


@dataclass
class ClusterFeatureState:
    """Ledger record for one matched cluster x feature definition x kind.

    Mutated only by the reconciler holding the lock for ``key``.
    ``applied_fingerprint`` is None while the state machine is Unapplied.
    """

    key: StateKey
    applicant_id: str
    sync_mode: SyncMode
    applied_fingerprint: bytes | None = None
    applied_generation: int | None = None
    observed_fingerprint: bytes | None = None
    deployed_resources: set[ResourceIdentity] = field(default_factory=set)
    deployed_kinds: set[tuple[str, str]] = field(default_factory=set)
    readiness: Readiness = Readiness.ABSENT
    last_error: str | None = None
    failure_count: int = 0
    updated_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))

    @property
    def applied(self) -> bool:
        return self.applied_fingerprint is not None

    def status(self) -> FeatureStatus:
        return FeatureStatus(
            cluster=self.key.cluster,
            feature=self.key.feature,
            applied_fingerprint=self.applied_fingerprint.hex() if self.applied_fingerprint else None,
            observed_fingerprint=self.observed_fingerprint.hex() if self.observed_fingerprint else None,
            readiness=self.readiness,
            deployed_resources=sorted(self.deployed_resources),
            last_error=self.last_error,
        )


@dataclass(frozen=True)
class FeatureStatus:
    """Read-only status view rendered by external reporting code."""

    cluster: ClusterRef
    feature: FeatureKind
    applied_fingerprint: str | None
    observed_fingerprint: str | None
    readiness: Readiness
    deployed_resources: list[ResourceIdentity]
    last_error: str | None


@dataclass(frozen=True)
class DefinitionStatus:
    """Aggregate status of a feature definition.  Observability only."""

    name: str
    matching_clusters: list[ClusterRef]
