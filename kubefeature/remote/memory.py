"""In-memory remote cluster used by tests and dry runs.

Records every create/update/delete call so tests can assert idempotency,
and supports failure injection for unreachable clusters and failing
deletes.
"""

from __future__ import annotations

import copy
from typing import Any

from kubefeature.errors import ClusterGone, RemoteUnreachable
from kubefeature.models.features import ClusterRef
from kubefeature.models.state import ResourceIdentity
from kubefeature.remote.base import ClusterConnector, RemoteObjectAPI, identity_of


class InMemoryRemoteCluster(RemoteObjectAPI):
    def __init__(self) -> None:
        self.objects: dict[ResourceIdentity, dict[str, Any]] = {}
        self.creates: list[ResourceIdentity] = []
        self.updates: list[ResourceIdentity] = []
        self.deletes: list[ResourceIdentity] = []
        self.fail_deletes: set[ResourceIdentity] = set()
        self.fail_applies: set[ResourceIdentity] = set()
        self.unreachable = False

    def _check(self) -> None:
        if self.unreachable:
            raise RemoteUnreachable("in-memory cluster marked unreachable")

    async def apply(self, manifest: dict[str, Any]) -> ResourceIdentity:
        self._check()
        identity = identity_of(manifest)
        if identity in self.fail_applies:
            raise RemoteUnreachable(f"apply of {identity} failed")
        existing = self.objects.get(identity)
        stored = copy.deepcopy(manifest)
        if existing is None:
            self.creates.append(identity)
        else:
            self.updates.append(identity)
            # apply never touches status, the workload owns it
            if "status" in existing:
                stored["status"] = existing["status"]
        self.objects[identity] = stored
        return identity

    async def delete(self, identity: ResourceIdentity) -> None:
        self._check()
        self.deletes.append(identity)
        if identity in self.fail_deletes:
            raise RemoteUnreachable(f"delete of {identity} failed")
        self.objects.pop(identity, None)

    async def get(self, identity: ResourceIdentity) -> dict[str, Any] | None:
        self._check()
        obj = self.objects.get(identity)
        return copy.deepcopy(obj) if obj is not None else None

    async def list_labelled(
        self,
        api_version: str,
        kind: str,
        labels: dict[str, str],
    ) -> list[ResourceIdentity]:
        self._check()
        found = []
        for identity, obj in self.objects.items():
            if identity.api_version != api_version or identity.kind != kind:
                continue
            obj_labels = (obj.get("metadata") or {}).get("labels") or {}
            if all(obj_labels.get(k) == v for k, v in labels.items()):
                found.append(identity)
        return sorted(found)

    def set_status(self, identity: ResourceIdentity, status: dict[str, Any]) -> None:
        """Simulate the workload controller writing status."""
        self.objects[identity]["status"] = status


class InMemoryFleet(ClusterConnector):
    """ClusterConnector over a dict of in-memory clusters."""

    def __init__(self) -> None:
        self.clusters: dict[ClusterRef, InMemoryRemoteCluster] = {}

    def add(self, cluster: ClusterRef) -> InMemoryRemoteCluster:
        remote = self.clusters.setdefault(cluster, InMemoryRemoteCluster())
        return remote

    def remove(self, cluster: ClusterRef) -> None:
        self.clusters.pop(cluster, None)

    async def connect(self, cluster: ClusterRef) -> RemoteObjectAPI:
        remote = self.clusters.get(cluster)
        if remote is None:
            raise ClusterGone(f"cluster {cluster} not found")
        return remote
