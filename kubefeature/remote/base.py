"""Remote Object API abstraction for a single workload cluster."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from kubefeature.errors import ConfigInvalid
from kubefeature.models.features import ClusterRef
from kubefeature.models.state import ResourceIdentity


def identity_of(manifest: dict[str, Any]) -> ResourceIdentity:
    """Return the identity of a rendered manifest.

    Raises:
        ConfigInvalid: if apiVersion, kind or metadata.name is missing.
    """
    if not isinstance(manifest, dict):
        raise ConfigInvalid(f"manifest must be a mapping, got {type(manifest).__name__}")
    metadata = manifest.get("metadata") or {}
    api_version = manifest.get("apiVersion")
    kind = manifest.get("kind")
    name = metadata.get("name") if isinstance(metadata, dict) else None
    if not api_version or not kind or not name:
        raise ConfigInvalid("manifest requires apiVersion, kind and metadata.name")
    return ResourceIdentity(
        api_version=str(api_version),
        kind=str(kind),
        namespace=str(metadata.get("namespace") or ""),
        name=str(name),
    )


class RemoteObjectAPI(ABC):
    """Object API of one workload cluster.

    Implementations raise RemoteUnreachable for transport failures.
    Writes follow last-write-wins semantics of the remote store.
    """

    @abstractmethod
    async def apply(self, manifest: dict[str, Any]) -> ResourceIdentity:
        """Create or update *manifest* and return its identity."""

    @abstractmethod
    async def delete(self, identity: ResourceIdentity) -> None:
        """Delete *identity*.  Deleting an absent resource succeeds."""

    @abstractmethod
    async def get(self, identity: ResourceIdentity) -> dict[str, Any] | None:
        """Return the object (including status) or None when absent."""

    @abstractmethod
    async def list_labelled(
        self,
        api_version: str,
        kind: str,
        labels: dict[str, str],
    ) -> list[ResourceIdentity]:
        """List identities of *kind* carrying every label in *labels*."""


class ClusterConnector(ABC):
    """Hands out a RemoteObjectAPI per workload cluster.

    ``connect`` raises ClusterGone when the cluster no longer exists.
    """

    @abstractmethod
    async def connect(self, cluster: ClusterRef) -> RemoteObjectAPI: ...

    async def close(self) -> None:
        """Release any pooled connections."""
