"""Remote object API implementations (workload cluster access)."""

from kubefeature.remote.base import ClusterConnector, RemoteObjectAPI, identity_of
from kubefeature.remote.memory import InMemoryFleet, InMemoryRemoteCluster

__all__ = [
    "ClusterConnector",
    "InMemoryFleet",
    "InMemoryRemoteCluster",
    "RemoteObjectAPI",
    "identity_of",
]
