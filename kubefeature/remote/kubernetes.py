"""Kubernetes-backed remote object API.

Workload clusters are reached through the kubeconfig Secret that
Cluster API writes next to each Cluster object (``<name>-kubeconfig``,
key ``value``).  Objects are handled through the kubernetes-asyncio
dynamic client so any kind known to the remote API server can be applied.
"""

from __future__ import annotations

import asyncio
import base64
from collections.abc import Awaitable
from typing import Any, TypeVar

import aiohttp
import structlog
import yaml

from kubefeature.errors import ClusterGone, ConfigInvalid, FeatureError, NotReady, RemoteUnreachable
from kubefeature.models.features import ClusterRef
from kubefeature.models.state import ResourceIdentity
from kubefeature.remote.base import ClusterConnector, RemoteObjectAPI, identity_of

_log = structlog.get_logger(component="remote.kubernetes")

_T = TypeVar("_T")

_CAPI_GROUP = "cluster.x-k8s.io"
_CAPI_VERSION = "v1beta1"
_MERGE_PATCH = "application/merge-patch+json"


def _label_selector(labels: dict[str, str]) -> str:
    return ",".join(f"{k}={v}" for k, v in sorted(labels.items()))


# the API server refused the object itself; resending it cannot succeed
_REJECTED = frozenset({400, 422})


def _write_error(exc: Any, what: str) -> FeatureError:
    if exc.status in _REJECTED:
        return ConfigInvalid(f"{what}: rejected with {exc.status} {exc.reason}")
    return RemoteUnreachable(f"{what}: {exc.status} {exc.reason}")


class KubernetesRemoteObjectAPI(RemoteObjectAPI):
    """RemoteObjectAPI over a kubernetes-asyncio ``DynamicClient``.

    Args:
        dynamic:  Connected DynamicClient for the workload cluster.
        timeout:  Per-request timeout in seconds.
    """

    def __init__(self, dynamic: Any, timeout: float = 30.0) -> None:
        self._dynamic = dynamic
        self._timeout = timeout

    async def _call(self, awaitable: Awaitable[_T], what: str) -> _T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self._timeout)
        except (TimeoutError, aiohttp.ClientError, OSError) as exc:
            raise RemoteUnreachable(f"{what}: {exc!r}") from exc

    async def _resource(self, api_version: str, kind: str) -> Any:
        from kubernetes_asyncio.dynamic.exceptions import ResourceNotFoundError  # type: ignore[import-untyped]

        try:
            return await self._call(
                self._dynamic.resources.get(api_version=api_version, kind=kind),
                f"discovering {api_version}/{kind}",
            )
        except ResourceNotFoundError:
            return None

    async def apply(self, manifest: dict[str, Any]) -> ResourceIdentity:
        from kubernetes_asyncio.client.exceptions import ApiException  # type: ignore[import-untyped]

        identity = identity_of(manifest)
        resource = await self._resource(identity.api_version, identity.kind)
        if resource is None:
            # CRDs installed alongside the backing workload may not be served yet
            raise NotReady(f"kind {identity.api_version}/{identity.kind} not served yet")
        namespace = identity.namespace or None
        try:
            await self._call(
                self._dynamic.create(resource, body=manifest, namespace=namespace),
                f"creating {identity}",
            )
        except ApiException as exc:
            if exc.status != 409:
                raise _write_error(exc, f"creating {identity}") from exc
            try:
                await self._call(
                    self._dynamic.patch(
                        resource,
                        body=manifest,
                        name=identity.name,
                        namespace=namespace,
                        content_type=_MERGE_PATCH,
                    ),
                    f"updating {identity}",
                )
            except ApiException as patch_exc:
                raise _write_error(patch_exc, f"updating {identity}") from patch_exc
        return identity

    async def delete(self, identity: ResourceIdentity) -> None:
        from kubernetes_asyncio.client.exceptions import ApiException  # type: ignore[import-untyped]

        resource = await self._resource(identity.api_version, identity.kind)
        if resource is None:
            # kind no longer served, so no instance can exist
            return
        try:
            await self._call(
                self._dynamic.delete(resource, name=identity.name, namespace=identity.namespace or None),
                f"deleting {identity}",
            )
        except ApiException as exc:
            if exc.status == 404:
                return
            raise RemoteUnreachable(f"deleting {identity}: {exc.status} {exc.reason}") from exc

    async def get(self, identity: ResourceIdentity) -> dict[str, Any] | None:
        from kubernetes_asyncio.client.exceptions import ApiException  # type: ignore[import-untyped]

        resource = await self._resource(identity.api_version, identity.kind)
        if resource is None:
            return None
        try:
            obj = await self._call(
                self._dynamic.get(resource, name=identity.name, namespace=identity.namespace or None),
                f"reading {identity}",
            )
        except ApiException as exc:
            if exc.status == 404:
                return None
            raise RemoteUnreachable(f"reading {identity}: {exc.status} {exc.reason}") from exc
        return obj.to_dict()

    async def list_labelled(
        self,
        api_version: str,
        kind: str,
        labels: dict[str, str],
    ) -> list[ResourceIdentity]:
        from kubernetes_asyncio.client.exceptions import ApiException  # type: ignore[import-untyped]

        resource = await self._resource(api_version, kind)
        if resource is None:
            return []
        try:
            listed = await self._call(
                self._dynamic.get(resource, label_selector=_label_selector(labels)),
                f"listing {api_version}/{kind}",
            )
        except ApiException as exc:
            raise RemoteUnreachable(f"listing {api_version}/{kind}: {exc.status} {exc.reason}") from exc
        items = listed.to_dict().get("items") or []
        identities = []
        for item in items:
            item.setdefault("apiVersion", api_version)
            item.setdefault("kind", kind)
            identities.append(identity_of(item))
        return sorted(identities)


class KubeconfigSecretConnector(ClusterConnector):
    """Connects to workload clusters through their Cluster API kubeconfig Secret.

    Clients are cached per cluster and dropped when the cluster is gone.

    Args:
        core_v1:        CoreV1Api bound to the management cluster.
        custom_objects: CustomObjectsApi bound to the management cluster.
        timeout:        Per-request timeout in seconds.
    """

    def __init__(self, core_v1: Any, custom_objects: Any, timeout: float = 30.0) -> None:
        self._core_v1 = core_v1
        self._custom_objects = custom_objects
        self._timeout = timeout
        self._clients: dict[ClusterRef, tuple[Any, KubernetesRemoteObjectAPI]] = {}
        self._lock = asyncio.Lock()

    async def connect(self, cluster: ClusterRef) -> RemoteObjectAPI:
        await self._ensure_cluster_exists(cluster)
        async with self._lock:
            cached = self._clients.get(cluster)
            if cached is not None:
                return cached[1]
            api_client, remote = await self._build_client(cluster)
            self._clients[cluster] = (api_client, remote)
            return remote

    async def _ensure_cluster_exists(self, cluster: ClusterRef) -> None:
        from kubernetes_asyncio.client.exceptions import ApiException  # type: ignore[import-untyped]

        try:
            await asyncio.wait_for(
                self._custom_objects.get_namespaced_custom_object(
                    _CAPI_GROUP, _CAPI_VERSION, cluster.namespace, "clusters", cluster.name
                ),
                timeout=self._timeout,
            )
        except ApiException as exc:
            if exc.status == 404:
                await self._drop(cluster)
                raise ClusterGone(f"cluster {cluster} not found") from exc
            raise RemoteUnreachable(f"reading cluster {cluster}: {exc.status} {exc.reason}") from exc
        except (TimeoutError, aiohttp.ClientError, OSError) as exc:
            raise RemoteUnreachable(f"reading cluster {cluster}: {exc!r}") from exc

    async def _build_client(self, cluster: ClusterRef) -> tuple[Any, KubernetesRemoteObjectAPI]:
        from kubernetes_asyncio import config as k8s_config  # type: ignore[import-untyped]
        from kubernetes_asyncio.client.exceptions import ApiException  # type: ignore[import-untyped]
        from kubernetes_asyncio.dynamic import DynamicClient  # type: ignore[import-untyped]

        secret_name = f"{cluster.name}-kubeconfig"
        try:
            secret = await asyncio.wait_for(
                self._core_v1.read_namespaced_secret(name=secret_name, namespace=cluster.namespace),
                timeout=self._timeout,
            )
        except ApiException as exc:
            if exc.status == 404:
                raise ClusterGone(f"kubeconfig secret for {cluster} not found") from exc
            raise RemoteUnreachable(f"reading kubeconfig for {cluster}: {exc.status}") from exc
        except (TimeoutError, aiohttp.ClientError, OSError) as exc:
            raise RemoteUnreachable(f"reading kubeconfig for {cluster}: {exc!r}") from exc

        raw = (secret.data or {}).get("value")
        if not raw:
            raise RemoteUnreachable(f"kubeconfig secret for {cluster} has no 'value' key")
        kubeconfig = yaml.safe_load(base64.b64decode(raw))

        api_client = await k8s_config.new_client_from_config_dict(kubeconfig)
        try:
            dynamic = await asyncio.wait_for(DynamicClient(api_client), timeout=self._timeout)
        except (TimeoutError, aiohttp.ClientError, OSError) as exc:
            await api_client.close()
            raise RemoteUnreachable(f"connecting to {cluster}: {exc!r}") from exc
        _log.info("workload_cluster_connected", cluster=str(cluster))
        return api_client, KubernetesRemoteObjectAPI(dynamic, timeout=self._timeout)

    async def _drop(self, cluster: ClusterRef) -> None:
        async with self._lock:
            cached = self._clients.pop(cluster, None)
        if cached is not None:
            await cached[0].close()

    async def close(self) -> None:
        async with self._lock:
            clients = list(self._clients.values())
            self._clients.clear()
        for api_client, _ in clients:
            try:
                await api_client.close()
            except Exception as exc:
                _log.debug("api_client_close_failed", error=str(exc))
