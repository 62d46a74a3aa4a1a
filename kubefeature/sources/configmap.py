"""ConfigMap-backed Config Source Store.

Referenced configuration lives in ConfigMaps on the management cluster.
A ConfigMap's blob is its data values joined in key order with YAML
document separators, so the blob is both stable for fingerprinting and
directly loadable as a multi-document YAML stream by the drivers.
"""

from __future__ import annotations

import asyncio
from typing import Any

import aiohttp
import structlog

from kubefeature.errors import RemoteUnreachable
from kubefeature.models.features import ConfigSourceRef
from kubefeature.sources.base import ConfigSourceStore

_log = structlog.get_logger(component="sources.configmap")

DOCUMENT_SEPARATOR = "\n---\n"


def render_config_map_data(data: dict[str, str] | None) -> str:
    """Join ConfigMap data values into a single deterministic blob."""
    if not data:
        return ""
    return DOCUMENT_SEPARATOR.join(data[key] for key in sorted(data))


class ConfigMapSourceStore(ConfigSourceStore):
    """Reads ConfigMaps through a kubernetes-asyncio ``CoreV1Api``.

    Args:
        core_v1: CoreV1Api bound to the management cluster.
        timeout: Per-request timeout in seconds.
    """

    def __init__(self, core_v1: Any, timeout: float = 30.0) -> None:
        self._core_v1 = core_v1
        self._timeout = timeout

    async def get(self, ref: ConfigSourceRef) -> str | None:
        from kubernetes_asyncio.client.exceptions import ApiException  # type: ignore[import-untyped]

        try:
            config_map = await asyncio.wait_for(
                self._core_v1.read_namespaced_config_map(name=ref.name, namespace=ref.namespace),
                timeout=self._timeout,
            )
        except ApiException as exc:
            if exc.status == 404:
                return None
            _log.warning("configmap_read_failed", ref=str(ref), status=exc.status)
            raise RemoteUnreachable(f"reading configmap {ref}: {exc.reason}") from exc
        except (TimeoutError, aiohttp.ClientError, OSError) as exc:
            raise RemoteUnreachable(f"reading configmap {ref}: {exc!r}") from exc
        return render_config_map_data(config_map.data)
