"""Application bootstrap for kubefeature.

Wires all components in dependency order and manages the asyncio lifecycle.
Startup order: config → logging → K8s client → state store → config sources
              → drivers → reconciler → handler/queue → definitions → REST

Shutdown is graceful: components are stopped in reverse startup order.
Each component's stop error is caught and logged independently so that
a single component failure does not prevent the rest from shutting down.
"""

from __future__ import annotations

import asyncio
import signal
from typing import TYPE_CHECKING

from kubefeature.config import load_config
from kubefeature.models.config import KubeFeatureConfig
from kubefeature.observability.logging import get_logger, setup_logging

if TYPE_CHECKING:
    import structlog

    from kubefeature.controller.handler import MatchTransitionHandler
    from kubefeature.controller.queue import ReconcileQueue
    from kubefeature.drivers.registry import DriverRegistry
    from kubefeature.reconciler import ClusterFeatureReconciler
    from kubefeature.remote.base import ClusterConnector
    from kubefeature.sources.base import ConfigSourceStore
    from kubefeature.store.base import StateStore

_SHUTDOWN_GRACE_SECONDS = 15


class _ComponentError(Exception):
    """Raised when a mandatory component fails to start."""

    def __init__(self, component: str, cause: Exception) -> None:
        super().__init__(f"Component '{component}' failed to start: {cause}")
        self.component = component
        self.cause = cause


class KubeFeatureApp:
    """Application root.  Owns every component and coordinates their lifecycle.

    ``stop()`` is safe to call on an app that was never started or is
    already stopped.
    """

    def __init__(self) -> None:
        self.config: KubeFeatureConfig | None = None

        self._k8s_client: object | None = None
        self._core_v1: object | None = None
        self._custom_objects: object | None = None
        self._state_store: StateStore | None = None
        self._sources: ConfigSourceStore | None = None
        self._registry: DriverRegistry | None = None
        self._connector: ClusterConnector | None = None
        self._reconciler: ClusterFeatureReconciler | None = None
        self._handler: MatchTransitionHandler | None = None
        self._queue: ReconcileQueue | None = None
        self._rest_server: object | None = None

        self._background_tasks: list[asyncio.Task[None]] = []

        self._running = False
        self._log: structlog.stdlib.BoundLogger | None = None

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start all components in dependency order.

        Raises _ComponentError if a mandatory component cannot start.
        """
        self.config = load_config()

        setup_logging(self.config.log.level)
        self._log = get_logger("app")
        self._log.info("kubefeature starting", version=_kubefeature_version())

        await self._start_k8s_client()
        await self._start_state_store()
        await self._start_sources()
        await self._start_reconciler()
        await self._start_controller()
        await self._start_definitions()
        await self._start_rest()

        self._running = True
        self._log.info("kubefeature started", port=self.config.api.port)

    async def _start_k8s_client(self) -> None:
        """Configure kubernetes-asyncio for the management cluster."""
        assert self._log is not None
        self._log.debug("starting k8s client")
        try:
            import kubernetes_asyncio.config as k8s_config  # type: ignore[import-untyped]
            from kubernetes_asyncio import client as k8s_client  # type: ignore[import-untyped]

            try:
                k8s_config.load_incluster_config()
                self._log.info("k8s client configured from in-cluster service account")
            except k8s_config.ConfigException:
                await k8s_config.load_kube_config()
                self._log.info("k8s client configured from kubeconfig")

            self._k8s_client = k8s_client.ApiClient()
            self._core_v1 = k8s_client.CoreV1Api(self._k8s_client)
            self._custom_objects = k8s_client.CustomObjectsApi(self._k8s_client)
        except Exception as exc:
            raise _ComponentError("k8s_client", exc) from exc

    async def _start_state_store(self) -> None:
        assert self._log is not None
        assert self.config is not None
        try:
            from kubefeature.store import InMemoryStateStore, SQLiteStateStore

            if self.config.state.backend == "sqlite":
                self._state_store = SQLiteStateStore(self.config.state.path)
            else:
                self._state_store = InMemoryStateStore()
            self._log.info("state store started", backend=self.config.state.backend)
        except Exception as exc:
            raise _ComponentError("state_store", exc) from exc

    async def _start_sources(self) -> None:
        assert self._log is not None
        assert self.config is not None
        try:
            from kubefeature.drivers.registry import build_registry
            from kubefeature.remote.kubernetes import KubeconfigSecretConnector
            from kubefeature.sources.configmap import ConfigMapSourceStore

            timeout = self.config.reconciler.remote_timeout_seconds
            self._sources = ConfigMapSourceStore(self._core_v1, timeout=timeout)
            self._registry = build_registry(self._sources)
            self._connector = KubeconfigSecretConnector(self._core_v1, self._custom_objects, timeout=timeout)
            self._log.info("config sources started", drivers=[k.value for k in self._registry.kinds()])
        except Exception as exc:
            raise _ComponentError("sources", exc) from exc

    async def _start_reconciler(self) -> None:
        assert self._log is not None
        assert self.config is not None
        assert self._registry is not None
        assert self._state_store is not None
        assert self._connector is not None
        assert self._sources is not None
        try:
            from kubefeature.fingerprint import FingerprintEngine
            from kubefeature.reconciler import ClusterFeatureReconciler

            self._reconciler = ClusterFeatureReconciler(
                registry=self._registry,
                store=self._state_store,
                connector=self._connector,
                fingerprints=FingerprintEngine(self._sources),
                remote_timeout=self.config.reconciler.remote_timeout_seconds,
                not_ready_requeue=self.config.reconciler.not_ready_requeue_seconds,
            )
            self._log.info("reconciler started")
        except Exception as exc:
            raise _ComponentError("reconciler", exc) from exc

    async def _start_controller(self) -> None:
        """Start the reconcile queue workers."""
        assert self._log is not None
        assert self.config is not None
        assert self._reconciler is not None
        try:
            from kubefeature.controller import MatchTransitionHandler, ReconcileQueue

            handler = MatchTransitionHandler(self._reconciler)
            queue = ReconcileQueue(
                process_fn=handler.process,
                workers=self.config.reconciler.workers,
                backoff_base=self.config.reconciler.backoff_base_seconds,
                backoff_max=self.config.reconciler.backoff_max_seconds,
            )
            handler.attach_queue(queue)
            await queue.start()
            self._handler = handler
            self._queue = queue
            self._log.info("controller started", workers=self.config.reconciler.workers)
        except Exception as exc:
            raise _ComponentError("controller", exc) from exc

    async def _start_definitions(self) -> None:
        """Load definitions, resume persisted records, then keep polling."""
        assert self._log is not None
        assert self.config is not None
        assert self._handler is not None
        if not self.config.definitions.path:
            self._log.warning("no definitions path configured; nothing to reconcile")
            return
        try:
            from kubefeature.errors import ConfigInvalid
            from kubefeature.sources.definitions import DefinitionFileSource

            source = DefinitionFileSource(
                self.config.definitions.path,
                self._handler,
                poll_seconds=self.config.definitions.poll_seconds,
                default_namespace=self.config.definitions.management_namespace,
            )
            try:
                await source.load_once()
            except ConfigInvalid as exc:
                self._log.error("initial definitions load failed", error=str(exc))
            else:
                # records whose definition vanished while we were down get undeployed
                await self._handler.resync()
            task = asyncio.create_task(source.run(), name="definitions-poller")
            self._background_tasks.append(task)
            self._log.info("definitions source started", path=self.config.definitions.path)
        except Exception as exc:
            raise _ComponentError("definitions", exc) from exc

    async def _start_rest(self) -> None:
        """Start the uvicorn status server."""
        assert self._log is not None
        assert self.config is not None
        assert self._handler is not None
        try:
            import uvicorn  # type: ignore[import-untyped]

            from kubefeature.api import create_app

            fastapi_app = create_app(handler=self._handler, config=self.config)
            uv_config = uvicorn.Config(
                app=fastapi_app,
                host="0.0.0.0",
                port=self.config.api.port,
                log_config=None,  # structlog handles all logging
                access_log=False,
            )
            server = uvicorn.Server(uv_config)
            task = asyncio.create_task(server.serve(), name="rest-server")
            self._background_tasks.append(task)
            self._rest_server = server
            self._log.info("rest api started", port=self.config.api.port)
        except Exception as exc:
            raise _ComponentError("rest", exc) from exc

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def stop(self) -> None:
        """Gracefully stop all components in reverse startup order."""
        if not self._running and self._log is None:
            return

        log = self._log or get_logger("app")
        log.info("kubefeature shutting down")

        self._running = False

        for task in reversed(self._background_tasks):
            if not task.done():
                task.cancel()
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)
        self._background_tasks.clear()

        # in-flight reconciles are cancelled; the ledger only holds confirmed state
        await self._stop_component("queue", self._queue)
        await self._stop_component("connector", self._connector, method="close")
        await self._stop_component("state_store", self._state_store, method="close")
        await self._stop_k8s_client()

        log.info("kubefeature stopped")

    async def _stop_component(self, name: str, component: object | None, method: str = "stop") -> None:
        """Call stop() (or *method*) on a component, catching all errors."""
        if component is None:
            return
        log = self._log or get_logger("app")
        stop_fn = getattr(component, method, None)
        if stop_fn is None:
            return
        try:
            result = stop_fn()
            if asyncio.iscoroutine(result):
                await asyncio.wait_for(result, timeout=_SHUTDOWN_GRACE_SECONDS)
        except TimeoutError:
            log.warning("component stop timed out", component=name, timeout=_SHUTDOWN_GRACE_SECONDS)
        except Exception as exc:
            log.error("component stop raised an error", component=name, error=str(exc))

    async def _stop_k8s_client(self) -> None:
        if self._k8s_client is None:
            return
        log = self._log or get_logger("app")
        try:
            await self._k8s_client.close()  # type: ignore[attr-defined]
        except Exception as exc:
            log.debug("k8s client close raised (non-fatal)", error=str(exc))


def _kubefeature_version() -> str:
    from kubefeature import __version__

    return __version__


# ---------------------------------------------------------------------------
# Async entrypoint
# ---------------------------------------------------------------------------


async def main() -> None:
    """Create the app, register OS signals, run until shutdown is requested."""
    app = KubeFeatureApp()
    loop = asyncio.get_running_loop()

    shutdown_triggered = False

    def _request_shutdown() -> None:
        nonlocal shutdown_triggered
        if shutdown_triggered:
            return
        shutdown_triggered = True
        asyncio.create_task(app.stop(), name="shutdown")

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _request_shutdown)

    try:
        await app.start()
        while app._running:
            await asyncio.sleep(1)
    except _ComponentError as exc:
        log = get_logger("app")
        log.critical(
            "fatal startup error",
            component=exc.component,
            error=str(exc.cause),
        )
        await app.stop()
        raise SystemExit(1) from exc
    finally:
        if app._running:
            await app.stop()


def run() -> None:
    """Console-script entry point."""
    asyncio.run(main())
