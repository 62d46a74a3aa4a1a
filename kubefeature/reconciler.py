"""Per-Cluster-Feature Reconciler.

One reconcile for a (cluster, definition, feature kind) key:

    readiness gate -> fingerprint -> sync-mode decision -> Deploy
        -> record new resources -> stale GC -> advance applied fingerprint

Calls for the same key are serialized with a per-key lock; different keys
run concurrently.  Every remote call is bounded by ``remote_timeout`` and a
timeout is handled exactly like RemoteUnreachable.  Persisted ledger state
never runs ahead of what the remote side has confirmed: new resources are
recorded right after Deploy returns, stale ones are dropped only after
their delete succeeds, and ``applied_fingerprint`` moves last.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Awaitable
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import TypeVar

from kubefeature.drivers.base import DeployProgress, FeatureDriver
from kubefeature.drivers.registry import DriverRegistry
from kubefeature.errors import (
    ClusterGone,
    ConfigInvalid,
    FeatureError,
    NotReady,
    PartialDeleteFailure,
    ReconcileOutcome,
    ReconcileResult,
    RemoteUnreachable,
    UnknownFeatureKind,
)
from kubefeature.fingerprint import FingerprintEngine
from kubefeature.ledger import CollectionResult, ResourceLedger, merge_ledger, stale_resources
from kubefeature.models.features import FeatureConfig, FeatureDefinition, SyncMode
from kubefeature.models.state import ClusterFeatureState, Readiness, ResourceIdentity, StateKey
from kubefeature.observability.logging import get_logger
from kubefeature.observability.metrics import (
    deploy_total,
    managed_resources,
    reconcile_duration_seconds,
    reconcile_total,
)
from kubefeature.readiness import ReadinessGate
from kubefeature.remote.base import ClusterConnector, RemoteObjectAPI
from kubefeature.store.base import StateStore

_logger = get_logger("reconciler")

_T = TypeVar("_T")


def applicant_for(key: StateKey) -> str:
    """Applicant ID shared by every feature of one definition on one cluster."""
    return f"{key.definition}-{key.cluster.namespace}-{key.cluster.name}"


class KeyedLock:
    """Per-key asyncio locks, dropped once nobody holds or waits for them."""

    def __init__(self) -> None:
        self._locks: dict[StateKey, asyncio.Lock] = {}
        self._users: dict[StateKey, int] = {}

    @asynccontextmanager
    async def hold(self, key: StateKey) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def locked(self, key: StateKey) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()


class ClusterFeatureReconciler:
    """Drives ClusterFeatureState records towards their feature definition.

    Args:
        registry:          Feature drivers by kind.
        store:             Ledger persistence.
        connector:         Hands out the object API of each workload cluster.
        fingerprints:      Fingerprint engine over the config source store.
        gate:              Readiness gate; a default one is built if omitted.
        remote_timeout:    Bound on every remote driver call, in seconds.
        not_ready_requeue: Delay hinted to the control loop while the backing
                           workload is coming up.
    """

    def __init__(
        self,
        registry: DriverRegistry,
        store: StateStore,
        connector: ClusterConnector,
        fingerprints: FingerprintEngine,
        gate: ReadinessGate | None = None,
        remote_timeout: float = 30.0,
        not_ready_requeue: float = 20.0,
    ) -> None:
        self._registry = registry
        self._store = store
        self._connector = connector
        self._fingerprints = fingerprints
        self._gate = gate or ReadinessGate()
        self._timeout = remote_timeout
        self._not_ready_requeue = not_ready_requeue
        self._locks = KeyedLock()

    @property
    def store(self) -> StateStore:
        return self._store

    # ------------------------------------------------------------------
    # Record lifecycle
    # ------------------------------------------------------------------

    async def create(self, key: StateKey, definition: FeatureDefinition) -> ClusterFeatureState:
        """Create the Unapplied record for *key*, or return the existing one.

        The sync mode is snapshotted here and never changes afterwards.
        """
        async with self._locks.hold(key):
            state = await self._store.get(key)
            if state is not None:
                return state
            state = ClusterFeatureState(
                key=key,
                applicant_id=applicant_for(key),
                sync_mode=definition.sync_mode,
            )
            await self._store.put(state)
            _logger.info("state_created", key=str(key), sync_mode=definition.sync_mode.value)
            return state

    # ------------------------------------------------------------------
    # Reconcile
    # ------------------------------------------------------------------

    async def reconcile(self, key: StateKey, definition: FeatureDefinition) -> ReconcileResult:
        """Run one reconcile for *key* against *definition*."""
        t_start = time.monotonic()
        async with self._locks.hold(key):
            result = await self._reconcile_locked(key, definition)
        reconcile_duration_seconds.labels(feature=key.feature.value).observe(time.monotonic() - t_start)
        reconcile_total.labels(feature=key.feature.value, outcome=result.outcome.value).inc()
        return result

    async def _reconcile_locked(self, key: StateKey, definition: FeatureDefinition) -> ReconcileResult:
        log = _logger.bind(key=str(key))
        state = await self._store.get(key)
        if state is None:
            log.debug("reconcile_skipped_no_state")
            return ReconcileResult.ok()

        try:
            driver = self._registry.get(key.feature)
            config = definition.config_for(key.feature)
            if config is None:
                raise ConfigInvalid(f"feature {key.feature.value} is not enabled in {definition.name}")
            remote = await self._bounded(self._connector.connect(key.cluster), "connecting")

            frozen = state.sync_mode is SyncMode.ONE_TIME and state.applied
            state.readiness = await self._bounded(
                self._gate.evaluate(remote, driver, config, install=not frozen),
                "checking readiness",
            )
            refs = driver.list_config_refs(config)

            if frozen:
                # configuration is frozen at the first applied fingerprint
                state.observed_fingerprint = await self._bounded(
                    self._fingerprints.fingerprint(refs, key.feature.value), "fingerprinting"
                )
                if state.observed_fingerprint != state.applied_fingerprint:
                    log.debug("onetime_drift_ignored")
                return await self._succeed(state)

            if state.readiness is not Readiness.READY:
                raise NotReady(f"{driver.workload} is {state.readiness.value}")

            fingerprint = await self._bounded(
                self._fingerprints.fingerprint(refs, key.feature.value), "fingerprinting"
            )
            state.observed_fingerprint = fingerprint
            if state.applied and fingerprint == state.applied_fingerprint and (
                definition.generation == state.applied_generation
            ):
                return await self._succeed(state)

            await self._deploy_and_collect(state, driver, remote, config)
            state.applied_fingerprint = fingerprint
            state.applied_generation = definition.generation
            log.info("feature_applied", fingerprint=fingerprint.hex(), resources=len(state.deployed_resources))
            return await self._succeed(state)
        except NotReady as exc:
            log.info("feature_not_ready", reason=str(exc))
            state.last_error = f"{exc.reason}: {exc}"
            await self._persist(state)
            return ReconcileResult(ReconcileOutcome.OK, error=exc, requeue_after=self._not_ready_requeue)
        except FeatureError as exc:
            return await self._fail(state, exc)

    async def _deploy_and_collect(
        self,
        state: ClusterFeatureState,
        driver: FeatureDriver,
        remote: RemoteObjectAPI,
        config: FeatureConfig,
    ) -> None:
        old = set(state.deployed_resources)

        async def record_kinds(kinds: set[tuple[str, str]]) -> None:
            # the undeploy sweep must know a kind before any object of it exists
            if not kinds <= state.deployed_kinds:
                state.deployed_kinds |= kinds
                await self._persist(state)

        progress = DeployProgress(on_rendered=record_kinds)
        try:
            desired = await self._bounded(
                driver.deploy(remote, config, state.applicant_id, progress),
                "deploying",
            )
        finally:
            # track everything Deploy created before deleting anything,
            # including what a failed or cancelled Deploy got through
            state.deployed_resources = old | progress.applied
            state.deployed_kinds |= {identity.group_version_kind for identity in progress.applied}
            await self._persist(state)
        deploy_total.labels(feature=state.key.feature.value).inc()

        await self._collect(state, remote, old, desired)

    async def _collect(
        self,
        state: ClusterFeatureState,
        remote: RemoteObjectAPI,
        old: set[ResourceIdentity],
        desired: set[ResourceIdentity],
    ) -> None:
        stale = stale_resources(old, desired)
        ledger = ResourceLedger(remote, feature=state.key.feature.value, timeout=self._timeout)
        progress = CollectionResult()
        try:
            await ledger.collect(stale, progress)
        finally:
            state.deployed_resources = merge_ledger(old, desired, progress.deleted)
            await self._persist(state)
        if progress.failed:
            raise PartialDeleteFailure(progress.failed)

    # ------------------------------------------------------------------
    # Undeploy
    # ------------------------------------------------------------------

    async def undeploy(self, key: StateKey) -> ReconcileResult:
        """Remove everything the feature created for *key*, then the record.

        The record survives any failure so no live resource is left untracked.
        A cluster that no longer exists counts as fully cleaned up.
        """
        async with self._locks.hold(key):
            result = await self._undeploy_locked(key)
        reconcile_total.labels(feature=key.feature.value, outcome=result.outcome.value).inc()
        return result

    async def _undeploy_locked(self, key: StateKey) -> ReconcileResult:
        log = _logger.bind(key=str(key))
        state = await self._store.get(key)
        if state is None:
            return ReconcileResult.ok()

        try:
            try:
                remote = await self._bounded(self._connector.connect(key.cluster), "connecting")
            except ClusterGone:
                log.info("cluster_gone_nothing_to_cleanup")
                await self._store.delete(key)
                managed_resources.labels(feature=key.feature.value).set(0)
                return ReconcileResult.ok()

            await self._collect(state, remote, set(state.deployed_resources), set())
            try:
                driver = self._registry.get(key.feature)
            except UnknownFeatureKind:
                log.warning("undeploy_sweep_skipped_unknown_kind")
            else:
                await self._bounded(driver.undeploy(remote, state.applicant_id, state.deployed_kinds), "undeploying")
        except FeatureError as exc:
            return await self._fail(state, exc)

        await self._store.delete(key)
        managed_resources.labels(feature=key.feature.value).set(0)
        log.info("feature_undeployed")
        return ReconcileResult.ok()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _bounded(self, awaitable: Awaitable[_T], what: str) -> _T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self._timeout)
        except TimeoutError as exc:
            raise RemoteUnreachable(f"{what} timed out after {self._timeout}s") from exc

    async def _persist(self, state: ClusterFeatureState) -> None:
        state.updated_at = datetime.now(tz=UTC)
        await self._store.put(state)
        managed_resources.labels(feature=state.key.feature.value).set(len(state.deployed_resources))

    async def _succeed(self, state: ClusterFeatureState) -> ReconcileResult:
        state.last_error = None
        state.failure_count = 0
        await self._persist(state)
        return ReconcileResult.ok()

    async def _fail(self, state: ClusterFeatureState, exc: FeatureError) -> ReconcileResult:
        state.last_error = f"{exc.reason}: {exc}"
        state.failure_count += 1
        await self._persist(state)
        result = ReconcileResult.from_error(exc)
        if exc.retryable:
            _logger.warning("reconcile_failed", key=str(state.key), reason=exc.reason, error=str(exc))
        else:
            _logger.error("reconcile_failed_terminal", key=str(state.key), reason=exc.reason, error=str(exc))
        return result
