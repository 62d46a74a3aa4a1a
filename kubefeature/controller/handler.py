"""Match Transition Handler.

Turns membership changes reported by the external matcher into record
creation, reconciles and undeploys.  Work is level-triggered: every queued
key is resolved against the current definitions and matching sets when it
is processed, so a cluster that matches and unmatches in quick succession
ends up undeployed without racing the first deploy.
"""

from __future__ import annotations

from collections.abc import Iterable

from kubefeature.controller.queue import ReconcileQueue
from kubefeature.errors import ReconcileResult
from kubefeature.models.features import ClusterRef, FeatureDefinition
from kubefeature.models.state import DefinitionStatus, FeatureStatus, StateKey
from kubefeature.observability.logging import get_logger
from kubefeature.reconciler import ClusterFeatureReconciler

_logger = get_logger("controller.handler")


class MatchTransitionHandler:
    """Tracks definitions and their matching clusters.

    Args:
        reconciler: Per-key reconciler.
        queue:      Work queue.  When omitted, every transition is processed
                    inline and its results returned, which is what tests and
                    one-shot runs want.
    """

    def __init__(self, reconciler: ClusterFeatureReconciler, queue: ReconcileQueue | None = None) -> None:
        self._reconciler = reconciler
        self._queue = queue
        self._definitions: dict[str, FeatureDefinition] = {}
        self._matching: dict[str, set[ClusterRef]] = {}

    def attach_queue(self, queue: ReconcileQueue) -> None:
        self._queue = queue

    # ------------------------------------------------------------------
    # Membership input
    # ------------------------------------------------------------------

    async def sync(self, definition: FeatureDefinition, clusters: Iterable[ClusterRef]) -> list[ReconcileResult]:
        """Apply the current definition and its full matching set."""
        previous = self._definitions.get(definition.name)
        self._definitions[definition.name] = definition
        known = self._matching.setdefault(definition.name, set())
        current = set(clusters)

        results: list[ReconcileResult] = []
        for cluster in sorted(known - current, key=str):
            results.extend(await self.on_cluster_unmatched(definition.name, cluster))
        for cluster in sorted(current - known, key=str):
            results.extend(await self.on_cluster_matched(definition, cluster))
        if previous is not None and previous != definition:
            results.extend(await self.definition_changed(definition, previous, current & known))
        return results

    async def on_cluster_matched(self, definition: FeatureDefinition, cluster: ClusterRef) -> list[ReconcileResult]:
        """Create Unapplied records for every enabled feature and reconcile them."""
        self._matching.setdefault(definition.name, set()).add(cluster)
        _logger.info("cluster_matched", definition=definition.name, cluster=str(cluster))
        keys = [StateKey(cluster, definition.name, kind) for kind in sorted(definition.features)]
        for key in keys:
            await self._reconciler.create(key, definition)
        return await self._schedule(keys)

    async def on_cluster_unmatched(self, name: str, cluster: ClusterRef) -> list[ReconcileResult]:
        """Undeploy every feature *name* applied to *cluster*."""
        self._matching.get(name, set()).discard(cluster)
        _logger.info("cluster_unmatched", definition=name, cluster=str(cluster))
        states = await self._reconciler.store.list(definition=name, cluster=cluster)
        return await self._schedule([state.key for state in states])

    async def definition_changed(
        self,
        definition: FeatureDefinition,
        previous: FeatureDefinition,
        clusters: Iterable[ClusterRef],
    ) -> list[ReconcileResult]:
        """Reconcile every matched cluster; features dropped from the definition get undeployed."""
        _logger.info("definition_changed", definition=definition.name, generation=definition.generation)
        keys: list[StateKey] = []
        for cluster in sorted(clusters, key=str):
            for kind in sorted(set(definition.features) - set(previous.features)):
                key = StateKey(cluster, definition.name, kind)
                await self._reconciler.create(key, definition)
            for kind in sorted(set(definition.features) | set(previous.features)):
                keys.append(StateKey(cluster, definition.name, kind))
        return await self._schedule(keys)

    async def remove_definition(self, name: str) -> list[ReconcileResult]:
        """The definition is gone: every cluster stops matching."""
        results: list[ReconcileResult] = []
        for cluster in sorted(self._matching.get(name, set()), key=str):
            results.extend(await self.on_cluster_unmatched(name, cluster))
        self._definitions.pop(name, None)
        self._matching.pop(name, None)
        return results

    async def resync(self) -> list[ReconcileResult]:
        """Schedule every persisted record, e.g. after a restart."""
        states = await self._reconciler.store.list()
        return await self._schedule([state.key for state in states])

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    async def process(self, key: StateKey) -> ReconcileResult:
        """Reconcile or undeploy *key* depending on the current desired state."""
        definition = self._definitions.get(key.definition)
        wanted = (
            definition is not None
            and key.cluster in self._matching.get(key.definition, set())
            and key.feature in definition.features
        )
        if not wanted:
            return await self._reconciler.undeploy(key)
        assert definition is not None
        return await self._reconciler.reconcile(key, definition)

    async def _schedule(self, keys: list[StateKey]) -> list[ReconcileResult]:
        if self._queue is not None:
            for key in keys:
                self._queue.enqueue(key)
            return []
        return [await self.process(key) for key in keys]

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def definitions(self) -> list[FeatureDefinition]:
        return [self._definitions[name] for name in sorted(self._definitions)]

    def definition_status(self, name: str) -> DefinitionStatus | None:
        if name not in self._definitions:
            return None
        return DefinitionStatus(name=name, matching_clusters=sorted(self._matching.get(name, set()), key=str))

    async def cluster_status(self, name: str, cluster: ClusterRef) -> list[FeatureStatus]:
        states = await self._reconciler.store.list(definition=name, cluster=cluster)
        return [state.status() for state in states]
