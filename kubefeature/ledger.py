"""Resource Ledger and stale-resource garbage collection.

The ledger for a (cluster, feature) key is the set of resource identities
that feature created on that cluster.  After each Deploy the stale set
(previously recorded but no longer desired) is deleted; an identity leaves
the ledger only once its remote delete has been confirmed, so a failed or
interrupted pass is resumed on the next reconcile.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

from kubefeature.errors import FeatureError
from kubefeature.models.state import ResourceIdentity
from kubefeature.observability.logging import get_logger
from kubefeature.observability.metrics import gc_deletions_total
from kubefeature.remote.base import RemoteObjectAPI

_logger = get_logger("ledger")


def stale_resources(old: set[ResourceIdentity], new: set[ResourceIdentity]) -> set[ResourceIdentity]:
    return old - new


def merge_ledger(
    old: set[ResourceIdentity],
    new: set[ResourceIdentity],
    deleted: set[ResourceIdentity],
) -> set[ResourceIdentity]:
    """Ledger after a GC pass: retained stale plus everything desired.

    Equals ``(old - deleted) | (new - old)``; identities in both sets are
    kept untouched.
    """
    return (old - deleted) | (new - old)


@dataclass
class CollectionResult:
    """Outcome of one GC pass."""

    deleted: set[ResourceIdentity] = field(default_factory=set)
    failed: dict[ResourceIdentity, str] = field(default_factory=dict)

    @property
    def complete(self) -> bool:
        return not self.failed


class ResourceLedger:
    """Deletes stale identities against one cluster's object API.

    Args:
        remote:  Object API of the target cluster.
        feature: Feature kind label for logs and metrics.
        timeout: Bound on each delete call; a timeout counts as a failure.
    """

    def __init__(self, remote: RemoteObjectAPI, feature: str = "", timeout: float = 30.0) -> None:
        self._remote = remote
        self._feature = feature
        self._timeout = timeout

    async def collect(
        self,
        stale: set[ResourceIdentity],
        result: CollectionResult | None = None,
    ) -> CollectionResult:
        """Attempt to delete every identity in *stale*.

        Failures are recorded, not raised, so one stuck object does not stop
        the rest of the pass.  Pass an existing *result* to observe progress
        made before a cancellation.
        """
        result = result if result is not None else CollectionResult()
        for identity in sorted(stale):
            try:
                await asyncio.wait_for(self._remote.delete(identity), timeout=self._timeout)
            except (FeatureError, TimeoutError) as exc:
                error = str(exc) or "delete timed out"
                result.failed[identity] = error
                gc_deletions_total.labels(feature=self._feature, result="failed").inc()
                _logger.warning("gc_delete_failed", feature=self._feature, resource=str(identity), error=error)
                continue
            result.deleted.add(identity)
            gc_deletions_total.labels(feature=self._feature, result="deleted").inc()
            _logger.info("gc_deleted", feature=self._feature, resource=str(identity))
        return result
