"""Error taxonomy and reconcile results.

Every reconcile returns a :class:`ReconcileResult`; the calling control
loop owns backoff and only needs the outcome classification.  Errors
raised inside the pipeline are subclasses of :class:`FeatureError`, each
carrying whether a retry with the same input can succeed.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from kubefeature.models.features import ConfigSourceRef
    from kubefeature.models.state import ResourceIdentity


class FeatureError(Exception):
    """Base class for all reconcile pipeline errors."""

    retryable: bool = True
    reason: str = "FeatureError"


class ConfigRefMissing(FeatureError):
    """A referenced config blob does not exist (yet).  Absorbed, never fatal."""

    reason = "ConfigRefMissing"

    def __init__(self, ref: ConfigSourceRef) -> None:
        super().__init__(f"config source {ref} not found")
        self.ref = ref


class RemoteUnreachable(FeatureError):
    """A remote object API (workload or management cluster) could not be reached."""

    reason = "RemoteUnreachable"


class ClusterGone(RemoteUnreachable):
    """The target cluster no longer exists; undeploy treats this as success."""

    reason = "ClusterGone"


class NotReady(FeatureError):
    """The backing workload exists but is not serving yet."""

    reason = "NotReady"


class PartialDeleteFailure(FeatureError):
    """One or more stale resources could not be deleted during GC."""

    reason = "PartialDeleteFailure"

    def __init__(self, failed: Iterable[ResourceIdentity]) -> None:
        self.failed = frozenset(failed)
        names = ", ".join(str(i) for i in sorted(self.failed))
        super().__init__(f"failed to delete {len(self.failed)} stale resource(s): {names}")


class ConfigInvalid(FeatureError):
    """The feature configuration cannot be parsed or rendered."""

    retryable = False
    reason = "ConfigInvalid"


class UnknownFeatureKind(ConfigInvalid):
    """No driver is registered for the requested feature kind."""

    reason = "UnknownFeatureKind"


class ReconcileOutcome(StrEnum):
    """Classification of a single reconcile call."""

    OK = "ok"
    RETRY = "retry"
    FATAL = "fatal"


@dataclass(frozen=True)
class ReconcileResult:
    """Typed result of one reconcile.

    ``requeue_after`` asks the control loop to look again even though the
    call succeeded (e.g. the backing workload is still coming up).
    """

    outcome: ReconcileOutcome
    error: FeatureError | None = None
    requeue_after: float | None = None

    @classmethod
    def ok(cls, requeue_after: float | None = None) -> ReconcileResult:
        return cls(ReconcileOutcome.OK, requeue_after=requeue_after)

    @classmethod
    def from_error(cls, error: FeatureError) -> ReconcileResult:
        outcome = ReconcileOutcome.RETRY if error.retryable else ReconcileOutcome.FATAL
        return cls(outcome, error=error)

    @property
    def succeeded(self) -> bool:
        return self.outcome is ReconcileOutcome.OK
