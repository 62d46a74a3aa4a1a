"""Controller package: match transitions and the reconcile work queue."""

from kubefeature.controller.handler import MatchTransitionHandler
from kubefeature.controller.queue import ReconcileQueue

__all__ = ["MatchTransitionHandler", "ReconcileQueue"]
