"""Unit tests for error classification and reconcile results."""

from __future__ import annotations

import pytest

from kubefeature.errors import (
    ClusterGone,
    ConfigInvalid,
    ConfigRefMissing,
    FeatureError,
    NotReady,
    PartialDeleteFailure,
    ReconcileOutcome,
    ReconcileResult,
    RemoteUnreachable,
    UnknownFeatureKind,
)
from kubefeature.models.features import ConfigSourceRef
from kubefeature.models.state import ResourceIdentity


class TestClassification:
    @pytest.mark.parametrize(
        "error",
        [
            RemoteUnreachable("down"),
            ClusterGone("gone"),
            NotReady("warming"),
            PartialDeleteFailure([]),
            ConfigRefMissing(ConfigSourceRef("default", "cm")),
        ],
    )
    def test_retryable_errors(self, error: FeatureError) -> None:
        assert error.retryable
        assert ReconcileResult.from_error(error).outcome == ReconcileOutcome.RETRY

    @pytest.mark.parametrize("error", [ConfigInvalid("bad"), UnknownFeatureKind("Dns")])
    def test_terminal_errors(self, error: FeatureError) -> None:
        assert not error.retryable
        result = ReconcileResult.from_error(error)
        assert result.outcome == ReconcileOutcome.FATAL
        assert result.error is error
        assert not result.succeeded

    def test_cluster_gone_is_unreachable(self) -> None:
        assert isinstance(ClusterGone("x"), RemoteUnreachable)

    def test_partial_delete_failure_lists_identities(self) -> None:
        a = ResourceIdentity("v1", "ConfigMap", "ns", "a")
        err = PartialDeleteFailure([a])
        assert err.failed == frozenset({a})
        assert "ConfigMap/ns/a" in str(err)

    def test_config_ref_missing_keeps_ref(self) -> None:
        ref = ConfigSourceRef("default", "cm")
        assert ConfigRefMissing(ref).ref == ref


class TestReconcileResult:
    def test_ok(self) -> None:
        result = ReconcileResult.ok()
        assert result.succeeded
        assert result.requeue_after is None

    def test_ok_with_requeue(self) -> None:
        assert ReconcileResult.ok(requeue_after=20).requeue_after == 20
