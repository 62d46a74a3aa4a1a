"""Tests for the status REST API.

The handler is mocked; routes only read definitions and recorded state.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

from fastapi.testclient import TestClient
from hypothesis import given, settings
from hypothesis import strategies as st

from kubefeature.api.app import create_app
from kubefeature.models.features import ClusterRef, FeatureKind
from kubefeature.models.state import DefinitionStatus, FeatureStatus, Readiness, ResourceIdentity

from ..conftest import make_definition

_CLUSTER = ClusterRef("default", "prod-eu-1")


def _feature_status() -> FeatureStatus:
    return FeatureStatus(
        cluster=_CLUSTER,
        feature=FeatureKind.POLICY_ENGINE,
        applied_fingerprint="ab" * 32,
        observed_fingerprint="ab" * 32,
        readiness=Readiness.READY,
        deployed_resources=[ResourceIdentity("kyverno.io/v1", "ClusterPolicy", "", "require-labels")],
        last_error=None,
    )


def _make_handler(statuses: list[FeatureStatus] | None = None) -> MagicMock:
    definition = make_definition()
    handler = MagicMock()
    handler.definitions = MagicMock(return_value=[definition])
    handler.definition_status = MagicMock(
        side_effect=lambda name: (
            DefinitionStatus(name=name, matching_clusters=[_CLUSTER]) if name == definition.name else None
        )
    )
    handler.cluster_status = AsyncMock(return_value=[_feature_status()] if statuses is None else statuses)
    return handler


def _client(handler: MagicMock | None = None) -> TestClient:
    return TestClient(create_app(handler=handler or _make_handler()), raise_server_exceptions=False)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


class TestHealth:
    def test_health(self) -> None:
        response = _client().get("/api/v1/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["definitions"] == 1


class TestDefinitions:
    def test_list(self) -> None:
        response = _client().get("/api/v1/definitions")
        assert response.status_code == 200
        assert response.json() == [
            {"name": "fleet-policies", "matchingClusters": [{"namespace": "default", "name": "prod-eu-1"}]}
        ]

    def test_get(self) -> None:
        response = _client().get("/api/v1/definitions/fleet-policies")
        assert response.status_code == 200
        assert response.json()["name"] == "fleet-policies"

    def test_unknown_definition(self) -> None:
        response = _client().get("/api/v1/definitions/nope")
        assert response.status_code == 404
        assert response.json()["error"] == "NOT_FOUND"


class TestClusterStatus:
    def test_cluster_status(self) -> None:
        handler = _make_handler()
        response = _client(handler).get("/api/v1/definitions/fleet-policies/clusters/default/prod-eu-1")
        assert response.status_code == 200
        body = response.json()
        assert body["cluster"] == {"namespace": "default", "name": "prod-eu-1"}
        (feature,) = body["features"]
        assert feature["feature"] == "PolicyEngine"
        assert feature["readiness"] == "Ready"
        assert feature["appliedFingerprint"] == "ab" * 32
        assert feature["deployedResources"][0]["apiVersion"] == "kyverno.io/v1"
        handler.cluster_status.assert_awaited_once_with("fleet-policies", _CLUSTER)

    def test_cluster_without_records(self) -> None:
        response = _client(_make_handler(statuses=[])).get(
            "/api/v1/definitions/fleet-policies/clusters/default/other"
        )
        assert response.status_code == 404

    def test_unknown_definition(self) -> None:
        response = _client().get("/api/v1/definitions/nope/clusters/default/prod-eu-1")
        assert response.status_code == 404


class TestMetricsEndpoint:
    def test_metrics_exposed(self) -> None:
        response = _client().get("/metrics")
        assert response.status_code == 200
        assert "kubefeature_reconcile_total" in response.text


class TestInternalErrors:
    def test_handler_crash_is_500_envelope(self) -> None:
        handler = _make_handler()
        handler.cluster_status = AsyncMock(side_effect=RuntimeError("store exploded"))
        response = _client(handler).get("/api/v1/definitions/fleet-policies/clusters/default/prod-eu-1")
        assert response.status_code == 500
        assert response.json() == {"error": "INTERNAL_ERROR", "detail": "An unexpected error occurred."}


# ---------------------------------------------------------------------------
# Fuzzing
# ---------------------------------------------------------------------------

_segment = st.text(alphabet=st.characters(whitelist_categories=("Ll", "Nd"), whitelist_characters="-"), min_size=1)


class TestFuzz:
    @settings(max_examples=30, deadline=None)
    @given(name=_segment)
    def test_unknown_names_never_500(self, name: str) -> None:
        response = _client().get(f"/api/v1/definitions/{name}")
        assert response.status_code in (200, 404)
        assert "error" in response.json() or response.json()["name"] == name
