"""Unit tests for the state stores."""

from __future__ import annotations

from collections.abc import AsyncIterator
from pathlib import Path

import pytest

from kubefeature.models.features import ClusterRef, FeatureKind, SyncMode
from kubefeature.models.state import ClusterFeatureState, Readiness, ResourceIdentity, StateKey
from kubefeature.store import InMemoryStateStore, SQLiteStateStore
from kubefeature.store.base import StateStore

_EU = ClusterRef("default", "prod-eu-1")
_US = ClusterRef("default", "prod-us-1")


def _state(cluster: ClusterRef = _EU, definition: str = "fleet-policies") -> ClusterFeatureState:
    return ClusterFeatureState(
        key=StateKey(cluster, definition, FeatureKind.POLICY_ENGINE),
        applicant_id=f"{definition}-{cluster.namespace}-{cluster.name}",
        sync_mode=SyncMode.CONTINUOUS,
        applied_fingerprint=b"\x01\x02",
        applied_generation=3,
        observed_fingerprint=b"\x01\x03",
        deployed_resources={ResourceIdentity("kyverno.io/v1", "ClusterPolicy", "", "require-labels")},
        deployed_kinds={("kyverno.io/v1", "ClusterPolicy")},
        readiness=Readiness.READY,
        last_error="PartialDeleteFailure: boom",
        failure_count=2,
    )


@pytest.fixture(params=["memory", "sqlite"])
async def store(request: pytest.FixtureRequest, tmp_path: Path) -> AsyncIterator[StateStore]:
    if request.param == "sqlite":
        backend: StateStore = SQLiteStateStore(str(tmp_path / "state.db"))
    else:
        backend = InMemoryStateStore()
    yield backend
    await backend.close()


class TestStateStore:
    async def test_round_trip(self, store: StateStore) -> None:
        state = _state()
        await store.put(state)
        assert await store.get(state.key) == state

    async def test_get_missing(self, store: StateStore) -> None:
        assert await store.get(_state().key) is None

    async def test_put_overwrites(self, store: StateStore) -> None:
        state = _state()
        await store.put(state)
        state.deployed_resources = set()
        state.applied_fingerprint = None
        await store.put(state)
        loaded = await store.get(state.key)
        assert loaded is not None
        assert loaded.deployed_resources == set()
        assert not loaded.applied

    async def test_delete(self, store: StateStore) -> None:
        state = _state()
        await store.put(state)
        await store.delete(state.key)
        assert await store.get(state.key) is None
        await store.delete(state.key)

    async def test_list_filters(self, store: StateStore) -> None:
        await store.put(_state(_EU, "a"))
        await store.put(_state(_US, "a"))
        await store.put(_state(_EU, "b"))
        assert len(await store.list()) == 3
        assert {s.key.cluster for s in await store.list(definition="a")} == {_EU, _US}
        assert {s.key.definition for s in await store.list(cluster=_EU)} == {"a", "b"}
        assert len(await store.list(definition="b", cluster=_US)) == 0

    async def test_returned_records_are_copies(self, store: StateStore) -> None:
        state = _state()
        await store.put(state)
        loaded = await store.get(state.key)
        assert loaded is not None
        loaded.deployed_resources.clear()
        again = await store.get(state.key)
        assert again is not None
        assert again.deployed_resources == state.deployed_resources


class TestSQLitePersistence:
    async def test_survives_reopen(self, tmp_path: Path) -> None:
        path = str(tmp_path / "state.db")
        state = _state()
        first = SQLiteStateStore(path)
        await first.put(state)
        await first.close()

        second = SQLiteStateStore(path)
        try:
            assert await second.get(state.key) == state
        finally:
            await second.close()
