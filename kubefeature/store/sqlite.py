"""SQLite-backed state store.

Rows are JSON documents keyed by the state key; calls run on a worker
thread so the event loop is never blocked on disk I/O.
"""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from datetime import datetime
from typing import Any

from kubefeature.models.features import ClusterRef, FeatureKind, SyncMode
from kubefeature.models.state import ClusterFeatureState, Readiness, ResourceIdentity, StateKey
from kubefeature.store.base import StateStore

_SCHEMA = """
CREATE TABLE IF NOT EXISTS cluster_feature_state (
    state_key TEXT PRIMARY KEY,
    definition TEXT NOT NULL,
    cluster_namespace TEXT NOT NULL,
    cluster_name TEXT NOT NULL,
    body TEXT NOT NULL
)
"""


def state_to_dict(state: ClusterFeatureState) -> dict[str, Any]:
    return {
        "cluster": {"namespace": state.key.cluster.namespace, "name": state.key.cluster.name},
        "definition": state.key.definition,
        "feature": state.key.feature.value,
        "applicant_id": state.applicant_id,
        "sync_mode": state.sync_mode.value,
        "applied_fingerprint": state.applied_fingerprint.hex() if state.applied_fingerprint else None,
        "applied_generation": state.applied_generation,
        "observed_fingerprint": state.observed_fingerprint.hex() if state.observed_fingerprint else None,
        "deployed_resources": [
            [r.api_version, r.kind, r.namespace, r.name] for r in sorted(state.deployed_resources)
        ],
        "deployed_kinds": [list(k) for k in sorted(state.deployed_kinds)],
        "readiness": state.readiness.value,
        "last_error": state.last_error,
        "failure_count": state.failure_count,
        "updated_at": state.updated_at.isoformat(),
    }


def state_from_dict(data: dict[str, Any]) -> ClusterFeatureState:
    applied = data.get("applied_fingerprint")
    observed = data.get("observed_fingerprint")
    return ClusterFeatureState(
        key=StateKey(
            cluster=ClusterRef(**data["cluster"]),
            definition=data["definition"],
            feature=FeatureKind(data["feature"]),
        ),
        applicant_id=data["applicant_id"],
        sync_mode=SyncMode(data["sync_mode"]),
        applied_fingerprint=bytes.fromhex(applied) if applied else None,
        applied_generation=data.get("applied_generation"),
        observed_fingerprint=bytes.fromhex(observed) if observed else None,
        deployed_resources={ResourceIdentity(*r) for r in data.get("deployed_resources", [])},
        deployed_kinds={(k[0], k[1]) for k in data.get("deployed_kinds", [])},
        readiness=Readiness(data.get("readiness", Readiness.ABSENT.value)),
        last_error=data.get("last_error"),
        failure_count=data.get("failure_count", 0),
        updated_at=datetime.fromisoformat(data["updated_at"]),
    )


class SQLiteStateStore(StateStore):
    def __init__(self, path: str) -> None:
        self._conn = sqlite3.connect(path, check_same_thread=False, isolation_level=None)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute(_SCHEMA)
        self._lock = threading.Lock()

    def _execute(self, sql: str, params: tuple[Any, ...] = ()) -> list[tuple[Any, ...]]:
        with self._lock:
            return self._conn.execute(sql, params).fetchall()

    async def get(self, key: StateKey) -> ClusterFeatureState | None:
        rows = await asyncio.to_thread(
            self._execute, "SELECT body FROM cluster_feature_state WHERE state_key = ?", (str(key),)
        )
        return state_from_dict(json.loads(rows[0][0])) if rows else None

    async def put(self, state: ClusterFeatureState) -> None:
        body = json.dumps(state_to_dict(state), sort_keys=True)
        await asyncio.to_thread(
            self._execute,
            "INSERT INTO cluster_feature_state (state_key, definition, cluster_namespace, cluster_name, body) "
            "VALUES (?, ?, ?, ?, ?) ON CONFLICT(state_key) DO UPDATE SET body = excluded.body",
            (str(state.key), state.key.definition, state.key.cluster.namespace, state.key.cluster.name, body),
        )

    async def delete(self, key: StateKey) -> None:
        await asyncio.to_thread(self._execute, "DELETE FROM cluster_feature_state WHERE state_key = ?", (str(key),))

    async def list(
        self,
        definition: str | None = None,
        cluster: ClusterRef | None = None,
    ) -> list[ClusterFeatureState]:
        sql = "SELECT body FROM cluster_feature_state WHERE 1 = 1"
        params: list[Any] = []
        if definition is not None:
            sql += " AND definition = ?"
            params.append(definition)
        if cluster is not None:
            sql += " AND cluster_namespace = ? AND cluster_name = ?"
            params.extend([cluster.namespace, cluster.name])
        sql += " ORDER BY state_key"
        rows = await asyncio.to_thread(self._execute, sql, tuple(params))
        return [state_from_dict(json.loads(row[0])) for row in rows]

    async def close(self) -> None:
        await asyncio.to_thread(self._conn.close)
