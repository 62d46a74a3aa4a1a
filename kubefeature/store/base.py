"""ClusterFeatureState persistence."""

from __future__ import annotations

import copy
from abc import ABC, abstractmethod

from kubefeature.models.features import ClusterRef
from kubefeature.models.state import ClusterFeatureState, StateKey


class StateStore(ABC):
    """Durable home of the resource ledger.

    ``put`` returns only after the record is durably written; callers rely
    on that before advancing ``applied_fingerprint``.  Records handed out by
    ``get`` are copies: mutating them has no effect until ``put``.
    """

    @abstractmethod
    async def get(self, key: StateKey) -> ClusterFeatureState | None: ...

    @abstractmethod
    async def put(self, state: ClusterFeatureState) -> None: ...

    @abstractmethod
    async def delete(self, key: StateKey) -> None: ...

    @abstractmethod
    async def list(
        self,
        definition: str | None = None,
        cluster: ClusterRef | None = None,
    ) -> list[ClusterFeatureState]: ...

    async def close(self) -> None:
        """Release the backing resources."""


class InMemoryStateStore(StateStore):
    def __init__(self) -> None:
        self._records: dict[StateKey, ClusterFeatureState] = {}

    async def get(self, key: StateKey) -> ClusterFeatureState | None:
        state = self._records.get(key)
        return copy.deepcopy(state) if state is not None else None

    async def put(self, state: ClusterFeatureState) -> None:
        self._records[state.key] = copy.deepcopy(state)

    async def delete(self, key: StateKey) -> None:
        self._records.pop(key, None)

    async def list(
        self,
        definition: str | None = None,
        cluster: ClusterRef | None = None,
    ) -> list[ClusterFeatureState]:
        return [
            copy.deepcopy(state)
            for key, state in sorted(self._records.items(), key=lambda item: str(item[0]))
            if (definition is None or key.definition == definition)
            and (cluster is None or key.cluster == cluster)
        ]
