"""Config Source Store abstraction."""

from __future__ import annotations

from abc import ABC, abstractmethod

from kubefeature.models.features import ConfigSourceRef


class ConfigSourceStore(ABC):
    """Key to content-blob lookup for referenced configuration.

    ``get`` returns None when the ref does not exist.  Any other failure
    must raise :class:`~kubefeature.errors.RemoteUnreachable`.
    """

    @abstractmethod
    async def get(self, ref: ConfigSourceRef) -> str | None:
        """Return the content blob for *ref*, or None if it is missing."""
