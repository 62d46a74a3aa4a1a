"""In-process Config Source Store, used by tests and local runs."""

from __future__ import annotations

from kubefeature.models.features import ConfigSourceRef
from kubefeature.sources.base import ConfigSourceStore


class InMemoryConfigSourceStore(ConfigSourceStore):
    def __init__(self, blobs: dict[ConfigSourceRef, str] | None = None) -> None:
        self._blobs: dict[ConfigSourceRef, str] = dict(blobs or {})
        self.reads = 0

    def put(self, ref: ConfigSourceRef, content: str) -> None:
        self._blobs[ref] = content

    def remove(self, ref: ConfigSourceRef) -> None:
        self._blobs.pop(ref, None)

    async def get(self, ref: ConfigSourceRef) -> str | None:
        self.reads += 1
        return self._blobs.get(ref)
