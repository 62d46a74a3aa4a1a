"""Fingerprint Engine.

Computes a deterministic SHA-256 digest over the content of an ordered list
of config source refs.  Refs that cannot be resolved are skipped, so the
digest always describes the currently resolvable inputs; the ref order is
part of the input.
"""

from __future__ import annotations

import hashlib
from collections.abc import Sequence

from kubefeature.errors import ConfigRefMissing
from kubefeature.models.features import ConfigSourceRef
from kubefeature.observability.logging import get_logger
from kubefeature.observability.metrics import config_ref_missing_total
from kubefeature.sources.base import ConfigSourceStore

_logger = get_logger("fingerprint")

EMPTY_DIGEST = hashlib.sha256(b"").digest()


class FingerprintEngine:
    """Digest referenced configuration for drift detection.

    Args:
        store: Config Source Store used to resolve refs.
    """

    def __init__(self, store: ConfigSourceStore) -> None:
        self._store = store

    async def fingerprint(self, refs: Sequence[ConfigSourceRef], feature: str = "") -> bytes:
        """Return the digest of the concatenated content of *refs*, in order.

        A missing ref is logged and skipped.  Any other store failure
        (RemoteUnreachable) propagates: a digest computed over refs that
        merely could not be read would report drift that does not exist.
        """
        h = hashlib.sha256()
        for ref in refs:
            content = await self._store.get(ref)
            if content is None:
                missing = ConfigRefMissing(ref)
                _logger.info("fingerprint_ref_missing", ref=str(ref), feature=feature, reason=missing.reason)
                config_ref_missing_total.labels(feature=feature or "unknown").inc()
                continue
            h.update(content.encode("utf-8"))
        return h.digest()
