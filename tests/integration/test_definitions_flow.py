"""End-to-end: a definitions file drives deploys and cleanups."""

from __future__ import annotations

from pathlib import Path

import pytest

from kubefeature.controller import MatchTransitionHandler
from kubefeature.reconciler import ClusterFeatureReconciler
from kubefeature.remote.memory import InMemoryRemoteCluster
from kubefeature.sources.definitions import DefinitionFileSource

from ..conftest import CountingPolicyEngine, objects_of_kind, policy_key

pytestmark = pytest.mark.integration

_FILE = """\
definitions:
  - name: fleet-policies
    selector: env=prod
    syncMode: Continuous
    policyEngine:
      policyRefs:
        - {name: policies-a}
        - {name: policies-b}
    matchingClusters:
{clusters}
"""


def _write(path: Path, clusters: list[str], replicas: int | None = None) -> None:
    text = _FILE.replace(
        "{clusters}", "\n".join(f"      - {{namespace: default, name: {c}}}" for c in clusters) or "      []"
    )
    if replicas is not None:
        text = text.replace("    policyEngine:\n", f"    policyEngine:\n      replicas: {replicas}\n")
    path.write_text(text)


class TestDefinitionsFlow:
    async def test_file_changes_drive_lifecycle(
        self,
        tmp_path: Path,
        reconciler: ClusterFeatureReconciler,
        policy_driver: CountingPolicyEngine,
        ready_remote: InMemoryRemoteCluster,
    ) -> None:
        path = tmp_path / "definitions.yaml"
        handler = MatchTransitionHandler(reconciler)
        source = DefinitionFileSource(str(path), handler)

        _write(path, ["prod-eu-1"])
        await source.load_once()
        assert len(objects_of_kind(ready_remote, "ClusterPolicy")) == 3
        assert policy_driver.deploy_calls == 1

        # replicas is not part of any ref, the generation bump carries it
        _write(path, ["prod-eu-1"], replicas=2)
        await source.load_once()
        assert policy_driver.deploy_calls == 2

        _write(path, [])
        await source.load_once()
        assert objects_of_kind(ready_remote, "ClusterPolicy") == {}
        assert await reconciler.store.get(policy_key()) is None
