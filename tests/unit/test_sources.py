"""Unit tests for config sources and the definitions file."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
from kubernetes_asyncio.client.exceptions import ApiException

from kubefeature.errors import ConfigInvalid, RemoteUnreachable
from kubefeature.models.features import (
    ClusterRef,
    ConfigSourceRef,
    FeatureKind,
    InstallationMode,
    MetricsStackConfig,
    PolicyEngineConfig,
    SyncMode,
    WorkloadRolesConfig,
)
from kubefeature.sources.configmap import ConfigMapSourceStore, render_config_map_data
from kubefeature.sources.definitions import DefinitionFileSource, parse_definition, parse_definitions_document

_DEFINITIONS_YAML = """\
definitions:
  - name: fleet-policies
    selector: env=prod
    syncMode: Continuous
    policyEngine:
      replicas: 2
      policyRefs:
        - {name: disallow-latest-tag}
        - {namespace: platform, name: require-labels}
    metricsStack:
      installationMode: KubePrometheus
      storageClassName: standard
    matchingClusters:
      - {namespace: default, name: prod-eu-1}
      - {name: prod-us-1}
"""

_TWO_DEFINITIONS_YAML = """\
definitions:
  - name: fleet-policies
    syncMode: Continuous
    policyEngine:
      policyRefs:
        - {name: disallow-latest-tag}
    matchingClusters:
      - {name: prod-eu-1}
  - name: tenant-roles
    syncMode: OneTime
    policyEngine:
      replicas: 1
    workloadRoles:
      roleRefs:
        - {name: tenant-roles}
    matchingClusters:
      - {name: prod-eu-1}
"""


# ---------------------------------------------------------------------------
# ConfigMap store
# ---------------------------------------------------------------------------


def _core_v1(data: dict[str, str] | None = None, exc: Exception | None = None) -> MagicMock:
    core_v1 = MagicMock()
    if exc is not None:
        core_v1.read_namespaced_config_map = AsyncMock(side_effect=exc)
    else:
        core_v1.read_namespaced_config_map = AsyncMock(return_value=MagicMock(data=data))
    return core_v1


class TestConfigMapSourceStore:
    def test_render_joins_values_in_key_order(self) -> None:
        assert render_config_map_data({"b.yaml": "B", "a.yaml": "A"}) == "A\n---\nB"

    def test_render_empty(self) -> None:
        assert render_config_map_data(None) == ""
        assert render_config_map_data({}) == ""

    async def test_get_renders_data(self) -> None:
        core_v1 = _core_v1({"policy.yaml": "kind: ClusterPolicy"})
        store = ConfigMapSourceStore(core_v1)
        assert await store.get(ConfigSourceRef("default", "policies")) == "kind: ClusterPolicy"
        core_v1.read_namespaced_config_map.assert_awaited_once_with(name="policies", namespace="default")

    async def test_not_found_is_none(self) -> None:
        store = ConfigMapSourceStore(_core_v1(exc=ApiException(status=404, reason="Not Found")))
        assert await store.get(ConfigSourceRef("default", "policies")) is None

    async def test_server_error_is_unreachable(self) -> None:
        store = ConfigMapSourceStore(_core_v1(exc=ApiException(status=500, reason="Internal")))
        with pytest.raises(RemoteUnreachable):
            await store.get(ConfigSourceRef("default", "policies"))

    async def test_transport_error_is_unreachable(self) -> None:
        store = ConfigMapSourceStore(_core_v1(exc=ConnectionRefusedError()))
        with pytest.raises(RemoteUnreachable):
            await store.get(ConfigSourceRef("default", "policies"))


# ---------------------------------------------------------------------------
# Definition parsing
# ---------------------------------------------------------------------------


class TestParseDefinition:
    def test_full_definition(self) -> None:
        import yaml

        ((definition, clusters),) = parse_definitions_document(yaml.safe_load(_DEFINITIONS_YAML), "mgmt")
        assert definition.name == "fleet-policies"
        assert definition.sync_mode == SyncMode.CONTINUOUS
        policy = definition.config_for(FeatureKind.POLICY_ENGINE)
        assert policy == PolicyEngineConfig(
            replicas=2,
            policy_refs=(
                ConfigSourceRef("mgmt", "disallow-latest-tag"),
                ConfigSourceRef("platform", "require-labels"),
            ),
        )
        metrics = definition.config_for(FeatureKind.METRICS_STACK)
        assert isinstance(metrics, MetricsStackConfig)
        assert metrics.installation_mode == InstallationMode.KUBE_PROMETHEUS
        assert metrics.storage_class_name == "standard"
        assert clusters == [ClusterRef("default", "prod-eu-1"), ClusterRef("mgmt", "prod-us-1")]

    def test_sync_mode_defaults_to_one_time(self) -> None:
        definition = parse_definition({"name": "d", "policyEngine": {}})
        assert definition.sync_mode == SyncMode.ONE_TIME
        assert definition.generation == 1

    def test_unknown_sync_mode(self) -> None:
        with pytest.raises(ConfigInvalid, match="syncMode"):
            parse_definition({"name": "d", "syncMode": "Sometimes"})

    def test_unknown_installation_mode(self) -> None:
        with pytest.raises(ConfigInvalid, match="installationMode"):
            parse_definition({"name": "d", "metricsStack": {"installationMode": "Everything"}})

    def test_workload_roles(self) -> None:
        definition = parse_definition(
            {"name": "d", "workloadRoles": {"roleRefs": [{"name": "tenant-roles"}]}},
            "mgmt",
        )
        assert definition.config_for(FeatureKind.WORKLOAD_ROLES) == WorkloadRolesConfig(
            role_refs=(ConfigSourceRef("mgmt", "tenant-roles"),)
        )

    def test_malformed_role_refs(self) -> None:
        with pytest.raises(ConfigInvalid, match="roleRefs"):
            parse_definition({"name": "d", "workloadRoles": {"roleRefs": [{"namespace": "x"}]}})

    def test_missing_name(self) -> None:
        with pytest.raises(ConfigInvalid):
            parse_definition({"policyEngine": {}})

    def test_malformed_refs(self) -> None:
        with pytest.raises(ConfigInvalid):
            parse_definition({"name": "d", "policyEngine": {"policyRefs": "cm"}})

    def test_malformed_cluster(self) -> None:
        with pytest.raises(ConfigInvalid):
            parse_definitions_document({"definitions": [{"name": "d", "matchingClusters": [{"namespace": "x"}]}]})

    def test_document_must_be_mapping(self) -> None:
        with pytest.raises(ConfigInvalid):
            parse_definitions_document(["not", "a", "mapping"])


# ---------------------------------------------------------------------------
# Definition file source
# ---------------------------------------------------------------------------


class TestDefinitionFileSource:
    def _handler(self) -> MagicMock:
        handler = MagicMock()
        handler.sync = AsyncMock(return_value=[])
        handler.remove_definition = AsyncMock(return_value=[])
        return handler

    async def test_load_syncs_each_definition(self, tmp_path: Path) -> None:
        path = tmp_path / "definitions.yaml"
        path.write_text(_DEFINITIONS_YAML)
        handler = self._handler()
        source = DefinitionFileSource(str(path), handler)

        assert await source.load_once() is True
        handler.sync.assert_awaited_once()
        definition, clusters = handler.sync.await_args.args
        assert definition.name == "fleet-policies"
        assert len(clusters) == 2

    async def test_unchanged_file_is_not_resynced(self, tmp_path: Path) -> None:
        path = tmp_path / "definitions.yaml"
        path.write_text(_DEFINITIONS_YAML)
        handler = self._handler()
        source = DefinitionFileSource(str(path), handler)
        await source.load_once()
        assert await source.load_once() is False
        assert handler.sync.await_count == 1

    async def test_changed_definition_bumps_generation(self, tmp_path: Path) -> None:
        path = tmp_path / "definitions.yaml"
        path.write_text(_DEFINITIONS_YAML)
        handler = self._handler()
        source = DefinitionFileSource(str(path), handler)
        await source.load_once()

        path.write_text(_DEFINITIONS_YAML.replace("replicas: 2", "replicas: 3"))
        await source.load_once()

        first = handler.sync.await_args_list[0].args[0]
        second = handler.sync.await_args_list[1].args[0]
        assert second.generation == first.generation + 1

    async def test_cluster_only_change_keeps_generation(self, tmp_path: Path) -> None:
        path = tmp_path / "definitions.yaml"
        path.write_text(_DEFINITIONS_YAML)
        handler = self._handler()
        source = DefinitionFileSource(str(path), handler)
        await source.load_once()

        path.write_text(_DEFINITIONS_YAML.replace("      - {name: prod-us-1}\n", ""))
        await source.load_once()

        first = handler.sync.await_args_list[0].args[0]
        second, clusters = handler.sync.await_args_list[1].args
        assert second.generation == first.generation
        assert clusters == [ClusterRef("default", "prod-eu-1")]

    async def test_removed_definition(self, tmp_path: Path) -> None:
        path = tmp_path / "definitions.yaml"
        path.write_text(_DEFINITIONS_YAML)
        handler = self._handler()
        source = DefinitionFileSource(str(path), handler)
        await source.load_once()

        path.write_text("definitions: []\n")
        await source.load_once()
        handler.remove_definition.assert_awaited_once_with("fleet-policies")

    async def test_invalid_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "definitions.yaml"
        path.write_text("definitions: [unclosed")
        with pytest.raises(ConfigInvalid):
            await DefinitionFileSource(str(path), self._handler()).load_once()

    async def test_invalid_entry_does_not_block_the_rest(self, tmp_path: Path) -> None:
        path = tmp_path / "definitions.yaml"
        path.write_text(_TWO_DEFINITIONS_YAML.replace("syncMode: OneTime", "syncMode: Sometimes"))
        handler = self._handler()

        assert await DefinitionFileSource(str(path), handler).load_once() is True
        handler.sync.assert_awaited_once()
        assert handler.sync.await_args.args[0].name == "fleet-policies"
        handler.remove_definition.assert_not_awaited()

    async def test_invalid_entry_keeps_last_good_definition(self, tmp_path: Path) -> None:
        path = tmp_path / "definitions.yaml"
        path.write_text(_TWO_DEFINITIONS_YAML)
        handler = self._handler()
        source = DefinitionFileSource(str(path), handler)
        await source.load_once()
        assert handler.sync.await_count == 2

        path.write_text(_TWO_DEFINITIONS_YAML.replace("syncMode: OneTime", "syncMode: Sometimes"))
        await source.load_once()
        handler.remove_definition.assert_not_awaited()
        assert [c.args[0].name for c in handler.sync.await_args_list[2:]] == ["fleet-policies"]

        path.write_text(_TWO_DEFINITIONS_YAML.replace("replicas: 1", "replicas: 2"))
        await source.load_once()
        tenant = handler.sync.await_args_list[-1].args[0]
        assert tenant.name == "tenant-roles"
        assert tenant.generation == 2
