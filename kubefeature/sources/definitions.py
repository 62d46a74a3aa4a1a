"""Feature definition file source.

Stands in for the external matcher: a YAML file lists feature definitions
together with the clusters currently matching each one.  The file is polled
and every change is fed to the MatchTransitionHandler.

Example::

    definitions:
      - name: fleet-policies
        selector: env=prod
        syncMode: Continuous
        policyEngine:
          replicas: 2
          policyRefs:
            - {namespace: default, name: disallow-latest-tag}
        metricsStack:
          installationMode: KubePrometheus
          storageClassName: standard
        workloadRoles:
          roleRefs:
            - {namespace: default, name: tenant-roles}
        matchingClusters:
          - {namespace: default, name: prod-eu-1}
"""

from __future__ import annotations

import asyncio
import dataclasses
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog
import yaml

from kubefeature.errors import ConfigInvalid
from kubefeature.models.features import (
    ClusterRef,
    ConfigSourceRef,
    FeatureConfig,
    FeatureDefinition,
    FeatureKind,
    InstallationMode,
    MetricsStackConfig,
    PolicyEngineConfig,
    SyncMode,
    WorkloadRolesConfig,
)

if TYPE_CHECKING:
    from kubefeature.controller.handler import MatchTransitionHandler

_log = structlog.get_logger(component="sources.definitions")


def _refs(raw: Any, default_namespace: str, field_name: str = "policyRefs") -> tuple[ConfigSourceRef, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, list):
        raise ConfigInvalid(f"{field_name} must be a list")
    refs = []
    for item in raw:
        if not isinstance(item, dict) or not item.get("name"):
            raise ConfigInvalid(f"invalid entry in {field_name}: {item!r}")
        refs.append(ConfigSourceRef(namespace=item.get("namespace") or default_namespace, name=item["name"]))
    return tuple(refs)


def _enum(enum_cls: type, value: Any, field_name: str) -> Any:
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ConfigInvalid(f"{field_name} must be one of {allowed}, got {value!r}") from None


def parse_definition(raw: dict[str, Any], default_namespace: str = "default") -> FeatureDefinition:
    """Build a FeatureDefinition from its YAML form.

    Raises:
        ConfigInvalid: if a required field is missing or malformed.
    """
    name = raw.get("name")
    if not name:
        raise ConfigInvalid("definition requires a name")
    features: dict[FeatureKind, FeatureConfig] = {}

    policy = raw.get("policyEngine")
    if policy is not None:
        features[FeatureKind.POLICY_ENGINE] = PolicyEngineConfig(
            replicas=int(policy.get("replicas", 1)),
            policy_refs=_refs(policy.get("policyRefs"), default_namespace),
        )

    metrics = raw.get("metricsStack")
    if metrics is not None:
        features[FeatureKind.METRICS_STACK] = MetricsStackConfig(
            installation_mode=_enum(
                InstallationMode, metrics.get("installationMode", "Custom"), "installationMode"
            ),
            storage_class_name=metrics.get("storageClassName"),
            storage_quantity=metrics.get("storageQuantity"),
            policy_refs=_refs(metrics.get("policyRefs"), default_namespace),
        )

    roles = raw.get("workloadRoles")
    if roles is not None:
        features[FeatureKind.WORKLOAD_ROLES] = WorkloadRolesConfig(
            role_refs=_refs(roles.get("roleRefs"), default_namespace, "roleRefs"),
        )

    return FeatureDefinition(
        name=str(name),
        selector=str(raw.get("selector", "")),
        sync_mode=_enum(SyncMode, raw.get("syncMode", SyncMode.ONE_TIME.value), "syncMode"),
        features=features,
        generation=int(raw.get("generation", 1)),
    )


def parse_entry(raw: Any, default_namespace: str = "default") -> tuple[FeatureDefinition, list[ClusterRef]]:
    """Parse one ``definitions`` entry and its matching clusters.

    Raises:
        ConfigInvalid: if the entry is malformed.
    """
    if not isinstance(raw, dict):
        raise ConfigInvalid(f"definition entry is not a mapping: {raw!r}")
    try:
        definition = parse_definition(raw, default_namespace)
        clusters = [
            ClusterRef(namespace=c.get("namespace") or default_namespace, name=c["name"])
            for c in raw.get("matchingClusters") or []
        ]
    except (AttributeError, KeyError, TypeError, ValueError) as exc:
        raise ConfigInvalid(f"malformed definition {raw!r}: {exc}") from exc
    return definition, clusters


def _entries(document: Any) -> list[Any]:
    if not isinstance(document, dict):
        raise ConfigInvalid("definitions file must be a mapping")
    entries = document.get("definitions") or []
    if not isinstance(entries, list):
        raise ConfigInvalid("definitions must be a list")
    return entries


def parse_definitions_document(
    document: Any,
    default_namespace: str = "default",
) -> list[tuple[FeatureDefinition, list[ClusterRef]]]:
    """Parse a whole document, failing on the first malformed entry."""
    return [parse_entry(raw, default_namespace) for raw in _entries(document)]


class DefinitionFileSource:
    """Polls a definitions file and feeds the handler.

    When the file omits ``generation``, one is tracked here: any change to a
    definition bumps it.
    """

    def __init__(
        self,
        path: str,
        handler: MatchTransitionHandler,
        poll_seconds: int = 30,
        default_namespace: str = "default",
    ) -> None:
        self._path = Path(path)
        self._handler = handler
        self._poll_seconds = poll_seconds
        self._default_namespace = default_namespace
        self._known: dict[str, FeatureDefinition] = {}
        self._last_text: str | None = None

    def _with_generation(self, definition: FeatureDefinition, explicit: bool) -> FeatureDefinition:
        previous = self._known.get(definition.name)
        if explicit or previous is None:
            return definition
        unchanged = dataclasses.replace(definition, generation=previous.generation)
        if unchanged == previous:
            return previous
        return dataclasses.replace(definition, generation=previous.generation + 1)

    async def load_once(self) -> bool:
        """Read the file and sync changes.  Returns True when anything changed."""
        text = await asyncio.to_thread(self._path.read_text, encoding="utf-8")
        if text == self._last_text:
            return False
        try:
            document = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise ConfigInvalid(f"{self._path}: invalid YAML: {exc}") from exc
        entries = _entries(document if document is not None else {})

        seen: set[str] = set()
        for raw in entries:
            name = raw.get("name") if isinstance(raw, dict) else None
            try:
                definition, clusters = parse_entry(raw, self._default_namespace)
            except ConfigInvalid as exc:
                # a broken entry keeps its last good definition until fixed
                _log.error("definition_invalid", path=str(self._path), definition=name, error=str(exc))
                if name:
                    seen.add(str(name))
                continue
            definition = self._with_generation(definition, explicit="generation" in raw)
            seen.add(definition.name)
            self._known[definition.name] = definition
            await self._handler.sync(definition, clusters)
        for name in sorted(set(self._known) - seen):
            del self._known[name]
            await self._handler.remove_definition(name)
        self._last_text = text
        _log.info("definitions_loaded", path=str(self._path), definitions=len(seen))
        return True

    async def run(self) -> None:
        """Poll forever.  Invalid files are reported and retried next poll."""
        while True:
            try:
                await self.load_once()
            except (ConfigInvalid, OSError) as exc:
                _log.error("definitions_load_failed", path=str(self._path), error=str(exc))
            await asyncio.sleep(self._poll_seconds)
