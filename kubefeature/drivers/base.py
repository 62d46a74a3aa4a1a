"""Feature Driver capability.

A driver knows, for one feature kind, how to bring up the backing workload
(the add-on's own controller), which config refs feed its fingerprint, and
how to render and upsert the per-config resources.  Drivers hold no
per-cluster state: everything they need comes from the arguments.
"""

from __future__ import annotations

import hashlib
import re
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import yaml

from kubefeature.errors import ConfigInvalid, NotReady
from kubefeature.models.features import ConfigSourceRef, FeatureConfig, FeatureKind
from kubefeature.models.state import Readiness, ResourceIdentity
from kubefeature.observability.logging import get_logger
from kubefeature.remote.base import RemoteObjectAPI, identity_of
from kubefeature.sources.base import ConfigSourceStore

_logger = get_logger("drivers")

FEATURE_LABEL = "kubefeature.io/feature"
APPLICANT_LABEL = "kubefeature.io/applicant"
APPLICANT_ANNOTATION = "kubefeature.io/applicant"

_LABEL_VALUE = re.compile(r"^[A-Za-z0-9]([-A-Za-z0-9_.]{0,61}[A-Za-z0-9])?$")


def applicant_label(applicant: str) -> str:
    """Return a label-safe value for *applicant*."""
    if _LABEL_VALUE.match(applicant):
        return applicant
    return "a-" + hashlib.sha256(applicant.encode("utf-8")).hexdigest()[:40]


def owner_labels(kind: FeatureKind, applicant: str) -> dict[str, str]:
    return {FEATURE_LABEL: kind.value.lower(), APPLICANT_LABEL: applicant_label(applicant)}


def load_documents(content: str, source: str) -> list[dict[str, Any]]:
    """Parse a multi-document YAML blob into manifests.

    Raises:
        ConfigInvalid: on YAML errors or documents that are not objects.
    """
    try:
        docs = [doc for doc in yaml.safe_load_all(content) if doc is not None]
    except yaml.YAMLError as exc:
        raise ConfigInvalid(f"{source}: invalid YAML: {exc}") from exc
    for doc in docs:
        if not isinstance(doc, dict):
            raise ConfigInvalid(f"{source}: document is not a mapping")
    return docs


@dataclass
class DeployProgress:
    """How far one Deploy got.

    ``applied`` holds every identity the remote side accepted, also when the
    Deploy later fails or is cancelled.  ``on_rendered`` is awaited with the
    kinds of the full rendered set before the first object is applied.
    """

    applied: set[ResourceIdentity] = field(default_factory=set)
    on_rendered: Callable[[set[tuple[str, str]]], Awaitable[None]] | None = None


def deployment_ready(obj: dict[str, Any]) -> bool:
    """True when every desired replica of a Deployment reports ready."""
    spec = obj.get("spec") or {}
    status = obj.get("status") or {}
    desired = spec.get("replicas", 1)
    return status.get("readyReplicas", 0) == desired


class FeatureDriver(ABC):
    """Per-kind Deploy / Undeploy / ListConfigRefs capability.

    Subclasses describe their backing workload and, optionally, extra
    resources derived from the configuration itself.
    """

    kind: FeatureKind

    def __init__(self, sources: ConfigSourceStore) -> None:
        self._sources = sources

    # ------------------------------------------------------------------
    # Kind specific
    # ------------------------------------------------------------------

    @property
    def workload(self) -> ResourceIdentity | None:
        """Identity of the Deployment that serves this feature, if it has one."""
        return None

    def workload_manifests(self, config: FeatureConfig) -> list[dict[str, Any]]:
        """Manifests that install the backing workload."""
        return []

    @abstractmethod
    def list_config_refs(self, config: FeatureConfig) -> list[ConfigSourceRef]:
        """Ordered refs feeding this feature's fingerprint.  No side effects."""

    def extra_manifests(self, config: FeatureConfig) -> list[dict[str, Any]]:
        """Resources implied by the configuration, besides the referenced ones."""
        return []

    def validate(self, config: FeatureConfig) -> None:
        """Raise ConfigInvalid if *config* cannot be rendered."""

    def check_manifest(self, manifest: dict[str, Any], source: str) -> None:
        """Raise ConfigInvalid if a referenced document is not allowed for this kind."""

    # ------------------------------------------------------------------
    # Backing workload
    # ------------------------------------------------------------------

    async def workload_readiness(self, remote: RemoteObjectAPI) -> Readiness:
        if self.workload is None:
            return Readiness.READY
        obj = await remote.get(self.workload)
        if obj is None:
            return Readiness.ABSENT
        if not deployment_ready(obj):
            return Readiness.NOT_READY
        return Readiness.READY

    async def install_workload(self, remote: RemoteObjectAPI, config: FeatureConfig) -> None:
        for manifest in self.workload_manifests(config):
            await remote.apply(manifest)
        _logger.info("backing_workload_installed", feature=self.kind.value, workload=str(self.workload))

    # ------------------------------------------------------------------
    # Deploy / Undeploy
    # ------------------------------------------------------------------

    async def deploy(
        self,
        remote: RemoteObjectAPI,
        config: FeatureConfig,
        applicant: str,
        progress: DeployProgress | None = None,
    ) -> set[ResourceIdentity]:
        """Upsert every per-config resource and return the desired set.

        Calling deploy twice with an unchanged config returns the same set
        and only updates objects in place.  Pass *progress* to learn what was
        applied before a failure or cancellation.

        Raises:
            NotReady: the backing workload is not serving yet.
            ConfigInvalid: a referenced document cannot be rendered, or a
                target object is owned by someone else.
        """
        self.validate(config)
        readiness = await self.workload_readiness(remote)
        if readiness is not Readiness.READY:
            raise NotReady(f"{self.kind.value} workload {self.workload} is {readiness.value}")

        manifests = list(self.extra_manifests(config))
        for ref in self.list_config_refs(config):
            content = await self._sources.get(ref)
            if content is None:
                _logger.info("deploy_ref_missing", feature=self.kind.value, ref=str(ref))
                continue
            for document in load_documents(content, str(ref)):
                self.check_manifest(document, str(ref))
                manifests.append(document)

        labels = owner_labels(self.kind, applicant)
        # refuse the whole set before touching anything
        for manifest in manifests:
            await self._check_ownership(remote, identity_of(manifest), labels)
        progress = progress if progress is not None else DeployProgress()
        if progress.on_rendered is not None:
            await progress.on_rendered({identity_of(m).group_version_kind for m in manifests})
        deployed: set[ResourceIdentity] = set()
        for manifest in manifests:
            identity = await remote.apply(_stamp(manifest, labels, applicant))
            deployed.add(identity)
            progress.applied.add(identity)
        return deployed

    async def _check_ownership(
        self,
        remote: RemoteObjectAPI,
        identity: ResourceIdentity,
        labels: dict[str, str],
    ) -> None:
        existing = await remote.get(identity)
        if existing is None:
            return
        existing_labels = (existing.get("metadata") or {}).get("labels") or {}
        if any(existing_labels.get(k) != v for k, v in labels.items()):
            raise ConfigInvalid(f"{identity} already exists and is not managed by this feature instance")

    async def undeploy(
        self,
        remote: RemoteObjectAPI,
        applicant: str,
        kinds: set[tuple[str, str]],
    ) -> None:
        """Delete every resource of *kinds* labelled for *applicant*."""
        labels = owner_labels(self.kind, applicant)
        for api_version, kind in sorted(kinds):
            for identity in await remote.list_labelled(api_version, kind, labels):
                await remote.delete(identity)
                _logger.info("undeploy_swept", feature=self.kind.value, resource=str(identity))


def _stamp(manifest: dict[str, Any], labels: dict[str, str], applicant: str) -> dict[str, Any]:
    stamped = dict(manifest)
    metadata = dict(stamped.get("metadata") or {})
    metadata["labels"] = {**(metadata.get("labels") or {}), **labels}
    metadata["annotations"] = {**(metadata.get("annotations") or {}), APPLICANT_ANNOTATION: applicant}
    stamped["metadata"] = metadata
    return stamped
