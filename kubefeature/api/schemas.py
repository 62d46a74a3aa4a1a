"""Pydantic response schemas for the status API."""

from __future__ import annotations

from pydantic import BaseModel, Field

from kubefeature.models.state import DefinitionStatus, FeatureStatus


class ErrorResponse(BaseModel):
    error: str
    detail: str


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str
    definitions: int = 0


class ClusterRefSchema(BaseModel):
    namespace: str
    name: str


class ResourceIdentitySchema(BaseModel):
    api_version: str = Field(serialization_alias="apiVersion")
    kind: str
    namespace: str
    name: str


class DefinitionStatusResponse(BaseModel):
    name: str
    matching_clusters: list[ClusterRefSchema] = Field(serialization_alias="matchingClusters")

    @classmethod
    def from_status(cls, status: DefinitionStatus) -> DefinitionStatusResponse:
        return cls(
            name=status.name,
            matching_clusters=[ClusterRefSchema(namespace=c.namespace, name=c.name) for c in status.matching_clusters],
        )


class FeatureStatusResponse(BaseModel):
    feature: str
    applied_fingerprint: str | None = Field(serialization_alias="appliedFingerprint")
    observed_fingerprint: str | None = Field(serialization_alias="observedFingerprint")
    readiness: str
    deployed_resources: list[ResourceIdentitySchema] = Field(serialization_alias="deployedResources")
    last_error: str | None = Field(serialization_alias="lastError")

    @classmethod
    def from_status(cls, status: FeatureStatus) -> FeatureStatusResponse:
        return cls(
            feature=status.feature.value,
            applied_fingerprint=status.applied_fingerprint,
            observed_fingerprint=status.observed_fingerprint,
            readiness=status.readiness.value,
            deployed_resources=[
                ResourceIdentitySchema(api_version=r.api_version, kind=r.kind, namespace=r.namespace, name=r.name)
                for r in status.deployed_resources
            ],
            last_error=status.last_error,
        )


class ClusterStatusResponse(BaseModel):
    definition: str
    cluster: ClusterRefSchema
    features: list[FeatureStatusResponse]
