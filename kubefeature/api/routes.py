"""Read-only status routes."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request

from kubefeature.api.schemas import (
    ClusterRefSchema,
    ClusterStatusResponse,
    DefinitionStatusResponse,
    FeatureStatusResponse,
    HealthResponse,
)
from kubefeature.models.features import ClusterRef

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health(request: Request) -> HealthResponse:
    from kubefeature import __version__

    handler = request.app.state.handler
    return HealthResponse(version=__version__, definitions=len(handler.definitions()))


@router.get("/definitions", response_model=list[DefinitionStatusResponse], response_model_by_alias=True)
async def list_definitions(request: Request) -> list[DefinitionStatusResponse]:
    handler = request.app.state.handler
    statuses = [handler.definition_status(d.name) for d in handler.definitions()]
    return [DefinitionStatusResponse.from_status(s) for s in statuses if s is not None]


@router.get("/definitions/{name}", response_model=DefinitionStatusResponse, response_model_by_alias=True)
async def get_definition(name: str, request: Request) -> DefinitionStatusResponse:
    status = request.app.state.handler.definition_status(name)
    if status is None:
        raise HTTPException(status_code=404, detail=f"definition {name} not found")
    return DefinitionStatusResponse.from_status(status)


@router.get(
    "/definitions/{name}/clusters/{namespace}/{cluster}",
    response_model=ClusterStatusResponse,
    response_model_by_alias=True,
)
async def get_cluster_status(name: str, namespace: str, cluster: str, request: Request) -> ClusterStatusResponse:
    handler = request.app.state.handler
    if handler.definition_status(name) is None:
        raise HTTPException(status_code=404, detail=f"definition {name} not found")
    statuses = await handler.cluster_status(name, ClusterRef(namespace=namespace, name=cluster))
    if not statuses:
        raise HTTPException(status_code=404, detail=f"no features recorded for {namespace}/{cluster}")
    return ClusterStatusResponse(
        definition=name,
        cluster=ClusterRefSchema(namespace=namespace, name=cluster),
        features=[FeatureStatusResponse.from_status(s) for s in statuses],
    )
