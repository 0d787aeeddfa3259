"""
HTTP API - message ingestion, scheduling queries and operator actions.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from ..errors import ErrorResponse, InvalidMessageError, OrchestratorError
from ..startup.container import OrchestratorServices
from ..startup.server_config import create_fastapi_app
from ..task_graph import (
    TaskGraph,
    critical_path,
    ensure_valid,
    has_pending_checkpoint,
    parallel_groups,
    ready_tasks,
)

logger = logging.getLogger(__name__)

router = APIRouter()


class ResolveRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    resolved_by: str = "operator"
    resolution: Optional[str] = None


def get_services(request: Request) -> OrchestratorServices:
    return request.app.state.services


async def _valid_snapshot(services: OrchestratorServices, product: str) -> TaskGraph:
    graph = await services.graphs.snapshot(product)
    ensure_valid(graph)
    return graph


# ----------------------------------------------------------------------
# Messages
# ----------------------------------------------------------------------

@router.post("/messages")
async def post_message(request: Request, message: Dict[str, Any] = Body(...)):
    services = get_services(request)
    result = await services.router.route(message)
    return result.to_dict()


# ----------------------------------------------------------------------
# Graphs and scheduling queries
# ----------------------------------------------------------------------

@router.put("/products/{product}/graph")
async def put_graph(request: Request, product: str, data: Dict[str, Any] = Body(...)):
    services = get_services(request)
    if data.get("product", product) != product:
        raise InvalidMessageError([
            f"Graph product '{data['product']}' does not match path product '{product}'"
        ])

    try:
        graph = TaskGraph.from_dict({**data, "product": product})
    except (KeyError, TypeError, ValueError) as e:
        raise InvalidMessageError([f"Malformed task graph: {e}"]) from e

    result = await services.graphs.put(graph)
    services.driver.notify(product)
    return {"success": True, "product": product, "tasks": len(graph), "validation": result.to_dict()}


@router.get("/products/{product}/graph")
async def get_graph(request: Request, product: str):
    graph = await get_services(request).graphs.snapshot(product)
    return {**graph.to_dict(), "stats": graph.get_stats()}


@router.get("/products/{product}/validation")
async def get_validation(request: Request, product: str):
    result = await get_services(request).graphs.validation(product)
    return result.to_dict()


@router.get("/products/{product}/ready")
async def get_ready(request: Request, product: str):
    services = get_services(request)
    graph = await _valid_snapshot(services, product)
    checkpoints = await services.checkpoints.list(product, include_resolved=False)
    ready = ready_tasks(graph, checkpoints)
    return {
        "product": product,
        "gated": has_pending_checkpoint(product, checkpoints),
        "tasks": [task.to_dict() for task in ready],
    }


@router.get("/products/{product}/parallel-groups")
async def get_parallel_groups(request: Request, product: str):
    services = get_services(request)
    graph = await _valid_snapshot(services, product)
    checkpoints = await services.checkpoints.list(product, include_resolved=False)
    groups = parallel_groups(ready_tasks(graph, checkpoints))
    return {"product": product, "groups": [[task.id for task in group] for group in groups]}


@router.get("/products/{product}/critical-path")
async def get_critical_path(request: Request, product: str):
    graph = await _valid_snapshot(get_services(request), product)
    return {"product": product, **critical_path(graph).to_dict()}


# ----------------------------------------------------------------------
# Operator surface
# ----------------------------------------------------------------------

@router.get("/products/{product}/checkpoints")
async def get_checkpoints(
    request: Request,
    product: str,
    include_resolved: bool = Query(True, alias="includeResolved"),
):
    records = await get_services(request).checkpoints.list(product, include_resolved=include_resolved)
    return {"product": product, "checkpoints": [record.to_dict() for record in records]}


@router.post("/products/{product}/checkpoints/{checkpoint_id}/resolve")
async def resolve_checkpoint(
    request: Request,
    product: str,
    checkpoint_id: str,
    body: Optional[ResolveRequest] = None,
):
    body = body or ResolveRequest()
    services = get_services(request)
    record = await services.checkpoints.resolve(product, checkpoint_id, body.resolved_by, body.resolution)
    services.driver.notify(product)
    return record.to_dict()


@router.get("/products/{product}/blockers")
async def get_blockers(
    request: Request,
    product: str,
    include_resolved: bool = Query(True, alias="includeResolved"),
):
    records = await get_services(request).blockers.list(product, include_resolved=include_resolved)
    return {"product": product, "blockers": [record.to_dict() for record in records]}


@router.post("/products/{product}/blockers/{blocker_id}/resolve")
async def resolve_blocker(
    request: Request,
    product: str,
    blocker_id: str,
    body: Optional[ResolveRequest] = None,
):
    body = body or ResolveRequest()
    record = await get_services(request).blockers.resolve(product, blocker_id, body.resolution)
    return record.to_dict()


# ----------------------------------------------------------------------
# Agents
# ----------------------------------------------------------------------

@router.get("/agents/{agent}/inbox")
async def get_inbox(request: Request, agent: str, drain: bool = False):
    inboxes = get_services(request).inboxes
    messages = await (inboxes.drain(agent) if drain else inboxes.list(agent))
    return {"agent": agent, "messages": [message.to_wire() for message in messages]}


@router.get("/agents/{agent}/performance")
async def get_performance(request: Request, agent: str):
    performance = await get_services(request).performance.get(agent)
    return performance.to_dict()


# ----------------------------------------------------------------------
# Health / metrics
# ----------------------------------------------------------------------

@router.get("/health")
async def health(request: Request):
    return await get_services(request).health()


@router.get("/metrics")
async def metrics(request: Request):
    return get_services(request).metrics.get_summary()


async def orchestrator_error_handler(request: Request, exc: OrchestratorError) -> JSONResponse:
    response = ErrorResponse.from_exception(exc)
    if response.status_code >= 500:
        logger.error(f"{exc.code}: {exc.message}")
    return JSONResponse(status_code=response.status_code, content=response.to_dict())


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    response = ErrorResponse.from_exception(exc)
    logger.exception(f"Unhandled error on {request.method} {request.url.path} (trace {response.trace_id})")
    return JSONResponse(status_code=response.status_code, content=response.to_dict())


def create_app(
    services: OrchestratorServices,
    run_driver: bool = False,
    cors_origins: Optional[List[str]] = None,
) -> FastAPI:
    """
    Build the API around a service container.

    The app's lifespan starts and stops the container.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await services.start(run_driver=run_driver)
        try:
            yield
        finally:
            await services.shutdown()

    app = create_fastapi_app(lifespan=lifespan, cors_origins=cors_origins)
    app.state.services = services
    app.add_exception_handler(OrchestratorError, orchestrator_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
    app.include_router(router)
    return app
