from __future__ import annotations

import asyncio
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Path, Query, Request, Response, status
from fastapi.responses import JSONResponse

from ruche.api_models import EventOut, LogsOut, NodeInfoOut, OperationResultOut
from ruche.errors import (
    CapacityExceeded,
    ConfirmationRequired,
    DirectoryAlreadyExists,
    IdUnavailable,
    InvalidTemplate,
    NodeNotFound,
    RucheError,
    UpstreamFailure,
)
from ruche.factory import build_orchestrator
from ruche.models import NodeInfo, OperationResult
from ruche.orchestrator import LifecycleOrchestrator
from ruche.settings import Settings, settings as default_settings

logger = logging.getLogger("ruche.api")

STATUS_BY_ERROR: dict[type[RucheError], int] = {
    CapacityExceeded: status.HTTP_400_BAD_REQUEST,
    IdUnavailable: status.HTTP_400_BAD_REQUEST,
    InvalidTemplate: status.HTTP_400_BAD_REQUEST,
    DirectoryAlreadyExists: status.HTTP_400_BAD_REQUEST,
    ConfirmationRequired: status.HTTP_400_BAD_REQUEST,
    NodeNotFound: status.HTTP_404_NOT_FOUND,
    UpstreamFailure: status.HTTP_502_BAD_GATEWAY,
}

NodeId = Annotated[int, Path(ge=1, le=99, description="Node identity (1..99)")]

router = APIRouter()


def get_orchestrator(request: Request) -> LifecycleOrchestrator:
    return request.app.state.orchestrator


def _info_out(info: NodeInfo) -> NodeInfoOut:
    return NodeInfoOut(**info.to_dict())


def _results_out(results: list[OperationResult]) -> list[OperationResultOut]:
    return [OperationResultOut(name=r.name, ok=r.ok, error=r.error) for r in results]


@router.get("/health")
def health() -> dict[str, str]:
    return {"status": "healthy"}


@router.post("/node", response_model=NodeInfoOut, status_code=status.HTTP_201_CREATED)
async def create_node(request: Request, orch: LifecycleOrchestrator = Depends(get_orchestrator)) -> NodeInfoOut:
    timeout_s = request.app.state.settings.provision_timeout_s
    loop = asyncio.get_running_loop()
    try:
        # On timeout the worker thread keeps running; whatever it already created stays.
        info = await asyncio.wait_for(loop.run_in_executor(None, orch.provision), timeout=timeout_s)
    except asyncio.TimeoutError:
        logger.error("Provisioning timed out after %ss", timeout_s)
        raise HTTPException(status_code=status.HTTP_504_GATEWAY_TIMEOUT, detail=f"Provisioning timed out after {timeout_s}s")
    return _info_out(info)


@router.get("/node/{node_id}", response_model=NodeInfoOut)
def get_node(node_id: NodeId, orch: LifecycleOrchestrator = Depends(get_orchestrator)) -> NodeInfoOut:
    return _info_out(orch.get_node(node_id))


@router.get("/node/{node_id}/logs", response_model=LogsOut)
def get_node_logs(node_id: NodeId, orch: LifecycleOrchestrator = Depends(get_orchestrator)) -> LogsOut:
    info = orch.get_node(node_id)
    return LogsOut(name=info.name, lines=orch.logs(node_id))


@router.post("/node/{node_id}/start", response_model=NodeInfoOut)
def start_node(node_id: NodeId, orch: LifecycleOrchestrator = Depends(get_orchestrator)) -> NodeInfoOut:
    orch.start_node(node_id)
    return _info_out(orch.get_node(node_id))


@router.post("/node/{node_id}/stop", response_model=NodeInfoOut)
def stop_node(node_id: NodeId, orch: LifecycleOrchestrator = Depends(get_orchestrator)) -> NodeInfoOut:
    orch.stop_node(node_id)
    return _info_out(orch.get_node(node_id))


@router.post("/node/{node_id}/recreate", response_model=NodeInfoOut)
def recreate_node(node_id: NodeId, orch: LifecycleOrchestrator = Depends(get_orchestrator)) -> NodeInfoOut:
    return _info_out(orch.recreate_node(node_id))


@router.delete("/node/{node_id}/req", status_code=status.HTTP_202_ACCEPTED)
def request_node_deletion(node_id: NodeId, orch: LifecycleOrchestrator = Depends(get_orchestrator)) -> dict:
    orch.request_deletion(node_id)
    return {"id": node_id, "confirm_within_s": int(orch.guard.window_s)}


@router.delete("/node/{node_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_node(node_id: NodeId, orch: LifecycleOrchestrator = Depends(get_orchestrator)) -> Response:
    orch.confirm_deletion(node_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/nodes", response_model=list[NodeInfoOut])
def list_nodes(orch: LifecycleOrchestrator = Depends(get_orchestrator)) -> list[NodeInfoOut]:
    return [_info_out(i) for i in orch.list_nodes()]


@router.post("/nodes/start", response_model=list[OperationResultOut])
def start_all(orch: LifecycleOrchestrator = Depends(get_orchestrator)) -> list[OperationResultOut]:
    return _results_out(orch.start_all())


@router.post("/nodes/stop", response_model=list[OperationResultOut])
def stop_all(orch: LifecycleOrchestrator = Depends(get_orchestrator)) -> list[OperationResultOut]:
    return _results_out(orch.stop_all())


@router.post("/nodes/recreate", response_model=list[OperationResultOut])
def recreate_all(orch: LifecycleOrchestrator = Depends(get_orchestrator)) -> list[OperationResultOut]:
    return _results_out(orch.recreate_all())


@router.get("/events", response_model=list[EventOut])
def events(
    limit: int = Query(100, ge=1, le=1000), orch: LifecycleOrchestrator = Depends(get_orchestrator)
) -> list[EventOut]:
    return [EventOut(**e) for e in orch.registry.latest_events(limit)]


def _ruche_error_handler(request: Request, exc: RucheError) -> JSONResponse:
    code = status.HTTP_500_INTERNAL_SERVER_ERROR
    for cls in type(exc).__mro__:
        if cls in STATUS_BY_ERROR:
            code = STATUS_BY_ERROR[cls]
            break
    if code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=code, content={"detail": str(exc)})


def create_app(orchestrator: LifecycleOrchestrator | None = None, settings: Settings | None = None) -> FastAPI:
    """Build the management API.

    The orchestrator is created once (at startup unless one is passed in) and
    shared by every request through `get_orchestrator`.
    """
    app = FastAPI(title="Ruche node manager")
    app.state.settings = settings or (orchestrator.settings if orchestrator else default_settings)
    app.state.orchestrator = orchestrator
    app.include_router(router)
    app.add_exception_handler(RucheError, _ruche_error_handler)

    @app.on_event("startup")
    def startup() -> None:
        logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
        if app.state.orchestrator is None:
            app.state.orchestrator = build_orchestrator(app.state.settings)
        logger.info(
            "Ruche ready: registry=%s containers=%s root=%s",
            app.state.settings.registry_backend,
            app.state.settings.container_backend,
            app.state.settings.root_path,
        )

    @app.on_event("shutdown")
    def shutdown() -> None:
        if app.state.orchestrator is not None:
            app.state.orchestrator.runtime.close()

    return app


app = create_app()
