from __future__ import annotations

from threading import Event

from fastapi import Depends, FastAPI, HTTPException, Query

from obsync import db
from obsync.api_models import LoopStatusOut, ResourceInstanceOut, ResourceRequestIn, StackRequest
from obsync.cf_cli import CLIClient, CLIError
from obsync.convergence import ConvergenceLoop
from obsync.daemon import build_loops, start_loops
from obsync.errors import (
    CanceledError,
    ConfigurationError,
    DuplicateResourceError,
    PlatformError,
    WaitTimeoutError,
)
from obsync.models import ResourceRequest
from obsync.platform import PlatformClient
from obsync.resources import ApplicationReconciler, ResourceReconciler
from obsync.runtime import RuntimeState
from obsync.settings import settings
from obsync.stack import StackSpec, provision_stack

app = FastAPI(title="Observability Stack Reconciler")

runtime = RuntimeState()
stop_event = Event()
loops: list[ConvergenceLoop] = []

_platform: PlatformClient | None = None


def get_platform() -> PlatformClient:
    global _platform
    if _platform is None:
        _platform = PlatformClient()
    return _platform


def get_resource_reconciler(platform: PlatformClient = Depends(get_platform)) -> ResourceReconciler:
    return ResourceReconciler(platform)


def get_cli() -> CLIClient:
    return CLIClient()


def _http_error(e: Exception, target: str) -> HTTPException:
    db.log_event("ERROR", f"{type(e).__name__}: {e}", target=target, phase="provision")
    if isinstance(e, DuplicateResourceError):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, ConfigurationError):
        return HTTPException(status_code=422, detail=str(e))
    if isinstance(e, CanceledError):
        return HTTPException(status_code=503, detail=str(e))
    if isinstance(e, WaitTimeoutError):
        return HTTPException(status_code=504, detail=str(e))
    return HTTPException(status_code=502, detail=str(e))


@app.on_event("startup")
def startup() -> None:
    db.init_db()
    if settings.enable_loops:
        loops.extend(build_loops(runtime, get_platform()))
        start_loops(loops, stop_event)


@app.on_event("shutdown")
def shutdown() -> None:
    stop_event.set()


@app.get("/health")
def health() -> dict:
    return {"status": "healthy", "loops": len(loops)}


@app.get("/events")
def events(
    limit: int = Query(100, ge=1, le=1000),
    target: str | None = None,
    level: str | None = None,
) -> list[dict]:
    return db.latest_events(limit=limit, target=target, level=level)


@app.get("/loops", response_model=list[LoopStatusOut])
def loop_status() -> list[dict]:
    return runtime.snapshot()


@app.post("/resources", response_model=ResourceInstanceOut)
def reconcile_resource(
    req: ResourceRequestIn,
    reconciler: ResourceReconciler = Depends(get_resource_reconciler),
) -> ResourceInstanceOut:
    request = ResourceRequest(kind=req.kind, plan=req.plan, instance_name=req.instance_name)
    try:
        instance = reconciler.reconcile(request, stop=stop_event)
    except (ConfigurationError, PlatformError, CanceledError, WaitTimeoutError) as e:
        raise _http_error(e, req.instance_name) from e
    return ResourceInstanceOut(guid=instance.guid, name=instance.name, state=instance.state)


@app.post("/stacks")
def reconcile_stack(
    req: StackRequest,
    reconciler: ResourceReconciler = Depends(get_resource_reconciler),
    cli: CLIClient = Depends(get_cli),
) -> dict:
    spec = StackSpec(
        name=req.name,
        influx_plan=req.influx_plan,
        grafana_admin_user=req.grafana_admin_user,
        grafana_admin_password=req.grafana_admin_password,
        prometheus_instance_guid=req.prometheus_instance_guid,
    )
    try:
        return provision_stack(spec, reconciler, ApplicationReconciler(cli), cli, stop=stop_event)
    except (ConfigurationError, PlatformError, CLIError, CanceledError, WaitTimeoutError) as e:
        raise _http_error(e, req.name) from e
