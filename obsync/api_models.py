from __future__ import annotations

from pydantic import BaseModel, Field


class ResourceRequestIn(BaseModel):
    kind: str = Field(..., description="Service offering label, e.g. influxdb")
    plan: str = Field(..., description="Plan name under the offering")
    instance_name: str = Field(..., min_length=1, max_length=255)


class ResourceInstanceOut(BaseModel):
    guid: str
    name: str
    state: str


class StackRequest(BaseModel):
    name: str = Field(..., pattern=r"^[a-z][a-z0-9\-]{0,40}$", description="Prefix for every app in the stack")
    influx_plan: str = "tiny-1.x"
    grafana_admin_user: str = "admin"
    grafana_admin_password: str = Field("password", min_length=1)
    prometheus_instance_guid: str = ""


class LoopStatusOut(BaseModel):
    name: str
    phase: str
    cycles: int
    consecutive_failures: int
    last_success_at: str | None = None
    last_changed_at: str | None = None
    last_error: str | None = None
