from __future__ import annotations

import json
from typing import Any

from . import db
from .inspector import StateInspector
from .models import Binding, Datasource, ScrapeTarget

INFLUXDB = "influxdb"
PROMETHEUS_DATASOURCE_NAME = "prometheus-0"
DEFAULT_INFLUX_DATABASE = "defaultdb"


def build_scrape_targets(inspector: StateInspector, instance_guid: str) -> list[ScrapeTarget]:
    """One scrape target per workload bound to the collector's instance.

    Platform errors propagate: a partial target list must never be applied.
    """
    targets: list[ScrapeTarget] = []
    for binding in inspector.platform.list_service_bindings(instance_guid):
        workload = inspector.workload(binding.app_guid)
        if workload.route_count == 0:
            db.log_event("INFO", f"Skipping {workload.name}: no route mappings", target=workload.name, phase="discover")
            continue
        if not workload.addresses:
            db.log_event(
                "WARN", f"Skipping {workload.name}: no internal routes mapped", target=workload.name, phase="discover"
            )
            continue
        for address, port in workload.addresses:
            db.log_event("DEBUG", f"Adding {address}:{port} as dns target", target=workload.name, phase="discover")
        targets.append(ScrapeTarget(job_name=workload.name, addresses=workload.addresses))
    return targets


def _influx_datasource(binding: Binding) -> Datasource:
    creds = binding.credentials
    user = creds.get("username")
    password = creds.get("password")
    return Datasource(
        name=binding.name,
        type=INFLUXDB,
        url=str(creds.get("uri") or ""),
        basic_auth=True,
        basic_auth_user=str(user) if user is not None else None,
        basic_auth_password=str(password) if password is not None else None,
        database=DEFAULT_INFLUX_DATABASE,
    )


DATASOURCE_BUILDERS = {
    INFLUXDB: _influx_datasource,
}


def build_datasources(bindings: list[Binding], prometheus_url: str | None = None) -> list[Datasource]:
    """Datasources for every binding of a recognised type.

    When `prometheus_url` is given the co-deployed collector is appended as the
    default datasource.
    """
    desired: list[Datasource] = []
    for binding in bindings:
        build = DATASOURCE_BUILDERS.get(binding.label)
        if build is None:
            db.log_event("DEBUG", f"Ignoring binding of {binding.label or 'unknown'} service", target=binding.name, phase="derive")
            continue
        desired.append(build(binding))
    if prometheus_url:
        desired.append(
            Datasource(
                name=PROMETHEUS_DATASOURCE_NAME,
                type="prometheus",
                url=prometheus_url,
                is_default=True,
            )
        )
    return desired


def parse_vcap_services(raw: str | dict[str, Any] | None) -> list[Binding]:
    """Bindings from a VCAP_SERVICES document (label -> list of bound services)."""
    if not raw:
        return []
    doc = json.loads(raw) if isinstance(raw, str) else raw
    out: list[Binding] = []
    for label, services in sorted(doc.items()):
        for svc in services or []:
            out.append(
                Binding(
                    service_instance_guid=str(svc.get("instance_guid") or svc.get("instance_name") or ""),
                    app_guid=str(svc.get("app_guid") or ""),
                    credentials=svc.get("credentials") or {},
                    name=str(svc.get("name") or ""),
                    label=str(svc.get("label") or label),
                )
            )
    return out
