from __future__ import annotations

import os
from dataclasses import dataclass, field
from threading import Event
from typing import Any, Protocol

import yaml

from . import db
from .manifest import Application, Manifest, Sidecar
from .models import DEFAULT_SCRAPE_PORT, ResourceRequest, ScrapeTarget
from .resources import ApplicationReconciler, ResourceReconciler
from .settings import settings

INTERNAL_DOMAIN = "apps.internal"
GRAFANA_PORT = 3000


class NetworkPolicies(Protocol):
    def add_network_policy(self, source_app: str, dest_app: str, port: int | str, protocol: str = "tcp") -> None: ...


@dataclass(frozen=True)
class StackSpec:
    """Everything needed to stand up one observability stack."""

    name: str
    influx_plan: str = "tiny-1.x"
    influx_offering: str = "influxdb"
    apps_dir: str = "apps"
    grafana_image: str = "grafana/grafana:7.0.1"
    grafana_admin_user: str = "admin"
    grafana_admin_password: str = "password"
    prometheus_buildpack: str = "https://github.com/alphagov/prometheus-buildpack.git"
    prometheus_instance_guid: str = ""
    labels: dict[str, str] = field(default_factory=dict)

    @property
    def influx_instance(self) -> str:
        return f"{self.name}-influx"

    def app_name(self, role: str) -> str:
        return f"{self.name}-{role}"

    def internal_route(self, role: str) -> str:
        return f"{self.app_name(role)}.{INTERNAL_DOMAIN}"


def _platform_env() -> dict[str, str]:
    return {
        "CF_ACCESS_TOKEN": settings.cf_access_token or "",
        "CF_USERNAME": settings.cf_username or "",
        "CF_PASSWORD": settings.cf_password or "",
        "CF_API_ENDPOINT": settings.cf_api_endpoint,
        "CF_ORG_NAME": settings.cf_org_name or "",
        "CF_SPACE_NAME": settings.cf_space_name or "",
    }


def exporter_scrape_configs(spec: StackSpec) -> list[dict[str, Any]]:
    target = ScrapeTarget(
        job_name="paas-exporter",
        addresses=((spec.internal_route("prom-exporter"), DEFAULT_SCRAPE_PORT),),
    )
    return [target.to_scrape_config()]


def build_stack_manifest(spec: StackSpec) -> Manifest:
    """Collector (+ config reloader sidecar), exporter, Grafana and the Grafana reloader."""
    labels = {"prometheus": spec.name, **spec.labels}
    grafana_url = f"http://{spec.internal_route('grafana')}:{GRAFANA_PORT}"
    prometheus_url = f"http://{spec.internal_route('prom')}:{DEFAULT_SCRAPE_PORT}"

    exporter = Application(
        name=spec.app_name("prom-exporter"),
        labels=labels,
        memory="256M",
        disk_quota="1G",
        instances=1,
        health_check_type="port",
        routes=[spec.internal_route("prom-exporter")],
        buildpacks=["binary_buildpack"],
        path=os.path.join(spec.apps_dir, "paas-prometheus-exporter"),
        env={
            "USERNAME": settings.cf_username or "",
            "PASSWORD": settings.cf_password or "",
            "API_ENDPOINT": settings.cf_api_endpoint,
            "UPDATE_FREQUENCY": "300",
            "SCRAPE_INTERVAL": "60",
        },
    )
    prometheus = Application(
        name=spec.app_name("prom"),
        labels=labels,
        memory="512M",
        disk_quota="4G",
        instances=1,
        health_check_type="port",
        routes=[spec.internal_route("prom")],
        buildpacks=[spec.prometheus_buildpack],
        path=os.path.join(spec.apps_dir, "prometheus"),
        env={
            "PROMETHEUS_FLAGS": " ".join(
                [
                    "--storage.tsdb.retention.size=3GB",
                    "--web.external-url=http://localhost",
                    "--config.file=config.yml",
                ]
            ),
            **_platform_env(),
            "CF_PROMETHEUS_SERVICE_INSTANCE_GUID": spec.prometheus_instance_guid,
            "PROMETHEUS_SCRAPE_CONFIGS": yaml.safe_dump(exporter_scrape_configs(spec), default_flow_style=False),
        },
        services=[spec.influx_instance],
        sidecars=[Sidecar(name="config-reloader", process_types=["web"], command="obsync-cli run --scrape")],
    )
    grafana = Application(
        name=spec.app_name("grafana"),
        labels=labels,
        memory="256M",
        disk_quota="1G",
        instances=1,
        health_check_type="port",
        routes=[spec.internal_route("grafana")],
        path=os.path.join(spec.apps_dir, "grafana"),
        docker_image=spec.grafana_image,
        command="/run.sh",
        env={
            "GF_SECURITY_ADMIN_USER": spec.grafana_admin_user,
            "GF_SECURITY_ADMIN_PASSWORD": spec.grafana_admin_password,
            "GF_SERVER_HTTP_PORT": str(GRAFANA_PORT),
        },
        services=[spec.influx_instance],
    )
    grafana_reloader = Application(
        name=spec.app_name("grafana-reloader"),
        labels=labels,
        memory="128M",
        disk_quota="1G",
        instances=1,
        no_route=True,
        health_check_type="process",
        buildpacks=["python_buildpack"],
        command="obsync-cli run --datasources",
        path=os.path.join(spec.apps_dir, "grafana"),
        env={
            **_platform_env(),
            "GF_API_ENDPOINT": grafana_url,
            "GF_API_KEY": f"{spec.grafana_admin_user}:{spec.grafana_admin_password}",
            "PROMETHEUS_URL": prometheus_url,
        },
        services=[spec.influx_instance],
    )
    return Manifest(applications=[prometheus, exporter, grafana, grafana_reloader])


def network_policies(spec: StackSpec) -> list[tuple[str, str, int]]:
    """(source, destination, port) pairs the stack apps need to talk."""
    return [
        (spec.app_name("grafana-reloader"), spec.app_name("grafana"), GRAFANA_PORT),
        (spec.app_name("grafana"), spec.app_name("prom"), DEFAULT_SCRAPE_PORT),
        (spec.app_name("prom"), spec.app_name("prom-exporter"), DEFAULT_SCRAPE_PORT),
        (spec.app_name("prom"), spec.app_name("grafana"), GRAFANA_PORT),
    ]


def provision_stack(
    spec: StackSpec,
    resources: ResourceReconciler,
    apps: ApplicationReconciler,
    policies: NetworkPolicies,
    stop: Event | None = None,
) -> dict[str, Any]:
    """Backing database first, then the apps, then the policies between them."""
    influx = resources.reconcile(
        ResourceRequest(kind=spec.influx_offering, plan=spec.influx_plan, instance_name=spec.influx_instance),
        stop=stop,
    )
    manifest = build_stack_manifest(spec)
    apps.reconcile(manifest)
    for source, dest, port in network_policies(spec):
        policies.add_network_policy(source, dest, port)
    db.log_event("INFO", f"Stack {spec.name} provisioned", target=spec.name, phase="provision")
    return {
        "stack": spec.name,
        "influx_instance_guid": influx.guid,
        "applications": [a.name for a in manifest.applications],
    }
