from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

# Last operation states reported by the platform for a service instance.
STATE_IN_PROGRESS = "in progress"
STATE_SUCCEEDED = "succeeded"
STATE_FAILED = "failed"

DEFAULT_SCRAPE_PORT = 8080
DEFAULT_SCRAPE_INTERVAL = "30s"
DEFAULT_REFRESH_INTERVAL = "30s"
DEFAULT_METRICS_PATH = "/metrics"
WEB_PROCESS = "web"


@dataclass(frozen=True)
class ResourceRequest:
    kind: str  # service offering label, e.g. influxdb
    plan: str
    instance_name: str


@dataclass(frozen=True)
class ResourceInstance:
    guid: str
    name: str
    state: str


@dataclass(frozen=True)
class Binding:
    service_instance_guid: str
    app_guid: str
    credentials: dict[str, Any] = field(default_factory=dict)
    name: str = ""
    label: str = ""  # type of the owning service instance, when known


@dataclass(frozen=True)
class App:
    guid: str
    name: str


@dataclass(frozen=True)
class Route:
    guid: str
    host: str
    domain_guid: str


@dataclass(frozen=True)
class SharedDomain:
    guid: str
    name: str
    internal: bool


@dataclass(frozen=True)
class RouteDestination:
    app_guid: str
    process_type: str
    port: int | None = None


@dataclass(frozen=True)
class ScrapeTarget:
    job_name: str
    addresses: tuple[tuple[str, int], ...]
    metrics_path: str = DEFAULT_METRICS_PATH
    scrape_interval: str = DEFAULT_SCRAPE_INTERVAL
    refresh_interval: str = DEFAULT_REFRESH_INTERVAL

    def to_scrape_config(self) -> dict[str, Any]:
        """Render as a Prometheus scrape_configs entry using DNS-A discovery."""
        return {
            "job_name": self.job_name,
            "scrape_interval": self.scrape_interval,
            "metrics_path": self.metrics_path,
            "dns_sd_configs": [
                {
                    "names": [address],
                    "type": "A",
                    "port": int(port),
                    "refresh_interval": self.refresh_interval,
                }
                for address, port in self.addresses
            ],
        }


@dataclass
class Datasource:
    name: str
    type: str
    url: str
    access: str = "proxy"
    org_id: int = 1
    id: int | None = None
    is_default: bool = False
    basic_auth: bool = False
    basic_auth_user: str | None = None
    basic_auth_password: str | None = None
    database: str | None = None

    def to_api(self) -> dict[str, Any]:
        """Payload accepted by the Grafana datasource API."""
        body: dict[str, Any] = {
            "orgId": self.org_id,
            "name": self.name,
            "type": self.type,
            "access": self.access,
            "url": self.url,
            "isDefault": self.is_default,
            "basicAuth": self.basic_auth,
        }
        if self.id is not None:
            body["id"] = self.id
        if self.database is not None:
            body["database"] = self.database
        if self.basic_auth_user is not None:
            body["basicAuthUser"] = self.basic_auth_user
            body["user"] = self.basic_auth_user
        if self.basic_auth_password is not None:
            body["secureJsonData"] = {
                "basicAuthPassword": self.basic_auth_password,
                "password": self.basic_auth_password,
            }
        return body

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "Datasource":
        return cls(
            id=data.get("id"),
            org_id=int(data.get("orgId") or 1),
            name=str(data.get("name", "")),
            type=str(data.get("type", "")),
            access=str(data.get("access") or "proxy"),
            url=str(data.get("url") or ""),
            is_default=bool(data.get("isDefault", False)),
            basic_auth=bool(data.get("basicAuth", False)),
            basic_auth_user=data.get("basicAuthUser") or None,
            database=data.get("database") or None,
        )
