from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from . import db
from .models import (
    DEFAULT_SCRAPE_PORT,
    WEB_PROCESS,
    App,
    Binding,
    ResourceInstance,
    Route,
    RouteDestination,
    SharedDomain,
)


class Platform(Protocol):
    """The part of PlatformClient the inspector and builders read from."""

    def get_service_instance(self, guid: str) -> ResourceInstance: ...
    def list_service_bindings(self, service_instance_guid: str) -> list[Binding]: ...
    def get_app(self, guid: str) -> App: ...
    def list_route_mappings(self, app_guid: str) -> list[str]: ...
    def get_route(self, guid: str) -> Route: ...
    def get_shared_domain(self, guid: str) -> SharedDomain: ...
    def get_route_destinations(self, route_guid: str) -> list[RouteDestination] | None: ...


@dataclass(frozen=True)
class Workload:
    guid: str
    name: str
    route_count: int
    addresses: tuple[tuple[str, int], ...]


def route_address(route: Route, domain: SharedDomain) -> str:
    return f"{route.host}.{domain.name}" if route.host else domain.name


def pick_web_destination(destinations: list[RouteDestination]) -> RouteDestination | None:
    """First destination served by the web process wins."""
    for dest in destinations:
        if dest.process_type == WEB_PROCESS:
            return dest
    return None


class StateInspector:
    """Reads the actual state of instances and workloads off the platform."""

    def __init__(self, platform: Platform):
        self.platform = platform

    def instance_state(self, guid: str) -> str:
        return self.platform.get_service_instance(guid).state

    def workload(self, app_guid: str) -> Workload:
        """Resolve a workload and the internal addresses Prometheus can scrape.

        Only routes on internal domains are considered: scrape endpoints are
        unauthenticated and must not be reached over the public network.
        """
        app = self.platform.get_app(app_guid)
        route_guids = self.platform.list_route_mappings(app.guid)
        addresses: list[tuple[str, int]] = []
        for route_guid in route_guids:
            route = self.platform.get_route(route_guid)
            domain = self.platform.get_shared_domain(route.domain_guid)
            address = route_address(route, domain)
            if not domain.internal:
                db.log_event("DEBUG", f"Skipping {address}: not an internal route", target=app.name, phase="discover")
                continue
            destinations = self.platform.get_route_destinations(route.guid)
            if destinations is None:
                # Platform cannot tell us the port; assume the default.
                addresses.append((address, DEFAULT_SCRAPE_PORT))
                continue
            dest = pick_web_destination(destinations)
            if dest is None:
                db.log_event("DEBUG", f"Skipping {address}: no 'web' process destination", target=app.name, phase="discover")
                continue
            addresses.append((address, dest.port or DEFAULT_SCRAPE_PORT))
        return Workload(guid=app.guid, name=app.name, route_count=len(route_guids), addresses=tuple(addresses))
