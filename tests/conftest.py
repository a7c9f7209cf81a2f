import os as _os
import sys

import pytest

# Ensure project root is importable (so `import main` works reliably across environments)
_project_root = _os.path.dirname(_os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from obsync import db  # noqa: E402
from obsync.errors import PlatformError  # noqa: E402
from obsync.models import App, Binding, ResourceInstance, Route, RouteDestination, SharedDomain  # noqa: E402
from obsync.settings import Settings  # noqa: E402


@pytest.fixture(autouse=True)
def event_db(tmp_path, monkeypatch):
    """Every test gets its own sqlite event log."""
    monkeypatch.setattr(db, "settings", Settings(db_path=str(tmp_path / "events.db")))
    db.init_db()
    return db


class FakePlatform:
    """In-memory stand-in for PlatformClient."""

    def __init__(self):
        self.instances: dict[str, list[ResourceInstance]] = {}
        self.states: dict[str, list[str]] = {}
        self.services: dict[str, str] = {}
        self.plans: dict[str, list[dict[str, str]]] = {}
        self.bindings: dict[str, list[Binding]] = {}
        self.apps: dict[str, App] = {}
        self.mappings: dict[str, list[str]] = {}
        self.routes: dict[str, Route] = {}
        self.domains: dict[str, SharedDomain] = {}
        self.destinations: dict[str, list[RouteDestination] | None] = {}
        self.fail_on: set[str] = set()
        self.create_calls: list[tuple[str, str, str]] = []
        self.get_calls: list[str] = []

    def _check(self, op: str) -> None:
        if op in self.fail_on:
            raise PlatformError(f"{op} failed", status_code=503, transient=True)

    # resources

    def list_service_instances(self, space_guid, name):
        self._check("list_service_instances")
        return list(self.instances.get(name, []))

    def get_service_instance(self, guid):
        self._check("get_service_instance")
        self.get_calls.append(guid)
        states = self.states.get(guid) or ["in progress"]
        state = states.pop(0) if len(states) > 1 else states[0]
        return ResourceInstance(guid=guid, name=guid, state=state)

    def create_service_instance(self, space_guid, plan_guid, name):
        self._check("create_service_instance")
        self.create_calls.append((space_guid, plan_guid, name))
        return ResourceInstance(guid="g1", name=name, state="in progress")

    def list_services(self, label):
        return [{"guid": self.services[label], "label": label}] if label in self.services else []

    def list_service_plans(self, service_guid):
        return list(self.plans.get(service_guid, []))

    # discovery

    def list_service_bindings(self, service_instance_guid):
        self._check("list_service_bindings")
        return list(self.bindings.get(service_instance_guid, []))

    def get_app(self, guid):
        self._check("get_app")
        return self.apps[guid]

    def list_route_mappings(self, app_guid):
        return list(self.mappings.get(app_guid, []))

    def get_route(self, guid):
        return self.routes[guid]

    def get_shared_domain(self, guid):
        return self.domains[guid]

    def get_route_destinations(self, route_guid):
        return self.destinations.get(route_guid)

    # helpers for tests

    def add_workload(self, instance_guid, app_guid, name, routes=()):
        """routes: iterable of (route_guid, host, domain_name, internal, destinations)."""
        self.bindings.setdefault(instance_guid, []).append(Binding(service_instance_guid=instance_guid, app_guid=app_guid))
        self.apps[app_guid] = App(guid=app_guid, name=name)
        self.mappings[app_guid] = []
        for route_guid, host, domain_name, internal, destinations in routes:
            domain_guid = f"dom-{domain_name}"
            self.domains[domain_guid] = SharedDomain(guid=domain_guid, name=domain_name, internal=internal)
            self.routes[route_guid] = Route(guid=route_guid, host=host, domain_guid=domain_guid)
            self.destinations[route_guid] = destinations
            self.mappings[app_guid].append(route_guid)


class FakeNotifier:
    def __init__(self, fail: bool = False):
        self.calls = 0
        self.fail = fail

    def notify(self) -> None:
        self.calls += 1
        if self.fail:
            raise OSError("signal delivery failed")


@pytest.fixture
def platform():
    return FakePlatform()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def base_config(tmp_path):
    path = tmp_path / "prometheus.base.yml"
    path.write_text(
        "global:\n"
        "  scrape_interval: 15s\n"
        "scrape_configs:\n"
        "  - job_name: static\n"
        "    static_configs:\n"
        "      - targets: ['localhost:9090']\n"
    )
    return str(path)
