from __future__ import annotations

from typing import Callable

import httpx

from . import db
from .convergence import ConvergenceLoop
from .desired import build_datasources
from .models import Binding, Datasource
from .runtime import RuntimeState
from .settings import settings


class GrafanaClient:
    """Datasource endpoints of the Grafana HTTP API."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout_s: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        api_key = settings.grafana_api_key if api_key is None else api_key
        auth: tuple[str, str] | None = None
        headers: dict[str, str] = {}
        if api_key and ":" in api_key:
            user, _, password = api_key.partition(":")
            auth = (user, password)
        elif api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._http = httpx.Client(
            base_url=(base_url or settings.grafana_url).rstrip("/"),
            auth=auth,
            headers=headers,
            timeout=timeout_s if timeout_s is not None else settings.grafana_timeout_s,
            transport=transport,
        )

    def close(self) -> None:
        self._http.close()

    def list_datasources(self) -> list[Datasource]:
        resp = self._http.get("/api/datasources")
        resp.raise_for_status()
        return [Datasource.from_api(d) for d in resp.json()]

    def create_datasource(self, ds: Datasource) -> None:
        body = ds.to_api()
        body.pop("id", None)
        resp = self._http.post("/api/datasources", json=body)
        resp.raise_for_status()

    def update_datasource(self, ds: Datasource) -> None:
        if ds.id is None:
            raise ValueError(f"Datasource {ds.name!r} has no id to update")
        resp = self._http.put(f"/api/datasources/{ds.id}", json=ds.to_api())
        resp.raise_for_status()


def find_datasource(existing: list[Datasource], name: str) -> Datasource | None:
    for ds in existing:
        if ds.name == name:
            return ds
    return None


def upsert_datasource(client: GrafanaClient, desired: Datasource) -> str:
    """Update the datasource with the same name, or create it.

    Returns "updated" or "created".
    """
    existing = find_datasource(client.list_datasources(), desired.name)
    if existing is not None:
        desired.id = existing.id
        client.update_datasource(desired)
        return "updated"
    client.create_datasource(desired)
    return "created"


class DatasourceLoop(ConvergenceLoop):
    """Keeps Grafana datasources in line with the bound backends.

    Upserts are cheap and harmless, so every cycle re-applies everything.
    Datasources whose binding went away are left in place.
    """

    name = "grafana-datasources"

    def __init__(
        self,
        client: GrafanaClient,
        bindings: Callable[[], list[Binding]],
        prometheus_url: str | None = None,
        interval_s: float | None = None,
        runtime: RuntimeState | None = None,
        error_backoff_s: float | None = None,
    ):
        super().__init__(
            interval_s=settings.datasource_poll_interval_s if interval_s is None else interval_s,
            runtime=runtime,
            error_backoff_s=error_backoff_s,
        )
        self.client = client
        self.bindings = bindings
        self.prometheus_url = settings.prometheus_url if prometheus_url is None else prometheus_url

    def converge(self) -> bool:
        desired = build_datasources(self.bindings(), self.prometheus_url)
        self._enter("upsert", "applying")
        for ds in desired:
            action = upsert_datasource(self.client, ds)
            db.log_event("DEBUG", f"Datasource {ds.name} {action}", target=self.name, phase="upsert")
        return bool(desired)
