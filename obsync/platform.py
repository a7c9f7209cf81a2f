from __future__ import annotations

from threading import Lock
from typing import Any

import httpx

from .errors import PlatformError
from .models import App, Binding, ResourceInstance, Route, RouteDestination, SharedDomain
from .settings import settings


def _q(name: str, value: str) -> tuple[str, str]:
    return ("q", f"{name}:{value}")


class PlatformClient:
    """Thin client for the Cloud Controller v2/v3 APIs.

    The access token is obtained elsewhere and handed in. One httpx client is
    shared by every reconciler; requests go through a lock so callers on
    different threads never interleave on it.
    """

    def __init__(
        self,
        endpoint: str | None = None,
        token: str | None = None,
        timeout_s: float | None = None,
        verify: bool | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        endpoint = (endpoint if endpoint is not None else settings.cf_api_endpoint).rstrip("/")
        token = token if token is not None else settings.cf_access_token
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = token if token.lower().startswith("bearer ") else f"bearer {token}"
        self._lock = Lock()
        self._http = httpx.Client(
            base_url=endpoint,
            headers=headers,
            timeout=timeout_s if timeout_s is not None else settings.cf_timeout_s,
            verify=(not settings.cf_skip_ssl_validation) if verify is None else verify,
            transport=transport,
        )

    def close(self) -> None:
        self._http.close()

    def _request(
        self,
        method: str,
        path: str,
        params: list[tuple[str, str]] | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        with self._lock:
            try:
                resp = self._http.request(method, path, params=params, json=json)
            except httpx.HTTPError as e:
                raise PlatformError(f"{method} {path} failed: {type(e).__name__}: {e}", transient=True) from e
        if resp.status_code >= 400:
            raise PlatformError(
                f"{method} {path} returned HTTP {resp.status_code}: {resp.text[:200]}",
                status_code=resp.status_code,
                transient=resp.status_code >= 500,
            )
        if not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError as e:
            raise PlatformError(f"{method} {path} returned a non-JSON body: {resp.text[:200]}", transient=True) from e

    def _list_v2(self, path: str, params: list[tuple[str, str]] | None = None) -> list[dict[str, Any]]:
        """Collect every page of a v2 list endpoint."""
        out: list[dict[str, Any]] = []
        page = self._request("GET", path, params=params)
        out.extend(page.get("resources") or [])
        while page.get("next_url"):
            page = self._request("GET", page["next_url"])
            out.extend(page.get("resources") or [])
        return out

    # Service instances

    @staticmethod
    def _instance(res: dict[str, Any]) -> ResourceInstance:
        entity = res.get("entity") or {}
        last_op = entity.get("last_operation") or {}
        return ResourceInstance(
            guid=res["metadata"]["guid"],
            name=entity.get("name", ""),
            state=last_op.get("state", ""),
        )

    def list_service_instances(self, space_guid: str, name: str) -> list[ResourceInstance]:
        params = [_q("space_guid", space_guid), _q("name", name)]
        return [self._instance(r) for r in self._list_v2("/v2/service_instances", params)]

    def get_service_instance(self, guid: str) -> ResourceInstance:
        return self._instance(self._request("GET", f"/v2/service_instances/{guid}"))

    def create_service_instance(self, space_guid: str, plan_guid: str, name: str) -> ResourceInstance:
        body = {"name": name, "space_guid": space_guid, "service_plan_guid": plan_guid}
        res = self._request("POST", "/v2/service_instances", params=[("accepts_incomplete", "true")], json=body)
        return self._instance(res)

    def list_services(self, label: str) -> list[dict[str, str]]:
        rows = self._list_v2("/v2/services", [_q("label", label)])
        return [{"guid": r["metadata"]["guid"], "label": (r.get("entity") or {}).get("label", "")} for r in rows]

    def list_service_plans(self, service_guid: str) -> list[dict[str, str]]:
        rows = self._list_v2("/v2/service_plans", [_q("service_guid", service_guid)])
        return [{"guid": r["metadata"]["guid"], "name": (r.get("entity") or {}).get("name", "")} for r in rows]

    # Bindings, apps and routes

    def list_service_bindings(self, service_instance_guid: str) -> list[Binding]:
        rows = self._list_v2("/v2/service_bindings", [_q("service_instance_guid", service_instance_guid)])
        out: list[Binding] = []
        for r in rows:
            entity = r.get("entity") or {}
            out.append(
                Binding(
                    service_instance_guid=entity.get("service_instance_guid", service_instance_guid),
                    app_guid=entity.get("app_guid", ""),
                    credentials=entity.get("credentials") or {},
                    name=entity.get("name") or "",
                )
            )
        return out

    def get_app(self, guid: str) -> App:
        res = self._request("GET", f"/v2/apps/{guid}")
        return App(guid=res["metadata"]["guid"], name=(res.get("entity") or {}).get("name", ""))

    def list_route_mappings(self, app_guid: str) -> list[str]:
        """Route guids mapped to an app."""
        rows = self._list_v2("/v2/route_mappings", [_q("app_guid", app_guid)])
        return [(r.get("entity") or {}).get("route_guid", "") for r in rows]

    def get_route(self, guid: str) -> Route:
        res = self._request("GET", f"/v2/routes/{guid}")
        entity = res.get("entity") or {}
        return Route(guid=res["metadata"]["guid"], host=entity.get("host") or "", domain_guid=entity.get("domain_guid", ""))

    def get_shared_domain(self, guid: str) -> SharedDomain:
        res = self._request("GET", f"/v2/shared_domains/{guid}")
        entity = res.get("entity") or {}
        return SharedDomain(
            guid=res["metadata"]["guid"],
            name=entity.get("name", ""),
            internal=bool(entity.get("internal", False)),
        )

    def get_route_destinations(self, route_guid: str) -> list[RouteDestination] | None:
        """Destination ports and process types of a route (v3 API).

        The v2 route mapping model carries neither, so this goes to v3 directly.
        Returns None when the platform does not serve the endpoint.
        """
        try:
            res = self._request("GET", f"/v3/routes/{route_guid}/destinations")
        except PlatformError as e:
            if e.status_code == 404:
                return None
            raise
        out: list[RouteDestination] = []
        for d in res.get("destinations") or []:
            app = d.get("app") or {}
            process = app.get("process") or {}
            port = d.get("port")
            out.append(
                RouteDestination(
                    app_guid=app.get("guid", ""),
                    process_type=process.get("type", ""),
                    port=int(port) if port else None,
                )
            )
        return out
