from __future__ import annotations

import time
from threading import Event
from typing import Protocol

from . import db
from .errors import CanceledError, DuplicateResourceError, OfferingNotFoundError, PlanNotFoundError, WaitTimeoutError
from .manifest import Manifest
from .models import STATE_FAILED, STATE_SUCCEEDED, ResourceInstance, ResourceRequest
from .settings import settings

DEFAULT_POLL_INTERVAL_S = 2.0


class ResourcePlatform(Protocol):
    def list_service_instances(self, space_guid: str, name: str) -> list[ResourceInstance]: ...
    def get_service_instance(self, guid: str) -> ResourceInstance: ...
    def create_service_instance(self, space_guid: str, plan_guid: str, name: str) -> ResourceInstance: ...
    def list_services(self, label: str) -> list[dict[str, str]]: ...
    def list_service_plans(self, service_guid: str) -> list[dict[str, str]]: ...


class Deployer(Protocol):
    def push(self, manifest: Manifest) -> None: ...


class ResourceReconciler:
    """Makes sure a backing service instance exists and has finished provisioning.

    Idempotent: an instance that already exists under the requested name is
    left alone. Nothing is rolled back if polling fails after creation.
    """

    def __init__(
        self,
        platform: ResourcePlatform,
        space_guid: str | None = None,
        poll_interval_s: float = DEFAULT_POLL_INTERVAL_S,
        timeout_s: float | None = None,
    ):
        self.platform = platform
        self.space_guid = space_guid or settings.cf_space_guid
        self.poll_interval_s = max(0.0, float(poll_interval_s))
        self.timeout_s = timeout_s

    def reconcile(self, request: ResourceRequest, stop: Event | None = None) -> ResourceInstance:
        existing = self.platform.list_service_instances(self.space_guid, request.instance_name)
        if len(existing) == 1:
            return existing[0]
        if len(existing) > 1:
            raise DuplicateResourceError(
                f"Found {len(existing)} service instances named {request.instance_name!r}; expected at most one"
            )

        plan_guid = self._resolve_plan(request)
        created = self.platform.create_service_instance(self.space_guid, plan_guid, request.instance_name)
        db.log_event(
            "INFO",
            f"Created {request.kind} ({request.plan}) instance {created.guid}",
            target=request.instance_name,
            phase="create",
        )
        return self.wait_for_state(created.guid, STATE_SUCCEEDED, stop=stop, target=request.instance_name)

    def _resolve_plan(self, request: ResourceRequest) -> str:
        services = self.platform.list_services(request.kind)
        if len(services) != 1:
            raise OfferingNotFoundError(f"Failed to find service offering by label {request.kind!r}")
        for plan in self.platform.list_service_plans(services[0]["guid"]):
            if plan["name"] == request.plan:
                return plan["guid"]
        raise PlanNotFoundError(f"Failed to find service plan by name {request.plan!r}")

    def wait_for_state(
        self,
        guid: str,
        target_state: str = STATE_SUCCEEDED,
        stop: Event | None = None,
        target: str | None = None,
    ) -> ResourceInstance:
        """Poll the instance until it reaches `target_state`.

        Raises CanceledError as soon as `stop` is set, and WaitTimeoutError if a
        timeout was configured and has elapsed.
        """
        stop = stop or Event()
        deadline = time.monotonic() + self.timeout_s if self.timeout_s is not None else None
        while True:
            if stop.wait(self.poll_interval_s):
                raise CanceledError(f"Canceled while waiting for {guid} to reach {target_state!r}")
            instance = self.platform.get_service_instance(guid)
            db.log_event(
                "INFO",
                f"wait-for-state {target_state}: instance {guid} is {instance.state or 'unknown'}",
                target=target or guid,
                phase="wait",
            )
            if instance.state == target_state:
                return instance
            if instance.state == STATE_FAILED:
                db.log_event("WARN", f"Instance {guid} reports a failed last operation", target=target or guid, phase="wait")
            if deadline is not None and time.monotonic() >= deadline:
                raise WaitTimeoutError(f"Instance {guid} did not reach {target_state!r} within {self.timeout_s}s")


class ApplicationReconciler:
    """Deploys a manifest. The push itself is idempotent (deploy-or-update)."""

    def __init__(self, deployer: Deployer):
        self.deployer = deployer

    def reconcile(self, manifest: Manifest) -> None:
        names = ", ".join(a.name for a in manifest.applications)
        db.log_event("INFO", f"Pushing {names}", target=names, phase="push")
        self.deployer.push(manifest)
