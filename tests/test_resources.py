import threading
import time

import pytest

from obsync import db
from obsync.errors import (
    CanceledError,
    DuplicateResourceError,
    OfferingNotFoundError,
    PlanNotFoundError,
    PlatformError,
    WaitTimeoutError,
)
from obsync.manifest import Application, Manifest
from obsync.models import ResourceInstance, ResourceRequest
from obsync.resources import ApplicationReconciler, ResourceReconciler

REQ = ResourceRequest(kind="influxdb", plan="tiny-1.x", instance_name="byo-influx")


def _with_catalog(platform):
    platform.services["influxdb"] = "svc-1"
    platform.plans["svc-1"] = [{"guid": "plan-small", "name": "small"}, {"guid": "plan-tiny", "name": "tiny-1.x"}]
    return platform


def test_existing_instance_is_a_noop_on_every_call(platform):
    platform.instances["byo-influx"] = [ResourceInstance(guid="g0", name="byo-influx", state="succeeded")]
    r = ResourceReconciler(platform, space_guid="space", poll_interval_s=0)

    assert r.reconcile(REQ).guid == "g0"
    assert r.reconcile(REQ).guid == "g0"
    assert platform.create_calls == []
    assert platform.get_calls == []


def test_creates_then_returns_after_two_polls(platform):
    _with_catalog(platform)
    platform.states["g1"] = ["in progress", "succeeded"]
    r = ResourceReconciler(platform, space_guid="space", poll_interval_s=0)

    instance = r.reconcile(REQ)

    assert instance.guid == "g1"
    assert instance.state == "succeeded"
    assert platform.create_calls == [("space", "plan-tiny", "byo-influx")]
    assert platform.get_calls == ["g1", "g1"]


def test_second_reconcile_after_convergence_creates_nothing(platform):
    _with_catalog(platform)
    platform.states["g1"] = ["succeeded"]
    r = ResourceReconciler(platform, space_guid="space", poll_interval_s=0)
    created = r.reconcile(REQ)
    platform.instances["byo-influx"] = [created]

    r.reconcile(REQ)

    assert len(platform.create_calls) == 1


def test_duplicate_instances_are_not_healed(platform):
    platform.instances["byo-influx"] = [
        ResourceInstance(guid="a", name="byo-influx", state="succeeded"),
        ResourceInstance(guid="b", name="byo-influx", state="succeeded"),
    ]
    with pytest.raises(DuplicateResourceError):
        ResourceReconciler(platform, space_guid="space").reconcile(REQ)
    assert platform.create_calls == []


def test_missing_offering(platform):
    with pytest.raises(OfferingNotFoundError):
        ResourceReconciler(platform, space_guid="space").reconcile(REQ)


def test_missing_plan(platform):
    _with_catalog(platform)
    req = ResourceRequest(kind="influxdb", plan="gold", instance_name="byo-influx")
    with pytest.raises(PlanNotFoundError):
        ResourceReconciler(platform, space_guid="space").reconcile(req)
    assert platform.create_calls == []


def test_cancel_before_first_poll(platform):
    _with_catalog(platform)
    stop = threading.Event()
    stop.set()

    with pytest.raises(CanceledError):
        ResourceReconciler(platform, space_guid="space", poll_interval_s=5).reconcile(REQ, stop=stop)
    assert platform.get_calls == []


def test_cancel_while_polling_returns_within_one_interval(platform):
    _with_catalog(platform)
    platform.states["g1"] = ["in progress"]
    stop = threading.Event()
    r = ResourceReconciler(platform, space_guid="space", poll_interval_s=0.2)

    timer = threading.Timer(0.3, stop.set)
    timer.start()
    started = time.monotonic()
    try:
        with pytest.raises(CanceledError):
            r.reconcile(REQ, stop=stop)
    finally:
        timer.cancel()
    assert time.monotonic() - started < 0.3 + 0.2 + 0.5


def test_optional_timeout(platform):
    platform.states["g9"] = ["in progress"]
    r = ResourceReconciler(platform, space_guid="space", poll_interval_s=0, timeout_s=0)
    with pytest.raises(WaitTimeoutError):
        r.wait_for_state("g9")
    assert platform.get_calls == ["g9"]


def test_failed_state_keeps_polling(platform):
    platform.states["g2"] = ["failed", "in progress", "succeeded"]
    r = ResourceReconciler(platform, space_guid="space", poll_interval_s=0)
    assert r.wait_for_state("g2").state == "succeeded"
    assert len(platform.get_calls) == 3
    assert any(e["level"] == "WARN" for e in db.latest_events(target="g2"))


def test_platform_error_while_polling_propagates(platform):
    _with_catalog(platform)
    platform.fail_on.add("get_service_instance")
    with pytest.raises(PlatformError):
        ResourceReconciler(platform, space_guid="space", poll_interval_s=0).reconcile(REQ)
    assert len(platform.create_calls) == 1


def test_application_reconciler_pushes_manifest():
    pushed = []

    class Deployer:
        def push(self, manifest):
            pushed.append(manifest)

    manifest = Manifest(applications=[Application(name="prom"), Application(name="grafana")])
    ApplicationReconciler(Deployer()).reconcile(manifest)

    assert pushed == [manifest]
    assert db.latest_events(limit=1)[0]["target"] == "prom, grafana"
