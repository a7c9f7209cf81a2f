import dataclasses

import yaml

from obsync import stack
from obsync.models import ResourceInstance
from obsync.resources import ApplicationReconciler, ResourceReconciler
from obsync.stack import StackSpec, build_stack_manifest, network_policies, provision_stack


class Recorder:
    def __init__(self):
        self.pushed = []
        self.policies = []

    def push(self, manifest):
        self.pushed.append(manifest)

    def add_network_policy(self, source_app, dest_app, port, protocol="tcp"):
        self.policies.append((source_app, dest_app, int(port)))


def test_manifest_contains_the_whole_stack():
    spec = StackSpec(name="byo", prometheus_instance_guid="prom-guid")
    manifest = build_stack_manifest(spec)

    apps = {a.name: a for a in manifest.applications}
    assert set(apps) == {"byo-prom", "byo-prom-exporter", "byo-grafana", "byo-grafana-reloader"}

    prom = apps["byo-prom"]
    assert prom.services == ["byo-influx"]
    assert prom.sidecars[0].process_types == ["web"]
    assert prom.env["CF_PROMETHEUS_SERVICE_INSTANCE_GUID"] == "prom-guid"
    extra = yaml.safe_load(prom.env["PROMETHEUS_SCRAPE_CONFIGS"])
    assert extra[0]["job_name"] == "paas-exporter"
    assert extra[0]["dns_sd_configs"][0] == {
        "names": ["byo-prom-exporter.apps.internal"],
        "type": "A",
        "port": 8080,
        "refresh_interval": "30s",
    }

    reloader = apps["byo-grafana-reloader"]
    assert reloader.no_route is True
    assert reloader.env["GF_API_ENDPOINT"] == "http://byo-grafana.apps.internal:3000"
    assert reloader.env["PROMETHEUS_URL"] == "http://byo-prom.apps.internal:8080"
    assert apps["byo-grafana"].to_dict()["docker"] == {"image": "grafana/grafana:7.0.1"}


def test_provision_stack_orders_database_apps_then_policies(platform):
    platform.instances["byo-influx"] = [ResourceInstance(guid="influx-guid", name="byo-influx", state="succeeded")]
    rec = Recorder()
    spec = StackSpec(name="byo")

    result = provision_stack(spec, ResourceReconciler(platform, space_guid="space"), ApplicationReconciler(rec), rec)

    assert result["influx_instance_guid"] == "influx-guid"
    assert len(rec.pushed) == 1
    assert rec.policies == network_policies(spec)
    assert ("byo-prom", "byo-prom-exporter", 8080) in rec.policies
    assert platform.create_calls == []


def test_reloader_apps_receive_the_platform_token(monkeypatch):
    monkeypatch.setattr(stack, "settings", dataclasses.replace(stack.settings, cf_access_token="tok"))
    apps = {a.name: a for a in build_stack_manifest(StackSpec(name="byo")).applications}

    assert apps["byo-prom"].env["CF_ACCESS_TOKEN"] == "tok"
    assert apps["byo-grafana-reloader"].env["CF_ACCESS_TOKEN"] == "tok"
