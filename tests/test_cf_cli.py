import os
import subprocess
import threading

import pytest
import yaml

from obsync import cf_cli
from obsync.cf_cli import CLIClient, CLIError
from obsync.manifest import Application, Manifest, Sidecar


class Runner:
    def __init__(self, fail_on=None):
        self.calls = []
        self.manifests = []
        self.fail_on = fail_on

    def __call__(self, argv, cwd=None, capture_output=True, text=True):
        self.calls.append(argv[1:])
        if argv[1] == "push":
            with open(argv[-1], encoding="utf-8") as f:
                self.manifests.append(yaml.safe_load(f))
            self.pushed_dirs = sorted(os.listdir(cwd))
        rc = 1 if self.fail_on and argv[1] == self.fail_on else 0
        return subprocess.CompletedProcess(argv, rc, stdout="", stderr="nope" if rc else "")


@pytest.fixture(autouse=True)
def fake_which(monkeypatch):
    monkeypatch.setattr(cf_cli.shutil, "which", lambda name: f"/usr/bin/{name}")


def _cli(runner):
    return CLIClient(endpoint="https://api.example", username="u", password="hunter2", org="o", space="s", binary="cf7", runner=runner)


def test_push_logs_in_targets_and_pushes(tmp_path):
    src = tmp_path / "src" / "prometheus"
    src.mkdir(parents=True)
    (src / "prometheus.yml").write_text("global: {}\n")
    runner = Runner()
    manifest = Manifest(applications=[
        Application(
            name="prom",
            path=str(src),
            routes=["prom.apps.internal"],
            sidecars=[Sidecar(name="config-reloader", process_types=["web"], command="./reloader")],
        ),
        Application(name="grafana", docker_image="grafana/grafana:7.0.1"),
    ])

    _cli(runner).push(manifest)

    assert [c[0] for c in runner.calls] == ["api", "auth", "target", "push"]
    assert runner.calls[2] == ["target", "-o", "o", "-s", "s"]
    apps = runner.manifests[0]["applications"]
    assert [a["path"] for a in apps] == ["./prom", "./grafana"]
    assert apps[0]["routes"] == [{"route": "prom.apps.internal"}]
    assert apps[0]["sidecars"][0]["process_types"] == ["web"]
    assert apps[1]["docker"] == {"image": "grafana/grafana:7.0.1"}
    assert runner.pushed_dirs == ["grafana", "manifest.yml", "prom"]
    # caller's manifest is untouched
    assert manifest.applications[0].path == str(src)


def test_failed_auth_does_not_leak_password():
    with pytest.raises(CLIError) as exc:
        _cli(Runner(fail_on="auth")).push(Manifest(applications=[Application(name="a")]))
    assert "hunter2" not in str(exc.value)


def test_network_policy_runs_in_its_own_session():
    runner = Runner()
    _cli(runner).add_network_policy("grafana", "prom", 8080)
    assert runner.calls[-1] == ["add-network-policy", "grafana", "prom", "--protocol", "tcp", "--port", "8080"]
    assert [c[0] for c in runner.calls] == ["api", "auth", "target", "add-network-policy"]


def test_create_service_runs_in_its_own_session():
    runner = Runner()
    _cli(runner).create_service("influxdb", "tiny-1.x", "byo-influx")
    assert runner.calls == [
        ["api", "https://api.example"],
        ["auth", "u", "hunter2"],
        ["target", "-o", "o", "-s", "s"],
        ["create-service", "influxdb", "tiny-1.x", "byo-influx"],
    ]


def test_failed_create_service_raises():
    with pytest.raises(CLIError, match="create-service"):
        _cli(Runner(fail_on="create-service")).create_service("influxdb", "gold", "byo-influx")


def test_sessions_never_interleave():
    order = []
    lock = threading.Lock()

    def runner(argv, cwd=None, capture_output=True, text=True):
        with lock:
            order.append(argv[1])
        threading.Event().wait(0.001)
        return subprocess.CompletedProcess(argv, 0, stdout="", stderr="")

    cli = _cli(runner)
    threads = [threading.Thread(target=cli.add_network_policy, args=("a", f"b{i}", 8080)) for i in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    session = ["api", "auth", "target", "add-network-policy"]
    assert order == session * 4


def test_missing_binary(monkeypatch):
    monkeypatch.setattr(cf_cli.shutil, "which", lambda name: None)
    with pytest.raises(CLIError):
        _cli(Runner()).add_network_policy("a", "b", 1)
