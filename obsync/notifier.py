from __future__ import annotations

import signal
from typing import Protocol

import docker
import httpx
import psutil
from docker.errors import DockerException, NotFound

from . import db
from .settings import settings


class ReloadNotifier(Protocol):
    """Tells the metrics collector to re-read its configuration file."""

    def notify(self) -> None: ...


class SignalReloadNotifier:
    """Sends SIGHUP to every local process whose executable matches `process_name`.

    Finding no process is not an error: a collector that starts later reads
    the freshly written file anyway.
    """

    def __init__(self, process_name: str | None = None, sig: int = signal.SIGHUP):
        self.process_name = process_name or settings.collector_process_name
        self.sig = sig

    def notify(self) -> None:
        signalled = 0
        for proc in psutil.process_iter(["name"]):
            if proc.info.get("name") != self.process_name:
                continue
            try:
                proc.send_signal(self.sig)
            except psutil.NoSuchProcess:
                continue
            signalled += 1
            db.log_event("INFO", f"Sent signal {int(self.sig)} to {self.process_name} process {proc.pid}", target=self.process_name, phase="notify")
        if not signalled:
            db.log_event("WARN", f"No running {self.process_name} process to reload", target=self.process_name, phase="notify")


class HttpReloadNotifier:
    """POSTs to the collector's lifecycle endpoint (needs --web.enable-lifecycle)."""

    def __init__(self, base_url: str | None = None, timeout_s: float = 10.0, transport: httpx.BaseTransport | None = None):
        self.base_url = (base_url or settings.prometheus_url or "http://localhost:9090").rstrip("/")
        self.timeout_s = timeout_s
        self.transport = transport

    def notify(self) -> None:
        with httpx.Client(timeout=self.timeout_s, transport=self.transport) as client:
            resp = client.post(f"{self.base_url}/-/reload")
        resp.raise_for_status()
        db.log_event("INFO", f"Reload requested via {self.base_url}/-/reload", target="prometheus", phase="notify")


class DockerReloadNotifier:
    """Sends SIGHUP to the collector container through the Docker daemon."""

    def __init__(self, container_name: str | None = None, client: docker.DockerClient | None = None):
        self.container_name = container_name or settings.collector_container
        self._client = client

    def _docker(self) -> docker.DockerClient:
        if self._client is None:
            self._client = docker.from_env()
        return self._client

    def notify(self) -> None:
        try:
            container = self._docker().containers.get(self.container_name)
        except NotFound:
            db.log_event("WARN", f"No container named {self.container_name} to reload", target=self.container_name, phase="notify")
            return
        except DockerException as e:
            raise RuntimeError(f"Docker is not available: {e}") from e
        container.kill(signal="SIGHUP")
        db.log_event("INFO", f"Sent SIGHUP to container {self.container_name}", target=self.container_name, phase="notify")


def make_notifier(mode: str | None = None) -> ReloadNotifier:
    mode = (mode or settings.reload_mode).strip().lower()
    if mode == "signal":
        return SignalReloadNotifier()
    if mode == "http":
        return HttpReloadNotifier()
    if mode == "docker":
        return DockerReloadNotifier()
    raise ValueError(f"Unknown reload mode {mode!r} (expected signal|http|docker)")
