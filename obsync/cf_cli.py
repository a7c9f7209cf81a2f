from __future__ import annotations

import dataclasses
import os
import shutil
import subprocess
import tempfile
from threading import Lock
from typing import Callable

from . import db
from .manifest import Manifest
from .settings import settings


class CLIError(RuntimeError):
    pass


class CLIClient:
    """Runs the platform CLI for operations the HTTP API does not cover well.

    The CLI keeps its session in a config directory that breaks when two
    invocations interleave, so each whole login/target/act sequence runs under
    one lock.
    """

    def __init__(
        self,
        endpoint: str | None = None,
        username: str | None = None,
        password: str | None = None,
        org: str | None = None,
        space: str | None = None,
        binary: str | None = None,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ):
        self.endpoint = endpoint or settings.cf_api_endpoint
        self.username = username or settings.cf_username or ""
        self.password = password or settings.cf_password or ""
        self.org = org or settings.cf_org_name or ""
        self.space = space or settings.cf_space_name or ""
        self.binary = binary or settings.cf_cli_binary
        self._runner = runner
        self._lock = Lock()

    def _cf(self, workdir: str | None, *args: str) -> None:
        exe = shutil.which(self.binary)
        if exe is None:
            raise CLIError(f"{self.binary} not found on PATH")
        proc = self._runner([exe, *args], cwd=workdir or None, capture_output=True, text=True)
        if proc.returncode != 0:
            # never echo "auth" arguments, they carry the password
            shown = args[0] if args and args[0] == "auth" else " ".join(args)
            raise CLIError(f"cf {shown} failed ({proc.returncode}): {(proc.stderr or proc.stdout or '').strip()[:300]}")

    def _authenticate(self) -> None:
        self._cf(None, "api", self.endpoint)
        self._cf(None, "auth", self.username, self.password)
        self._cf(None, "target", "-o", self.org, "-s", self.space)

    def push(self, manifest: Manifest) -> None:
        """Deploy or update every application in the manifest."""
        workdir = tempfile.mkdtemp(prefix="obsync-push-")
        try:
            apps = []
            for app in manifest.applications:
                app_dir = os.path.join(workdir, app.name)
                if app.path:
                    shutil.copytree(app.path, app_dir)
                else:
                    os.mkdir(app_dir, 0o700)
                apps.append(dataclasses.replace(app, path=os.path.join(".", app.name)))
            manifest_path = os.path.join(workdir, "manifest.yml")
            with open(manifest_path, "w", encoding="utf-8") as f:
                f.write(Manifest(applications=apps).to_yaml())

            with self._lock:
                self._authenticate()
                self._cf(workdir, "push", "-f", manifest_path)
        finally:
            shutil.rmtree(workdir, ignore_errors=True)
        db.log_event("INFO", f"Pushed {len(manifest.applications)} applications", phase="push")

    def create_service(self, offering: str, plan: str, instance_name: str) -> None:
        with self._lock:
            self._authenticate()
            self._cf(None, "create-service", offering, plan, instance_name)
        db.log_event("INFO", f"Requested {offering} {plan} as {instance_name}", target=instance_name, phase="create")

    def add_network_policy(self, source_app: str, dest_app: str, port: int | str, protocol: str = "tcp") -> None:
        with self._lock:
            self._authenticate()
            self._cf(None, "add-network-policy", source_app, dest_app, "--protocol", protocol, "--port", str(port))
