from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import yaml


@dataclass
class Sidecar:
    name: str
    process_types: list[str]
    command: str


@dataclass
class Application:
    name: str
    memory: str | None = None
    disk_quota: str | None = None
    instances: int | None = None
    path: str | None = None
    buildpacks: list[str] = field(default_factory=list)
    docker_image: str | None = None
    command: str | None = None
    routes: list[str] = field(default_factory=list)
    no_route: bool = False
    health_check_type: str | None = None
    env: dict[str, str] = field(default_factory=dict)
    services: list[str] = field(default_factory=list)
    sidecars: list[Sidecar] = field(default_factory=list)
    labels: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"name": self.name}
        if self.docker_image:
            out["docker"] = {"image": self.docker_image}
        if self.labels:
            out["metadata"] = {"labels": dict(self.labels)}
        for key, value in (
            ("memory", self.memory),
            ("disk_quota", self.disk_quota),
            ("instances", self.instances),
            ("path", self.path),
            ("command", self.command),
            ("health-check-type", self.health_check_type),
        ):
            if value is not None:
                out[key] = value
        if self.buildpacks:
            out["buildpacks"] = list(self.buildpacks)
        if self.routes:
            out["routes"] = [{"route": r} for r in self.routes]
        if self.no_route:
            out["no-route"] = True
        if self.env:
            out["env"] = dict(self.env)
        if self.services:
            out["services"] = list(self.services)
        if self.sidecars:
            out["sidecars"] = [
                {"name": s.name, "process_types": list(s.process_types), "command": s.command} for s in self.sidecars
            ]
        return out


@dataclass
class Manifest:
    applications: list[Application] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"applications": [a.to_dict() for a in self.applications]}

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_dict(), sort_keys=False, default_flow_style=False)
