from __future__ import annotations

import copy
import os
from typing import Any

import yaml

from . import db
from .convergence import ConvergenceLoop
from .desired import build_scrape_targets
from .errors import ConfigurationError, EmptyConfigError
from .inspector import Platform, StateInspector
from .notifier import ReloadNotifier
from .runtime import RuntimeState
from .settings import settings

COLD_START_INTERVAL_S = 2.0


class _NoAliasDumper(yaml.SafeDumper):
    def ignore_aliases(self, data: Any) -> bool:
        return True


def load_base_config(path: str) -> dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        doc = yaml.safe_load(f)
    if doc is None:
        raise EmptyConfigError(f"Base config {path} is empty")
    if not isinstance(doc, dict):
        raise ConfigurationError(f"Base config {path} must be a mapping, got {type(doc).__name__}")
    return doc


def serialize_config(cfg: dict[str, Any]) -> bytes:
    """Canonical byte form: sorted keys, block style, no YAML anchors."""
    payload = yaml.dump(cfg, Dumper=_NoAliasDumper, sort_keys=True, default_flow_style=False).encode("utf-8")
    if payload.strip() in (b"", b"{}", b"null"):
        raise EmptyConfigError("Empty scrape config generated")
    return payload


def write_config(path: str, payload: bytes) -> None:
    parent = os.path.dirname(os.path.abspath(path))
    if not os.path.isdir(parent):
        os.makedirs(parent, exist_ok=True)
    with open(path, "wb") as f:
        f.write(payload)


class ScrapeConfigBuilder:
    """Builds the full Prometheus config: base file + discovered jobs + static extras."""

    def __init__(
        self,
        platform: Platform,
        instance_guid: str | None = None,
        base_config_path: str | None = None,
        labels: dict[str, str] | None = None,
        extra_scrape_configs: list[dict[str, Any]] | None = None,
        remote_read: list[dict[str, Any]] | None = None,
        remote_write: list[dict[str, Any]] | None = None,
    ):
        self.inspector = StateInspector(platform)
        self.instance_guid = instance_guid or settings.prometheus_instance_guid
        self.base_config_path = base_config_path or settings.base_config_path
        self.labels = dict(settings.external_labels if labels is None else labels)
        self.extra_scrape_configs = list(settings.extra_scrape_configs if extra_scrape_configs is None else extra_scrape_configs)
        self.remote_read = list(settings.remote_read_configs if remote_read is None else remote_read)
        self.remote_write = list(settings.remote_write_configs if remote_write is None else remote_write)

    def build(self, base_config_path: str | None = None) -> dict[str, Any]:
        cfg = load_base_config(base_config_path or self.base_config_path)
        discovered = build_scrape_targets(self.inspector, self.instance_guid)

        scrape_configs = list(cfg.get("scrape_configs") or [])
        scrape_configs.extend(t.to_scrape_config() for t in discovered)
        scrape_configs.extend(copy.deepcopy(self.extra_scrape_configs))
        cfg["scrape_configs"] = scrape_configs

        if self.labels:
            global_cfg = cfg.get("global") or {}
            external = dict(global_cfg.get("external_labels") or {})
            for k in sorted(self.labels):
                external[str(k)] = str(self.labels[k])
            global_cfg["external_labels"] = external
            cfg["global"] = global_cfg

        if self.remote_read:
            cfg["remote_read"] = list(cfg.get("remote_read") or []) + copy.deepcopy(self.remote_read)
        if self.remote_write:
            cfg["remote_write"] = list(cfg.get("remote_write") or []) + copy.deepcopy(self.remote_write)
        return cfg


class ScrapeConfigLoop(ConvergenceLoop):
    """Writes the generated config and reloads Prometheus when it changes.

    The last applied config lives only in this object. A reload briefly drops
    in-flight scrapes, so identical output is never re-applied.
    """

    name = "prometheus-config"

    def __init__(
        self,
        builder: ScrapeConfigBuilder,
        notifier: ReloadNotifier,
        target_config_path: str | None = None,
        interval_s: float | None = None,
        cold_start_interval_s: float = COLD_START_INTERVAL_S,
        runtime: RuntimeState | None = None,
        error_backoff_s: float | None = None,
    ):
        super().__init__(
            interval_s=settings.scrape_poll_interval_s if interval_s is None else interval_s,
            runtime=runtime,
            error_backoff_s=error_backoff_s,
        )
        self.builder = builder
        self.notifier = notifier
        self.target_config_path = target_config_path or settings.target_config_path
        self.cold_start_interval_s = cold_start_interval_s
        self._snapshot: bytes | None = None

    @property
    def has_applied(self) -> bool:
        return self._snapshot is not None

    def next_interval(self) -> float:
        if self._snapshot is None:
            return self.cold_start_interval_s
        return self.interval_s

    def converge(self) -> bool:
        cfg = self.builder.build()

        self._enter("serialize")
        payload = serialize_config(cfg)
        if payload == self._snapshot:
            db.log_event("DEBUG", "Config unchanged", target=self.name, phase="diff")
            return False

        self._enter("write", "applying")
        write_config(self.target_config_path, payload)
        db.log_event(
            "INFO",
            f"Wrote config to {self.target_config_path} ({len(cfg.get('scrape_configs') or [])} scrape jobs)",
            target=self.name,
            phase="write",
        )

        self._enter("notify")
        self.notifier.notify()

        self._snapshot = payload
        return True
