from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any

import yaml


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_yaml(name: str, default: Any) -> Any:
    """Parse a YAML (or JSON) document held in an environment variable."""
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = yaml.safe_load(raw)
    except yaml.YAMLError:
        return default
    return default if value is None else value


@dataclass(frozen=True)
class Settings:
    # Core
    db_path: str = os.getenv("OBSYNC_DB_PATH", "obsync.db")
    enable_loops: bool = _env_bool("OBSYNC_ENABLE_LOOPS", True)
    error_backoff_s: float = _env_float("OBSYNC_ERROR_BACKOFF_S", 30.0)

    # Platform (token acquisition happens outside this process)
    cf_api_endpoint: str = os.getenv("CF_API_ENDPOINT", "")
    cf_access_token: str | None = os.getenv("CF_ACCESS_TOKEN")
    cf_space_guid: str = os.getenv("CF_SPACE_GUID", "")
    cf_timeout_s: int = _env_int("CF_TIMEOUT_S", 30)
    cf_skip_ssl_validation: bool = _env_bool("CF_SKIP_SSL_VALIDATION", False)
    cf_username: str | None = os.getenv("CF_USERNAME")
    cf_password: str | None = os.getenv("CF_PASSWORD")
    cf_org_name: str | None = os.getenv("CF_ORG_NAME")
    cf_space_name: str | None = os.getenv("CF_SPACE_NAME")
    cf_cli_binary: str = os.getenv("CF_CLI_BINARY", "cf7")

    # Prometheus config reloader
    enable_scrape_loop: bool = _env_bool("OBSYNC_ENABLE_SCRAPE_LOOP", True)
    prometheus_instance_guid: str = os.getenv("CF_PROMETHEUS_SERVICE_INSTANCE_GUID", "")
    base_config_path: str = os.getenv("OBSYNC_BASE_CONFIG_PATH", "prometheus.base.yml")
    target_config_path: str = os.getenv("OBSYNC_TARGET_CONFIG_PATH", "config.yml")
    scrape_poll_interval_s: float = _env_float("OBSYNC_SCRAPE_POLL_INTERVAL_S", 60.0)
    reload_mode: str = os.getenv("OBSYNC_RELOAD_MODE", "signal")  # signal|http|docker
    collector_process_name: str = os.getenv("OBSYNC_COLLECTOR_PROCESS", "prometheus")
    collector_container: str = os.getenv("OBSYNC_COLLECTOR_CONTAINER", "prometheus")
    external_labels: dict[str, str] = field(default_factory=lambda: _env_yaml("OBSYNC_EXTERNAL_LABELS", {}))
    extra_scrape_configs: list[dict[str, Any]] = field(
        default_factory=lambda: _env_yaml("PROMETHEUS_SCRAPE_CONFIGS", [])
    )
    remote_read_configs: list[dict[str, Any]] = field(default_factory=lambda: _env_yaml("OBSYNC_REMOTE_READ", []))
    remote_write_configs: list[dict[str, Any]] = field(default_factory=lambda: _env_yaml("OBSYNC_REMOTE_WRITE", []))

    # Grafana datasource reloader
    enable_datasource_loop: bool = _env_bool("OBSYNC_ENABLE_DATASOURCE_LOOP", True)
    grafana_url: str = os.getenv("GF_API_ENDPOINT", "http://localhost:3000")
    grafana_api_key: str | None = os.getenv("GF_API_KEY")  # "user:password" or a bearer token
    grafana_timeout_s: int = _env_int("GF_TIMEOUT_S", 10)
    datasource_poll_interval_s: float = _env_float("OBSYNC_DATASOURCE_POLL_INTERVAL_S", 60.0)
    prometheus_url: str = os.getenv("PROMETHEUS_URL", "")

    # Email alerting (optional)
    enable_email: bool = _env_bool("OBSYNC_ENABLE_EMAIL", False)
    smtp_host: str = os.getenv("OBSYNC_SMTP_HOST", "smtp.gmail.com")
    smtp_port: int = _env_int("OBSYNC_SMTP_PORT", 587)
    smtp_user: str | None = os.getenv("OBSYNC_SMTP_USER")
    smtp_password: str | None = os.getenv("OBSYNC_SMTP_PASSWORD")
    email_from: str | None = os.getenv("OBSYNC_EMAIL_FROM")
    email_to: str | None = os.getenv("OBSYNC_EMAIL_TO")


settings = Settings()
