from __future__ import annotations

import os
from threading import Event

from .convergence import ConvergenceLoop
from .desired import parse_vcap_services
from .grafana import DatasourceLoop, GrafanaClient
from .models import Binding
from .notifier import make_notifier
from .platform import PlatformClient
from .runtime import RuntimeState
from .scrape import ScrapeConfigBuilder, ScrapeConfigLoop
from .settings import settings


def vcap_bindings() -> list[Binding]:
    """Bindings of the running app, re-read on every call."""
    return parse_vcap_services(os.getenv("VCAP_SERVICES"))


def build_loops(
    runtime: RuntimeState,
    platform: PlatformClient | None = None,
    scrape: bool | None = None,
    datasources: bool | None = None,
) -> list[ConvergenceLoop]:
    scrape = settings.enable_scrape_loop if scrape is None else scrape
    datasources = settings.enable_datasource_loop if datasources is None else datasources

    loops: list[ConvergenceLoop] = []
    if scrape:
        builder = ScrapeConfigBuilder(platform or PlatformClient())
        loops.append(ScrapeConfigLoop(builder, make_notifier(), runtime=runtime))
    if datasources:
        loops.append(DatasourceLoop(GrafanaClient(), vcap_bindings, runtime=runtime))
    return loops


def start_loops(loops: list[ConvergenceLoop], stop: Event) -> None:
    for loop in loops:
        loop.start(stop)
