"""Observability stack reconciler (obsync).

Keeps an observability stack running on a Cloud Foundry style platform in line
with what has been asked of it:
 - provisions the backing time-series database and the stack applications
 - discovers scrape targets from service bindings and reloads Prometheus
 - keeps Grafana datasources in sync with bound backends

Every loop converges towards the desired state and is safe to rerun.
"""
