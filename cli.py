from __future__ import annotations

import argparse
import json
import signal
import sys
from threading import Event

import requests

from obsync import db
from obsync.daemon import build_loops
from obsync.runtime import RuntimeState


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def run_foreground(scrape: bool, datasources: bool) -> int:
    """Run the selected loops on this process until SIGINT/SIGTERM."""
    db.init_db()
    stop = Event()

    def _stop(signum, frame) -> None:
        stop.set()

    signal.signal(signal.SIGINT, _stop)
    signal.signal(signal.SIGTERM, _stop)

    loops = build_loops(RuntimeState(), scrape=scrape, datasources=datasources)
    if not loops:
        print("nothing to run: pass --scrape and/or --datasources", file=sys.stderr)
        return 2
    threads = [loop.start(stop) for loop in loops]
    for t in threads:
        t.join()
    return 0


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Observability stack reconciler CLI")
    p.add_argument("--api", default="http://localhost:8000", help="API base URL")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("loops", help="Show convergence loop status")

    s_ev = sub.add_parser("events", help="Show events")
    s_ev.add_argument("--limit", type=int, default=20)
    s_ev.add_argument("--target")
    s_ev.add_argument("--level")

    s_res = sub.add_parser("provision", help="Ensure a backing service instance exists")
    s_res.add_argument("--kind", required=True, help="Service offering label, e.g. influxdb")
    s_res.add_argument("--plan", required=True)
    s_res.add_argument("--name", required=True, help="Instance name")

    s_stack = sub.add_parser("stack", help="Provision a whole observability stack")
    s_stack.add_argument("--name", required=True)
    s_stack.add_argument("--influx-plan", default="tiny-1.x")
    s_stack.add_argument("--grafana-admin-user", default="admin")
    s_stack.add_argument("--grafana-admin-password", default="password")
    s_stack.add_argument("--prometheus-instance-guid", default="")

    s_run = sub.add_parser("run", help="Run reconciliation loops in the foreground")
    s_run.add_argument("--scrape", action="store_true", help="Prometheus scrape config loop")
    s_run.add_argument("--datasources", action="store_true", help="Grafana datasource loop")

    args = p.parse_args(argv)

    base = args.api.rstrip("/")

    if args.cmd == "run":
        return run_foreground(scrape=args.scrape, datasources=args.datasources)

    if args.cmd == "loops":
        _print(requests.get(f"{base}/loops", timeout=10).json())
        return 0

    if args.cmd == "events":
        params = {"limit": args.limit}
        if args.target:
            params["target"] = args.target
        if args.level:
            params["level"] = args.level
        _print(requests.get(f"{base}/events", params=params, timeout=10).json())
        return 0

    if args.cmd == "provision":
        payload = {"kind": args.kind, "plan": args.plan, "instance_name": args.name}
        # Provisioning blocks until the instance is ready.
        r = requests.post(f"{base}/resources", json=payload, timeout=None)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "stack":
        payload = {
            "name": args.name,
            "influx_plan": args.influx_plan,
            "grafana_admin_user": args.grafana_admin_user,
            "grafana_admin_password": args.grafana_admin_password,
            "prometheus_instance_guid": args.prometheus_instance_guid,
        }
        r = requests.post(f"{base}/stacks", json=payload, timeout=None)
        _print(r.json())
        return 0 if r.ok else 1

    return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
