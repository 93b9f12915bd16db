from __future__ import annotations

import argparse
import json
import sys

import requests


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def _show(r: requests.Response) -> int:
    if r.status_code == 204:
        _print({"status": "deleted"})
    else:
        _print(r.json())
    return 0 if r.ok else 1


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Ruche node manager CLI")
    p.add_argument("--api", default="http://localhost:8000", help="API base URL")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("create", help="Provision a new node")
    sub.add_parser("list", help="List nodes")

    s_get = sub.add_parser("get", help="Show one node")
    s_get.add_argument("id", type=int)

    s_logs = sub.add_parser("logs", help="Show a node's container logs")
    s_logs.add_argument("id", type=int)
    s_logs.add_argument("--tail", type=int, default=0, help="Only print the last N lines")

    s_del = sub.add_parser("delete", help="Delete a node (request + confirm)")
    s_del.add_argument("id", type=int)
    s_del.add_argument("--no-confirm", action="store_true", help="Only request the deletion; confirm later")

    sub.add_parser("start-all", help="Start every node container")
    sub.add_parser("stop-all", help="Stop every node container")
    sub.add_parser("recreate-all", help="Recreate every node container (applies image/config changes)")

    s_ev = sub.add_parser("events", help="Show events")
    s_ev.add_argument("--limit", type=int, default=20)

    args = p.parse_args(argv)

    base = args.api.rstrip("/")

    if args.cmd == "create":
        # Provisioning pulls an image; give it more time than the server-side timeout.
        return _show(requests.post(f"{base}/node", timeout=60))

    if args.cmd == "list":
        return _show(requests.get(f"{base}/nodes", timeout=10))

    if args.cmd == "get":
        return _show(requests.get(f"{base}/node/{args.id}", timeout=10))

    if args.cmd == "logs":
        r = requests.get(f"{base}/node/{args.id}/logs", timeout=30)
        if not r.ok:
            return _show(r)
        lines = r.json()["lines"]
        if args.tail > 0:
            lines = lines[-args.tail:]
        for line in lines:
            print(line)
        return 0

    if args.cmd == "delete":
        r = requests.delete(f"{base}/node/{args.id}/req", timeout=10)
        if not r.ok or args.no_confirm:
            return _show(r)
        return _show(requests.delete(f"{base}/node/{args.id}", timeout=60))

    if args.cmd in {"start-all", "stop-all", "recreate-all"}:
        action = args.cmd.split("-")[0]
        r = requests.post(f"{base}/nodes/{action}", timeout=300)
        code = _show(r)
        if code == 0 and not all(item["ok"] for item in r.json()):
            return 1
        return code

    if args.cmd == "events":
        return _show(requests.get(f"{base}/events", params={"limit": args.limit}, timeout=10))

    return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
