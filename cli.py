from __future__ import annotations

import argparse
import json
import sys

import requests


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def _send(method: str, url: str, **kwargs) -> int:
    r = requests.request(method, url, timeout=30, **kwargs)
    try:
        _print(r.json())
    except ValueError:
        print(r.text)
    return 0 if r.ok else 1


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Proxy Config Coordinator CLI")
    p.add_argument("--api", default="http://localhost:8000", help="API base URL")
    sub = p.add_subparsers(dest="cmd", required=True)

    s_cfg = sub.add_parser("config", help="Show configuration")
    s_cfg.add_argument("--view", choices=["model", "persisted", "runtime"], default="model")

    s_ev = sub.add_parser("events", help="Show events")
    s_ev.add_argument("--limit", type=int, default=20)
    s_ev.add_argument("--level", default=None)

    s_set = sub.add_parser("settings", help="Update global settings")
    s_set.add_argument("--listen-port", type=int)
    s_set.add_argument("--global-key")
    s_set.add_argument("--proxy-url")
    s_set.add_argument("--fallback-retries", type=int)

    s_svc = sub.add_parser("add-service", help="Add a service")
    s_svc.add_argument("--name", required=True)
    s_svc.add_argument("--base-path", default="/")
    s_svc.add_argument("--disabled", action="store_true")

    s_up = sub.add_parser("add-upstream", help="Add an upstream provider")
    s_up.add_argument("--base", required=True, help="Upstream base URL")
    s_up.add_argument("--label", default="")
    s_up.add_argument("--api-key", default="")
    s_up.add_argument("--disabled", action="store_true")

    s_link = sub.add_parser("link", help="Link an upstream to a service")
    s_link.add_argument("--service", required=True)
    s_link.add_argument("--upstream", required=True)
    s_link.add_argument("--disabled", action="store_true")

    s_unlink = sub.add_parser("unlink", help="Remove an upstream from a service")
    s_unlink.add_argument("--service", required=True)
    s_unlink.add_argument("--upstream", required=True)

    sub.add_parser("status", help="Show gateway status")
    sub.add_parser("start", help="Start the gateway")
    sub.add_parser("reload", help="Hot-reload the gateway")
    sub.add_parser("stop", help="Stop the gateway")

    args = p.parse_args(argv)

    base = args.api.rstrip("/")

    if args.cmd == "config":
        suffix = "" if args.view == "model" else f"/{args.view}"
        return _send("GET", f"{base}/config{suffix}")

    if args.cmd == "events":
        params = {"limit": args.limit}
        if args.level:
            params["level"] = args.level
        return _send("GET", f"{base}/events", params=params)

    if args.cmd == "settings":
        payload = {
            "listen_port": args.listen_port,
            "global_key": args.global_key,
            "proxy_url": args.proxy_url,
            "fallback_retries": args.fallback_retries,
        }
        return _send("PUT", f"{base}/settings", json={k: v for k, v in payload.items() if v is not None})

    if args.cmd == "add-service":
        payload = {"name": args.name, "base_path": args.base_path, "enabled": not args.disabled}
        return _send("POST", f"{base}/services", json=payload)

    if args.cmd == "add-upstream":
        payload = {
            "label": args.label,
            "upstream_base": args.base,
            "api_key": args.api_key,
            "enabled": not args.disabled,
        }
        return _send("POST", f"{base}/upstreams", json=payload)

    if args.cmd == "link":
        return _send(
            "POST",
            f"{base}/services/{args.service}/routes/{args.upstream}",
            params={"enabled": str(not args.disabled).lower()},
        )

    if args.cmd == "unlink":
        return _send("DELETE", f"{base}/services/{args.service}/routes/{args.upstream}")

    if args.cmd == "status":
        return _send("GET", f"{base}/gateway/status")

    if args.cmd in {"start", "reload", "stop"}:
        return _send("POST", f"{base}/gateway/{args.cmd}")

    return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
