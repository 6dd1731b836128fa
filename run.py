#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Checkout front-end dev launcher.

- Local dev:             ./run.py --env development --open-browser
- Local dev (no reload): ./run.py --env development --no-reload
- Behind a tunnel:       TRUST_PROXY=1 PUBLIC_BASE_URL=https://pay.example ./run.py --env production --no-reload

Production should serve `wsgi:app` through a real WSGI server.
"""

from __future__ import annotations

import argparse
import logging
import os
import socket
import sys
import threading
import webbrowser
from datetime import datetime
from typing import Optional, Tuple

from dotenv import load_dotenv

ENV_ALIASES = {"dev": "development", "prod": "production", "test": "testing"}


def _normalize_env_name(v: str) -> str:
    s = (v or "").strip().lower()
    return ENV_ALIASES.get(s, s) or "development"


def parse_args(argv=None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Checkout front-end launcher")
    p.add_argument("--env", choices=["development", "testing", "production"], default=None)
    p.add_argument("--host", default=os.getenv("HOST", "127.0.0.1"))
    p.add_argument("--port", type=int, default=int(os.getenv("PORT", "5000")))
    p.add_argument("--no-reload", action="store_true", help="Disable the Werkzeug reloader.")
    p.add_argument("--open-browser", action="store_true")
    p.add_argument("--force", dest="force_run", action="store_true", help="Start even if the port looks busy.")
    p.add_argument("--public-base-url", default=None)
    return p.parse_args(argv)


def _ssl_ctx_from_env() -> Optional[Tuple[str, str]]:
    cert, key = os.getenv("SSL_CERTFILE"), os.getenv("SSL_KEYFILE")
    return (cert, key) if cert and key else None


def _port_in_use(host: str, port: int) -> bool:
    probe_host = "127.0.0.1" if host in {"0.0.0.0", "::"} else host
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.settimeout(0.35)
            return s.connect_ex((probe_host, port)) == 0
    except OSError:
        return False


def _open_browser_later(url: str) -> None:
    threading.Timer(0.6, lambda: webbrowser.open_new_tab(url)).start()


def banner(env: str, debug: bool, reload: bool, host: str, port: int) -> None:
    print(f"\033[1;33m✨ {datetime.now():%Y-%m-%d %H:%M:%S}: Bootstrapping checkout front end...\033[0m")
    print(f"🔎 ENV:        {env}")
    print(f"🐞 DEBUG:      {debug}")
    print(f"♻️  RELOAD:     {reload}")
    print(f"🌎 Host:Port:  {host}:{port}")
    print(f"🐍 Python:     {sys.version.split()[0]}")


def print_routes(app) -> None:
    for rule in sorted(app.url_map.iter_rules(), key=lambda r: str(r)):
        methods = ",".join(sorted(m for m in rule.methods if m not in {"HEAD", "OPTIONS"}))
        print(f"  {methods:<10} {rule}")


def install_dev_no_cache(flask_app) -> None:
    """Stop stale CSS/JS/HTML while iterating. Debug only."""
    flask_app.config["TEMPLATES_AUTO_RELOAD"] = True
    flask_app.jinja_env.auto_reload = True
    flask_app.config["SEND_FILE_MAX_AGE_DEFAULT"] = 0

    @flask_app.after_request
    def _no_cache(resp):
        ct = (resp.headers.get("Content-Type") or "").lower()
        if "text/html" in ct or "text/css" in ct or "javascript" in ct:
            resp.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, max-age=0"
        return resp


def main(argv=None) -> None:
    load_dotenv(override=False)
    args = parse_args(argv)

    env = _normalize_env_name(args.env or os.getenv("APP_ENV") or os.getenv("ENV") or "development")
    os.environ["APP_ENV"] = env
    if args.public_base_url:
        os.environ["PUBLIC_BASE_URL"] = args.public_base_url.rstrip("/")

    debug = env != "production"
    use_reloader = debug and not args.no_reload
    is_reloader_main = (not use_reloader) or (os.environ.get("WERKZEUG_RUN_MAIN") == "true")

    if not args.force_run and not os.environ.get("WERKZEUG_RUN_MAIN") and _port_in_use(args.host, args.port):
        logging.error("Port %s already in use (host=%s). Stop the other process or use --force.", args.port, args.host)
        raise SystemExit(2)

    from paywidget import create_app

    flask_app = create_app(env)
    if debug:
        install_dev_no_cache(flask_app)

    ssl_ctx = _ssl_ctx_from_env()
    if is_reloader_main:
        banner(env, debug, use_reloader, args.host, args.port)
        print_routes(flask_app)
        if args.open_browser:
            _open_browser_later(f"{'https' if ssl_ctx else 'http'}://127.0.0.1:{args.port}/csp-test")

    flask_app.run(host=args.host, port=args.port, debug=debug, use_reloader=use_reloader, ssl_context=ssl_ctx)


if __name__ == "__main__":
    main()
