#!/usr/bin/env python3
"""
Checkout Smoke
--------------
Checks a deployed checkout front end:
- groups (--groups pages,api,compliance)
- concurrency
- retry/backoff
- JSON validation
- CSP invariants per page: carrier nonce == script-src nonce, fresh per
  response, object-src 'none'; API/static routes carry no policy
"""

from __future__ import annotations

import argparse
import concurrent.futures as cf
import os
import re
import sys
import time
from dataclasses import dataclass
from typing import Literal

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

OK_CODES = {200, 301, 302, 307, 308}

GREEN = "\033[92m"
RED = "\033[91m"
YELLOW = "\033[93m"
DIM = "\033[2m"
RESET = "\033[0m"

NONCE_HEADER = os.getenv("NONCE_HEADER", "X-CSP-Nonce")
NONCE_RE = re.compile(r"'nonce-([^']+)'")

Kind = Literal["page", "json", "text"]
Group = Literal["pages", "api", "compliance"]


@dataclass(frozen=True)
class Check:
    path: str
    kind: Kind = "page"
    required: bool = True
    group: Group = "pages"
    policy: bool = True


def checks() -> list[Check]:
    return [
        # pages (payment surface: must carry policy)
        Check("/?checkoutId=SMOKE-CHECKOUT", "page", True, "pages"),
        Check("/?checkoutId=SMOKE-CHECKOUT&brand=MADA", "page", True, "pages"),
        Check("/success?transactionId=smoke&amount=1", "page", True, "pages"),
        Check("/failure?errorCode=smoke", "page", True, "pages"),
        Check("/pending?checkoutId=SMOKE-CHECKOUT", "page", True, "pages"),
        Check("/csp-test", "page", True, "pages"),

        # api (excluded from the policy)
        Check("/api/test", "json", True, "api", policy=False),
        Check("/api/csp-test", "json", True, "api", policy=False),
        Check("/healthz", "json", True, "api"),

        # compliance
        Check("/.well-known/apple-developer-merchantid-domain-association.txt", "text", False, "compliance"),
        Check("/api/apple-pay-domain-test", "json", False, "compliance", policy=False),
    ]


def make_session(retries: int, timeout: float) -> requests.Session:
    sess = requests.Session()
    retry = Retry(
        total=retries,
        connect=retries,
        read=retries,
        backoff_factor=0.4,
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods=["GET", "HEAD"],
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry, pool_connections=20, pool_maxsize=60)
    sess.mount("http://", adapter)
    sess.mount("https://", adapter)
    sess.headers.update({"User-Agent": "CheckoutSmoke/1"})
    sess._timeout = timeout  # type: ignore[attr-defined]
    return sess


def fmt(dt: float) -> str:
    ms = dt * 1000
    return f"{ms:.0f}ms" if ms < 1000 else f"{ms/1000:.2f}s"


def policy_problems(resp: requests.Response, check: Check, previous: str | None) -> list[str]:
    csp = resp.headers.get("Content-Security-Policy") or ""
    carrier = (resp.headers.get(NONCE_HEADER) or "").strip()

    if not check.policy:
        return [p for p, present in (("unexpected-csp", bool(csp)), ("unexpected-nonce", bool(carrier))) if present]

    probs: list[str] = []
    if not csp:
        return ["missing-csp"]
    found = NONCE_RE.findall(csp)
    if len(found) != 1:
        probs.append(f"nonce-count={len(found)}")
    elif found[0] != carrier:
        probs.append("nonce-mismatch")
    if previous and carrier == previous:
        probs.append("nonce-reused")
    if "object-src 'none'" not in csp:
        probs.append("object-src")
    for name, want in (("X-Frame-Options", "DENY"), ("X-Content-Type-Options", "nosniff")):
        if (resp.headers.get(name) or "") != want:
            probs.append(name.lower())
    if carrier and "<script" in resp.text and f'nonce="{carrier}"' not in resp.text:
        probs.append("script-nonce")
    return probs


def run_check(sess: requests.Session, base: str, check: Check):
    url = base.rstrip("/") + check.path
    try:
        t0 = time.perf_counter()
        r = sess.get(url, timeout=sess._timeout, allow_redirects=False)  # type: ignore[attr-defined]
        dt = time.perf_counter() - t0

        ok = r.status_code in OK_CODES
        warns: list[str] = []

        if ok and check.kind == "json":
            try:
                r.json()
            except ValueError:
                warns.append("invalid-json")

        if ok:
            previous = None
            if check.policy:
                # a second request must get a different nonce
                previous = (sess.head(url, timeout=sess._timeout).headers.get(NONCE_HEADER) or "").strip()  # type: ignore[attr-defined]
            warns.extend(policy_problems(r, check, previous))

        if not ok:
            status = "FAIL" if check.required else "WARN"
        elif warns:
            status = "FAIL" if check.required else "WARN"
        else:
            status = "OK"

        color = GREEN if status == "OK" else (YELLOW if status == "WARN" else RED)
        warn_txt = f" {YELLOW}({','.join(warns)}){RESET}" if warns else ""
        print(f"{color}GET  {check.path:<60} → {r.status_code:>3} {DIM}{fmt(dt)}{RESET}{warn_txt}")
        return check, status

    except requests.RequestException as e:
        status = "WARN" if not check.required else "FAIL"
        color = YELLOW if status == "WARN" else RED
        print(f"{color}GET  {check.path:<60} → ERR {e}{RESET}")
        return check, status


def main() -> None:
    ap = argparse.ArgumentParser(description="Checkout front end smoke test")
    ap.add_argument("--base", default=None)
    ap.add_argument("--timeout", type=float, default=6)
    ap.add_argument("--retries", type=int, default=2)
    ap.add_argument("--concurrency", type=int, default=6)
    ap.add_argument("--strict", action="store_true")
    ap.add_argument("--groups", default="")  # e.g. pages,api
    args = ap.parse_args()

    env_base = os.getenv("BASE") or os.getenv("PUBLIC_BASE_URL")
    base = (args.base or env_base or "http://127.0.0.1:5000").rstrip("/")
    print(f"↪ Base: {base}")

    sess = make_session(args.retries, args.timeout)

    selected = checks()
    if args.groups:
        wanted = {g.strip() for g in args.groups.split(",") if g.strip()}
        selected = [c for c in selected if c.group in wanted]

    results = []
    with cf.ThreadPoolExecutor(max_workers=args.concurrency) as ex:
        futs = [ex.submit(run_check, sess, base, c) for c in selected]
        for f in cf.as_completed(futs):
            results.append(f.result())

    passed = sum(1 for _, s in results if s == "OK")
    warns = sum(1 for _, s in results if s == "WARN")
    fails = sum(1 for _, s in results if s == "FAIL")

    print("\n────────────────────────────────────────────")
    print(f"{GREEN}OK={passed}{RESET}  {YELLOW}WARN={warns}{RESET}  {RED}FAIL={fails}{RESET}")

    if fails or (args.strict and warns):
        print(f"{RED}❌ Smoke FAILED{RESET}")
        for c, s in results:
            if s == "FAIL" or (args.strict and s == "WARN"):
                print(f"- [{c.group}] GET {c.path} → {s}")
        sys.exit(1)

    print(f"{GREEN}✅ Smoke PASSED{RESET}")


if __name__ == "__main__":
    main()
