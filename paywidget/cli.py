# paywidget/cli.py
# =============================================================================
# Checkout CLI
#   flask checkout watch CHECKOUT_ID   -> run the reconciliation loop in a terminal
#   flask checkout csp-check URL       -> verify header/policy nonce agreement
# =============================================================================

from __future__ import annotations

import asyncio
import sys

import click
import requests
from flask import current_app
from flask.cli import AppGroup, with_appcontext

from paywidget.reconcile import ReconciliationAttempt, ReconciliationLoop
from paywidget.security.nonce import DEFAULT_NONCE_HEADER, client_nonce
from paywidget.security.policy import PolicyConfig, compliance_checks, parse_policy
from paywidget.services.status import StatusClient, make_session

checkout_cli = AppGroup("checkout", help="Checkout reconciliation and CSP tools.")


def _echo_attempt(attempt: ReconciliationAttempt, max_attempts: int) -> None:
    stamp = attempt.last_checked.strftime("%H:%M:%S") if attempt.last_checked else "--:--:--"
    if attempt.terminal:
        click.secho(f"[{stamp}] ✅ Payment Successful! Plan: {attempt.plan_name}", fg="bright_green", bold=True)
    else:
        click.echo(f"[{stamp}] ⏳ {attempt.message} ({attempt.count}/{max_attempts})")


@checkout_cli.command("watch")
@click.argument("checkout_id")
@click.option("--interval", type=float, default=None, help="Seconds between checks (default: POLL_INTERVAL_SECONDS).")
@click.option("--max-attempts", type=int, default=None, help="Automatic check budget (default: POLL_MAX_ATTEMPTS).")
@click.option("--now", "check_first", is_flag=True, help="Run one manual check before the timer starts.")
@with_appcontext
def watch_cmd(checkout_id: str, interval: float | None, max_attempts: int | None, check_first: bool) -> None:
    """
    Poll the backend for CHECKOUT_ID until a subscription appears or the
    automatic budget is spent. Exit status 0 on success, 2 when still pending.
    """
    cfg = current_app.config
    client = StatusClient.from_config(cfg)
    budget = int(max_attempts if max_attempts is not None else cfg.get("POLL_MAX_ATTEMPTS", 10))

    loop = ReconciliationLoop(
        checkout_id,
        client.fetch_async,
        interval=float(interval if interval is not None else cfg.get("POLL_INTERVAL_SECONDS", 30)),
        max_attempts=budget,
        backoff_factor=float(cfg.get("POLL_BACKOFF_FACTOR", 1.0)),
        jitter=float(cfg.get("POLL_JITTER_SECONDS", 0.0)),
        on_update=lambda a: _echo_attempt(a, budget),
    )

    async def _main() -> ReconciliationAttempt:
        if check_first:
            await loop.check_now()
        loop.start()
        return await loop.wait()

    click.echo(f"🔎 Watching {checkout_id} via {client.url}")
    try:
        attempt = asyncio.run(_main())
    except KeyboardInterrupt:
        loop.cancel()
        click.secho("Interrupted.", fg="yellow")
        sys.exit(130)

    if attempt.terminal:
        return
    click.secho(f"Still pending after {attempt.count} checks.", fg="yellow")
    sys.exit(2)


@checkout_cli.command("csp-check")
@click.argument("url")
@click.option("--timeout", type=float, default=10.0, show_default=True)
@with_appcontext
def csp_check_cmd(url: str, timeout: float) -> None:
    """Fetch URL and check that its carrier nonce matches its script-src nonce."""
    header = str(current_app.config.get("NONCE_HEADER") or DEFAULT_NONCE_HEADER)
    sess = make_session(retries=1, user_agent="paywidget-csp-check/1")

    nonce = client_nonce(url, session=sess, timeout=timeout, header=header)
    if not nonce:
        click.secho(f"❌ No {header} header on {url}", fg="red", bold=True)
        sys.exit(1)

    try:
        resp = sess.get(url, timeout=timeout, headers={"Cache-Control": "no-store"})
    except requests.RequestException as e:
        click.secho(f"❌ GET {url} failed: {e}", fg="red", bold=True)
        sys.exit(1)

    policy = parse_policy(resp.headers.get("Content-Security-Policy") or "")
    page_nonce = (resp.headers.get(header) or "").strip()

    failures = 0
    if not policy.script_nonce:
        click.secho("❌ Content-Security-Policy has no script nonce", fg="red")
        failures += 1
    elif policy.script_nonce != page_nonce:
        click.secho(f"❌ {header} ({page_nonce}) != script-src nonce ({policy.script_nonce})", fg="red")
        failures += 1
    else:
        click.secho(f"✅ {header} matches script-src nonce", fg="green")

    if page_nonce and page_nonce == nonce:
        click.secho("❌ nonce reused across requests", fg="red")
        failures += 1

    if page_nonce and f'nonce="{page_nonce}"' not in resp.text and "<script" in resp.text:
        click.secho("❌ rendered scripts do not carry the response nonce", fg="red")
        failures += 1

    for name, passed in compliance_checks(policy, PolicyConfig.from_mapping(current_app.config)):
        click.echo(f"{'✅' if passed else '❌'} {name}")
        failures += 0 if passed else 1

    if failures:
        sys.exit(1)
