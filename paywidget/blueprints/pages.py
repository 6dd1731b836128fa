from __future__ import annotations

from typing import Any, Dict, List

from flask import Blueprint, current_app, render_template, request

from paywidget.reconcile import ReconciliationAttempt
from paywidget.security import compliance_checks, current_policy, resolve_nonce
from paywidget.services.status import StatusClient
from paywidget.widget import DocumentHead, WidgetLoader, WidgetSource

pages_bp = Blueprint("pages", __name__)

SUPPORTED_LOCALES = ["en", "ar"]


@pages_bp.before_request
def _bind_nonce():
    # every template in this response shares one nonce
    resolve_nonce()


# ────────────────────────────────────────────────────────────────────────────────
# Helpers
# ────────────────────────────────────────────────────────────────────────────────
def _arg(name: str) -> str:
    return (request.args.get(name) or "").strip()


def _locale() -> str:
    return request.accept_languages.best_match(SUPPORTED_LOCALES) or "en"


def _brands(requested: str) -> str:
    raw = requested or str(current_app.config.get("WIDGET_DEFAULT_BRAND") or "MADA")
    return " ".join(b.strip().upper() for b in raw.replace(",", " ").split() if b.strip())


def _parent_origin() -> str:
    return str(current_app.config.get("PARENT_ORIGIN") or "")


def status_client() -> StatusClient:
    """One client (and connection pool) per app."""
    client = current_app.extensions.get("paywidget_status_client")
    if client is None:
        client = StatusClient.from_config(current_app.config)
        current_app.extensions["paywidget_status_client"] = client
    return client


def widget_source() -> WidgetSource:
    cfg = current_app.config
    return WidgetSource(
        widget_base_url=str(cfg.get("WIDGET_BASE_URL") or ""),
        dependency_url=str(cfg.get("WIDGET_DEPENDENCY_URL") or ""),
        success_codes=tuple(cfg.get("WIDGET_SUCCESS_CODES") or ()),
    )


def _config_script(checkout_id: str, locale: str) -> str:
    return render_template(
        "widget/wpwl_options.js",
        checkout_id=checkout_id,
        locale=locale,
        success_codes=list(current_app.config.get("WIDGET_SUCCESS_CODES") or []),
        parent_origin=_parent_origin(),
    )


# ────────────────────────────────────────────────────────────────────────────────
# Checkout
# ────────────────────────────────────────────────────────────────────────────────
@pages_bp.get("/")
def checkout():
    checkout_id = _arg("checkoutId")
    brand = _arg("brand").upper()
    nonce, nonce_source = resolve_nonce()
    locale = _locale()

    loader = WidgetLoader(
        checkout_id,
        DocumentHead(),
        widget_source(),
        nonce=nonce,
        config_body=_config_script(checkout_id, locale) if checkout_id else "",
        integrity=_arg("integrity"),
        parent_origin=_parent_origin(),
    )
    loader.start()

    plan: Dict[str, Any] = loader.snapshot()
    plan["nonceSource"] = nonce_source
    current_app.logger.info(
        "Checkout page: checkout=%s state=%s nonce_source=%s", checkout_id or "-", loader.state.value, nonce_source
    )

    return render_template(
        "checkout.html",
        checkout_id=checkout_id,
        loader=loader,
        plan=plan,
        brands=_brands(brand),
        show_mada_notice=brand == "MADA",
        locale=locale,
    )


# ────────────────────────────────────────────────────────────────────────────────
# Outcome pages
# ────────────────────────────────────────────────────────────────────────────────
@pages_bp.get("/success")
def success():
    return render_template("success.html", transaction_id=_arg("transactionId"), amount=_arg("amount"))


@pages_bp.get("/failure")
def failure():
    return render_template("failure.html", error_code=_arg("errorCode"), error_message=_arg("errorMessage"))


@pages_bp.get("/pending")
def pending():
    return render_template(
        "pending.html",
        checkout_id=_arg("checkoutId"),
        error_code=_arg("errorCode"),
        error_message=_arg("errorMessage"),
        attempt=ReconciliationAttempt(),
        **_poll_context(),
    )


def _poll_context() -> Dict[str, Any]:
    cfg = current_app.config
    return {
        "max_attempts": int(cfg.get("POLL_MAX_ATTEMPTS") or 10),
        "interval": int(float(cfg.get("POLL_INTERVAL_SECONDS") or 30)),
    }


@pages_bp.get("/pending/status")
def pending_status():
    """
    htmx partial: one reconciliation tick. The attempt count round-trips
    through the rendered markup; mode is "auto" (timer) or "manual" (button).
    """
    checkout_id = _arg("checkoutId")
    mode = "manual" if _arg("mode") == "manual" else "auto"
    poll = _poll_context()

    try:
        count = max(0, int(_arg("attempt") or 0))
    except ValueError:
        count = 0
    attempt = ReconciliationAttempt(count=min(count, poll["max_attempts"]))

    if not checkout_id:
        attempt.message = "Missing checkout ID"
        return render_template("partials/pending_status.html", checkout_id="", attempt=attempt, **poll), 400

    if mode == "manual" or attempt.should_auto_poll(poll["max_attempts"]):
        attempt.record(status_client().fetch(checkout_id))
    else:
        current_app.logger.debug("Auto-check budget spent for %s; skipping backend call", checkout_id)

    return render_template("partials/pending_status.html", checkout_id=checkout_id, attempt=attempt, **poll)


# ────────────────────────────────────────────────────────────────────────────────
# Diagnostics
# ────────────────────────────────────────────────────────────────────────────────
@pages_bp.get("/csp-test")
def csp_test():
    policy = current_policy()
    cfg = current_app.extensions.get("paywidget_policy_config")
    checks: List[Any] = compliance_checks(policy, cfg) if policy is not None and cfg is not None else []
    return render_template(
        "csp_test.html",
        policy_header=policy.header_value() if policy is not None else "",
        checks=checks,
    )
