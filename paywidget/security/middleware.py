# paywidget/security/middleware.py
# Payment-surface policy middleware (WSGI) + Flask installer.
#
# - Generates the nonce before the Flask app sees the request
# - Publishes it to the app through the carrier header in the request environ
# - Attaches carrier + CSP + hardening headers in start_response, before any body
# - Routes outside the payment surface pass straight through

from __future__ import annotations

import logging
from typing import Any, Callable, List, Optional, Tuple

from flask import Flask, g, request

from .nonce import DEFAULT_NONCE_HEADER, environ_key, new_nonce, nonce_attr
from .policy import PolicyConfig, SecurityPolicy, build_policy, build_route_matcher, policy_headers

log = logging.getLogger(__name__)

POLICY_ENVIRON_KEY = "paywidget.csp_policy"


class PaymentPolicyMiddleware:
    """
    Pure per-request transform of (path, fresh token) into response headers.
    If the nonce cannot be produced the request is still served, without CSP.
    """

    def __init__(
        self,
        app,
        cfg: PolicyConfig,
        *,
        nonce_header: str = DEFAULT_NONCE_HEADER,
        nonce_factory: Callable[[], str] = new_nonce,
    ):
        self.app = app
        self.cfg = cfg
        self.nonce_header = nonce_header
        self.nonce_factory = nonce_factory
        self.matches = build_route_matcher(cfg.excluded_prefixes)
        self._environ_key = environ_key(nonce_header)

    def issue(self, path: str) -> Optional[SecurityPolicy]:
        if not self.matches(path):
            return None
        try:
            return build_policy(self.nonce_factory(), self.cfg)
        except Exception:
            log.warning("CSP nonce generation failed for %s; serving without policy", path, exc_info=True)
            return None

    def __call__(self, environ, start_response):
        # A carrier header sent by the client is never trusted.
        environ.pop(self._environ_key, None)

        path = environ.get("PATH_INFO") or "/"
        policy = self.issue(path)
        if policy is None:
            return self.app(environ, start_response)

        environ[self._environ_key] = policy.nonce
        environ[POLICY_ENVIRON_KEY] = policy
        extra = policy_headers(policy, self.nonce_header)
        overridden = {k.lower() for k, _ in extra}

        def _start(status: str, headers: List[Tuple[str, str]], exc_info: Any = None):
            hdrs = [(k, v) for k, v in headers if k and k.lower() not in overridden]
            hdrs.extend(extra)
            return start_response(status, hdrs, exc_info)

        return self.app(environ, _start)


def current_policy() -> Optional[SecurityPolicy]:
    """Policy issued for the current request, if any."""
    return request.environ.get(POLICY_ENVIRON_KEY)


def install_policy_middleware(app: Flask) -> None:
    """
    Called by create_app(). Safe to call multiple times (idempotent).
    """
    if app.extensions.get("paywidget_policy_installed") is True:
        return
    app.extensions["paywidget_policy_installed"] = True

    cfg = PolicyConfig.from_mapping(app.config)
    header = str(app.config.get("NONCE_HEADER") or DEFAULT_NONCE_HEADER)
    app.wsgi_app = PaymentPolicyMiddleware(app.wsgi_app, cfg, nonce_header=header)  # type: ignore[assignment]
    app.extensions["paywidget_policy_config"] = cfg

    if not cfg.widget_origin:
        app.logger.warning("WIDGET_BASE_URL has no origin; script-src will not allow the widget")

    @app.context_processor
    def _inject_nonce():
        return {
            "csp_nonce": getattr(g, "csp_nonce", ""),
            "nonce_source": getattr(g, "nonce_source", ""),
            "nonce_attr": nonce_attr,
        }
