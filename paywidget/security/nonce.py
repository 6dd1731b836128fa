# paywidget/security/nonce.py
# Per-request CSP nonce: generation, server/client accessors, fallback.
#
# The policy middleware writes the nonce into the request environ under the
# carrier header name, so server code reads it back like any request header.
# Client-style code (CLI, smoke checks, post-render injectors) reads the same
# header from a HEAD request against the page.

from __future__ import annotations

import logging
import secrets
import uuid
from typing import Optional, Tuple

import requests
from flask import current_app, g, has_app_context, has_request_context, request
from markupsafe import Markup, escape

log = logging.getLogger(__name__)

DEFAULT_NONCE_HEADER = "X-CSP-Nonce"

SOURCE_HEADER = "header"
SOURCE_FALLBACK = "fallback"


def new_nonce() -> str:
    # 128-bit urlsafe token is plenty
    return secrets.token_urlsafe(16)


def fallback_nonce() -> str:
    """
    Random UUID hex (no hyphens). It never matches an emitted policy, so a
    script tagged with it is still blocked under CSP.
    """
    return uuid.uuid4().hex


def environ_key(header: str) -> str:
    return "HTTP_" + header.upper().replace("-", "_")


def nonce_header_name() -> str:
    if has_app_context():
        return str(current_app.config.get("NONCE_HEADER") or DEFAULT_NONCE_HEADER)
    return DEFAULT_NONCE_HEADER


def server_nonce(header: Optional[str] = None) -> str:
    """Nonce carried for the current request, or "" when none was issued."""
    if not has_request_context():
        return ""
    return (request.headers.get(header or nonce_header_name()) or "").strip()


def client_nonce(
    url: str,
    *,
    session: Optional[requests.Session] = None,
    timeout: float = 5.0,
    header: str = DEFAULT_NONCE_HEADER,
) -> str:
    """HEAD the page and read the carrier header. Returns "" on any failure."""
    http = session or requests.Session()
    try:
        resp = http.head(url, timeout=timeout, allow_redirects=True, headers={"Cache-Control": "no-store"})
    except requests.RequestException as e:
        log.warning("Could not get nonce from headers of %s: %s", url, e)
        return ""
    return (resp.headers.get(header) or "").strip()


def resolve_nonce() -> Tuple[str, str]:
    """
    Nonce for everything rendered in this request, plus where it came from.
    Stable for the lifetime of the request (cached on flask.g).
    """
    cached = getattr(g, "csp_nonce", None)
    if cached:
        return cached, getattr(g, "nonce_source", SOURCE_HEADER)

    n = server_nonce()
    source = SOURCE_HEADER
    if not n:
        n = fallback_nonce()
        source = SOURCE_FALLBACK
        log.warning(
            "No CSP nonce issued for %s; using fallback nonce, injected scripts will be blocked by CSP",
            request.path,
        )

    g.csp_nonce = n
    g.nonce_source = source
    return n, source


def nonce_attr() -> Markup:
    # <script{{ nonce_attr() }}>
    n = getattr(g, "csp_nonce", "") or ""
    if not n:
        return Markup("")
    return Markup(f' nonce="{escape(n)}"')
