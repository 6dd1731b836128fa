# paywidget/config/config.py
# Canonical checkout front-end configuration (env-first, production-safe)

from __future__ import annotations

import os
from pathlib import Path
from typing import List, Optional

BASE_DIR = Path(__file__).resolve().parent.parent.parent


# ----------------------------
# Env helpers
# ----------------------------
_TRUTHY = {"1", "true", "yes", "on", "y"}
_FALSY = {"0", "false", "no", "off", "n"}


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    v = os.getenv(name)
    if v is None:
        return default
    s = str(v).strip()
    return s if s else default


def _bool(name: str, default: bool = False) -> bool:
    v = _env(name)
    if v is None:
        return default
    s = v.strip().lower()
    if s in _TRUTHY:
        return True
    if s in _FALSY:
        return False
    return default


def _int(name: str, default: int) -> int:
    v = _env(name)
    if v is None:
        return default
    try:
        return int(str(v).strip())
    except ValueError:
        return default


def _float(name: str, default: float) -> float:
    v = _env(name)
    if v is None:
        return default
    try:
        return float(str(v).strip())
    except ValueError:
        return default


def _csv(name: str, default: str = "") -> List[str]:
    raw = _env(name, default) or ""
    return [p.strip() for p in raw.split(",") if p.strip()]


def _clean_base_url(v: Optional[str]) -> str:
    return (v or "").strip().rstrip("/")


# ----------------------------
# Config classes
# ----------------------------
class BaseConfig:
    """
    Env-first config:
    - every setting can be overridden via environment variables
    - safe defaults for local dev against the widget's test origin
    """

    ENV = (_env("APP_ENV") or _env("ENV") or _env("FLASK_ENV") or "base").strip().lower()

    DEBUG = _bool("FLASK_DEBUG", False)
    TESTING = _bool("TESTING", False)

    SECRET_KEY = _env("SECRET_KEY", "dev-change-me")

    PUBLIC_BASE_URL = _clean_base_url(_env("PUBLIC_BASE_URL", ""))
    PREFERRED_URL_SCHEME = _env("PREFERRED_URL_SCHEME", "https")
    TRUST_PROXY = _bool("TRUST_PROXY", False)

    LOG_LEVEL = _env("LOG_LEVEL", "INFO")
    WERKZEUG_LOG_LEVEL = _env("WERKZEUG_LOG_LEVEL", "WARNING")

    # Payment backend (authoritative status source)
    BACKEND_URL = _clean_base_url(_env("BACKEND_URL", "http://localhost:4000"))
    BACKEND_STATUS_PATH = _env("BACKEND_STATUS_PATH", "/payment/hyperpay/status")
    BACKEND_TIMEOUT = _float("BACKEND_TIMEOUT", 10.0)
    BACKEND_RETRIES = _int("BACKEND_RETRIES", 2)

    # Hosted widget
    WIDGET_BASE_URL = _clean_base_url(_env("WIDGET_BASE_URL", "https://eu-test.oppwa.com"))
    WIDGET_DEPENDENCY_URL = _env("WIDGET_DEPENDENCY_URL", "https://code.jquery.com/jquery.js")
    WIDGET_SUCCESS_CODES = _csv("WIDGET_SUCCESS_CODES", "000.100.110")
    WIDGET_DEFAULT_BRAND = _env("WIDGET_DEFAULT_BRAND", "MADA")

    # CSP
    NONCE_HEADER = _env("NONCE_HEADER", "X-CSP-Nonce")
    CSP_EXCLUDED_PREFIXES = _csv("CSP_EXCLUDED_PREFIXES", "/api,/static,/favicon.ico")
    CSP_EXTRA_SCRIPT_SRC = _csv("CSP_EXTRA_SCRIPT_SRC")
    CSP_SUPPORT_SCRIPT_SRC = _csv("CSP_SUPPORT_SCRIPT_SRC", "https://unpkg.com")

    # Reconciliation
    POLL_INTERVAL_SECONDS = _float("POLL_INTERVAL_SECONDS", 30.0)
    POLL_MAX_ATTEMPTS = _int("POLL_MAX_ATTEMPTS", 10)
    POLL_BACKOFF_FACTOR = _float("POLL_BACKOFF_FACTOR", 1.0)
    POLL_JITTER_SECONDS = _float("POLL_JITTER_SECONDS", 0.0)

    # Cross-window messaging (empty -> the page's own origin)
    PARENT_ORIGIN = _clean_base_url(_env("PARENT_ORIGIN", ""))

    # Compliance artifacts
    WELL_KNOWN_DIR = _env("WELL_KNOWN_DIR", str(BASE_DIR / "public" / ".well-known"))

    CORS_ORIGINS = _csv("CORS_ORIGINS")

    @classmethod
    def init_app(cls, app) -> None:
        """Hook for factory boot hardening; called after from_object()."""
        return None


class DevelopmentConfig(BaseConfig):
    ENV = "development"
    DEBUG = True

    PREFERRED_URL_SCHEME = _env("PREFERRED_URL_SCHEME", "http")
    LOG_LEVEL = _env("LOG_LEVEL", "DEBUG")


class TestingConfig(BaseConfig):
    ENV = "testing"
    TESTING = True
    DEBUG = False

    SECRET_KEY = "testing"
    BACKEND_URL = "http://backend.test"
    BACKEND_RETRIES = 0
    PREFERRED_URL_SCHEME = "http"
    LOG_LEVEL = "WARNING"


class ProductionConfig(BaseConfig):
    ENV = "production"
    DEBUG = False

    PREFERRED_URL_SCHEME = _env("PREFERRED_URL_SCHEME", "https")
    TRUST_PROXY = _bool("TRUST_PROXY", True)

    @classmethod
    def init_app(cls, app) -> None:
        super().init_app(app)

        # ---- Production guardrails (fail fast) ----
        sk = app.config.get("SECRET_KEY")
        if not sk or sk == "dev-change-me":
            raise RuntimeError("SECRET_KEY must be set to a strong random value in production.")

        backend = str(app.config.get("BACKEND_URL") or "")
        if not backend.startswith("https://"):
            raise RuntimeError("BACKEND_URL must be https:// in production.")

        widget = str(app.config.get("WIDGET_BASE_URL") or "")
        if not widget.startswith("https://"):
            raise RuntimeError("WIDGET_BASE_URL must be https:// in production.")

        if _bool("FLASK_DEBUG", False):
            raise RuntimeError("FLASK_DEBUG must be 0 in production.")
