# paywidget/security/policy.py
# Content-Security-Policy for the payment surface (card-widget compatible).
#
# - nonce-based script allowance, shared with every script tag on the response
# - 'unsafe-eval' is required: the hosted widget evaluates code at runtime
# - object embedding always denied
# - frame/connect/form-action open to the widget origin only

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Sequence, Tuple
from urllib.parse import urlsplit

Directive = Tuple[str, Tuple[str, ...]]

HARDENING_HEADERS: Tuple[Tuple[str, str], ...] = (
    ("X-Frame-Options", "DENY"),
    ("X-Content-Type-Options", "nosniff"),
    ("Referrer-Policy", "strict-origin-when-cross-origin"),
)

DEFAULT_EXCLUDED_PREFIXES: Tuple[str, ...] = ("/api", "/static", "/favicon.ico")


def _dedupe(xs: Iterable[str]) -> List[str]:
    seen: set[str] = set()
    out: List[str] = []
    for x in xs:
        sx = str(x).strip()
        if sx and sx not in seen:
            seen.add(sx)
            out.append(sx)
    return out


def origin_of(url: str) -> str:
    """scheme://host[:port] of a URL; "" for relative or malformed input."""
    parts = urlsplit((url or "").strip())
    if not parts.scheme or not parts.netloc:
        return ""
    return f"{parts.scheme}://{parts.netloc}"


# -----------------------------------------------------------------------------
# Route matcher
# -----------------------------------------------------------------------------
def build_route_matcher(excluded_prefixes: Sequence[str] = DEFAULT_EXCLUDED_PREFIXES) -> Callable[[str], bool]:
    """
    True for payment-surface paths. Exclusions are prefix matches on the path
    after the leading slash ("/api" also excludes "/api-docs").
    """
    alternatives = [re.escape(p.strip().lstrip("/")) for p in excluded_prefixes if p.strip().lstrip("/")]
    if not alternatives:
        return lambda path: True

    pattern = re.compile(r"^/(?!(?:%s))" % "|".join(alternatives))

    def _matches(path: str) -> bool:
        p = path or "/"
        if not p.startswith("/"):
            p = "/" + p
        return pattern.match(p) is not None

    return _matches


def is_payment_surface(path: str, excluded_prefixes: Sequence[str] = DEFAULT_EXCLUDED_PREFIXES) -> bool:
    return build_route_matcher(excluded_prefixes)(path)


# -----------------------------------------------------------------------------
# Policy
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class PolicyConfig:
    widget_origin: str
    dependency_origin: str
    support_script_src: Tuple[str, ...] = ()
    extra_script_src: Tuple[str, ...] = ()
    excluded_prefixes: Tuple[str, ...] = DEFAULT_EXCLUDED_PREFIXES

    @property
    def trusted_script_origins(self) -> Tuple[str, ...]:
        return tuple(
            _dedupe([self.widget_origin, self.dependency_origin, *self.support_script_src, *self.extra_script_src])
        )

    @classmethod
    def from_mapping(cls, cfg: Mapping[str, Any]) -> "PolicyConfig":
        return cls(
            widget_origin=origin_of(str(cfg.get("WIDGET_BASE_URL") or "")),
            dependency_origin=origin_of(str(cfg.get("WIDGET_DEPENDENCY_URL") or "")),
            support_script_src=tuple(cfg.get("CSP_SUPPORT_SCRIPT_SRC") or ()),
            extra_script_src=tuple(cfg.get("CSP_EXTRA_SCRIPT_SRC") or ()),
            excluded_prefixes=tuple(cfg.get("CSP_EXCLUDED_PREFIXES") or DEFAULT_EXCLUDED_PREFIXES),
        )


@dataclass(frozen=True)
class SecurityPolicy:
    nonce: str
    directives: Tuple[Directive, ...] = field(default_factory=tuple)

    def sources(self, name: str) -> Tuple[str, ...]:
        for directive, values in self.directives:
            if directive == name:
                return values
        return ()

    def has(self, name: str) -> bool:
        return any(directive == name for directive, _ in self.directives)

    @property
    def script_nonce(self) -> str:
        for src in self.sources("script-src"):
            if src.startswith("'nonce-") and src.endswith("'"):
                return src[len("'nonce-"):-1]
        return ""

    def header_value(self) -> str:
        return "; ".join(f"{name} {' '.join(values)}".rstrip() for name, values in self.directives)

    def as_dict(self) -> Dict[str, List[str]]:
        return {name: list(values) for name, values in self.directives}


def build_policy(nonce: str, cfg: PolicyConfig) -> SecurityPolicy:
    if not nonce:
        raise ValueError("CSP nonce must be a non-empty token")

    widget = cfg.widget_origin

    script_src = _dedupe(["'self'", *cfg.trusted_script_origins, "'unsafe-eval'", f"'nonce-{nonce}'"])
    # Widget renders its form with inline style attributes.
    style_src = _dedupe(["'self'", widget, "'unsafe-inline'"])

    directives: List[Directive] = [
        ("default-src", ("'self'",)),
        ("script-src", tuple(script_src)),
        ("style-src", tuple(style_src)),
        ("frame-src", tuple(_dedupe(["'self'", widget]))),
        ("connect-src", tuple(_dedupe(["'self'", widget]))),
        ("img-src", tuple(_dedupe(["'self'", widget]))),
        ("object-src", ("'none'",)),
        ("base-uri", ("'self'",)),
        ("form-action", tuple(_dedupe(["'self'", widget]))),
        ("frame-ancestors", ("'self'",)),
    ]
    return SecurityPolicy(nonce=nonce, directives=tuple(directives))


def policy_headers(policy: SecurityPolicy, nonce_header: str) -> List[Tuple[str, str]]:
    """Full header set for one payment-surface response."""
    return [
        (nonce_header, policy.nonce),
        ("Content-Security-Policy", policy.header_value()),
        *HARDENING_HEADERS,
    ]


def parse_policy(header_value: str) -> SecurityPolicy:
    """Inverse of SecurityPolicy.header_value(), for checking live responses."""
    directives: List[Directive] = []
    for chunk in (header_value or "").split(";"):
        parts = chunk.split()
        if parts:
            directives.append((parts[0].lower(), tuple(parts[1:])))
    policy = SecurityPolicy(nonce="", directives=tuple(directives))
    return SecurityPolicy(nonce=policy.script_nonce, directives=policy.directives)


def compliance_checks(policy: SecurityPolicy, cfg: PolicyConfig) -> List[Tuple[str, bool]]:
    """
    Card-widget compliance checklist evaluated against an emitted policy.
    Order is the display order on /csp-test.
    """
    script_src = policy.sources("script-src")
    widget = cfg.widget_origin
    return [
        ("Widget script source", bool(widget) and widget in script_src),
        ("Dependency script source", bool(cfg.dependency_origin) and cfg.dependency_origin in script_src),
        ("Nonce support", bool(policy.script_nonce)),
        ("Unsafe eval support", "'unsafe-eval'" in script_src),
        ("Frame source", bool(widget) and widget in policy.sources("frame-src")),
        ("Form action", bool(widget) and widget in policy.sources("form-action")),
        ("Object source 'none'", policy.sources("object-src") == ("'none'",)),
    ]
