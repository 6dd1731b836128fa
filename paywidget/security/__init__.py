from .middleware import PaymentPolicyMiddleware, current_policy, install_policy_middleware
from .nonce import client_nonce, fallback_nonce, new_nonce, resolve_nonce, server_nonce
from .policy import (
    PolicyConfig,
    SecurityPolicy,
    build_policy,
    compliance_checks,
    is_payment_surface,
    parse_policy,
)

__all__ = [
    "PaymentPolicyMiddleware",
    "PolicyConfig",
    "SecurityPolicy",
    "build_policy",
    "client_nonce",
    "compliance_checks",
    "current_policy",
    "fallback_nonce",
    "install_policy_middleware",
    "is_payment_surface",
    "new_nonce",
    "parse_policy",
    "resolve_nonce",
    "server_nonce",
]
