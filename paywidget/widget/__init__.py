from .callbacks import HOOK_NAMES, CallbackTable, WidgetCallbacks
from .loader import (
    MISSING_CHECKOUT_REFERENCE,
    DocumentHead,
    LoadState,
    ScriptElement,
    ScriptHost,
    WidgetLoader,
    WidgetSource,
)
from .messages import PaymentFailure, PaymentSuccess, WidgetMessage, parse_message

__all__ = [
    "HOOK_NAMES",
    "MISSING_CHECKOUT_REFERENCE",
    "CallbackTable",
    "DocumentHead",
    "LoadState",
    "PaymentFailure",
    "PaymentSuccess",
    "ScriptElement",
    "ScriptHost",
    "WidgetCallbacks",
    "WidgetLoader",
    "WidgetMessage",
    "WidgetSource",
    "parse_message",
]
