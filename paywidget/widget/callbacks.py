# paywidget/widget/callbacks.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

log = logging.getLogger(__name__)

# Hook names as the hosted widget reads them from its options object.
HOOK_NAMES = ("onReady", "onError", "onDetectBrand", "onBeforeSubmit", "onResponse")


@dataclass
class WidgetCallbacks:
    on_ready: Optional[Callable[[], Any]] = None
    on_error: Optional[Callable[[Any], Any]] = None
    on_detect_brand: Optional[Callable[[Any], Any]] = None
    on_before_submit: Optional[Callable[[], Any]] = None
    on_response: Optional[Callable[[Any], Any]] = None

    def hook(self, name: str) -> Optional[Callable[..., Any]]:
        attr = {
            "onReady": "on_ready",
            "onError": "on_error",
            "onDetectBrand": "on_detect_brand",
            "onBeforeSubmit": "on_before_submit",
            "onResponse": "on_response",
        }.get(name)
        if attr is None:
            raise KeyError(f"unknown widget hook: {name}")
        return getattr(self, attr)


class CallbackTable:
    """
    Widget hooks keyed by checkout session, so several widget instances can
    be hosted side by side without sharing one global options object.
    """

    def __init__(self) -> None:
        self._by_session: Dict[str, WidgetCallbacks] = {}

    def register(self, checkout_id: str, callbacks: WidgetCallbacks) -> None:
        if not checkout_id:
            raise ValueError("checkout_id is required to register widget callbacks")
        if checkout_id in self._by_session:
            log.debug("Replacing widget callbacks for checkout %s", checkout_id)
        self._by_session[checkout_id] = callbacks

    def get(self, checkout_id: str) -> WidgetCallbacks:
        return self._by_session.get(checkout_id) or WidgetCallbacks()

    def discard(self, checkout_id: str) -> None:
        self._by_session.pop(checkout_id, None)

    def __contains__(self, checkout_id: object) -> bool:
        return checkout_id in self._by_session

    def __len__(self) -> int:
        return len(self._by_session)
