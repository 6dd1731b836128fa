# paywidget/widget/loader.py
# Ordered, nonce-tagged loading of the hosted card widget.
#
#   idle -> loading-dependency -> loading-config -> loading-widget -> ready
#                 \__________________\_______________\______-> error(reason)
#   error -> loading-dependency   (explicit retry only)
#
# The loader never touches a real DOM; it drives a ScriptHost. In the browser
# the host is document.head (see static/js/widget-loader.js, which replays the
# plan produced here); on the server and in tests it is an in-memory DocumentHead.

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Protocol
from urllib.parse import quote

from paywidget.errors import ConfigurationError, ScriptLoadError

from .callbacks import HOOK_NAMES, CallbackTable, WidgetCallbacks
from .messages import DEFAULT_RESOURCE_PATH, DetachedChannel, ParentChannel, PaymentSuccess

log = logging.getLogger(__name__)

MISSING_CHECKOUT_REFERENCE = "missing checkout reference"
DEFAULT_SUCCESS_CODES = ("000.100.110",)

ROLE_DEPENDENCY = "dependency"
ROLE_CONFIG = "config"
ROLE_WIDGET = "widget"


class LoadState(str, Enum):
    IDLE = "idle"
    LOADING_DEPENDENCY = "loading-dependency"
    LOADING_CONFIG = "loading-config"
    LOADING_WIDGET = "loading-widget"
    READY = "ready"
    ERROR = "error"


IN_FLIGHT = frozenset({LoadState.LOADING_DEPENDENCY, LoadState.LOADING_CONFIG, LoadState.LOADING_WIDGET})

_ALLOWED: Dict[LoadState, frozenset] = {
    LoadState.IDLE: frozenset({LoadState.LOADING_DEPENDENCY, LoadState.ERROR}),
    LoadState.LOADING_DEPENDENCY: frozenset({LoadState.LOADING_CONFIG, LoadState.ERROR}),
    LoadState.LOADING_CONFIG: frozenset({LoadState.LOADING_WIDGET, LoadState.ERROR}),
    LoadState.LOADING_WIDGET: frozenset({LoadState.READY, LoadState.ERROR}),
    LoadState.READY: frozenset(),
    LoadState.ERROR: frozenset({LoadState.LOADING_DEPENDENCY, LoadState.ERROR}),
}


@dataclass(eq=False)
class ScriptElement:
    role: str
    src: str = ""
    text: str = ""
    nonce: str = ""
    integrity: str = ""
    crossorigin: str = ""
    is_async: bool = False

    @property
    def inline(self) -> bool:
        return not self.src

    def attributes(self) -> Dict[str, Any]:
        attrs: Dict[str, Any] = {"type": "text/javascript"}
        if self.src:
            attrs["src"] = self.src
        if self.is_async:
            attrs["async"] = True
        if self.nonce:
            attrs["nonce"] = self.nonce
        if self.integrity:
            attrs["integrity"] = self.integrity
            attrs["crossorigin"] = self.crossorigin or "anonymous"
        return attrs

    def to_dict(self) -> Dict[str, Any]:
        out = {"role": self.role, "attributes": self.attributes()}
        if self.inline:
            out["text"] = self.text
        return out


class ScriptHost(Protocol):
    def append(self, element: ScriptElement) -> None: ...

    def remove(self, element: ScriptElement) -> None: ...

    def scripts(self) -> List[ScriptElement]: ...


class DocumentHead:
    """In-memory script host; keeps insertion order."""

    def __init__(self) -> None:
        self._scripts: List[ScriptElement] = []

    def append(self, element: ScriptElement) -> None:
        self._scripts.append(element)

    def remove(self, element: ScriptElement) -> None:
        self._scripts = [s for s in self._scripts if s is not element]

    def scripts(self) -> List[ScriptElement]:
        return list(self._scripts)


@dataclass
class WidgetSource:
    widget_base_url: str
    dependency_url: str
    success_codes: Iterable[str] = DEFAULT_SUCCESS_CODES

    def widget_script_url(self, checkout_id: str) -> str:
        return f"{self.widget_base_url.rstrip('/')}/v1/paymentWidgets.js?checkoutId={quote(checkout_id, safe='')}"

    @property
    def widget_marker(self) -> str:
        return self.widget_base_url.split("://", 1)[-1].rstrip("/")

    @property
    def dependency_marker(self) -> str:
        return self.dependency_url.split("://", 1)[-1]


class WidgetLoader:
    def __init__(
        self,
        checkout_id: Optional[str],
        host: ScriptHost,
        source: WidgetSource,
        *,
        nonce: str = "",
        config_body: str = "",
        integrity: Optional[str] = None,
        callbacks: Optional[CallbackTable] = None,
        channel: Optional[ParentChannel] = None,
        parent_origin: str = "",
        on_state_change: Optional[Callable[[LoadState, LoadState], None]] = None,
    ) -> None:
        self.checkout_id = (checkout_id or "").strip()
        self.host = host
        self.source = source
        self.nonce = nonce
        self.config_body = config_body
        self.integrity = (integrity or "").strip()
        self.callbacks = callbacks if callbacks is not None else CallbackTable()
        self.channel: ParentChannel = channel or DetachedChannel()
        self.parent_origin = parent_origin
        self.on_state_change = on_state_change

        self.state = LoadState.IDLE
        self.error_reason: Optional[str] = None
        self._inserted: List[ScriptElement] = []
        self._elements: Optional[Dict[str, ScriptElement]] = None

    # ------------------------------------------------------------------
    # Elements
    # ------------------------------------------------------------------
    def _build_elements(self) -> Dict[str, ScriptElement]:
        if self._elements is None:
            widget = ScriptElement(
                role=ROLE_WIDGET,
                src=self.source.widget_script_url(self.checkout_id),
                nonce=self.nonce,
                is_async=True,
            )
            if self.integrity:
                widget.integrity = self.integrity
                widget.crossorigin = "anonymous"
            else:
                log.warning("No integrity value provided for widget script (checkout %s)", self.checkout_id)

            self._elements = {
                ROLE_DEPENDENCY: ScriptElement(role=ROLE_DEPENDENCY, src=self.source.dependency_url, nonce=self.nonce),
                ROLE_CONFIG: ScriptElement(role=ROLE_CONFIG, text=self.config_body, nonce=self.nonce),
                ROLE_WIDGET: widget,
            }
        return self._elements

    def plan(self) -> List[ScriptElement]:
        """Elements in load order. Empty when no checkout reference is known."""
        if not self.checkout_id:
            return []
        els = self._build_elements()
        return [els[ROLE_DEPENDENCY], els[ROLE_CONFIG], els[ROLE_WIDGET]]

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------
    @property
    def ready(self) -> bool:
        return self.state is LoadState.READY

    def _transition(self, to: LoadState) -> None:
        if to not in _ALLOWED[self.state]:
            raise RuntimeError(f"illegal widget load transition {self.state.value} -> {to.value}")
        prev, self.state = self.state, to
        log.debug("Widget loader %s: %s -> %s", self.checkout_id or "-", prev.value, to.value)
        if self.on_state_change is not None:
            self.on_state_change(prev, to)

    def _fail(self, reason: str) -> LoadState:
        self.error_reason = reason
        self._transition(LoadState.ERROR)
        log.warning("Widget load failed (checkout %s): %s", self.checkout_id or "-", reason)
        return self.state

    def _insert(self, element: ScriptElement) -> None:
        try:
            self.host.append(element)
        except Exception as e:
            raise ScriptLoadError(element.src or element.role, f"could not attach {element.role} script: {e}") from e
        self._inserted.append(element)

    def start(self) -> LoadState:
        if self.state is not LoadState.IDLE:
            raise RuntimeError(f"loader already started (state={self.state.value})")
        if not self.checkout_id:
            return self._fail(MISSING_CHECKOUT_REFERENCE)

        self._transition(LoadState.LOADING_DEPENDENCY)
        try:
            self._insert(self._build_elements()[ROLE_DEPENDENCY])
        except ScriptLoadError:
            return self._fail("Failed to load dependency script")
        return self.state

    def handle_load(self, element: ScriptElement) -> LoadState:
        """Load-event completion for an inserted element."""
        if self.state not in IN_FLIGHT or element not in self._inserted:
            log.debug("Ignoring stale load event for %s (state=%s)", element.role, self.state.value)
            return self.state

        if element.role == ROLE_DEPENDENCY and self.state is LoadState.LOADING_DEPENDENCY:
            self._transition(LoadState.LOADING_CONFIG)
            els = self._build_elements()
            try:
                # Inline block: registers the hooks the widget reads on boot.
                self._insert(els[ROLE_CONFIG])
            except ScriptLoadError:
                return self._fail("Failed to attach configuration script")
            self._transition(LoadState.LOADING_WIDGET)
            try:
                self._insert(els[ROLE_WIDGET])
            except ScriptLoadError:
                return self._fail("Failed to load payment widget script")
            return self.state

        if element.role == ROLE_WIDGET and self.state is LoadState.LOADING_WIDGET:
            self._transition(LoadState.READY)
        return self.state

    def handle_error(self, element: ScriptElement, reason: Optional[str] = None) -> LoadState:
        """Script error event: terminal for this attempt, no automatic retry."""
        if self.state not in IN_FLIGHT or element not in self._inserted:
            log.debug("Ignoring stale error event for %s (state=%s)", element.role, self.state.value)
            return self.state
        default = {
            ROLE_DEPENDENCY: "Failed to load dependency script",
            ROLE_CONFIG: "Failed to attach configuration script",
            ROLE_WIDGET: "Failed to load payment widget script",
        }.get(element.role, "Failed to load script")
        return self._fail(reason or default)

    def retry(self) -> LoadState:
        """User-triggered reset from error back to loading-dependency."""
        if self.state is not LoadState.ERROR:
            raise RuntimeError(f"retry is only possible from error (state={self.state.value})")
        self.cleanup()
        if not self.checkout_id:
            return self._fail(MISSING_CHECKOUT_REFERENCE)
        self.error_reason = None
        # fresh nodes, so events from the failed attempt stay stale
        self._elements = None
        self._transition(LoadState.LOADING_DEPENDENCY)
        try:
            self._insert(self._build_elements()[ROLE_DEPENDENCY])
        except ScriptLoadError:
            return self._fail("Failed to load dependency script")
        return self.state

    def require_checkout(self) -> str:
        if not self.checkout_id:
            raise ConfigurationError(MISSING_CHECKOUT_REFERENCE)
        return self.checkout_id

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------
    def cleanup(self) -> int:
        """
        Remove what this loader inserted: dependency and widget scripts
        (matched by source substring) and its own configuration block.
        """
        markers = (self.source.dependency_marker, self.source.widget_marker)
        removed = 0
        for el in self.host.scripts():
            if el not in self._inserted:
                continue
            if el.inline or any(m and m in el.src for m in markers):
                self.host.remove(el)
                removed += 1
        self._inserted = [el for el in self._inserted if el in self.host.scripts()]
        return removed

    def teardown(self) -> None:
        self.cleanup()
        if self.checkout_id:
            self.callbacks.discard(self.checkout_id)

    # ------------------------------------------------------------------
    # Widget callback contract
    # ------------------------------------------------------------------
    def _hooks(self) -> WidgetCallbacks:
        return self.callbacks.get(self.checkout_id)

    def dispatch(self, hook_name: str, *args: Any) -> Any:
        fn = self._hooks().hook(hook_name)
        if fn is None:
            return None
        return fn(*args)

    def is_success_code(self, code: Optional[str]) -> bool:
        return bool(code) and code in set(self.source.success_codes)

    def handle_response(self, response: Mapping[str, Any]) -> Optional[PaymentSuccess]:
        """
        onResponse from the widget. On a recognised success code the embedding
        parent (if any) is told via a PAYMENT_SUCCESS message.
        """
        self.dispatch("onResponse", response)

        result = response.get("result") if isinstance(response, Mapping) else None
        code = result.get("code") if isinstance(result, Mapping) else None
        if not self.is_success_code(code):
            return None

        message = PaymentSuccess(resource_path=str(response.get("resourcePath") or DEFAULT_RESOURCE_PATH))
        if self.channel.embedded:
            if not self.parent_origin:
                log.warning("Embedded success for %s but no parent origin configured; not posting", self.checkout_id)
            else:
                self.channel.post(message.to_wire(), self.parent_origin)
        return message

    def snapshot(self) -> Dict[str, Any]:
        return {
            "checkoutId": self.checkout_id,
            "state": self.state.value,
            "error": self.error_reason,
            "nonce": self.nonce,
            "hooks": list(HOOK_NAMES),
            "scripts": [el.to_dict() for el in self.plan()],
        }
