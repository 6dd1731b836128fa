# paywidget/widget/messages.py
# Cross-window messages between the widget frame and its embedding page.
#
# Wire shape: {"type": "<KIND>", "data": {...}}. Inbound messages are parsed
# only after the sender origin is checked against an allow-list.

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, Dict, Iterable, Mapping, Protocol, Union

from paywidget.errors import MessageRejected

PAYMENT_SUCCESS = "PAYMENT_SUCCESS"
PAYMENT_FAILURE = "PAYMENT_FAILURE"

DEFAULT_RESOURCE_PATH = "/success"


@dataclass(frozen=True)
class PaymentSuccess:
    resource_path: str = DEFAULT_RESOURCE_PATH

    type: ClassVar[str] = PAYMENT_SUCCESS

    def to_wire(self) -> Dict[str, Any]:
        return {"type": self.type, "data": {"resourcePath": self.resource_path}}


@dataclass(frozen=True)
class PaymentFailure:
    code: str
    description: str = ""

    type: ClassVar[str] = PAYMENT_FAILURE

    def to_wire(self) -> Dict[str, Any]:
        return {"type": self.type, "data": {"code": self.code, "description": self.description}}


WidgetMessage = Union[PaymentSuccess, PaymentFailure]


def parse_message(raw: Any, origin: str, allowed_origins: Iterable[str]) -> WidgetMessage:
    """
    Validate sender origin, then the payload shape. Raises MessageRejected.
    """
    allowed = {o.rstrip("/") for o in allowed_origins if o}
    if (origin or "").rstrip("/") not in allowed:
        raise MessageRejected(f"untrusted message origin: {origin!r}")

    if not isinstance(raw, Mapping):
        raise MessageRejected("message must be an object")

    kind = raw.get("type")
    data = raw.get("data")
    if not isinstance(data, Mapping):
        raise MessageRejected("message data must be an object")

    if kind == PAYMENT_SUCCESS:
        path = data.get("resourcePath")
        if not isinstance(path, str) or not path:
            raise MessageRejected("PAYMENT_SUCCESS requires a resourcePath")
        return PaymentSuccess(resource_path=path)

    if kind == PAYMENT_FAILURE:
        code = data.get("code")
        if not isinstance(code, str) or not code:
            raise MessageRejected("PAYMENT_FAILURE requires a code")
        return PaymentFailure(code=code, description=str(data.get("description") or ""))

    raise MessageRejected(f"unknown message type: {kind!r}")


class ParentChannel(Protocol):
    """Outbound channel to the embedding page (window.parent in a browser)."""

    embedded: bool

    def post(self, message: Mapping[str, Any], target_origin: str) -> None: ...


class DetachedChannel:
    """Top-level page: there is no parent to notify."""

    embedded = False

    def post(self, message: Mapping[str, Any], target_origin: str) -> None:
        return None
