# paywidget/errors.py
from __future__ import annotations


class PaywidgetError(Exception):
    """Base class for checkout front-end failures."""


class ConfigurationError(PaywidgetError):
    """A precondition for loading the widget is missing (e.g. no checkout reference)."""


class ScriptLoadError(PaywidgetError):
    """A dependency, configuration or widget script could not be attached or loaded."""

    def __init__(self, src: str, message: str) -> None:
        super().__init__(message)
        self.src = src


class StatusCheckError(PaywidgetError):
    """The backend status lookup failed (transport error or non-2xx response)."""

    def __init__(self, message: str, *, status: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status = status
        self.body = body


class MessageRejected(PaywidgetError):
    """A cross-window message failed the origin or shape check."""
