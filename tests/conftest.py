"""Pytest configuration and fixtures."""

import os
from typing import Any, List, Mapping, Tuple
from unittest.mock import MagicMock

import pytest

if "LOG_LEVEL" not in os.environ:
    os.environ["LOG_LEVEL"] = "WARNING"

from paywidget import create_app  # noqa: E402
from paywidget.config import TestingConfig  # noqa: E402
from paywidget.services.status import StatusClient  # noqa: E402

WIDGET_ORIGIN = "https://eu-test.oppwa.com"
DEPENDENCY_URL = "https://code.jquery.com/jquery.js"


@pytest.fixture
def well_known_dir(tmp_path):
    d = tmp_path / ".well-known"
    d.mkdir()
    return d


@pytest.fixture
def app(well_known_dir):
    class _Config(TestingConfig):
        WELL_KNOWN_DIR = str(well_known_dir)
        WIDGET_BASE_URL = WIDGET_ORIGIN
        WIDGET_DEPENDENCY_URL = DEPENDENCY_URL
        PARENT_ORIGIN = ""

    return create_app(_Config)


@pytest.fixture
def client(app):
    return app.test_client()


def backend_response(status: int = 200, payload: Any = None, text: str = "") -> MagicMock:
    resp = MagicMock()
    resp.status_code = status
    resp.ok = 200 <= status < 300
    resp.json.return_value = {} if payload is None else payload
    resp.text = text
    return resp


@pytest.fixture
def backend(app):
    """Mocked requests session behind the app's status client."""
    session = MagicMock()
    session.get.return_value = backend_response(200, {"status": "pending"})
    app.extensions["paywidget_status_client"] = StatusClient.from_config(app.config, session=session)
    return session


class RecordingChannel:
    """Stand-in for window.parent in an embedded frame."""

    embedded = True

    def __init__(self) -> None:
        self.posted: List[Tuple[Mapping[str, Any], str]] = []

    def post(self, message: Mapping[str, Any], target_origin: str) -> None:
        self.posted.append((message, target_origin))


@pytest.fixture
def channel():
    return RecordingChannel()
