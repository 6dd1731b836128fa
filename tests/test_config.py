"""Tests for config resolution and production guardrails."""

from types import SimpleNamespace

import pytest

from paywidget import create_app
from paywidget.config import CONFIG_BY_NAME, ProductionConfig, TestingConfig


def _prod_app(**overrides):
    cfg = {
        "SECRET_KEY": "s3cr3t-value",
        "BACKEND_URL": "https://api.example",
        "WIDGET_BASE_URL": "https://oppwa.com",
    }
    cfg.update(overrides)
    return SimpleNamespace(config=cfg)


class TestProductionGuardrails:
    def test_accepts_hardened_settings(self, monkeypatch):
        monkeypatch.delenv("FLASK_DEBUG", raising=False)
        ProductionConfig.init_app(_prod_app())

    @pytest.mark.parametrize(
        "override",
        [
            {"SECRET_KEY": "dev-change-me"},
            {"SECRET_KEY": ""},
            {"BACKEND_URL": "http://api.example"},
            {"WIDGET_BASE_URL": "http://oppwa.com"},
        ],
    )
    def test_rejects_unsafe_settings(self, override, monkeypatch):
        monkeypatch.delenv("FLASK_DEBUG", raising=False)
        with pytest.raises(RuntimeError):
            ProductionConfig.init_app(_prod_app(**override))

    def test_rejects_debug_flag(self, monkeypatch):
        monkeypatch.setenv("FLASK_DEBUG", "1")
        with pytest.raises(RuntimeError):
            ProductionConfig.init_app(_prod_app())


class TestFactory:
    def test_short_name_resolves(self):
        app = create_app("testing")
        assert app.config["TESTING"] is True
        assert app.config["ENV"] == "testing"

    def test_dotted_path_resolves(self):
        app = create_app("paywidget.config.TestingConfig")
        assert app.config["BACKEND_URL"] == TestingConfig.BACKEND_URL

    def test_flask_config_env(self, monkeypatch):
        monkeypatch.setenv("FLASK_CONFIG", "testing")
        assert create_app().config["TESTING"] is True

    def test_defaults(self):
        cfg = CONFIG_BY_NAME["base"]
        assert cfg.POLL_MAX_ATTEMPTS == 10
        assert cfg.POLL_INTERVAL_SECONDS == 30.0
        assert cfg.WIDGET_SUCCESS_CODES == ["000.100.110"]
        assert cfg.NONCE_HEADER == "X-CSP-Nonce"

    def test_registers_only_checkout_routes(self):
        rules = {r.rule for r in create_app("testing").url_map.iter_rules()}
        assert {"/", "/success", "/failure", "/pending", "/pending/status", "/csp-test"} <= rules
        assert {"/healthz", "/version", "/api/payment/check-status"} <= rules
        assert not any(rule.startswith("/.git") for rule in rules)
