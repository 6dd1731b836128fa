"""Tests for the `flask checkout` command group."""

from unittest.mock import MagicMock, patch

from paywidget.security.policy import PolicyConfig, build_policy
from paywidget.services.status import StatusResult


def _fake_client(*results):
    client = MagicMock()
    client.url = "http://backend.test/payment/hyperpay/status"
    seq = list(results)

    async def _fetch(checkout_id):
        return seq.pop(0) if len(seq) > 1 else seq[0]

    client.fetch_async.side_effect = _fetch
    return client


class TestWatch:
    def test_exits_zero_on_subscription(self, app):
        client = _fake_client(
            StatusResult.from_payload({}),
            StatusResult.from_payload({"subscription": {"plan": {"name": "Pro"}}}),
        )
        with patch("paywidget.cli.StatusClient.from_config", return_value=client):
            result = app.test_cli_runner().invoke(args=["checkout", "watch", "chk_1", "--interval", "0"])

        assert result.exit_code == 0, result.output
        assert "Payment Successful! Plan: Pro" in result.output

    def test_exits_two_when_budget_spent(self, app):
        client = _fake_client(StatusResult.from_payload({"status": "pending"}))
        with patch("paywidget.cli.StatusClient.from_config", return_value=client):
            result = app.test_cli_runner().invoke(
                args=["checkout", "watch", "chk_1", "--interval", "0", "--max-attempts", "3"]
            )

        assert result.exit_code == 2
        assert "(3/3)" in result.output
        assert client.fetch_async.call_count == 3


def _session_for(get_nonce, head_nonce, body_nonce=None):
    cfg = PolicyConfig.from_mapping(
        {"WIDGET_BASE_URL": "https://eu-test.oppwa.com", "WIDGET_DEPENDENCY_URL": "https://code.jquery.com/jquery.js"}
    )
    policy = build_policy(get_nonce, cfg)
    sess = MagicMock()
    sess.head.return_value = MagicMock(headers={"X-CSP-Nonce": head_nonce})
    sess.get.return_value = MagicMock(
        headers={"X-CSP-Nonce": get_nonce, "Content-Security-Policy": policy.header_value()},
        text=f'<script nonce="{body_nonce or get_nonce}" src="/static/js/widget-loader.js"></script>',
    )
    return sess


class TestCspCheck:
    def test_passes_for_consistent_page(self, app):
        with patch("paywidget.cli.make_session", return_value=_session_for("n-get", "n-head")):
            result = app.test_cli_runner().invoke(args=["checkout", "csp-check", "https://shop.example/"])
        assert result.exit_code == 0, result.output
        assert "matches script-src nonce" in result.output

    def test_fails_when_nonce_reused(self, app):
        with patch("paywidget.cli.make_session", return_value=_session_for("same", "same")):
            result = app.test_cli_runner().invoke(args=["checkout", "csp-check", "https://shop.example/"])
        assert result.exit_code == 1
        assert "reused" in result.output

    def test_fails_when_scripts_carry_another_nonce(self, app):
        with patch("paywidget.cli.make_session", return_value=_session_for("n-get", "n-head", body_nonce="stale")):
            result = app.test_cli_runner().invoke(args=["checkout", "csp-check", "https://shop.example/"])
        assert result.exit_code == 1

    def test_fails_without_carrier_header(self, app):
        sess = MagicMock()
        sess.head.return_value = MagicMock(headers={})
        with patch("paywidget.cli.make_session", return_value=sess):
            result = app.test_cli_runner().invoke(args=["checkout", "csp-check", "https://shop.example/"])
        assert result.exit_code == 1
        assert "No X-CSP-Nonce header" in result.output
