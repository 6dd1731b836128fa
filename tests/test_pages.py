"""Tests for the checkout, outcome and diagnostic pages."""

import json
import re

import requests

from paywidget.widget import HOOK_NAMES

from .conftest import backend_response


def _plan(html):
    m = re.search(r'<script type="application/json" id="pw-plan"[^>]*>(.*?)</script>', html, re.S)
    return json.loads(m.group(1)) if m else None


class TestCheckoutPage:
    def test_missing_checkout_id(self, client):
        html = client.get("/").get_data(as_text=True)
        assert "Missing checkout ID" in html
        assert "widget-loader.js" not in html
        assert _plan(html) is None
        # recovery action: reload button handled by outcome.js
        assert "data-pw-reload>Retry</button>" in html
        assert "js/outcome.js" in html

    def test_plan_orders_scripts_and_targets_checkout(self, client):
        resp = client.get("/?checkoutId=chk_77&integrity=sha384-xyz")
        plan = _plan(resp.get_data(as_text=True))

        assert plan["state"] == "loading-dependency"
        assert plan["nonceSource"] == "header"
        assert [s["role"] for s in plan["scripts"]] == ["dependency", "config", "widget"]

        dep, config, widget = plan["scripts"]
        assert dep["attributes"]["src"] == "https://code.jquery.com/jquery.js"
        assert "var wpwlOptions" in config["text"]
        assert '"000.100.110"' in config["text"]
        assert widget["attributes"]["src"] == "https://eu-test.oppwa.com/v1/paymentWidgets.js?checkoutId=chk_77"
        assert widget["attributes"]["integrity"] == "sha384-xyz"
        assert widget["attributes"]["crossorigin"] == "anonymous"

    def test_hooks_are_keyed_by_checkout(self, client):
        plan = _plan(client.get("/?checkoutId=chk_77").get_data(as_text=True))
        config_text = plan["scripts"][1]["text"]

        assert plan["checkoutId"] == "chk_77"
        assert plan["hooks"] == list(HOOK_NAMES)
        assert '})("chk_77");' in config_text
        assert "window.PaywidgetHooks || {})[checkoutId]" in config_text
        assert "window.PaywidgetHooks.on" not in config_text

    def test_brand_and_mada_notice(self, client):
        html = client.get("/?checkoutId=chk_1&brand=mada").get_data(as_text=True)
        assert 'data-brands="MADA"' in html
        assert "MADA Debit Card" in html

        html = client.get("/?checkoutId=chk_1&brand=VISA").get_data(as_text=True)
        assert 'data-brands="VISA"' in html
        assert "MADA Debit Card" not in html

    def test_default_brand(self, client):
        html = client.get("/?checkoutId=chk_1").get_data(as_text=True)
        assert 'data-brands="MADA"' in html

    def test_arabic_locale(self, client):
        resp = client.get("/?checkoutId=chk_1", headers={"Accept-Language": "ar-SA,ar;q=0.9"})
        html = resp.get_data(as_text=True)
        assert 'lang="ar"' in html
        assert 'locale: "ar"' in _plan(html)["scripts"][1]["text"]

    def test_parent_origin_falls_back_to_own_origin(self, client):
        text = _plan(client.get("/?checkoutId=chk_1").get_data(as_text=True))["scripts"][1]["text"]
        assert '"" || window.location.origin' in text
        assert "'*'" not in text


class TestOutcomePages:
    def test_success(self, client):
        html = client.get("/success?transactionId=tx_9&amount=49.00").get_data(as_text=True)
        assert "Payment Successful!" in html
        assert "tx_9" in html
        assert "49.00" in html

    def test_failure(self, client):
        html = client.get("/failure?errorCode=800.100.151&errorMessage=Declined").get_data(as_text=True)
        assert "Payment Failed" in html
        assert "800.100.151" in html
        assert "Declined" in html

    def test_pending_starts_polling(self, client, backend):
        html = client.get("/pending?checkoutId=chk_5&errorCode=000.200.000").get_data(as_text=True)
        assert "Payment Pending" in html
        assert "000.200.000" in html
        assert "mode=auto" in html
        assert 'hx-trigger="load delay:30s"' in html
        assert "https://unpkg.com/htmx.org" in html
        backend.get.assert_not_called()

    def test_pending_without_checkout_does_not_poll(self, client):
        html = client.get("/pending").get_data(as_text=True)
        assert "Payment Pending" in html
        assert "hx-get" not in html


class TestPendingStatusPartial:
    def test_subscription_renders_success(self, client, backend):
        backend.get.return_value = backend_response(200, {"subscription": {"plan": {"name": "Pro"}}})

        resp = client.get("/pending/status?checkoutId=chk_5&attempt=3&mode=auto")
        html = resp.get_data(as_text=True)

        assert resp.status_code == 200
        assert "Payment Successful!" in html
        assert "Pro" in html
        assert "hx-get" not in html

    def test_pending_increments_and_reschedules(self, client, backend):
        html = client.get("/pending/status?checkoutId=chk_5&attempt=3&mode=auto").get_data(as_text=True)
        assert "4/10" in html
        assert "attempt=4" in html
        assert "Check Payment Status Now" in html

    def test_backend_error_is_still_pending(self, client, backend):
        backend.get.side_effect = requests.ConnectionError("refused")
        html = client.get("/pending/status?checkoutId=chk_5&attempt=0&mode=auto").get_data(as_text=True)
        assert "Payment Pending" in html
        assert "still pending" in html
        assert "1/10" in html

    def test_budget_spent_stops_auto_polling(self, client, backend):
        html = client.get("/pending/status?checkoutId=chk_5&attempt=10&mode=auto").get_data(as_text=True)
        backend.get.assert_not_called()
        assert "mode=auto" not in html
        assert "mode=manual" in html

    def test_manual_check_after_budget(self, client, backend):
        client.get("/pending/status?checkoutId=chk_5&attempt=10&mode=manual")
        backend.get.assert_called_once()

    def test_missing_checkout_id(self, client, backend):
        resp = client.get("/pending/status?attempt=1")
        assert resp.status_code == 400
        backend.get.assert_not_called()


class TestCspTestPage:
    def test_checks_run_against_own_policy(self, client):
        resp = client.get("/csp-test")
        html = resp.get_data(as_text=True)
        assert resp.headers["Content-Security-Policy"] in html.replace("&#39;", "'")
        assert html.count('data-check="pass"') == 7
        assert 'data-check="fail"' not in html
        assert "Source: <code>header</code>" in html
