"""Tests for the widget loader state machine."""

from unittest.mock import MagicMock

import pytest

from paywidget.errors import ConfigurationError
from paywidget.widget import (
    MISSING_CHECKOUT_REFERENCE,
    CallbackTable,
    DocumentHead,
    LoadState,
    ScriptElement,
    WidgetCallbacks,
    WidgetLoader,
    WidgetSource,
)

SOURCE = WidgetSource(
    widget_base_url="https://eu-test.oppwa.com",
    dependency_url="https://code.jquery.com/jquery.js",
    success_codes=("000.100.110",),
)


def make_loader(checkout_id="chk_42", host=None, **kwargs):
    return WidgetLoader(
        checkout_id,
        host if host is not None else DocumentHead(),
        SOURCE,
        nonce=kwargs.pop("nonce", "n0nce"),
        config_body=kwargs.pop("config_body", "var wpwlOptions = {};"),
        **kwargs,
    )


def roles(host):
    return [s.role for s in host.scripts()]


class TestStart:
    def test_missing_reference_errors_without_inserting(self):
        host = DocumentHead()
        loader = make_loader("", host)
        assert loader.start() is LoadState.ERROR
        assert loader.error_reason == MISSING_CHECKOUT_REFERENCE
        assert host.scripts() == []
        assert loader.plan() == []
        with pytest.raises(ConfigurationError):
            loader.require_checkout()

    def test_start_inserts_only_the_dependency(self):
        host = DocumentHead()
        loader = make_loader(host=host)
        assert loader.start() is LoadState.LOADING_DEPENDENCY
        assert roles(host) == ["dependency"]
        assert host.scripts()[0].nonce == "n0nce"

    def test_double_start_is_rejected(self):
        loader = make_loader()
        loader.start()
        with pytest.raises(RuntimeError):
            loader.start()


class TestOrdering:
    def test_full_sequence_reaches_ready(self):
        host = DocumentHead()
        seen = []
        loader = make_loader(host=host, on_state_change=lambda a, b: seen.append(b))
        loader.start()

        dep = host.scripts()[0]
        assert loader.handle_load(dep) is LoadState.LOADING_WIDGET
        assert roles(host) == ["dependency", "config", "widget"]

        widget = host.scripts()[2]
        assert widget.src == "https://eu-test.oppwa.com/v1/paymentWidgets.js?checkoutId=chk_42"
        assert widget.is_async is True
        assert all(s.nonce == "n0nce" for s in host.scripts())

        assert loader.handle_load(widget) is LoadState.READY
        assert loader.ready
        assert seen == [
            LoadState.LOADING_DEPENDENCY,
            LoadState.LOADING_CONFIG,
            LoadState.LOADING_WIDGET,
            LoadState.READY,
        ]

    def test_stale_widget_event_before_dependency_is_ignored(self):
        host = DocumentHead()
        loader = make_loader(host=host)
        loader.start()
        widget = loader.plan()[2]
        assert loader.handle_load(widget) is LoadState.LOADING_DEPENDENCY
        assert roles(host) == ["dependency"]

    def test_error_from_unattached_or_foreign_script_is_ignored(self):
        host = DocumentHead()
        loader = make_loader(host=host)
        loader.start()
        widget = loader.plan()[2]
        assert loader.handle_error(widget) is LoadState.LOADING_DEPENDENCY

        foreign = ScriptElement(role="dependency", src="https://code.jquery.com/jquery.js")
        assert loader.handle_error(foreign) is LoadState.LOADING_DEPENDENCY
        assert loader.error_reason is None

        assert loader.handle_load(host.scripts()[0]) is LoadState.LOADING_WIDGET

    def test_config_attach_failure(self):
        host = MagicMock()
        host.scripts.return_value = []
        calls = []

        def _append(el):
            calls.append(el.role)
            if el.role == "config":
                raise RuntimeError("head is gone")

        host.append.side_effect = _append
        loader = make_loader(host=host)
        loader.start()
        loader.handle_load(loader.plan()[0])
        assert loader.state is LoadState.ERROR
        assert loader.error_reason == "Failed to attach configuration script"
        assert calls == ["dependency", "config"]


class TestIntegrity:
    def test_integrity_sets_crossorigin(self):
        loader = make_loader(integrity="sha384-abc")
        attrs = loader.plan()[2].attributes()
        assert attrs["integrity"] == "sha384-abc"
        assert attrs["crossorigin"] == "anonymous"

    def test_no_integrity_no_crossorigin(self):
        attrs = make_loader().plan()[2].attributes()
        assert "integrity" not in attrs
        assert "crossorigin" not in attrs


class TestErrorsAndRetry:
    def test_script_error_is_terminal_until_retry(self):
        host = DocumentHead()
        loader = make_loader(host=host)
        loader.start()
        loader.handle_load(host.scripts()[0])
        widget = host.scripts()[2]

        assert loader.handle_error(widget) is LoadState.ERROR
        assert loader.error_reason == "Failed to load payment widget script"
        # late load event after failure changes nothing
        assert loader.handle_load(widget) is LoadState.ERROR

        assert loader.retry() is LoadState.LOADING_DEPENDENCY
        assert loader.error_reason is None
        assert roles(host) == ["dependency"]

    def test_retry_uses_fresh_elements(self):
        host = DocumentHead()
        loader = make_loader(host=host)
        loader.start()
        old_dep = host.scripts()[0]
        loader.handle_error(old_dep)

        loader.retry()
        new_dep = host.scripts()[0]
        assert new_dep is not old_dep
        assert new_dep.src == old_dep.src

        # events from the failed attempt no longer move the loader
        assert loader.handle_load(old_dep) is LoadState.LOADING_DEPENDENCY
        assert loader.handle_error(old_dep) is LoadState.LOADING_DEPENDENCY
        assert loader.handle_load(new_dep) is LoadState.LOADING_WIDGET

    def test_retry_requires_error_state(self):
        loader = make_loader()
        loader.start()
        with pytest.raises(RuntimeError):
            loader.retry()

    def test_dependency_error_reason(self):
        host = DocumentHead()
        loader = make_loader(host=host)
        loader.start()
        loader.handle_error(host.scripts()[0])
        assert loader.error_reason == "Failed to load dependency script"


class TestCleanup:
    def test_only_inserted_elements_are_removed(self):
        host = DocumentHead()
        foreign = ScriptElement(role="site", src="https://code.jquery.com/jquery.js")
        analytics = ScriptElement(role="site", src="https://analytics.example/a.js")
        host.append(foreign)
        host.append(analytics)

        table = CallbackTable()
        table.register("chk_42", WidgetCallbacks())
        loader = make_loader(host=host, callbacks=table)
        loader.start()
        loader.handle_load(host.scripts()[2])
        assert len(host.scripts()) == 5

        loader.teardown()
        assert host.scripts() == [foreign, analytics]
        assert "chk_42" not in table


class TestCallbacks:
    def test_hooks_dispatch_per_session(self):
        table = CallbackTable()
        ready = MagicMock()
        table.register("chk_42", WidgetCallbacks(on_ready=ready))
        table.register("chk_other", WidgetCallbacks())

        make_loader(callbacks=table).dispatch("onReady")
        ready.assert_called_once_with()
        assert make_loader("chk_other", callbacks=table).dispatch("onReady") is None

    def test_unknown_hook(self):
        with pytest.raises(KeyError):
            WidgetCallbacks().hook("onExplode")

    def test_register_requires_id(self):
        with pytest.raises(ValueError):
            CallbackTable().register("", WidgetCallbacks())


class TestResponse:
    def test_success_posts_to_parent_origin(self, channel):
        on_response = MagicMock()
        table = CallbackTable()
        table.register("chk_42", WidgetCallbacks(on_response=on_response))
        loader = make_loader(callbacks=table, channel=channel, parent_origin="https://merchant.example")

        response = {"result": {"code": "000.100.110"}, "resourcePath": "/v1/checkouts/chk_42/payment"}
        msg = loader.handle_response(response)

        on_response.assert_called_once_with(response)
        assert msg is not None and msg.resource_path == "/v1/checkouts/chk_42/payment"
        assert channel.posted == [
            (
                {"type": "PAYMENT_SUCCESS", "data": {"resourcePath": "/v1/checkouts/chk_42/payment"}},
                "https://merchant.example",
            )
        ]

    def test_success_without_resource_path_defaults(self, channel):
        loader = make_loader(channel=channel, parent_origin="https://merchant.example")
        loader.handle_response({"result": {"code": "000.100.110"}})
        assert channel.posted[0][0]["data"]["resourcePath"] == "/success"

    def test_other_codes_post_nothing(self, channel):
        loader = make_loader(channel=channel, parent_origin="https://merchant.example")
        assert loader.handle_response({"result": {"code": "800.100.151"}}) is None
        assert channel.posted == []

    def test_no_parent_origin_posts_nothing(self, channel):
        loader = make_loader(channel=channel)
        assert loader.handle_response({"result": {"code": "000.100.110"}}) is not None
        assert channel.posted == []
