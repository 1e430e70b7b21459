import json
from unittest.mock import Mock, patch
import pytest
import requests
from chainvisor.protocol.types.plan import CallbackEvent
from chainvisor.upgrade.callbacks import (
    CallbackDispatcher,
    UPGRADE_DETECTED,
    UPGRADE_HEIGHT_REACHED,
)

TARGET_ENV = {
    "CALLBACK_API": "https://backend.example.com",
    "NODE_ID": "node-7",
    "DEPLOYMENT_ID": "dep-42",
}


@pytest.fixture
def event():
    return CallbackEvent(
        name="v2",
        version="v2.0.1",
        repo="https://github.com/org/repo",
        info="{}",
        height=1000,
    )


def test_callback_urls():
    dispatcher = CallbackDispatcher(environ=TARGET_ENV)

    assert dispatcher.callback_url(UPGRADE_DETECTED) == \
        "https://backend.example.com/internal/cosmos/node-7/dep-42/cosmos_notify_upgrade"
    assert dispatcher.callback_url(UPGRADE_HEIGHT_REACHED) == \
        "https://backend.example.com/internal/cosmos/node-7/dep-42/cosmos_upgrade_height_reached"


def test_environment_is_read_at_dispatch_time(monkeypatch):
    dispatcher = CallbackDispatcher()

    monkeypatch.setenv("CALLBACK_API", "http://first")
    monkeypatch.setenv("NODE_ID", "n")
    monkeypatch.setenv("DEPLOYMENT_ID", "d")
    assert dispatcher.callback_url("x") == "http://first/internal/cosmos/n/d/x"

    monkeypatch.setenv("CALLBACK_API", "http://second")
    assert dispatcher.callback_url("x") == "http://second/internal/cosmos/n/d/x"


def test_encode_event(event):
    payload = CallbackDispatcher(environ=TARGET_ENV).encode_event(event)

    assert json.loads(payload) == {
        "name": "v2",
        "version": "v2.0.1",
        "repo": "https://github.com/org/repo",
        "info": "{}",
        "height": 1000,
    }


def test_upgrade_detected_posts_json(event, caplog):
    session = Mock()
    session.post.return_value = Mock(ok=True, status_code=200)
    dispatcher = CallbackDispatcher(environ=TARGET_ENV, timeout=2.5, session=session)
    payload = dispatcher.encode_event(event)

    with caplog.at_level("INFO"):
        assert dispatcher.upgrade_detected(payload) is True

    session.post.assert_called_once_with(
        "https://backend.example.com/internal/cosmos/node-7/dep-42/cosmos_notify_upgrade",
        data=payload,
        headers={"Content-Type": "application/json"},
        timeout=2.5,
    )
    assert "https://backend.example.com/internal/cosmos/node-7/dep-42/cosmos_notify_upgrade" in caplog.text


def test_upgrade_height_reached_uses_module_requests(event):
    dispatcher = CallbackDispatcher(environ=TARGET_ENV)
    with patch("chainvisor.upgrade.callbacks.requests.post", return_value=Mock(ok=True, status_code=204)) as post:
        assert dispatcher.upgrade_height_reached(b"{}") is True

    assert post.call_args.args[0].endswith("/cosmos_upgrade_height_reached")


def test_network_errors_are_swallowed():
    session = Mock()
    session.post.side_effect = requests.ConnectionError("connection refused")
    dispatcher = CallbackDispatcher(environ=TARGET_ENV, session=session)

    assert dispatcher.upgrade_detected(b"{}") is False
    assert session.post.call_count == 1  # no retries


def test_server_errors_are_swallowed():
    session = Mock()
    session.post.return_value = Mock(ok=False, status_code=500)
    dispatcher = CallbackDispatcher(environ=TARGET_ENV, session=session)

    assert dispatcher.upgrade_height_reached(b"{}") is False


def test_missing_callback_api_skips_post():
    session = Mock()
    dispatcher = CallbackDispatcher(environ={"NODE_ID": "n"}, session=session)

    assert dispatcher.upgrade_detected(b"{}") is False
    session.post.assert_not_called()


def test_encoding_failure_returns_none():
    event = Mock()
    event.name = "v2"
    event.model_dump_json.side_effect = ValueError("boom")

    assert CallbackDispatcher(environ=TARGET_ENV).encode_event(event) is None
