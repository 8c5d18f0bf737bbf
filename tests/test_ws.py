import pytest
from starlette.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from main import app
from realtime.gateway import AUTH_FAILED_CLOSE_CODE


def _close_code(url: str) -> int:
    """Complete the handshake, then read until the server closes."""
    client = TestClient(app)
    with client.websocket_connect(url) as websocket:
        with pytest.raises(WebSocketDisconnect) as exc:
            websocket.receive_json()
    return exc.value.code


def test_websocket_without_token_is_closed_after_accept():
    assert _close_code("/ws") == AUTH_FAILED_CLOSE_CODE


def test_websocket_with_invalid_token_is_closed_after_accept():
    assert _close_code("/ws?token=garbage") == AUTH_FAILED_CLOSE_CODE
