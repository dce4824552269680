"""WebSocket integration tests: auth, snapshot, presence and actions."""

from __future__ import annotations

import time
from collections.abc import Generator
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from conftest import ALICE, BOB, make_token
from skillswap.auth.jwt import create_access_token
from skillswap.config import get_settings
from skillswap.main import create_app


@pytest.fixture
def ws_client() -> Generator[TestClient, None, None]:
    with TestClient(create_app()) as client:
        yield client


class TestAuth:
    def test_missing_token_rejected(self, ws_client: TestClient) -> None:
        with pytest.raises(WebSocketDisconnect):
            with ws_client.websocket_connect("/ws"):
                pass

    def test_invalid_token_closes_4001(self, ws_client: TestClient) -> None:
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with ws_client.websocket_connect("/ws?token=not-a-jwt"):
                pass
        assert exc_info.value.code == 4001

    def test_expired_token_closes_4001(self, ws_client: TestClient) -> None:
        token = create_access_token(ALICE, expires_in=timedelta(seconds=-5))
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with ws_client.websocket_connect(f"/ws?token={token}"):
                pass
        assert exc_info.value.code == 4001

    def test_foreign_origin_closes_4003(self, ws_client: TestClient) -> None:
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with ws_client.websocket_connect(
                f"/ws?token={make_token(ALICE)}", headers={"Origin": "https://evil.example"}
            ):
                pass
        assert exc_info.value.code == 4003

    def test_allowed_origin_connects(self, ws_client: TestClient) -> None:
        with ws_client.websocket_connect(
            f"/ws?token={make_token(ALICE)}", headers={"Origin": "http://localhost:5173"}
        ) as ws:
            assert ws.receive_json()["type"] == "OnlineUsersList"


class TestSession:
    def test_connect_receives_empty_snapshot(self, ws_client: TestClient) -> None:
        with ws_client.websocket_connect(f"/ws?token={make_token(ALICE)}") as ws:
            frame = ws.receive_json()
            assert frame == {"type": "OnlineUsersList", "payload": []}

    def test_ping_pong(self, ws_client: TestClient) -> None:
        with ws_client.websocket_connect(f"/ws?token={make_token(ALICE)}") as ws:
            ws.receive_json()
            ws.send_json({"action": "ping"})
            assert ws.receive_json() == {"type": "pong"}

    def test_unknown_action_and_bad_json(self, ws_client: TestClient) -> None:
        with ws_client.websocket_connect(f"/ws?token={make_token(ALICE)}") as ws:
            ws.receive_json()
            ws.send_json({"action": "dance"})
            assert ws.receive_json() == {"type": "error", "message": "Unknown action: dance"}
            ws.send_text("{not json")
            assert ws.receive_json() == {"type": "error", "message": "Invalid JSON"}

    def test_presence_between_two_users(self, ws_client: TestClient) -> None:
        with ws_client.websocket_connect(f"/ws?token={make_token(ALICE)}") as alice:
            alice.receive_json()

            with ws_client.websocket_connect(f"/ws?token={make_token(BOB)}") as bob:
                snapshot = bob.receive_json()
                assert snapshot["type"] == "OnlineUsersList"
                assert [u["userId"] for u in snapshot["payload"]] == [ALICE.user_id]

                online = alice.receive_json()
                assert online["type"] == "UserOnline"
                assert online["payload"]["userId"] == BOB.user_id
                assert online["payload"]["firstName"] == "Bob"

                bob.send_json({"action": "online_users"})
                again = bob.receive_json()
                assert [u["userId"] for u in again["payload"]] == [ALICE.user_id]

            offline = alice.receive_json()
            assert offline["type"] == "UserOffline"
            assert offline["payload"]["userId"] == BOB.user_id

    def test_disconnect_cleans_registry(self, ws_client: TestClient) -> None:
        hub = ws_client.app.state.hub
        with ws_client.websocket_connect(f"/ws?token={make_token(ALICE)}") as ws:
            ws.receive_json()
            assert hub.registry.is_online(ALICE.user_id)
            ws.send_json({"action": "ping"})
            ws.receive_json()
        # The server's finally block runs once the close frame is processed
        ws_client.get("/health")
        assert not hub.registry.is_online(ALICE.user_id)


@pytest.fixture
def short_idle_client(monkeypatch: pytest.MonkeyPatch) -> Generator[TestClient, None, None]:
    monkeypatch.setenv("SKILLSWAP_WS_IDLE_TIMEOUT_SECONDS", "0.5")
    get_settings.cache_clear()
    with TestClient(create_app()) as client:
        yield client
    get_settings.cache_clear()


class TestIdleTimeout:
    def test_silent_client_is_dropped_with_one_offline(self, short_idle_client: TestClient) -> None:
        hub = short_idle_client.app.state.hub
        with short_idle_client.websocket_connect(f"/ws?token={make_token(ALICE)}") as alice:
            alice.receive_json()
            with short_idle_client.websocket_connect(f"/ws?token={make_token(BOB)}") as bob:
                bob.receive_json()
                assert alice.receive_json()["type"] == "UserOnline"

                # Alice keeps her socket alive with pings while Bob says nothing
                seen: list[dict] = []
                for _ in range(30):
                    time.sleep(0.1)
                    alice.send_json({"action": "ping"})
                    while (frame := alice.receive_json()) != {"type": "pong"}:
                        seen.append(frame)
                    if not hub.registry.is_online(BOB.user_id) and len(seen) > 0:
                        break

                # A few more round trips so a duplicate broadcast would show up
                for _ in range(3):
                    alice.send_json({"action": "ping"})
                    while (frame := alice.receive_json()) != {"type": "pong"}:
                        seen.append(frame)

                with pytest.raises(WebSocketDisconnect) as exc_info:
                    bob.receive_json()
                assert exc_info.value.code == 1001

            offline = [f for f in seen if f["type"] == "UserOffline"]
            assert len(offline) == 1
            assert offline[0]["payload"]["userId"] == BOB.user_id
            assert not hub.registry.is_online(BOB.user_id)
            assert hub.registry.is_online(ALICE.user_id)
