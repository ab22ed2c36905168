"""Tests for the DeviceLink WebSocket client."""

from __future__ import annotations

import asyncio

import pytest
from conftest import reply_ok, wait_until

from pysiegenia import (
    ApiError,
    ConnectionAlreadyActive,
    ConnectionNotInitialized,
    DeviceLink,
    LinkEvent,
    LinkState,
    ProtocolError,
    RequestTimeout,
    TransportError,
    compute_reconnect_delay,
)


def record(link: DeviceLink, event: LinkEvent) -> list:
    calls: list = []
    link.on(event, lambda *args: calls.append(args))
    return calls


def test_invalid_scheme_rejected():
    with pytest.raises(ValueError):
        DeviceLink("192.168.1.10", scheme="http")


def test_reconnect_delay_grows_and_is_capped():
    delays = [compute_reconnect_delay(errors) for errors in range(20)]
    assert delays[0] == 5
    assert delays[1] == 10
    assert all(a <= b for a, b in zip(delays, delays[1:]))
    assert max(delays) == 60
    assert compute_reconnect_delay(100) == 60


@pytest.mark.asyncio
async def test_send_request_without_connection(make_link):
    link = make_link()
    with pytest.raises(ConnectionNotInitialized):
        await link.get_device_info()
    assert link.pending_requests == frozenset()


@pytest.mark.asyncio
async def test_connect_opens_device_url(make_link, connector):
    link = make_link()
    connected = record(link, LinkEvent.CONNECTED)

    assert await link.connect() is True

    url, kwargs = connector.calls[0]
    assert url == "wss://192.168.1.10:443/WebSocket"
    assert kwargs["origin"] == "wss://192.168.1.10:443"
    assert "ssl" in kwargs
    assert connected == [()]
    assert link.state is LinkState.CONNECTED
    assert link.was_connected


@pytest.mark.asyncio
async def test_plain_ws_does_not_pass_ssl(make_link, connector):
    link = make_link(scheme="ws", port=8080)
    await link.connect()
    url, kwargs = connector.calls[0]
    assert url == "ws://192.168.1.10:8080/WebSocket"
    assert "ssl" not in kwargs


@pytest.mark.asyncio
async def test_connect_twice_fails(make_link, connector):
    link = make_link()
    await link.connect()
    with pytest.raises(ConnectionAlreadyActive):
        await link.connect()
    assert len(connector.calls) == 1


@pytest.mark.asyncio
async def test_request_ids_start_after_counter(make_link, connector):
    connector.responder = reply_ok()
    link = make_link()
    await link.connect()

    await link.get_device_info()
    await link.get_device_state()

    assert [request["id"] for request in connector.last.sent] == [2, 3]
    assert connector.last.sent[0] == {"command": "getDevice", "id": 2}


@pytest.mark.asyncio
async def test_responses_out_of_order_resolve_their_requests(make_link, connector):
    link = make_link()
    await link.connect()
    connection = connector.last

    info = asyncio.create_task(link.get_device_info())
    state = asyncio.create_task(link.get_device_state())
    await wait_until(lambda: len(connection.sent) == 2)
    info_id, state_id = (request["id"] for request in connection.sent)
    assert info_id != state_id

    connection.push({"id": state_id, "status": "ok", "data": {"deviceactive": True}})
    connection.push({"id": info_id, "status": "ok", "data": {"type": 5}})

    info_response = await info
    state_response = await state
    assert info_response.data == {"type": 5}
    assert info_response.command == "getDevice"
    assert state_response.data == {"deviceactive": True}
    assert link.pending_requests == frozenset()


@pytest.mark.asyncio
async def test_request_timeout(make_link, connector):
    link = make_link(request_timeout=0.05)
    closed = record(link, LinkEvent.CLOSED)
    await link.connect()

    with pytest.raises(RequestTimeout) as err:
        await link.get_device_params()

    assert err.value.command == "getDeviceParams"
    assert link.pending_requests == frozenset()
    assert link.connected
    assert closed == []


@pytest.mark.asyncio
async def test_late_response_after_timeout_is_a_push(make_link, connector):
    link = make_link(request_timeout=0.05)
    data = record(link, LinkEvent.DATA)
    await link.connect()

    with pytest.raises(RequestTimeout):
        await link.get_device_info()
    request_id = connector.last.sent[0]["id"]
    connector.last.push({"id": request_id, "status": "ok", "data": {"type": 5}})

    await wait_until(lambda: data)
    assert data == [("ok", {"type": 5}, None)]


@pytest.mark.asyncio
async def test_non_ok_status_is_returned(make_link, connector):
    connector.responder = reply_ok(status_by_command={"logout": "unauthorized"})
    link = make_link()
    await link.connect()

    response = await link.logout()

    assert response.status == "unauthorized"
    assert not response.ok
    with pytest.raises(ApiError):
        response.raise_for_status()


@pytest.mark.asyncio
async def test_login_envelopes(make_link, connector):
    connector.responder = reply_ok({"login": {"token": "abc"}})
    link = make_link()
    await link.connect()

    await link.login_user("admin", "secret")
    await link.login_token("abc")

    user_login, token_login = connector.last.sent
    assert user_login == {
        "command": "login",
        "user": "admin",
        "password": "secret",
        "long_life": False,
        "id": 2,
    }
    assert token_login == {"command": "login", "token": "abc", "id": 3}


@pytest.mark.asyncio
async def test_set_device_params_sends_params(make_link, connector):
    connector.responder = reply_ok()
    link = make_link()
    await link.connect()

    response = await link.set_device_params({"fanpower": 50})

    assert response.ok
    assert connector.last.sent[0]["params"] == {"fanpower": 50}


@pytest.mark.asyncio
async def test_fire_and_forget_request(make_link, connector):
    link = make_link()
    await link.connect()

    result = await link.send_request("rebootDevice", expect_response=False)

    assert result is None
    assert connector.last.sent_commands() == ["rebootDevice"]
    assert link.pending_requests == frozenset()


@pytest.mark.asyncio
async def test_push_emits_data(make_link, connector):
    link = make_link()
    data = record(link, LinkEvent.DATA)
    await link.connect()

    connector.last.push(
        {"command": "deviceParams", "status": "update", "data": {"fanpower": 40}}
    )

    await wait_until(lambda: data)
    assert data == [("update", {"fanpower": 40}, "deviceParams")]


@pytest.mark.asyncio
async def test_malformed_json_emits_error_and_link_survives(make_link, connector):
    connector.responder = reply_ok()
    link = make_link()
    errors = record(link, LinkEvent.ERROR)
    await link.connect()

    connector.last.push("{not json")
    await wait_until(lambda: errors)

    assert isinstance(errors[0][0], ProtocolError)
    assert errors[0][0].raw == "{not json"
    response = await link.get_device_state()
    assert response.ok


@pytest.mark.asyncio
async def test_failing_listener_does_not_break_dispatch(make_link, connector):
    link = make_link()

    def broken(*args):
        raise RuntimeError("boom")

    link.on(LinkEvent.DATA, broken)
    data = record(link, LinkEvent.DATA)
    await link.connect()

    connector.last.push({"command": "deviceState", "status": "update", "data": {}})

    await wait_until(lambda: data)


@pytest.mark.asyncio
async def test_async_listener_is_scheduled(make_link, connector):
    link = make_link()
    received = asyncio.Event()

    async def on_data(status, data, command):
        received.set()

    link.on(LinkEvent.DATA, on_data)
    await link.connect()
    connector.last.push({"command": "deviceParams", "status": "update", "data": {}})

    await asyncio.wait_for(received.wait(), 1)


@pytest.mark.asyncio
async def test_unsubscribe(make_link, connector):
    link = make_link()
    calls = []
    remove = link.on(LinkEvent.CONNECTED, lambda: calls.append("connected"))
    remove()

    await link.connect()

    assert calls == []


@pytest.mark.asyncio
async def test_close_triggers_reconnect(make_link, connector):
    link = make_link()
    closed = record(link, LinkEvent.CLOSED)
    connected = record(link, LinkEvent.CONNECTED)
    reconnected = record(link, LinkEvent.RECONNECTED)
    await link.connect()

    connector.last.drop(1006, "gone")

    await wait_until(lambda: reconnected)
    assert closed == [(1006, "gone")]
    assert len(connected) == 1
    assert len(connector.connections) == 2
    assert link.error_counter == 1
    assert link.state is LinkState.CONNECTED


@pytest.mark.asyncio
async def test_valid_message_resets_error_counter(make_link, connector):
    connector.responder = reply_ok()
    link = make_link()
    reconnected = record(link, LinkEvent.RECONNECTED)
    await link.connect()
    connector.last.drop()
    await wait_until(lambda: reconnected)
    assert link.error_counter == 1

    await link.get_device_state()

    assert link.error_counter == 0


@pytest.mark.asyncio
async def test_failed_connect_is_retried(make_link, connector):
    connector.failures = 2
    link = make_link()
    errors = record(link, LinkEvent.ERROR)
    closed = record(link, LinkEvent.CLOSED)
    connected = record(link, LinkEvent.CONNECTED)

    assert await link.connect() is False

    await wait_until(lambda: connected)
    assert len(connector.calls) == 3
    assert len(closed) == 2
    assert all(isinstance(err[0], TransportError) for err in errors)
    assert errors[0][0].code == 1006
    assert errors[0][0].reason == "Connection refused"
    assert link.error_counter == 2


@pytest.mark.asyncio
async def test_disconnect_stops_reconnecting(make_link, connector):
    link = make_link()
    closed = record(link, LinkEvent.CLOSED)
    await link.connect()

    await link.disconnect()

    assert closed == [(1000, "")]
    assert link.state is LinkState.DISCONNECTED
    assert not link.connected
    await asyncio.sleep(0.1)
    assert len(connector.calls) == 1


@pytest.mark.asyncio
async def test_forced_disconnect_aborts_transport(make_link, connector):
    link = make_link()
    closed = record(link, LinkEvent.CLOSED)
    await link.connect()

    await link.disconnect(force=True)

    assert closed == [(1006, "")]
    await asyncio.sleep(0.1)
    assert len(connector.calls) == 1


@pytest.mark.asyncio
async def test_disconnect_without_transport_is_noop(make_link):
    link = make_link()
    closed = record(link, LinkEvent.CLOSED)

    await link.disconnect()

    assert closed == []
    assert link.state is LinkState.DISCONNECTED


@pytest.mark.asyncio
async def test_disconnect_cancels_scheduled_reconnect(make_link, connector):
    link = make_link(reconnect_base_delay=0.2, reconnect_max_delay=0.2)
    closed = record(link, LinkEvent.CLOSED)
    await link.connect()
    connector.last.drop()
    await wait_until(lambda: closed)

    await link.disconnect()
    await asyncio.sleep(0.3)

    assert len(connector.calls) == 1


@pytest.mark.asyncio
async def test_pending_request_survives_disconnect_until_timeout(make_link, connector):
    link = make_link(request_timeout=0.1)
    await link.connect()
    request = asyncio.create_task(link.get_device_details())
    await wait_until(lambda: connector.last.sent)

    await link.disconnect()

    with pytest.raises(RequestTimeout):
        await request


@pytest.mark.asyncio
async def test_heartbeat_keeps_session_alive(make_link, connector):
    connector.responder = reply_ok()
    link = make_link(initial_heartbeat_delay=0.01, heartbeat_interval=0.01)
    await link.connect()

    await wait_until(lambda: connector.last.sent_commands().count("keepAlive") >= 3)

    assert connector.last.sent[0]["params"] == {"extend_session": True}


@pytest.mark.asyncio
async def test_heartbeat_stops_on_error_status(make_link, connector):
    connector.responder = reply_ok(status_by_command={"keepAlive": "unauthorized"})
    link = make_link(initial_heartbeat_delay=0.01, heartbeat_interval=0.01)
    errors = record(link, LinkEvent.ERROR)
    await link.connect()

    await wait_until(lambda: errors)
    await asyncio.sleep(0.05)

    assert isinstance(errors[0][0], ApiError)
    assert errors[0][0].status == "unauthorized"
    assert connector.last.sent_commands().count("keepAlive") == 1
    assert link.connected


@pytest.mark.asyncio
async def test_heartbeat_stops_on_timeout(make_link, connector):
    link = make_link(
        initial_heartbeat_delay=0.01, heartbeat_interval=0.01, request_timeout=0.02
    )
    errors = record(link, LinkEvent.ERROR)
    await link.connect()

    await wait_until(lambda: errors)
    await asyncio.sleep(0.05)

    assert isinstance(errors[0][0], RequestTimeout)
    assert connector.last.sent_commands() == ["keepAlive"]


@pytest.mark.asyncio
async def test_link_against_simulator(simulator):
    link = DeviceLink(
        "127.0.0.1", simulator.port, "ws", initial_heartbeat_delay=60
    )
    closed = asyncio.Event()
    link.on(LinkEvent.CLOSED, lambda code, reason: closed.set())
    try:
        assert await link.connect()
        login = await link.login_user("testuser", "testpass")
        assert login.ok
        assert login.data["token"] == "test-token-12345"
        assert login.data["user"] == "testuser"

        info = await link.get_device_info()
        assert info.data["type"] == 5

        logout = await link.logout()
        assert logout.status == "unauthorized"
    finally:
        await link.disconnect()
    assert closed.is_set()
