"""
test_connection.py - Tests for message ID allocation and response routing

Most tests run the connection against FakeDirectoryServer over a socket
pair; connect() is exercised against a local listening socket.

Run with: python -m pytest tests/test_connection.py -v
"""

import os
import socket
import sys
import threading
import typing
from concurrent.futures import Future

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))
sys.path.insert(0, os.path.abspath(os.path.dirname(__file__)))

import ber
from ber import CLASS_UNIVERSAL, TYPE_PRIMITIVE, TAG_INTEGER
from connection import (
    MAX_MESSAGE_ID,
    LDAPConnection,
    MessageContext,
    _dispatch,
    _fail_pending,
    ServerInfo,
    close,
    connect,
    finish_message,
    next_message_id,
    pending_count,
    send_message,
    wait_for_response,
)
from ldap_types import LDAPResultCode, NetworkConfig
from logger import flush_log
from passwd_modify import encode_password_modify_request, new_password_modify_request
from test_utils import as_received, build_extended_response


def _request(message_id: int):
    message = ber.new_sequence("LDAP Request")
    ber.append_child(message, ber.new_integer(CLASS_UNIVERSAL, TYPE_PRIMITIVE, TAG_INTEGER, message_id))
    ber.append_child(message, encode_password_modify_request(new_password_modify_request("u", "o", "n")))
    return message


def _reply(message_id: int, diagnostic: str = "") -> bytes:
    return ber.packet_bytes(build_extended_response(message_id, diagnostic=diagnostic))


def _read_log(handle) -> str:
    flush_log(handle)
    with open(handle.path, encoding="utf-8") as f:
        return f.read()


# ============================================================================
# MESSAGE IDS
# ============================================================================

def test_message_ids_start_at_one_and_increase():
    conn = LDAPConnection()
    assert [next_message_id(conn) for _ in range(3)] == [1, 2, 3]


def test_message_id_wraps_to_one():
    conn = LDAPConnection()
    conn._next_message_id = MAX_MESSAGE_ID - 1
    assert next_message_id(conn) == MAX_MESSAGE_ID
    assert next_message_id(conn) == 1


def test_message_ids_unique_across_threads():
    conn = LDAPConnection()
    seen = []
    lock = threading.Lock()

    def allocate():
        ids = [next_message_id(conn) for _ in range(200)]
        with lock:
            seen.extend(ids)

    threads = [threading.Thread(target=allocate) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(seen) == list(range(1, 801))


# ============================================================================
# ROUTING
# ============================================================================

@pytest.mark.integration
def test_responses_routed_by_message_id(fake_server):
    """Two outstanding requests answered in reverse order each get their own response."""
    def handler(request):
        if request.children[0].value == 1:
            return b""
        return _reply(2, "second") + _reply(1, "first")

    _, conn = fake_server(handler)

    err, first = send_message(conn, _request(1))
    assert err is None
    err, second = send_message(conn, _request(2))
    assert err is None

    err, response = wait_for_response(conn, first)
    assert err is None
    assert response.children[0].value == 1
    assert response.children[1].children[2].value == "first"

    err, response = wait_for_response(conn, second)
    assert err is None
    assert response.children[0].value == 2
    assert response.children[1].children[2].value == "second"

    finish_message(conn, first)
    finish_message(conn, second)
    assert pending_count(conn) == 0


@pytest.mark.integration
def test_unsolicited_and_unknown_messages_are_dropped(fake_server, logger_handle):
    def handler(request):
        message_id = request.children[0].value
        return _reply(0, "notice") + _reply(99) + _reply(message_id, "mine")

    _, conn = fake_server(handler, logger=logger_handle)

    err, ctx = send_message(conn, _request(5))
    assert err is None
    err, response = wait_for_response(conn, ctx, timeout_ms=5000)
    finish_message(conn, ctx)

    assert err is None
    assert response.children[1].children[2].value == "mine"

    log = _read_log(logger_handle)
    assert "unsolicited notification" in log
    assert "unknown message id 99" in log


@pytest.mark.integration
def test_duplicate_message_id_rejected(fake_server):
    _, conn = fake_server(lambda request: b"")

    err, ctx = send_message(conn, _request(7))
    assert err is None

    err, duplicate = send_message(conn, _request(7))
    assert duplicate is None
    assert err.result_code == LDAPResultCode.ERROR_UNEXPECTED_MESSAGE

    finish_message(conn, ctx)


# ============================================================================
# CLOSED AND SLOW CONNECTIONS
# ============================================================================

@pytest.mark.integration
def test_close_wakes_waiter(fake_server):
    _, conn = fake_server(lambda request: b"")

    err, ctx = send_message(conn, _request(1))
    assert err is None

    outcome = []
    waiter = threading.Thread(target=lambda: outcome.append(wait_for_response(conn, ctx)))
    waiter.start()
    close(conn)
    waiter.join(timeout=5)

    assert not waiter.is_alive()
    err, response = outcome[0]
    assert response is None
    assert err.result_code == LDAPResultCode.ERROR_NETWORK


@pytest.mark.integration
def test_server_close_fails_pending(fake_server):
    _, conn = fake_server(lambda request: None)

    err, ctx = send_message(conn, _request(1))
    assert err is None

    err, response = wait_for_response(conn, ctx, timeout_ms=5000)

    assert response is None
    assert err.result_code == LDAPResultCode.ERROR_NETWORK
    assert err.message == "response channel closed"


@pytest.mark.integration
def test_wait_times_out(fake_server):
    _, conn = fake_server(lambda request: b"")

    err, ctx = send_message(conn, _request(1))
    assert err is None

    err, response = wait_for_response(conn, ctx, timeout_ms=50)
    finish_message(conn, ctx)

    assert response is None
    assert err.result_code == LDAPResultCode.ERROR_NETWORK
    assert "timed out" in err.message


@pytest.mark.integration
def test_request_timeout_from_config(fake_server):
    _, conn = fake_server(lambda request: b"", config=NetworkConfig(request_timeout_ms=50))

    err, ctx = send_message(conn, _request(1))
    err, _ = wait_for_response(conn, ctx)
    finish_message(conn, ctx)

    assert err.result_code == LDAPResultCode.ERROR_NETWORK


@pytest.mark.integration
def test_send_after_close(fake_server):
    _, conn = fake_server(lambda request: b"")
    close(conn)

    err, ctx = send_message(conn, _request(1))

    assert ctx is None
    assert err.result_code == LDAPResultCode.ERROR_NETWORK


@pytest.mark.integration
def test_debug_packets_dump_tree(fake_server, logger_handle):
    _, conn = fake_server(
        lambda request: _reply(request.children[0].value),
        logger=logger_handle,
        debug_packets=True,
    )

    err, ctx = send_message(conn, _request(3))
    assert err is None
    err, _ = wait_for_response(conn, ctx, timeout_ms=5000)
    finish_message(conn, ctx)
    assert err is None

    log = _read_log(logger_handle)
    assert "3: sending" in log
    assert "3: received" in log
    assert '"LDAP Request"' in log


# ============================================================================
# CLOSE RACING A RESPONSE
# ============================================================================

class _InterleavingFuture(Future):
    """
    The first time done() is consulted, runs a hook after computing the
    answer, so the caller acts on a state another thread may have changed.
    """

    def __init__(self, hook):
        super().__init__()
        self._hook = hook

    def done(self):
        answer = super().done()
        hook, self._hook = self._hook, None
        if hook is not None:
            hook()
        return answer


def _start_concurrently(target, threads, errors):
    """Start target on a thread and give it a moment to run (or block)."""
    def run():
        try:
            target()
        except Exception as e:
            errors.append(e)

    thread = threading.Thread(target=run)
    thread.start()
    thread.join(timeout=0.2)
    threads.append(thread)


def test_response_arriving_while_close_fails_slots():
    conn = LDAPConnection(connected=True)
    packet = as_received(build_extended_response(1))
    threads, errors = [], []

    ctx = MessageContext(1, _InterleavingFuture(
        lambda: _start_concurrently(lambda: _dispatch(conn, packet), threads, errors)
    ))
    conn._pending[1] = ctx

    _fail_pending(conn, "connection closed by client")
    for thread in threads:
        thread.join(timeout=5)

    assert errors == []
    assert ctx.response.result(timeout=1) is None
    assert not conn.connected


def test_close_arriving_while_response_is_routed():
    conn = LDAPConnection(connected=True)
    packet = as_received(build_extended_response(1))
    threads, errors = [], []

    ctx = MessageContext(1, _InterleavingFuture(
        lambda: _start_concurrently(
            lambda: _fail_pending(conn, "connection closed by client"), threads, errors
        )
    ))
    conn._pending[1] = ctx

    _dispatch(conn, packet)
    for thread in threads:
        thread.join(timeout=5)

    assert errors == []
    assert ctx.response.result(timeout=1) is packet
    assert not conn.connected


def test_connection_fields_resolve():
    conn = LDAPConnection()
    assert conn.socket is None
    assert "socket" in typing.get_type_hints(LDAPConnection)


# ============================================================================
# CONNECT
# ============================================================================

@pytest.mark.integration
def test_connect_to_listening_socket():
    listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    listener.bind(("127.0.0.1", 0))
    listener.listen(1)
    port = listener.getsockname()[1]

    try:
        err, conn = connect(ServerInfo("127.0.0.1", port), NetworkConfig(max_retries=1))
        assert err is None
        assert conn.connected
        close(conn)
        assert not conn.connected
    finally:
        listener.close()


@pytest.mark.integration
def test_connect_failure_after_retries():
    # Grab a free port and release it so nothing is listening there
    probe = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    probe.bind(("127.0.0.1", 0))
    port = probe.getsockname()[1]
    probe.close()

    config = NetworkConfig(connect_timeout_ms=500, max_retries=2, retry_backoff_ms=1)
    err, conn = connect(ServerInfo("127.0.0.1", port), config)

    assert conn is None
    assert err.result_code == LDAPResultCode.ERROR_NETWORK
    assert err.message.startswith("unable to connect")
