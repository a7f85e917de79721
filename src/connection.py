"""
connection.py - LDAP Connection and Response Correlation

Owns the TCP socket to a directory server, allocates message IDs and routes
every incoming LDAPMessage to the request that is waiting for it.

Each outstanding request gets a MessageContext holding a one-shot Future.
A background reader thread parses messages off the socket and completes the
Future registered under the message's ID. When the stream ends or the
connection is closed, every outstanding Future is completed with None so
waiters wake up and report a network error.

Version: 1.0.0

Usage:
    err, conn = connect(ServerInfo("ldap.example.org", 389), config)
    msg_id = next_message_id(conn)
    err, ctx = send_message(conn, packet)
    try:
        err, response = wait_for_response(conn, ctx)
    finally:
        finish_message(conn, ctx)
    close(conn)
"""

import socket as sock_module
import threading
import time
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from ber import TAG_SEQUENCE, BerErrorCode, Packet, format_packet, packet_bytes, read_packet
from ldap_result import new_error
from ldap_types import LDAPError, LDAPResultCode, NetworkConfig
from logger import log_debug, log_error, log_info, log_warning


# ============================================================================
# CONSTANTS
# ============================================================================

# MessageID ::= INTEGER (0 .. maxInt); 0 is reserved for unsolicited notifications
MAX_MESSAGE_ID = 2 ** 31 - 1

READER_JOIN_TIMEOUT_SEC = 5.0

# Module context for logging
CONN_CONTEXT = "LdapConn"


# ============================================================================
# DATA STRUCTURES
# ============================================================================

@dataclass
class ServerInfo:
    host: str
    port: int = 389


@dataclass
class MessageContext:
    """Single-slot response handoff for one outstanding request."""
    message_id: int
    response: Future = field(default_factory=Future)


@dataclass
class LDAPConnection:
    """
    An open connection. Fields prefixed with _ are guarded by mutex;
    send_mutex serializes writes to the socket.
    """
    socket: Optional[sock_module.socket] = None
    server: Optional[ServerInfo] = None
    config: NetworkConfig = field(default_factory=NetworkConfig)
    logger_handle: Optional[object] = None
    debug_packets: bool = False
    connected: bool = False
    closing: bool = False
    mutex: threading.Lock = field(default_factory=threading.Lock)
    send_mutex: threading.Lock = field(default_factory=threading.Lock)
    reader: Optional[threading.Thread] = None
    _next_message_id: int = 0
    _pending: Dict[int, MessageContext] = field(default_factory=dict)


# ============================================================================
# INTERNAL HELPERS
# ============================================================================

def _server_label(conn: LDAPConnection) -> str:
    if conn.server is None:
        return "<socket>"
    return f"{conn.server.host}:{conn.server.port}"


def _fail_pending(conn: LDAPConnection, reason: str) -> None:
    """Close every outstanding response slot without a value."""
    # Slots are only completed under conn.mutex, so done() cannot go stale
    with conn.mutex:
        pending = list(conn._pending.values())
        conn._pending.clear()
        conn.connected = False
        for ctx in pending:
            if not ctx.response.done():
                ctx.response.set_result(None)

    if pending:
        log_debug(
            conn.logger_handle, CONN_CONTEXT,
            f"Closed {len(pending)} pending response slot(s): {reason}"
        )


def _dispatch(conn: LDAPConnection, packet: Packet) -> None:
    """Route one received LDAPMessage to its waiting request."""
    if (packet.tag != TAG_SEQUENCE or len(packet.children) < 2
            or not isinstance(packet.children[0].value, int)):
        log_warning(conn.logger_handle, CONN_CONTEXT, "Dropping message that is not an LDAPMessage")
        return

    message_id = packet.children[0].value
    if conn.debug_packets:
        log_debug(conn.logger_handle, CONN_CONTEXT, f"{message_id}: received\n{format_packet(packet)}")

    with conn.mutex:
        ctx = conn._pending.get(message_id)
        duplicate = ctx is not None and ctx.response.done()
        if ctx is not None and not duplicate:
            ctx.response.set_result(packet)

    if ctx is None:
        if message_id == 0:
            log_warning(conn.logger_handle, CONN_CONTEXT, "Received unsolicited notification")
        else:
            log_warning(
                conn.logger_handle, CONN_CONTEXT,
                f"Received response for unknown message id {message_id}"
            )
        return

    # One response per slot; a second message for the same id is ignored
    if duplicate:
        log_warning(
            conn.logger_handle, CONN_CONTEXT,
            f"Ignoring extra response for message id {message_id}"
        )


def _reader_loop(conn: LDAPConnection) -> None:
    """Reader thread body: parse messages until the stream ends."""
    reason = "connection closed"
    while True:
        err, packet = read_packet(conn.socket, conn.config.max_message_size)
        if err != BerErrorCode.SUCCESS:
            if conn.closing or err == BerErrorCode.ERR_CONNECTION_CLOSED:
                log_debug(conn.logger_handle, CONN_CONTEXT, f"Reader stopped for {_server_label(conn)}")
            else:
                reason = f"read failed: {err.name}"
                log_error(
                    conn.logger_handle, CONN_CONTEXT,
                    "Reading from server failed", f"{_server_label(conn)}: {err.name}"
                )
            break
        _dispatch(conn, packet)

    _fail_pending(conn, reason)


# ============================================================================
# PUBLIC API
# ============================================================================

def open_connection(
    sock: sock_module.socket,
    server_info: Optional[ServerInfo] = None,
    config: Optional[NetworkConfig] = None,
    logger_handle: Optional[object] = None,
    debug_packets: bool = False
) -> LDAPConnection:
    """
    Wrap an already connected stream socket and start its reader thread.
    """
    sock.settimeout(None)
    conn = LDAPConnection(
        socket=sock,
        server=server_info,
        config=config or NetworkConfig(),
        logger_handle=logger_handle,
        debug_packets=debug_packets,
        connected=True,
    )
    conn.reader = threading.Thread(
        target=_reader_loop,
        args=(conn,),
        name="LdapReader",
        daemon=True,
    )
    conn.reader.start()
    return conn


def connect(
    server_info: ServerInfo,
    config: Optional[NetworkConfig] = None,
    logger_handle: Optional[object] = None,
    debug_packets: bool = False
) -> Tuple[Optional[LDAPError], Optional[LDAPConnection]]:
    """
    Open a TCP connection with exponential-backoff retries.

    Args:
        server_info: Directory server host and port
        config: Timeouts and retry settings (defaults if None)
        logger_handle: Optional logger handle
        debug_packets: Log a tree dump of every message sent and received

    Returns:
        Tuple of (None, LDAPConnection) on success, or an ERROR_NETWORK
        LDAPError and None once every attempt has failed.
    """
    cfg = config or NetworkConfig()
    attempts = max(1, cfg.max_retries)
    last_reason = ""

    for attempt in range(attempts):
        try:
            sock = sock_module.create_connection(
                (server_info.host, server_info.port),
                timeout=cfg.connect_timeout_ms / 1000.0,
            )
        except OSError as e:
            last_reason = str(e)
            if attempt < attempts - 1:
                backoff = cfg.retry_backoff_ms * (2 ** attempt) / 1000.0
                log_warning(
                    logger_handle, CONN_CONTEXT,
                    f"Connection to {server_info.host}:{server_info.port} failed "
                    f"(attempt {attempt + 1}/{attempts}): {e}, retrying in {backoff:.1f}s"
                )
                time.sleep(backoff)
            continue

        log_info(logger_handle, CONN_CONTEXT, f"Connected to {server_info.host}:{server_info.port}")
        return None, open_connection(sock, server_info, cfg, logger_handle, debug_packets)

    log_error(
        logger_handle, CONN_CONTEXT,
        "connect failed",
        f"all {attempts} attempts failed for {server_info.host}:{server_info.port}: {last_reason}"
    )
    return new_error(LDAPResultCode.ERROR_NETWORK, f"unable to connect: {last_reason}"), None


def next_message_id(conn: LDAPConnection) -> int:
    """Allocate the next message ID, wrapping back to 1 after maxInt."""
    with conn.mutex:
        conn._next_message_id += 1
        if conn._next_message_id > MAX_MESSAGE_ID:
            conn._next_message_id = 1
        return conn._next_message_id


def send_message(
    conn: LDAPConnection,
    packet: Packet
) -> Tuple[Optional[LDAPError], Optional[MessageContext]]:
    """
    Register a response slot for the packet's message ID and transmit it.

    The slot is registered before the bytes leave, so a fast response can
    never arrive ahead of its slot.

    Returns:
        Tuple of (error or None, MessageContext or None)
    """
    message_id = packet.children[0].value
    ctx = MessageContext(message_id=message_id)

    with conn.mutex:
        if not conn.connected:
            return new_error(LDAPResultCode.ERROR_NETWORK, "connection closed"), None
        if message_id in conn._pending:
            return new_error(
                LDAPResultCode.ERROR_UNEXPECTED_MESSAGE,
                f"message id {message_id} already in use"
            ), None
        conn._pending[message_id] = ctx

    if conn.debug_packets:
        log_debug(conn.logger_handle, CONN_CONTEXT, f"{message_id}: sending\n{format_packet(packet)}")

    try:
        data = packet_bytes(packet)
        with conn.send_mutex:
            conn.socket.sendall(data)
    except OSError as e:
        finish_message(conn, ctx)
        log_error(conn.logger_handle, CONN_CONTEXT, "send_message failed", f"message {message_id}: {e}")
        return new_error(LDAPResultCode.ERROR_NETWORK, f"send failed: {e}"), None

    log_debug(conn.logger_handle, CONN_CONTEXT, f"{message_id}: sent {len(data)} bytes")
    return None, ctx


def wait_for_response(
    conn: LDAPConnection,
    ctx: MessageContext,
    timeout_ms: Optional[int] = None
) -> Tuple[Optional[LDAPError], Optional[Packet]]:
    """
    Block until the response for ctx arrives or its slot is closed.

    Args:
        conn: Connection the request was sent on
        ctx: Context returned by send_message
        timeout_ms: Overrides config.request_timeout_ms; 0 waits forever

    Returns:
        Tuple of (None, response packet), or an ERROR_NETWORK error when the
        slot closed without a value or the wait timed out.
    """
    if timeout_ms is None:
        timeout_ms = conn.config.request_timeout_ms
    timeout = timeout_ms / 1000.0 if timeout_ms else None

    log_debug(conn.logger_handle, CONN_CONTEXT, f"{ctx.message_id}: waiting for response")
    try:
        packet = ctx.response.result(timeout=timeout)
    except FutureTimeoutError:
        log_warning(conn.logger_handle, CONN_CONTEXT, f"{ctx.message_id}: timed out after {timeout_ms}ms")
        return new_error(LDAPResultCode.ERROR_NETWORK, "timed out waiting for response"), None

    if packet is None:
        return new_error(LDAPResultCode.ERROR_NETWORK, "response channel closed"), None
    return None, packet


def finish_message(conn: LDAPConnection, ctx: MessageContext) -> None:
    """Release the response slot of a completed or abandoned request."""
    with conn.mutex:
        conn._pending.pop(ctx.message_id, None)


def pending_count(conn: LDAPConnection) -> int:
    with conn.mutex:
        return len(conn._pending)


def close(conn: Optional[LDAPConnection]) -> None:
    """
    Close the socket, wake every waiter with a closed slot and stop the
    reader thread.
    """
    if conn is None or conn.socket is None:
        return

    conn.closing = True
    try:
        conn.socket.shutdown(sock_module.SHUT_RDWR)
    except OSError:
        pass  # peer may already have closed its end
    conn.socket.close()

    _fail_pending(conn, "connection closed by client")

    if conn.reader is not None and conn.reader is not threading.current_thread():
        conn.reader.join(READER_JOIN_TIMEOUT_SEC)

    log_debug(conn.logger_handle, CONN_CONTEXT, f"Disconnected from {_server_label(conn)}")
