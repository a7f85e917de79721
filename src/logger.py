"""
logger.py - Logging for the LDAP Password Modify Client

Thread-safe, handle-based logger with buffered writes and numbered gzip
archive rotation. Every module logs through a handle it is given; passing
None as the handle makes every call a no-op, so library functions can take
an optional logger_handle without checking it.

Version: 1.0.0

Log Format:
    [2026-10-18 09:12:01.482] INFO  | LdapConn     | Connected to ldap.example.org:389
    [2026-10-18 09:12:01.519] ERROR | PasswdModify | Password modify failed | REASON: code 49

Functions:
    init_logger(log_path, ...)                 -> LoggerHandle or None
    parse_log_level(name)                      -> LogLevel
    log_debug / log_info / log_warning(handle, context, message)
    log_error(handle, context, message, reason=None)
    flush_log(handle)
    close_logger(handle)
"""

import gzip
import os
import shutil
import sys
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum
from typing import Optional, TextIO


# ============================================================================
# CONSTANTS
# ============================================================================

DEFAULT_MAX_FILE_SIZE = 10 * 1024 * 1024
DEFAULT_MAX_ARCHIVES = 3
DEFAULT_BUFFER_SIZE = 4096
CONTEXT_WIDTH = 12


class LogLevel(IntEnum):
    DEBUG = 0
    INFO = 1
    WARNING = 2
    ERROR = 3


LEVEL_NAMES = {
    LogLevel.DEBUG: "DEBUG",
    LogLevel.INFO: "INFO ",
    LogLevel.WARNING: "WARN ",
    LogLevel.ERROR: "ERROR",
}

# Names accepted in the [logging] level config key
LEVEL_BY_NAME = {
    "debug": LogLevel.DEBUG,
    "info": LogLevel.INFO,
    "warning": LogLevel.WARNING,
    "warn": LogLevel.WARNING,
    "error": LogLevel.ERROR,
}


# ============================================================================
# LOGGER HANDLE
# ============================================================================

@dataclass
class LoggerHandle:
    path: str
    file: Optional[TextIO] = None
    buffer: bytearray = field(default_factory=bytearray)
    buffer_size: int = DEFAULT_BUFFER_SIZE
    max_file_size: int = DEFAULT_MAX_FILE_SIZE
    max_archives: int = DEFAULT_MAX_ARCHIVES
    mutex: threading.Lock = field(default_factory=threading.Lock)
    min_level: LogLevel = LogLevel.INFO


# ============================================================================
# INTERNAL HELPERS
# ============================================================================

def _timestamp() -> str:
    now = datetime.now()
    return now.strftime("%Y-%m-%d %H:%M:%S.") + f"{now.microsecond // 1000:03d}"


def _format_context(context: str) -> str:
    return context[:CONTEXT_WIDTH].ljust(CONTEXT_WIDTH)


def _write_entry(
    handle: Optional[LoggerHandle],
    level: LogLevel,
    context: str,
    message: str,
    reason: Optional[str] = None
) -> None:
    """
    Format one entry and append it to the handle's buffer.

    ERROR entries flush immediately; other levels flush once the buffer
    reaches buffer_size.
    """
    if handle is None or handle.file is None or level < handle.min_level:
        return

    entry = f"[{_timestamp()}] {LEVEL_NAMES[level]} | {_format_context(context)} | {message}"
    if reason and level == LogLevel.ERROR:
        entry += f" | REASON: {reason}"
    entry += "\n"

    with handle.mutex:
        handle.buffer.extend(entry.encode("utf-8"))
        if level == LogLevel.ERROR or len(handle.buffer) >= handle.buffer_size:
            _flush_buffer(handle)


def _flush_buffer(handle: LoggerHandle) -> None:
    """Write the buffer to disk. Caller holds handle.mutex."""
    if handle.file is None or not handle.buffer:
        return

    try:
        handle.file.write(handle.buffer.decode("utf-8"))
        handle.file.flush()
        handle.buffer.clear()
        if os.path.getsize(handle.path) >= handle.max_file_size:
            _rotate(handle)
    except OSError as e:
        print(f"Logger write error: {e}", file=sys.stderr)


def _rotate(handle: LoggerHandle) -> None:
    """
    Rotate client.log -> client.log.1.gz -> client.log.2.gz ...
    keeping at most max_archives archives. Caller holds handle.mutex.
    """
    handle.file.close()
    handle.file = None

    try:
        oldest = f"{handle.path}.{handle.max_archives}.gz"
        if os.path.exists(oldest):
            os.remove(oldest)
        for i in range(handle.max_archives - 1, 0, -1):
            src = f"{handle.path}.{i}.gz"
            if os.path.exists(src):
                os.replace(src, f"{handle.path}.{i + 1}.gz")

        if handle.max_archives > 0:
            with open(handle.path, "rb") as f_in, gzip.open(f"{handle.path}.1.gz", "wb") as f_out:
                shutil.copyfileobj(f_in, f_out)
        os.remove(handle.path)
    except OSError as e:
        print(f"Logger rotation error: {e}", file=sys.stderr)
    finally:
        handle.file = open(handle.path, "a", encoding="utf-8")


# ============================================================================
# PUBLIC API
# ============================================================================

def parse_log_level(name: str, default: LogLevel = LogLevel.INFO) -> LogLevel:
    """Map a config level name ("debug", "info", ...) to a LogLevel."""
    if not name:
        return default
    return LEVEL_BY_NAME.get(name.strip().lower(), default)


def init_logger(
    log_path: str,
    max_file_size: int = DEFAULT_MAX_FILE_SIZE,
    max_archives: int = DEFAULT_MAX_ARCHIVES,
    buffer_size: int = DEFAULT_BUFFER_SIZE,
    min_level: LogLevel = LogLevel.INFO
) -> Optional[LoggerHandle]:
    """
    Open log_path for appending and return a handle, or None if the file
    cannot be opened.

    Example:
        handle = init_logger("Data/ldap_client.log", min_level=LogLevel.DEBUG)
        log_info(handle, "Main", "starting")
        close_logger(handle)
    """
    try:
        parent_dir = os.path.dirname(log_path)
        if parent_dir:
            os.makedirs(parent_dir, exist_ok=True)
        file_handle = open(log_path, "a", encoding="utf-8")
    except OSError as e:
        print(f"Failed to initialize logger: {e}", file=sys.stderr)
        return None

    file_handle.write(f"=== Logger initialized: {_timestamp()} ===\n")
    file_handle.flush()

    return LoggerHandle(
        path=log_path,
        file=file_handle,
        buffer_size=buffer_size,
        max_file_size=max_file_size,
        max_archives=max_archives,
        min_level=min_level,
    )


def log_debug(handle: Optional[LoggerHandle], context: str, message: str) -> None:
    _write_entry(handle, LogLevel.DEBUG, context, message)


def log_info(handle: Optional[LoggerHandle], context: str, message: str) -> None:
    _write_entry(handle, LogLevel.INFO, context, message)


def log_warning(handle: Optional[LoggerHandle], context: str, message: str) -> None:
    _write_entry(handle, LogLevel.WARNING, context, message)


def log_error(
    handle: Optional[LoggerHandle],
    context: str,
    message: str,
    reason: Optional[str] = None
) -> None:
    """
    Log an error, appending "| REASON: {reason}" when a reason is given.
    The entry is flushed to disk before returning.
    """
    _write_entry(handle, LogLevel.ERROR, context, message, reason)


def flush_log(handle: Optional[LoggerHandle]) -> None:
    if handle is None:
        return
    with handle.mutex:
        _flush_buffer(handle)


def close_logger(handle: Optional[LoggerHandle]) -> None:
    """Flush, write the session end marker and close the file."""
    if handle is None:
        return

    with handle.mutex:
        _flush_buffer(handle)
        if handle.file is not None:
            try:
                handle.file.write(f"=== Logger closed: {_timestamp()} ===\n")
                handle.file.close()
            except OSError as e:
                print(f"Logger close error: {e}", file=sys.stderr)
        handle.file = None
