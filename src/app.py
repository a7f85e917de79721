#!/usr/bin/env python3
"""
app.py - Command Line Entry Point

Changes a password on a directory server with the Password Modify extended
operation.

Usage:
    python src/app.py --user "uid=jdoe,ou=People,dc=example,dc=org" --old
    python src/app.py --config config/ldap_client.toml --generate
    python src/app.py --host ldap.example.org --port 389 --debug

Passwords are always read from the terminal, never from arguments.

Exit codes:
    0  password changed
    1  configuration or connection problem (including a connection lost
       before the server answered)
    2  server refused the change (a referral URI is printed if one was sent)
"""

import argparse
import getpass
import os
import sys

from config import DEFAULT_CONFIG_FILENAME, load_config, open_logger, validate_config
from connection import ServerInfo, close, connect
from ldap_result import is_error_any_of, result_code_text
from ldap_types import ClientConfig, LDAPResultCode
from logger import close_logger, log_error, log_info
from passwd_modify import new_password_modify_request, password_modify


APP_NAME = "ldap-passwd"
APP_VERSION = "1.0.0"
APP_CONTEXT = "App"

# Failures of the connection itself rather than answers from the server
CONNECTION_ERRORS = (LDAPResultCode.ERROR_NETWORK, LDAPResultCode.ERROR_UNEXPECTED_MESSAGE)


def parse_arguments(argv=None):
    parser = argparse.ArgumentParser(
        prog=APP_NAME,
        description="Change a directory password (RFC 3062 Password Modify)",
    )
    parser.add_argument(
        "--config", "-c",
        default=None,
        help=f"Path to configuration file (default: {DEFAULT_CONFIG_FILENAME} if present)"
    )
    parser.add_argument("--host", default=None, help="Directory server host (overrides config)")
    parser.add_argument("--port", "-p", type=int, default=None, help="Directory server port (overrides config)")
    parser.add_argument(
        "--user", "-u",
        default="",
        help="User identity whose password changes (default: the session user)"
    )
    parser.add_argument("--old", action="store_true", help="Prompt for the current password")
    parser.add_argument(
        "--generate", "-g",
        action="store_true",
        help="Do not send a new password; ask the server to generate one"
    )
    parser.add_argument("--debug", "-d", action="store_true", help="Enable debug logging and packet dumps")
    parser.add_argument("--version", "-v", action="version", version=f"{APP_NAME} {APP_VERSION}")
    return parser.parse_args(argv)


def _load(args) -> ClientConfig:
    config = None
    config_path = args.config
    if config_path is None and os.path.isfile(DEFAULT_CONFIG_FILENAME):
        config_path = DEFAULT_CONFIG_FILENAME
    if config_path is not None:
        config = load_config(config_path)
    if config is None:
        config = ClientConfig()

    if args.host:
        config.server.host = args.host
    if args.port is not None:
        config.server.port = args.port
    if args.debug:
        config.logging.level = "debug"
        config.logging.debug_packets = True
    return config


def _prompt_new_password() -> str:
    first = getpass.getpass("New password: ")
    second = getpass.getpass("Retype new password: ")
    if first != second:
        print("[ERROR] Passwords do not match", file=sys.stderr)
        return ""
    return first


def main(argv=None) -> int:
    args = parse_arguments(argv)
    config = _load(args)

    validation = validate_config(config)
    for warning in validation.warnings:
        print(f"[WARNING] {warning}", file=sys.stderr)
    if not validation.valid:
        for error in validation.errors:
            print(f"[ERROR] {error}", file=sys.stderr)
        return 1

    old_password = getpass.getpass("Current password: ") if args.old else ""
    new_password = ""
    if not args.generate:
        new_password = _prompt_new_password()
        if not new_password:
            return 1

    logger = open_logger(config)

    try:
        server = ServerInfo(config.server.host, config.server.port)
        err, conn = connect(server, config.network, logger, config.logging.debug_packets)
        if err is not None:
            print(f"[ERROR] {err}", file=sys.stderr)
            return 1

        try:
            request = new_password_modify_request(args.user, old_password, new_password)
            err, result = password_modify(conn, request)
        finally:
            close(conn)

        if is_error_any_of(err, CONNECTION_ERRORS):
            log_error(logger, APP_CONTEXT, "Password change failed", str(err))
            print(f"[ERROR] {err}", file=sys.stderr)
            return 1

        if err is not None:
            log_error(logger, APP_CONTEXT, "Password change refused", str(err))
            print(
                f"[ERROR] Server refused the change: {result_code_text(err.result_code)}"
                f" ({err.message or 'no diagnostic message'})",
                file=sys.stderr
            )
            if err.result_code == LDAPResultCode.REFERRAL and result is not None and result.referral:
                print(f"Referral: {result.referral}")
            return 2

        log_info(logger, APP_CONTEXT, f"Password changed for {args.user or '<session user>'}")
        if result.generated_password:
            print(f"Generated password: {result.generated_password}")
        else:
            print("Password changed")
        return 0
    finally:
        close_logger(logger)


if __name__ == "__main__":
    sys.exit(main())
