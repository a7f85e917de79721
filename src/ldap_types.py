"""
ldap_types.py - Shared Types for the LDAP Password Modify Client

Enums, error values, request/result structures and configuration dataclasses
used across the ber, connection, ldap_result and passwd_modify modules.

Version: 1.0.0

Sections:
    1. Enums (result codes, error codes, protocol tags)
    2. Operation types (PasswordModifyRequest, PasswordModifyResult, LDAPError)
    3. Configuration types
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import List, Optional


# ============================================================================
# 1. ENUMS
# ============================================================================

class LDAPResultCode(IntEnum):
    """
    LDAPResult resultCode values (RFC 4511 section 4.1.9) plus the
    client-side codes used for errors detected before a result is read.
    """
    SUCCESS = 0
    OPERATIONS_ERROR = 1
    PROTOCOL_ERROR = 2
    TIME_LIMIT_EXCEEDED = 3
    SIZE_LIMIT_EXCEEDED = 4
    COMPARE_FALSE = 5
    COMPARE_TRUE = 6
    AUTH_METHOD_NOT_SUPPORTED = 7
    STRONG_AUTH_REQUIRED = 8
    REFERRAL = 10
    ADMIN_LIMIT_EXCEEDED = 11
    UNAVAILABLE_CRITICAL_EXTENSION = 12
    CONFIDENTIALITY_REQUIRED = 13
    SASL_BIND_IN_PROGRESS = 14
    NO_SUCH_ATTRIBUTE = 16
    UNDEFINED_ATTRIBUTE_TYPE = 17
    INAPPROPRIATE_MATCHING = 18
    CONSTRAINT_VIOLATION = 19
    ATTRIBUTE_OR_VALUE_EXISTS = 20
    INVALID_ATTRIBUTE_SYNTAX = 21
    NO_SUCH_OBJECT = 32
    ALIAS_PROBLEM = 33
    INVALID_DN_SYNTAX = 34
    ALIAS_DEREFERENCING_PROBLEM = 36
    INAPPROPRIATE_AUTHENTICATION = 48
    INVALID_CREDENTIALS = 49
    INSUFFICIENT_ACCESS_RIGHTS = 50
    BUSY = 51
    UNAVAILABLE = 52
    UNWILLING_TO_PERFORM = 53
    LOOP_DETECT = 54
    NAMING_VIOLATION = 64
    OBJECT_CLASS_VIOLATION = 65
    NOT_ALLOWED_ON_NON_LEAF = 66
    NOT_ALLOWED_ON_RDN = 67
    ENTRY_ALREADY_EXISTS = 68
    OBJECT_CLASS_MODS_PROHIBITED = 69
    AFFECTS_MULTIPLE_DSAS = 71
    OTHER = 80

    # Client-side codes
    ERROR_NETWORK = 200
    ERROR_UNEXPECTED_MESSAGE = 204
    ERROR_UNEXPECTED_RESPONSE = 205
    ERROR_MALFORMED_RESPONSE = 207


RESULT_CODE_TEXT = {
    LDAPResultCode.SUCCESS: "Success",
    LDAPResultCode.OPERATIONS_ERROR: "Operations Error",
    LDAPResultCode.PROTOCOL_ERROR: "Protocol Error",
    LDAPResultCode.TIME_LIMIT_EXCEEDED: "Time Limit Exceeded",
    LDAPResultCode.SIZE_LIMIT_EXCEEDED: "Size Limit Exceeded",
    LDAPResultCode.COMPARE_FALSE: "Compare False",
    LDAPResultCode.COMPARE_TRUE: "Compare True",
    LDAPResultCode.AUTH_METHOD_NOT_SUPPORTED: "Auth Method Not Supported",
    LDAPResultCode.STRONG_AUTH_REQUIRED: "Strong Auth Required",
    LDAPResultCode.REFERRAL: "Referral",
    LDAPResultCode.ADMIN_LIMIT_EXCEEDED: "Admin Limit Exceeded",
    LDAPResultCode.UNAVAILABLE_CRITICAL_EXTENSION: "Unavailable Critical Extension",
    LDAPResultCode.CONFIDENTIALITY_REQUIRED: "Confidentiality Required",
    LDAPResultCode.SASL_BIND_IN_PROGRESS: "Sasl Bind In Progress",
    LDAPResultCode.NO_SUCH_ATTRIBUTE: "No Such Attribute",
    LDAPResultCode.UNDEFINED_ATTRIBUTE_TYPE: "Undefined Attribute Type",
    LDAPResultCode.INAPPROPRIATE_MATCHING: "Inappropriate Matching",
    LDAPResultCode.CONSTRAINT_VIOLATION: "Constraint Violation",
    LDAPResultCode.ATTRIBUTE_OR_VALUE_EXISTS: "Attribute Or Value Exists",
    LDAPResultCode.INVALID_ATTRIBUTE_SYNTAX: "Invalid Attribute Syntax",
    LDAPResultCode.NO_SUCH_OBJECT: "No Such Object",
    LDAPResultCode.ALIAS_PROBLEM: "Alias Problem",
    LDAPResultCode.INVALID_DN_SYNTAX: "Invalid DN Syntax",
    LDAPResultCode.ALIAS_DEREFERENCING_PROBLEM: "Alias Dereferencing Problem",
    LDAPResultCode.INAPPROPRIATE_AUTHENTICATION: "Inappropriate Authentication",
    LDAPResultCode.INVALID_CREDENTIALS: "Invalid Credentials",
    LDAPResultCode.INSUFFICIENT_ACCESS_RIGHTS: "Insufficient Access Rights",
    LDAPResultCode.BUSY: "Busy",
    LDAPResultCode.UNAVAILABLE: "Unavailable",
    LDAPResultCode.UNWILLING_TO_PERFORM: "Unwilling To Perform",
    LDAPResultCode.LOOP_DETECT: "Loop Detect",
    LDAPResultCode.NAMING_VIOLATION: "Naming Violation",
    LDAPResultCode.OBJECT_CLASS_VIOLATION: "Object Class Violation",
    LDAPResultCode.NOT_ALLOWED_ON_NON_LEAF: "Not Allowed On Non Leaf",
    LDAPResultCode.NOT_ALLOWED_ON_RDN: "Not Allowed On RDN",
    LDAPResultCode.ENTRY_ALREADY_EXISTS: "Entry Already Exists",
    LDAPResultCode.OBJECT_CLASS_MODS_PROHIBITED: "Object Class Mods Prohibited",
    LDAPResultCode.AFFECTS_MULTIPLE_DSAS: "Affects Multiple DSAs",
    LDAPResultCode.OTHER: "Other",
    LDAPResultCode.ERROR_NETWORK: "Network Error",
    LDAPResultCode.ERROR_UNEXPECTED_MESSAGE: "Unexpected Message",
    LDAPResultCode.ERROR_UNEXPECTED_RESPONSE: "Unexpected Response",
    LDAPResultCode.ERROR_MALFORMED_RESPONSE: "Malformed Response",
}


class BerErrorCode(IntEnum):
    """Error codes for BER encoding, decoding and stream reads."""
    SUCCESS = 0
    ERR_TRUNCATED = 1
    ERR_INDEFINITE_LENGTH = 2
    ERR_TOO_LARGE = 3
    ERR_INVALID_CONTENT = 4
    ERR_CONNECTION_CLOSED = 5
    ERR_RECEIVE_FAILED = 6


class ApplicationTag(IntEnum):
    """protocolOp CHOICE tags of LDAPMessage (application class)."""
    BIND_REQUEST = 0
    BIND_RESPONSE = 1
    UNBIND_REQUEST = 2
    SEARCH_REQUEST = 3
    SEARCH_RESULT_ENTRY = 4
    SEARCH_RESULT_DONE = 5
    MODIFY_REQUEST = 6
    MODIFY_RESPONSE = 7
    ADD_REQUEST = 8
    ADD_RESPONSE = 9
    DEL_REQUEST = 10
    DEL_RESPONSE = 11
    MODIFY_DN_REQUEST = 12
    MODIFY_DN_RESPONSE = 13
    COMPARE_REQUEST = 14
    COMPARE_RESPONSE = 15
    ABANDON_REQUEST = 16
    SEARCH_RESULT_REFERENCE = 19
    EXTENDED_REQUEST = 23
    EXTENDED_RESPONSE = 24
    INTERMEDIATE_RESPONSE = 25


class ResponseValueKind(IntEnum):
    """Outcome of decoding the optional responseValue of an ExtendedResponse."""
    ABSENT = 0
    PRESENT_NO_PASSWORD = 1
    PRESENT_WITH_PASSWORD = 2


# ============================================================================
# 2. OPERATION TYPES
# ============================================================================

@dataclass
class LDAPError:
    """
    An LDAP failure, either reported by the server in an LDAPResult or
    detected locally (network, unexpected or malformed response).
    """
    result_code: int
    message: str = ""
    matched_dn: str = ""

    def __str__(self) -> str:
        text = RESULT_CODE_TEXT.get(self.result_code, "Unknown")
        return f"LDAP Result Code {int(self.result_code)} \"{text}\": {self.message}"


@dataclass
class PasswordModifyRequest:
    """
    Password Modify extended request (RFC 3062).

    user_identity: user whose password changes; None or "" acts on the
        user bound to the session. May or may not be an LDAPDN.
    old_password: the user's current password, if the server requires it.
    new_password: the desired password; None or "" asks the server to
        generate one.
    """
    user_identity: Optional[str] = None
    old_password: Optional[str] = None
    new_password: Optional[str] = None


@dataclass
class PasswordModifyResult:
    """Server answer to a PasswordModifyRequest."""
    generated_password: str = ""
    referral: str = ""


# ============================================================================
# 3. CONFIGURATION TYPES
# ============================================================================

@dataclass
class ServerConfig:
    host: str = "127.0.0.1"
    port: int = 389


@dataclass
class NetworkConfig:
    """
    Timeouts and limits for the directory connection.
    request_timeout_ms of 0 waits for a response until the connection closes.
    """
    connect_timeout_ms: int = 5000
    request_timeout_ms: int = 0
    max_retries: int = 3
    retry_backoff_ms: int = 500  # doubled after every failed attempt
    max_message_size: int = 4 * 1024 * 1024


@dataclass
class LoggingConfig:
    path: str = "Data/ldap_client.log"
    level: str = "info"
    max_size_mb: int = 10
    backup_count: int = 3
    debug_packets: bool = False


@dataclass
class ClientConfig:
    """Top-level configuration object."""
    server: ServerConfig = field(default_factory=ServerConfig)
    network: NetworkConfig = field(default_factory=NetworkConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


@dataclass
class ValidationResult:
    valid: bool = True
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
