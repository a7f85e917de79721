"""
passwd_modify.py - Password Modify Extended Operation (RFC 3062)

Builds the ExtendedRequest for a password change, sends it over an
LDAPConnection and interprets the ExtendedResponse, including referrals and
server generated passwords.

Version: 1.0.0

Request payload:
    ExtendedRequest ::= [APPLICATION 23] SEQUENCE {
        requestName   [0] LDAPOID,                  -- 1.3.6.1.4.1.4203.1.11.1
        requestValue  [1] OCTET STRING OPTIONAL }   -- PasswdModifyRequestValue

    PasswdModifyRequestValue ::= SEQUENCE {
        userIdentity  [0] OCTET STRING OPTIONAL
        oldPasswd     [1] OCTET STRING OPTIONAL
        newPasswd     [2] OCTET STRING OPTIONAL }

Response payload:
    ExtendedResponse ::= [APPLICATION 24] SEQUENCE {
        COMPONENTS OF LDAPResult,
        responseName   [10] LDAPOID OPTIONAL,
        responseValue  [11] OCTET STRING OPTIONAL } -- PasswdModifyResponseValue

    PasswdModifyResponseValue ::= SEQUENCE {
        genPasswd     [0] OCTET STRING OPTIONAL }

Functions:
    new_password_modify_request(user_identity, old_password, new_password)
    encode_password_modify_request(request)         -> Packet
    decode_password_modify_response(packet)         -> (error, result)
    password_modify(conn, request)                  -> (error, result)
"""

from typing import Optional, Tuple

import ber
from ber import CLASS_APPLICATION, CLASS_CONTEXT, CLASS_UNIVERSAL, TYPE_CONSTRUCTED, TYPE_PRIMITIVE, Packet
from connection import LDAPConnection, finish_message, next_message_id, send_message, wait_for_response
from ldap_result import get_ldap_error, is_error_with_code, new_error
from ldap_types import (
    ApplicationTag,
    BerErrorCode,
    LDAPError,
    LDAPResultCode,
    PasswordModifyRequest,
    PasswordModifyResult,
    ResponseValueKind,
)
from logger import log_debug, log_error, log_warning


# ============================================================================
# CONSTANTS
# ============================================================================

PASSWORD_MODIFY_OID = "1.3.6.1.4.1.4203.1.11.1"

# ExtendedRequest components
TAG_REQUEST_NAME = 0
TAG_REQUEST_VALUE = 1

# PasswdModifyRequestValue fields, in encoding order
TAG_USER_IDENTITY = 0
TAG_OLD_PASSWORD = 1
TAG_NEW_PASSWORD = 2

# ExtendedResponse components
TAG_REFERRAL = 3
TAG_RESPONSE_NAME = 10
TAG_RESPONSE_VALUE = 11

# PasswdModifyResponseValue fields
TAG_GENERATED_PASSWORD = 0

# Module context for logging
PWMOD_CONTEXT = "PasswdModify"


# ============================================================================
# REQUEST
# ============================================================================

def new_password_modify_request(
    user_identity: Optional[str] = None,
    old_password: Optional[str] = None,
    new_password: Optional[str] = None
) -> PasswordModifyRequest:
    """
    Create a PasswordModifyRequest.

    user_identity left empty acts on the user bound to the session.
    old_password may be required depending on the caller's rights and the
    server's password policy (an administrator usually can skip it).
    new_password left empty asks the server to generate a password, which
    is then returned in PasswordModifyResult.generated_password; servers
    that do not generate passwords answer with an error instead.
    """
    return PasswordModifyRequest(
        user_identity=user_identity,
        old_password=old_password,
        new_password=new_password,
    )


def encode_password_modify_request(request: PasswordModifyRequest) -> Packet:
    """
    Build the [APPLICATION 23] ExtendedRequest for a password change.

    Fields that are None or empty are omitted entirely; the ones present
    always appear in identity, old password, new password order.
    """
    extended_request = ber.encode_packet(
        CLASS_APPLICATION, TYPE_CONSTRUCTED, ApplicationTag.EXTENDED_REQUEST, None,
        "Password Modify Extended Operation"
    )
    ber.append_child(extended_request, ber.new_string(
        CLASS_CONTEXT, TYPE_PRIMITIVE, TAG_REQUEST_NAME, PASSWORD_MODIFY_OID,
        "Extended Request Name: Password Modify OID"
    ))

    request_value = ber.encode_packet(
        CLASS_CONTEXT, TYPE_PRIMITIVE, TAG_REQUEST_VALUE, None,
        "Extended Request Value: Password Modify Request"
    )
    sequence = ber.new_sequence("Password Modify Request")

    fields = (
        (TAG_USER_IDENTITY, request.user_identity, "User Identity"),
        (TAG_OLD_PASSWORD, request.old_password, "Old Password"),
        (TAG_NEW_PASSWORD, request.new_password, "New Password"),
    )
    for tag_number, value, description in fields:
        if value:
            ber.append_child(sequence, ber.new_string(
                CLASS_CONTEXT, TYPE_PRIMITIVE, tag_number, value, description
            ))

    ber.append_child(request_value, sequence)
    ber.append_child(extended_request, request_value)
    return extended_request


# ============================================================================
# RESPONSE
# ============================================================================

def _find_child(packet: Packet, tag_number: int) -> Optional[Packet]:
    for child in packet.children:
        if child.tag == tag_number and child.tag_class != CLASS_UNIVERSAL:
            return child
    return None


def _referral_uri(extended_response: Packet) -> str:
    """First URI of the [3] Referral component, or "" if there is none."""
    referral = _find_child(extended_response, TAG_REFERRAL)
    if referral is None or not referral.children:
        return ""
    uri = referral.children[0]
    if isinstance(uri.value, str):
        return uri.value
    return ber.decode_string(uri.data)


def decode_response_value(
    extended_response: Packet
) -> Tuple[Optional[LDAPError], ResponseValueKind, str]:
    """
    Decode the optional [11] responseValue of a successful response.

    Returns:
        (error, kind, generated password). kind is ABSENT when there is no
        responseValue, PRESENT_NO_PASSWORD when it is well formed but holds
        no single [0] genPasswd, PRESENT_WITH_PASSWORD otherwise. Content
        that is not valid BER is an ERROR_MALFORMED_RESPONSE error.
    """
    response_value = _find_child(extended_response, TAG_RESPONSE_VALUE)
    if response_value is None:
        return None, ResponseValueKind.ABSENT, ""

    err, value_packet = ber.decode_packet(response_value.data)
    if err != BerErrorCode.SUCCESS:
        return new_error(
            LDAPResultCode.ERROR_MALFORMED_RESPONSE,
            f"invalid password modify response value: {err.name}"
        ), ResponseValueKind.ABSENT, ""

    if len(value_packet.children) == 1 and value_packet.children[0].tag == TAG_GENERATED_PASSWORD:
        password = ber.decode_string(value_packet.children[0].data)
        return None, ResponseValueKind.PRESENT_WITH_PASSWORD, password

    return None, ResponseValueKind.PRESENT_NO_PASSWORD, ""


def decode_password_modify_response(
    packet: Packet,
    logger_handle: Optional[object] = None
) -> Tuple[Optional[LDAPError], Optional[PasswordModifyResult]]:
    """
    Interpret the LDAPMessage answering a password modify request.

    Args:
        packet: Full decoded LDAPMessage (messageID, protocolOp)
        logger_handle: Optional logger handle

    Returns:
        (None, result) on success. On a referral, the error comes back
        together with a result whose referral field holds the URI. Any
        other failure returns (error, None).
    """
    if packet is None or len(packet.children) < 2:
        log_error(logger_handle, PWMOD_CONTEXT, "Password modify failed", "malformed response message")
        return new_error(LDAPResultCode.ERROR_MALFORMED_RESPONSE, "response has no protocolOp"), None

    extended_response = packet.children[1]
    if (extended_response.tag_class != CLASS_APPLICATION
            or extended_response.tag != ApplicationTag.EXTENDED_RESPONSE):
        log_error(
            logger_handle, PWMOD_CONTEXT,
            "Password modify failed", f"unexpected response tag {extended_response.tag}"
        )
        return new_error(
            LDAPResultCode.ERROR_UNEXPECTED_RESPONSE,
            f"unexpected response: {extended_response.tag}"
        ), None

    err = get_ldap_error(packet)
    if is_error_with_code(err, LDAPResultCode.REFERRAL):
        result = PasswordModifyResult(referral=_referral_uri(extended_response))
        log_warning(logger_handle, PWMOD_CONTEXT, f"Password modify referred to {result.referral!r}")
        return err, result
    if err is not None:
        log_error(logger_handle, PWMOD_CONTEXT, "Password modify failed", str(err))
        return err, None

    # RFC 3062 servers leave responseName out; note it when one is sent
    response_name = _find_child(extended_response, TAG_RESPONSE_NAME)
    if response_name is not None:
        log_debug(
            logger_handle, PWMOD_CONTEXT,
            f"Response carries responseName {ber.decode_string(response_name.data)!r}"
        )

    err, kind, password = decode_response_value(extended_response)
    if err is not None:
        log_error(logger_handle, PWMOD_CONTEXT, "Password modify failed", err.message)
        return err, None

    log_debug(logger_handle, PWMOD_CONTEXT, f"Password modify succeeded ({kind.name})")
    return None, PasswordModifyResult(generated_password=password)


# ============================================================================
# OPERATION
# ============================================================================

def password_modify(
    conn: LDAPConnection,
    request: PasswordModifyRequest
) -> Tuple[Optional[LDAPError], Optional[PasswordModifyResult]]:
    """
    Perform a password modify request and wait for its response.

    Returns:
        Same contract as decode_password_modify_response; a connection that
        closes before the response arrives gives ERROR_NETWORK.

    Example:
        err, result = password_modify(conn, new_password_modify_request(
            "uid=jdoe,ou=People,dc=example,dc=org", "OldPass1", ""))
        if err is None:
            print(result.generated_password)
    """
    message = ber.new_sequence("LDAP Request")
    ber.append_child(message, ber.new_integer(
        CLASS_UNIVERSAL, TYPE_PRIMITIVE, ber.TAG_INTEGER, next_message_id(conn), "MessageID"
    ))
    ber.append_child(message, encode_password_modify_request(request))

    err, ctx = send_message(conn, message)
    if err is not None:
        return err, None

    try:
        err, response = wait_for_response(conn, ctx)
    finally:
        finish_message(conn, ctx)

    if err is not None:
        log_error(conn.logger_handle, PWMOD_CONTEXT, "Password modify failed", err.message)
        return err, None

    return decode_password_modify_response(response, conn.logger_handle)
