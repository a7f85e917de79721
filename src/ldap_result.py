"""
ldap_result.py - LDAPResult Classification

Turns the LDAPResult carried by a response (resultCode, matchedDN,
diagnosticMessage) into an LDAPError value, and builds the client-side
errors the connection and operations report.

    LDAPResult ::= SEQUENCE {
        resultCode         ENUMERATED,
        matchedDN          LDAPDN,
        diagnosticMessage  LDAPString,
        referral           [3] Referral OPTIONAL }

Version: 1.0.0
"""

from typing import Iterable, Optional

from ber import CLASS_APPLICATION, TYPE_CONSTRUCTED, Packet
from ldap_types import RESULT_CODE_TEXT, LDAPError, LDAPResultCode


def result_code_text(code: int) -> str:
    """Human readable name of a result code, "Unknown" if not recognized."""
    return RESULT_CODE_TEXT.get(code, "Unknown")


def new_error(result_code: int, message: str, matched_dn: str = "") -> LDAPError:
    try:
        result_code = LDAPResultCode(result_code)
    except ValueError:
        pass  # keep codes this client does not know as plain ints
    return LDAPError(result_code=result_code, message=message, matched_dn=matched_dn)


def is_error_with_code(err: Optional[LDAPError], code: int) -> bool:
    return err is not None and err.result_code == code


def is_error_any_of(err: Optional[LDAPError], codes: Iterable[int]) -> bool:
    return err is not None and err.result_code in set(codes)


def _as_string(packet: Packet) -> str:
    if isinstance(packet.value, str):
        return packet.value
    return packet.data.decode("utf-8", errors="replace")


def get_ldap_error(packet: Optional[Packet]) -> Optional[LDAPError]:
    """
    Classify the LDAPResult of a full LDAPMessage.

    Args:
        packet: Decoded LDAPMessage (messageID, protocolOp, ...)

    Returns:
        None when resultCode is success, otherwise an LDAPError. A message
        that does not carry an LDAPResult yields ERROR_NETWORK, and an empty
        one ERROR_UNEXPECTED_RESPONSE.
    """
    if packet is None:
        return new_error(LDAPResultCode.ERROR_UNEXPECTED_RESPONSE, "empty packet")

    if len(packet.children) >= 2:
        response = packet.children[1]
        if (response.tag_class == CLASS_APPLICATION
                and response.tag_type == TYPE_CONSTRUCTED
                and len(response.children) >= 3):
            result_code = response.children[0].value
            if not isinstance(result_code, int):
                return new_error(LDAPResultCode.ERROR_MALFORMED_RESPONSE, "resultCode is not an integer")
            if result_code == LDAPResultCode.SUCCESS:
                return None
            return new_error(
                result_code,
                _as_string(response.children[2]),
                matched_dn=_as_string(response.children[1]),
            )

    return new_error(LDAPResultCode.ERROR_NETWORK, "invalid packet format")
