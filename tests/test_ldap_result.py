"""
test_ldap_result.py - Tests for LDAPResult classification
"""

import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))
sys.path.insert(0, os.path.abspath(os.path.dirname(__file__)))

import ber
from ber import CLASS_UNIVERSAL, TYPE_PRIMITIVE, TAG_INTEGER
from ldap_result import get_ldap_error, is_error_any_of, is_error_with_code, new_error, result_code_text
from ldap_types import ApplicationTag, LDAPResultCode
from test_utils import as_received, build_extended_response


def test_success_has_no_error():
    packet = as_received(build_extended_response(1))
    assert get_ldap_error(packet) is None


def test_failure_carries_message_and_matched_dn():
    packet = as_received(build_extended_response(
        3,
        result_code=LDAPResultCode.INVALID_CREDENTIALS,
        matched_dn="ou=People,dc=example,dc=org",
        diagnostic="old password mismatch",
    ))

    err = get_ldap_error(packet)

    assert err is not None
    assert err.result_code == LDAPResultCode.INVALID_CREDENTIALS
    assert err.message == "old password mismatch"
    assert err.matched_dn == "ou=People,dc=example,dc=org"
    assert str(err) == 'LDAP Result Code 49 "Invalid Credentials": old password mismatch'


def test_any_protocol_op_with_ldap_result_is_classified():
    packet = as_received(build_extended_response(
        2, result_code=LDAPResultCode.BUSY, op_tag=ApplicationTag.MODIFY_RESPONSE
    ))
    assert is_error_with_code(get_ldap_error(packet), LDAPResultCode.BUSY)


def test_unknown_result_code_is_kept():
    packet = as_received(build_extended_response(2, result_code=4242))
    err = get_ldap_error(packet)
    assert err.result_code == 4242
    assert "Unknown" in str(err)


def test_packet_without_ldap_result_is_network_error():
    message = ber.new_sequence()
    ber.append_child(message, ber.new_integer(CLASS_UNIVERSAL, TYPE_PRIMITIVE, TAG_INTEGER, 1))
    err = get_ldap_error(as_received(message))
    assert err.result_code == LDAPResultCode.ERROR_NETWORK


def test_none_packet_is_unexpected_response():
    err = get_ldap_error(None)
    assert err.result_code == LDAPResultCode.ERROR_UNEXPECTED_RESPONSE


def test_error_helpers():
    err = new_error(LDAPResultCode.REFERRAL, "go elsewhere")
    assert is_error_with_code(err, LDAPResultCode.REFERRAL)
    assert not is_error_with_code(None, LDAPResultCode.REFERRAL)
    assert is_error_any_of(err, [LDAPResultCode.BUSY, LDAPResultCode.REFERRAL])
    assert not is_error_any_of(err, [LDAPResultCode.BUSY])
    assert str(new_error(LDAPResultCode.ERROR_NETWORK, "reset")) == 'LDAP Result Code 200 "Network Error": reset'
    assert result_code_text(LDAPResultCode.ERROR_NETWORK) == "Network Error"
    assert result_code_text(9999) == "Unknown"
