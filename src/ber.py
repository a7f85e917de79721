"""
ber.py - Generic BER Packet Tree

A schemaless tagged-binary tree used to build LDAP messages and to walk
the messages a server sends back. Each node carries its class, its
primitive/constructed flag, its tag number, an optional scalar value, its
raw content octets and its ordered children.

Scalar content coding (INTEGER, BOOLEAN, OCTET STRING, ...) and identifier
octets are delegated to pyasn1; this module only handles the tree shape and
the tag/length framing pyasn1 cannot decode without a schema.

Version: 1.0.0

Functions:
    encode_packet(tag_class, tag_type, tag, value, description) -> Packet
    new_string / new_integer / new_boolean / new_sequence        -> Packet
    append_child(parent, child)                                  -> None
    packet_bytes(packet)                                         -> bytes
    decode_packet(data)                       -> (BerErrorCode, Packet)
    decode_string(data)                                          -> str
    read_packet(sock, max_size)               -> (BerErrorCode, Packet)
    format_packet(packet)                                        -> str
"""

import socket
from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple

from pyasn1.codec.ber import decoder, encoder
from pyasn1.error import PyAsn1Error
from pyasn1.type import char, tag, univ

from ldap_types import BerErrorCode


# ============================================================================
# CONSTANTS
# ============================================================================

CLASS_UNIVERSAL = tag.tagClassUniversal
CLASS_APPLICATION = tag.tagClassApplication
CLASS_CONTEXT = tag.tagClassContext
CLASS_PRIVATE = tag.tagClassPrivate

TYPE_PRIMITIVE = tag.tagFormatSimple
TYPE_CONSTRUCTED = tag.tagFormatConstructed

# Universal tag numbers
TAG_EOC = 0x00
TAG_BOOLEAN = 0x01
TAG_INTEGER = 0x02
TAG_BIT_STRING = 0x03
TAG_OCTET_STRING = 0x04
TAG_NULL = 0x05
TAG_OBJECT_IDENTIFIER = 0x06
TAG_ENUMERATED = 0x0A
TAG_UTF8_STRING = 0x0C
TAG_SEQUENCE = 0x10
TAG_SET = 0x11

CLASS_NAMES = {
    CLASS_UNIVERSAL: "Universal",
    CLASS_APPLICATION: "Application",
    CLASS_CONTEXT: "Context",
    CLASS_PRIVATE: "Private",
}

TAG_NAMES = {
    TAG_EOC: "EOC",
    TAG_BOOLEAN: "Boolean",
    TAG_INTEGER: "Integer",
    TAG_BIT_STRING: "Bit String",
    TAG_OCTET_STRING: "Octet String",
    TAG_NULL: "NULL",
    TAG_OBJECT_IDENTIFIER: "Object Identifier",
    TAG_ENUMERATED: "Enumerated",
    TAG_UTF8_STRING: "UTF8 String",
    TAG_SEQUENCE: "Sequence and Sequence of",
    TAG_SET: "Set and Set OF",
}

# LDAP never needs more than this; deeper input is treated as hostile
MAX_DEPTH = 64

# Module context for logging
BER_CONTEXT = "BerCodec"


# ============================================================================
# DATA STRUCTURES
# ============================================================================

@dataclass
class Packet:
    """One node of a BER tree."""
    tag_class: int = CLASS_UNIVERSAL
    tag_type: int = TYPE_PRIMITIVE
    tag: int = 0
    value: Any = None
    data: bytes = b""
    children: List["Packet"] = field(default_factory=list)
    description: str = ""


# ============================================================================
# BUILDERS
# ============================================================================

def encode_packet(
    tag_class: int,
    tag_type: int,
    tag_number: int,
    value: Any = None,
    description: str = ""
) -> Packet:
    """
    Create a node. value may be None (container or empty content), a str,
    bytes, an int or a bool; data is filled from it.
    """
    packet = Packet(
        tag_class=tag_class,
        tag_type=tag_type,
        tag=tag_number,
        value=value,
        description=description,
    )
    if isinstance(value, str):
        packet.data = value.encode("utf-8")
    elif isinstance(value, (bytes, bytearray)):
        packet.data = bytes(value)
    return packet


def new_string(tag_class: int, tag_type: int, tag_number: int, value: str, description: str = "") -> Packet:
    return encode_packet(tag_class, tag_type, tag_number, value, description)


def new_integer(tag_class: int, tag_type: int, tag_number: int, value: int, description: str = "") -> Packet:
    return encode_packet(tag_class, tag_type, tag_number, int(value), description)


def new_boolean(tag_class: int, tag_type: int, tag_number: int, value: bool, description: str = "") -> Packet:
    return encode_packet(tag_class, tag_type, tag_number, bool(value), description)


def new_sequence(description: str = "") -> Packet:
    return encode_packet(CLASS_UNIVERSAL, TYPE_CONSTRUCTED, TAG_SEQUENCE, None, description)


def append_child(parent: Packet, child: Packet) -> None:
    parent.children.append(child)


# ============================================================================
# ENCODING
# ============================================================================

def _asn1_object(packet: Packet, content: Optional[bytes] = None):
    """
    Map a node onto a pyasn1 object carrying the node's own tag.

    content, when given, is used verbatim (children already encoded). The
    tag format bit is ORed into the identifier by pyasn1, so an OCTET
    STRING carrying a constructed tag encodes as a constructed node.
    """
    tag_set = tag.initTagSet(tag.Tag(packet.tag_class, packet.tag_type, packet.tag))

    if content is not None:
        return univ.OctetString(content, tagSet=tag_set)

    value = packet.value
    if isinstance(value, bool):
        return univ.Boolean(value, tagSet=tag_set)
    if isinstance(value, int):
        return univ.Integer(value, tagSet=tag_set)
    return univ.OctetString(packet.data, tagSet=tag_set)


def packet_bytes(packet: Packet) -> bytes:
    """
    Serialize a node and its subtree.

    A node with children encodes the concatenation of its children as its
    content, whatever its primitive/constructed flag says. LDAP relies on
    this for OCTET STRING values that wrap an encoded structure
    (ExtendedRequest requestValue).
    """
    if packet.children:
        content = b"".join(packet_bytes(child) for child in packet.children)
        return encoder.encode(_asn1_object(packet, content))
    return encoder.encode(_asn1_object(packet))


# ============================================================================
# DECODING
# ============================================================================

# Universal primitive types whose content is handed to pyasn1
_UNIVERSAL_SPECS = {
    TAG_BOOLEAN: univ.Boolean,
    TAG_INTEGER: univ.Integer,
    TAG_OCTET_STRING: univ.OctetString,
    TAG_NULL: univ.Null,
    TAG_OBJECT_IDENTIFIER: univ.ObjectIdentifier,
    TAG_ENUMERATED: univ.Enumerated,
    TAG_UTF8_STRING: char.UTF8String,
}


def _read_header(
    data: bytes,
    offset: int,
    limit: int
) -> Tuple[BerErrorCode, int, int, int, int, int]:
    """
    Parse identifier and length octets at offset, never reading past limit.

    Returns:
        (error code, tag_class, tag_type, tag_number, content_length, content_offset)
    """
    if offset >= limit:
        return BerErrorCode.ERR_TRUNCATED, 0, 0, 0, 0, offset

    first = data[offset]
    offset += 1
    tag_class = first & 0xC0
    tag_type = first & 0x20
    tag_number = first & 0x1F

    # High tag number form: base-128, high bit marks continuation
    if tag_number == 0x1F:
        tag_number = 0
        while True:
            if offset >= limit:
                return BerErrorCode.ERR_TRUNCATED, 0, 0, 0, 0, offset
            octet = data[offset]
            offset += 1
            tag_number = (tag_number << 7) | (octet & 0x7F)
            if not octet & 0x80:
                break

    if offset >= limit:
        return BerErrorCode.ERR_TRUNCATED, 0, 0, 0, 0, offset
    length = data[offset]
    offset += 1

    if length & 0x80:
        num_octets = length & 0x7F
        if num_octets == 0:
            return BerErrorCode.ERR_INDEFINITE_LENGTH, 0, 0, 0, 0, offset
        if num_octets > 8:
            return BerErrorCode.ERR_TOO_LARGE, 0, 0, 0, 0, offset
        if offset + num_octets > limit:
            return BerErrorCode.ERR_TRUNCATED, 0, 0, 0, 0, offset
        length = int.from_bytes(data[offset:offset + num_octets], "big")
        offset += num_octets

    return BerErrorCode.SUCCESS, tag_class, tag_type, tag_number, length, offset


def _universal_value(tag_number: int, tlv: bytes) -> Tuple[BerErrorCode, Any]:
    """Decode a universal primitive TLV into a Python value using pyasn1."""
    spec = _UNIVERSAL_SPECS.get(tag_number)
    if spec is None:
        return BerErrorCode.SUCCESS, None

    try:
        asn1_value, _ = decoder.decode(tlv, asn1Spec=spec())
    except PyAsn1Error:
        return BerErrorCode.ERR_INVALID_CONTENT, None

    if tag_number == TAG_BOOLEAN:
        return BerErrorCode.SUCCESS, bool(asn1_value)
    if tag_number in (TAG_INTEGER, TAG_ENUMERATED):
        return BerErrorCode.SUCCESS, int(asn1_value)
    if tag_number == TAG_NULL:
        return BerErrorCode.SUCCESS, None
    if tag_number == TAG_OBJECT_IDENTIFIER:
        return BerErrorCode.SUCCESS, str(asn1_value)
    return BerErrorCode.SUCCESS, decode_string(asn1_value.asOctets())


def _parse_packet(
    data: bytes,
    offset: int,
    limit: int,
    depth: int
) -> Tuple[BerErrorCode, Optional[Packet], int]:
    """Parse one node starting at offset; returns (code, packet, next offset)."""
    if depth > MAX_DEPTH:
        return BerErrorCode.ERR_TOO_LARGE, None, offset

    start = offset
    err, tag_class, tag_type, tag_number, length, offset = _read_header(data, offset, limit)
    if err != BerErrorCode.SUCCESS:
        return err, None, offset

    end = offset + length
    if end > limit:
        return BerErrorCode.ERR_TRUNCATED, None, offset

    packet = Packet(tag_class=tag_class, tag_type=tag_type, tag=tag_number, data=data[offset:end])

    if tag_type == TYPE_CONSTRUCTED:
        while offset < end:
            err, child, offset = _parse_packet(data, offset, end, depth + 1)
            if err != BerErrorCode.SUCCESS:
                return err, None, offset
            packet.children.append(child)
    elif tag_class == CLASS_UNIVERSAL:
        err, packet.value = _universal_value(tag_number, data[start:end])
        if err != BerErrorCode.SUCCESS:
            return err, None, offset

    return BerErrorCode.SUCCESS, packet, end


def decode_packet(data: bytes) -> Tuple[BerErrorCode, Optional[Packet]]:
    """
    Parse exactly one BER node from data.

    Universal primitives get a Python value (int, bool, str, None).
    Non-universal primitive nodes keep their content in data with value None;
    callers interpret it (decode_string for LDAP strings). Trailing bytes
    after the node are an error.

    Returns:
        Tuple of (error code, Packet or None)
    """
    data = bytes(data)
    err, packet, end = _parse_packet(data, 0, len(data), 0)
    if err != BerErrorCode.SUCCESS:
        return err, None
    if end != len(data):
        return BerErrorCode.ERR_INVALID_CONTENT, None
    return BerErrorCode.SUCCESS, packet


def decode_string(data: bytes) -> str:
    """Interpret content octets as an LDAP UTF-8 string."""
    return bytes(data).decode("utf-8", errors="replace")


# ============================================================================
# STREAM READ
# ============================================================================

def _recv_exact(sock: socket.socket, count: int) -> Tuple[BerErrorCode, bytes]:
    received = b""
    while len(received) < count:
        try:
            chunk = sock.recv(min(count - len(received), 65536))
        except OSError:
            return BerErrorCode.ERR_RECEIVE_FAILED, received
        if not chunk:
            return BerErrorCode.ERR_CONNECTION_CLOSED, received
        received += chunk
    return BerErrorCode.SUCCESS, received


def read_packet(sock: socket.socket, max_size: int = 0) -> Tuple[BerErrorCode, Optional[Packet]]:
    """
    Read one complete BER node from a stream socket and decode it.

    Args:
        sock: Connected stream socket
        max_size: Largest content length accepted (0 = unlimited)

    Returns:
        Tuple of (error code, Packet or None). ERR_CONNECTION_CLOSED means
        the peer closed the stream.
    """
    err, header = _recv_exact(sock, 1)
    if err != BerErrorCode.SUCCESS:
        return err, None

    if header[0] & 0x1F == 0x1F:
        while True:
            err, octet = _recv_exact(sock, 1)
            if err != BerErrorCode.SUCCESS:
                return err, None
            header += octet
            if not octet[0] & 0x80:
                break

    err, length_octet = _recv_exact(sock, 1)
    if err != BerErrorCode.SUCCESS:
        return err, None
    header += length_octet

    length = length_octet[0]
    if length & 0x80:
        num_octets = length & 0x7F
        if num_octets == 0:
            return BerErrorCode.ERR_INDEFINITE_LENGTH, None
        if num_octets > 8:
            return BerErrorCode.ERR_TOO_LARGE, None
        err, length_bytes = _recv_exact(sock, num_octets)
        if err != BerErrorCode.SUCCESS:
            return err, None
        header += length_bytes
        length = int.from_bytes(length_bytes, "big")

    if max_size and length > max_size:
        return BerErrorCode.ERR_TOO_LARGE, None

    err, content = _recv_exact(sock, length)
    if err != BerErrorCode.SUCCESS:
        return err, None

    return decode_packet(header + content)


# ============================================================================
# DEBUG OUTPUT
# ============================================================================

def format_packet(packet: Packet, indent: int = 0) -> str:
    """
    Render a tree dump, one node per line:

        Universal(0) Constructed(32) Sequence and Sequence of (16) Len=39 "LDAP Request"
         Universal(0) Primitive(0) Integer (2) Len=1 "MessageID" Value(1)
    """
    lines = []
    _format_into(lines, packet, indent)
    return "\n".join(lines)


def _format_into(lines: List[str], packet: Packet, indent: int) -> None:
    class_name = CLASS_NAMES.get(packet.tag_class, "Unknown")
    type_name = "Constructed" if packet.tag_type == TYPE_CONSTRUCTED else "Primitive"
    if packet.tag_class == CLASS_UNIVERSAL:
        tag_name = TAG_NAMES.get(packet.tag, "Unknown")
    else:
        tag_name = "0x%02X" % packet.tag

    line = (
        f"{' ' * indent}{class_name}({packet.tag_class}) {type_name}({packet.tag_type}) "
        f"{tag_name} ({packet.tag}) Len={len(packet.data)}"
    )
    if packet.description:
        line += f" \"{packet.description}\""
    if packet.value is not None:
        line += f" Value({packet.value})"
    lines.append(line)

    for child in packet.children:
        _format_into(lines, child, indent + 1)
