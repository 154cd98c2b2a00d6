"""
Binding request/response codec for the endpoint discovery exchange.

Only the subset of RFC 5389 needed to learn our reflexive address is
implemented: a header-only Binding Request, and a Binding Response carrying
an XOR-MAPPED-ADDRESS attribute. Everything here is pure computation.

Header layout (20 bytes, network order):

    |0 0| message type (14) | message length (16) |
    |            magic cookie (32)                |
    |          transaction id (96)                |
"""

import ipaddress
import os
import struct

from errors import (
    AttributeTruncatedError,
    IncompleteMessageError,
    InvalidAddressLengthError,
    MalformedHeaderError,
    NoAddressAttributeError,
    TrailingDataError,
    TransactionMismatchError,
    TruncatedError,
    UnknownAddressFamilyError,
    UnknownRequiredAttributeError,
)
from stun.models import Endpoint

HEADER_FORMAT = "!HHI12s"
HEADER_SIZE = struct.calcsize(HEADER_FORMAT)  # 20
ATTR_HEADER_FORMAT = "!HH"
ATTR_HEADER_SIZE = struct.calcsize(ATTR_HEADER_FORMAT)

MAGIC_COOKIE = 0x2112A442
MAGIC_COOKIE_BYTES = struct.pack("!I", MAGIC_COOKIE)
TRANSACTION_ID_SIZE = 12


class MessageType:
    BINDING_REQUEST = 0x0001
    BINDING_SUCCESS = 0x0101


class AttributeType:
    XOR_MAPPED_ADDRESS = 0x0020


# Retired RFC 3489 attributes; a conforming client skips them
RESERVED_ATTRIBUTES = frozenset({0x0000, 0x0002, 0x0003, 0x0004, 0x0005, 0x0007, 0x000B})
COMPREHENSION_OPTIONAL = 0x8000

FAMILY_IPV4 = 0x01
FAMILY_IPV6 = 0x02
_ADDRESS_ATTR_LENGTH = {FAMILY_IPV4: 8, FAMILY_IPV6: 20}


def new_transaction_id() -> bytes:
    """Fresh random transaction id for one discovery session."""
    return os.urandom(TRANSACTION_ID_SIZE)


def encode_request(transaction_id: bytes) -> bytes:
    """Build a header-only Binding Request."""
    if len(transaction_id) != TRANSACTION_ID_SIZE:
        raise ValueError(f"Transaction id must be {TRANSACTION_ID_SIZE} bytes, got {len(transaction_id)}")
    return struct.pack(HEADER_FORMAT, MessageType.BINDING_REQUEST, 0, MAGIC_COOKIE, transaction_id)


def _xor(lhs: bytes, rhs: bytes) -> bytes:
    return bytes(a ^ b for a, b in zip(lhs, rhs))


def _decode_xor_mapped_address(value: bytes, transaction_id: bytes) -> Endpoint:
    #  |x x x x x x x x| family (8) | x-port (16) |
    #  |             x-address (32 or 128)        |
    if len(value) < 4:
        raise InvalidAddressLengthError(f"XOR-MAPPED-ADDRESS value too short: {len(value)}")
    family = value[1]
    expected_length = _ADDRESS_ATTR_LENGTH.get(family)
    if expected_length is None:
        raise UnknownAddressFamilyError(f"Unknown address family in XOR-MAPPED-ADDRESS: {family:#04x}")
    if len(value) != expected_length:
        kind = "IPv4" if family == FAMILY_IPV4 else "IPv6"
        raise InvalidAddressLengthError(f"Invalid attribute length for {kind} address: {len(value)}")

    (x_port,) = struct.unpack_from("!H", value, 2)
    port = x_port ^ (MAGIC_COOKIE >> 16)
    raw = _xor(value[4:], MAGIC_COOKIE_BYTES + transaction_id)
    return Endpoint(address=str(ipaddress.ip_address(raw)), port=port)


def decode_response(data: bytes, transaction_id: bytes) -> Endpoint:
    """
    Extract our reflexive endpoint from a Binding Response.

    Raises a StunDecodeError subclass describing the first check that failed.
    """
    if len(data) < HEADER_SIZE:
        raise TruncatedError("STUN message header truncated")

    msg_type, msg_length, cookie, received_id = struct.unpack_from(HEADER_FORMAT, data)
    if msg_type & 0xC000:
        raise MalformedHeaderError("STUN message header malformed: first two bits are not zero")
    if cookie != MAGIC_COOKIE:
        raise MalformedHeaderError("STUN message header malformed: magic cookie mismatch")

    actual_length = len(data) - HEADER_SIZE
    if actual_length < msg_length:
        raise IncompleteMessageError("Incomplete STUN message")
    if actual_length > msg_length:
        raise TrailingDataError("Trailing data after STUN message")

    if received_id != transaction_id:
        raise TransactionMismatchError("Transaction ID mismatch")

    endpoint: Endpoint | None = None
    offset = HEADER_SIZE
    while offset < len(data):
        if len(data) - offset < ATTR_HEADER_SIZE:
            raise AttributeTruncatedError("Attribute header truncated")
        attr_type, attr_length = struct.unpack_from(ATTR_HEADER_FORMAT, data, offset)
        offset += ATTR_HEADER_SIZE
        if attr_length > len(data) - offset:
            raise AttributeTruncatedError("Attribute truncated")

        value = data[offset:offset + attr_length]
        offset += attr_length

        if attr_type & COMPREHENSION_OPTIONAL or attr_type in RESERVED_ATTRIBUTES:
            continue
        if attr_type != AttributeType.XOR_MAPPED_ADDRESS:
            raise UnknownRequiredAttributeError(attr_type)

        endpoint = _decode_xor_mapped_address(value, transaction_id)

    if endpoint is None:
        raise NoAddressAttributeError("No XOR-MAPPED-ADDRESS attribute found in STUN message")
    return endpoint
