"""MQTT 3.1.1 wire codec for the packets the simulator needs.

Only CONNECT, CONNACK, PUBLISH (QoS 0) and DISCONNECT are supported.
All functions are pure: they take values and return ``bytes`` (or parse
``bytes``) without touching any socket.
"""

from __future__ import annotations

import struct
from typing import Tuple

from telemetry_sim.mqtt.errors import (
    IncompleteFrameError,
    MalformedFrameError,
    ProtocolRejectionError,
)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

CONNECT = 0x10
CONNACK = 0x20
PUBLISH = 0x30
DISCONNECT = 0xE0

PROTOCOL_NAME = "MQTT"
PROTOCOL_LEVEL = 0x04
CONNECT_FLAG_CLEAN_SESSION = 0x02

RETAIN_FLAG = 0x01

MAX_REMAINING_LENGTH = 268_435_455
MAX_STRING_BYTES = 65_535

_UINT16 = struct.Struct("!H")

# CONNACK return codes (MQTT 3.1.1 section 3.2.2.3).
CONNACK_RETURN_CODES = {
    0x00: "connection accepted",
    0x01: "unacceptable protocol version",
    0x02: "identifier rejected",
    0x03: "server unavailable",
    0x04: "bad user name or password",
    0x05: "not authorized",
}


# ---------------------------------------------------------------------------
# Remaining length (variable byte integer)
# ---------------------------------------------------------------------------

def encode_remaining_length(length: int) -> bytes:
    """Encode *length* as 7 bits per byte with a continuation bit.

    Always emits at least one byte, so ``0`` encodes as ``b"\\x00"``.
    """
    if length < 0 or length > MAX_REMAINING_LENGTH:
        raise ValueError(
            f"Remaining length must be 0-{MAX_REMAINING_LENGTH}, got {length}"
        )
    out = bytearray()
    while True:
        digit = length % 128
        length //= 128
        if length > 0:
            digit |= 0x80
        out.append(digit)
        if length == 0:
            return bytes(out)


def decode_remaining_length(data: bytes, offset: int = 0) -> Tuple[int, int]:
    """Decode a remaining-length field starting at *offset*.

    Returns ``(value, bytes_consumed)``.
    """
    value = 0
    multiplier = 1
    for index in range(4):
        position = offset + index
        if position >= len(data):
            raise IncompleteFrameError("Remaining length field is truncated")
        byte = data[position]
        value += (byte & 0x7F) * multiplier
        if not byte & 0x80:
            return value, index + 1
        multiplier *= 128
    raise MalformedFrameError("Remaining length field exceeds 4 bytes")


# ---------------------------------------------------------------------------
# UTF-8 string fields
# ---------------------------------------------------------------------------

def encode_string(text: str) -> bytes:
    """Encode *text* as a two-byte big-endian length plus UTF-8 bytes."""
    raw = text.encode("utf-8")
    if len(raw) > MAX_STRING_BYTES:
        raise ValueError(
            f"String field too long: {len(raw)} > {MAX_STRING_BYTES} bytes"
        )
    return _UINT16.pack(len(raw)) + raw


def decode_string(data: bytes, offset: int = 0) -> Tuple[str, int]:
    """Decode a length-prefixed string field.

    Returns ``(text, bytes_consumed)``.
    """
    if len(data) - offset < _UINT16.size:
        raise IncompleteFrameError("String length prefix is truncated")
    (length,) = _UINT16.unpack_from(data, offset)
    start = offset + _UINT16.size
    end = start + length
    if end > len(data):
        raise IncompleteFrameError(
            f"String field needs {length} bytes, {len(data) - start} available"
        )
    try:
        text = data[start:end].decode("utf-8")
    except UnicodeDecodeError as exc:
        raise MalformedFrameError(f"String field is not valid UTF-8: {exc}") from exc
    return text, _UINT16.size + length


# ---------------------------------------------------------------------------
# Packet builders
# ---------------------------------------------------------------------------

def _frame(first_byte: int, body: bytes) -> bytes:
    return bytes([first_byte]) + encode_remaining_length(len(body)) + body


def build_connect_packet(client_id: str, keep_alive: int = 60) -> bytes:
    """Build a CONNECT packet with clean session and no will/credentials."""
    if not 0 <= keep_alive <= 0xFFFF:
        raise ValueError(f"Keep-alive must be 0-65535 seconds, got {keep_alive}")
    variable_header = (
        encode_string(PROTOCOL_NAME)
        + bytes([PROTOCOL_LEVEL, CONNECT_FLAG_CLEAN_SESSION])
        + _UINT16.pack(keep_alive)
    )
    payload = encode_string(client_id)
    return _frame(CONNECT, variable_header + payload)


def build_publish_packet(
    topic: str,
    payload: bytes,
    *,
    retain: bool = False,
    qos: int = 0,
) -> bytes:
    """Build a PUBLISH packet.

    Only QoS 0 is supported: QoS 1 and 2 need a packet identifier and an
    acknowledgement flow that this publisher does not implement.
    """
    if qos != 0:
        raise ValueError(f"Only QoS 0 is supported, got qos={qos}")
    first_byte = PUBLISH | (RETAIN_FLAG if retain else 0) | (qos << 1)
    return _frame(first_byte, encode_string(topic) + bytes(payload))


def build_disconnect_packet() -> bytes:
    return bytes([DISCONNECT, 0x00])


# ---------------------------------------------------------------------------
# CONNACK
# ---------------------------------------------------------------------------

def parse_connack(frame: bytes) -> None:
    """Validate a complete CONNACK frame.

    Raises ``ProtocolRejectionError`` when the frame is not a CONNACK,
    is too short, or carries a non-zero return code.
    """
    if len(frame) < 4:
        raise ProtocolRejectionError(
            f"CONNACK too short: expected 4 bytes, got {len(frame)}"
        )
    if frame[0] != CONNACK:
        raise ProtocolRejectionError(
            f"Expected CONNACK (0x20), got packet type 0x{frame[0]:02X}"
        )
    try:
        remaining, consumed = decode_remaining_length(frame, 1)
    except MalformedFrameError as exc:
        raise ProtocolRejectionError(f"Malformed CONNACK: {exc}") from exc
    if remaining < 2:
        raise ProtocolRejectionError(
            f"CONNACK remaining length must be >= 2, got {remaining}"
        )
    # Variable header: acknowledge flags, then the return code.
    code_index = 1 + consumed + 1
    if code_index >= len(frame):
        raise ProtocolRejectionError("CONNACK is missing its return code")
    return_code = frame[code_index]
    if return_code != 0:
        reason = CONNACK_RETURN_CODES.get(return_code, "unknown return code")
        raise ProtocolRejectionError(
            f"Broker rejected connection: {reason} (code {return_code})"
        )
