"""Exceptions raised by the MQTT publisher."""

from __future__ import annotations


class MQTTError(Exception):
    """Base class for every MQTT publisher error."""


class BrokerConnectionError(MQTTError, ConnectionError):
    """Socket-level failure before or during the handshake."""


class ProtocolRejectionError(MQTTError):
    """The broker refused the session or sent a malformed CONNACK."""


class NotReadyError(MQTTError):
    """Publish attempted before the handshake completed."""


class SocketWriteError(MQTTError):
    """Write attempted on a closed or broken transport."""


class MalformedFrameError(MQTTError, ValueError):
    """Bytes that cannot be decoded as the expected MQTT field."""


class IncompleteFrameError(MalformedFrameError):
    """The buffer ended before the field was complete."""
