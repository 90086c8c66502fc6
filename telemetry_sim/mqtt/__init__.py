"""Minimal MQTT 3.1.1 publisher.

* ``codec``      -- packet encoders and the CONNACK parser.
* ``connection`` -- ``MQTTConnection`` handshake state machine.
* ``errors``     -- exception taxonomy.
"""

from telemetry_sim.mqtt.connection import ConnectionState, MQTTConnection
from telemetry_sim.mqtt.errors import (
    BrokerConnectionError,
    MQTTError,
    NotReadyError,
    ProtocolRejectionError,
    SocketWriteError,
)

__all__ = [
    "BrokerConnectionError",
    "ConnectionState",
    "MQTTConnection",
    "MQTTError",
    "NotReadyError",
    "ProtocolRejectionError",
    "SocketWriteError",
]
