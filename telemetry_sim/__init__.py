"""Telemetry simulator -- synthetic vehicle metrics over MQTT.

Generates continuously varying vehicle telemetry (speed, RPM,
temperatures, ...) and publishes each metric as a retained QoS 0
message to an MQTT broker.

The MQTT side is a deliberately small, hand-written client that only
knows how to CONNECT and PUBLISH, so the simulator has no dependency on
a full protocol library.
"""

__version__ = "0.1.0"
