"""Connection handshake state machine for the MQTT publisher.

``MQTTConnection`` owns a single TCP stream to the broker and moves
through::

    DISCONNECTED -> CONNECTING -> READY
          \\              \\          \\
           +--------------+----------+--> CLOSED

``connect()`` is idempotent: concurrent or repeated callers share one
in-flight handshake and therefore one socket.  Once the stream closes
(locally via ``end()`` or remotely) the state becomes ``CLOSED`` and the
pending handshake is cleared so a later ``connect()`` starts fresh.
"""

from __future__ import annotations

import asyncio
import secrets
from contextlib import suppress
from enum import Enum
from typing import Optional, Tuple
from urllib.parse import urlsplit

import structlog

from telemetry_sim.mqtt.codec import (
    CONNACK,
    build_connect_packet,
    build_disconnect_packet,
    build_publish_packet,
    decode_remaining_length,
    parse_connack,
)
from telemetry_sim.mqtt.errors import (
    BrokerConnectionError,
    IncompleteFrameError,
    MalformedFrameError,
    NotReadyError,
    ProtocolRejectionError,
    SocketWriteError,
)

logger = structlog.get_logger(__name__)

DEFAULT_PORT = 1883
_READ_CHUNK = 1024


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    READY = "ready"
    CLOSED = "closed"


def parse_broker_url(url: str) -> Tuple[str, int]:
    """Return ``(host, port)`` for an ``mqtt://host[:port]`` URL."""
    parts = urlsplit(url)
    if parts.scheme not in ("mqtt", "tcp"):
        raise ValueError(
            f"Unsupported broker URL scheme '{parts.scheme}' in {url!r}; "
            "expected mqtt:// or tcp://"
        )
    if not parts.hostname:
        raise ValueError(f"Broker URL has no host: {url!r}")
    return parts.hostname, parts.port or DEFAULT_PORT


def generate_client_id() -> str:
    return f"sim-{secrets.token_hex(6)}"


class MQTTConnection:
    """Publish-only MQTT 3.1.1 session over a raw asyncio stream."""

    def __init__(
        self,
        broker_url: str,
        *,
        client_id: Optional[str] = None,
        keep_alive: int = 60,
    ) -> None:
        self._host, self._port = parse_broker_url(broker_url)
        self._client_id = client_id or generate_client_id()
        self._keep_alive = keep_alive
        # Fail here rather than mid-handshake.
        build_connect_packet(self._client_id, self._keep_alive)

        self._state = ConnectionState.DISCONNECTED
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._connect_task: Optional[asyncio.Task] = None
        self._watch_task: Optional[asyncio.Task] = None

    # -- properties ---------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is ConnectionState.READY

    @property
    def client_id(self) -> str:
        return self._client_id

    @property
    def address(self) -> Tuple[str, int]:
        return self._host, self._port

    # -- lifecycle ----------------------------------------------------------

    async def connect(self) -> None:
        """Open the stream and complete the CONNECT/CONNACK handshake.

        Raises ``BrokerConnectionError`` on socket failure and
        ``ProtocolRejectionError`` when the broker refuses the session.
        """
        if self._connect_task is None:
            loop = asyncio.get_running_loop()
            self._connect_task = loop.create_task(self._handshake())
        task = self._connect_task
        # Shield so one cancelled caller does not abort the shared attempt.
        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled():
                raise BrokerConnectionError(
                    "Connection closed before the handshake completed"
                ) from None
            raise

    async def end(self) -> None:
        """Close the session gracefully.  Safe to call more than once.

        A handshake still in flight is aborted and its socket closed.
        """
        pending = self._connect_task
        if (
            pending is not None
            and not pending.done()
            and pending is not asyncio.current_task()
        ):
            pending.cancel()
            await asyncio.gather(pending, return_exceptions=True)
        if self._writer is not None and self.is_ready and not self._writer.is_closing():
            self._writer.write(build_disconnect_packet())
        watch = self._watch_task
        self._watch_task = None
        await self._close_transport()
        if watch is not None and watch is not asyncio.current_task():
            watch.cancel()
            with suppress(asyncio.CancelledError):
                await watch

    # -- publish ------------------------------------------------------------

    def publish(
        self,
        topic: str,
        payload: bytes,
        *,
        retain: bool = False,
        qos: int = 0,
    ) -> int:
        """Write one PUBLISH packet and return its size in bytes.

        Fire-and-forget: never awaits a drain or an acknowledgement.
        """
        if not self.is_ready or self._writer is None:
            raise NotReadyError("MQTT publisher not connected")
        packet = build_publish_packet(topic, payload, retain=retain, qos=qos)
        if self._writer.is_closing():
            raise SocketWriteError(f"Socket to {self._host}:{self._port} is closing")
        try:
            self._writer.write(packet)
        except (OSError, RuntimeError) as exc:
            raise SocketWriteError(f"Write to broker failed: {exc}") from exc
        return len(packet)

    # -- internal -----------------------------------------------------------

    async def _handshake(self) -> None:
        self._state = ConnectionState.CONNECTING
        logger.debug("mqtt_connecting", host=self._host, port=self._port)
        try:
            await self._negotiate()
        except BaseException:
            # Any failure or cancellation leaves no half-open socket behind.
            await self._close_transport()
            raise

    async def _negotiate(self) -> None:
        try:
            reader, writer = await asyncio.open_connection(self._host, self._port)
        except OSError as exc:
            raise BrokerConnectionError(
                f"Cannot reach broker at {self._host}:{self._port}: {exc}"
            ) from exc

        self._reader, self._writer = reader, writer
        try:
            writer.write(build_connect_packet(self._client_id, self._keep_alive))
            await writer.drain()
            frame = await self._read_connack(reader)
            parse_connack(frame)
        except asyncio.IncompleteReadError as exc:
            raise BrokerConnectionError(
                "Broker closed the connection before CONNACK"
            ) from exc
        except OSError as exc:
            raise BrokerConnectionError(f"Handshake failed: {exc}") from exc

        self._state = ConnectionState.READY
        self._watch_task = asyncio.get_running_loop().create_task(self._watch(reader))
        logger.info(
            "mqtt_connected",
            host=self._host,
            port=self._port,
            client_id=self._client_id,
        )

    async def _read_connack(self, reader: asyncio.StreamReader) -> bytes:
        """Read one complete CONNACK, however the broker fragments it."""
        header = await reader.readexactly(1)
        if header[0] != CONNACK:
            raise ProtocolRejectionError(
                f"Expected CONNACK (0x20), got packet type 0x{header[0]:02X}"
            )
        length_field = b""
        while True:
            length_field += await reader.readexactly(1)
            try:
                remaining, _ = decode_remaining_length(length_field)
                break
            except IncompleteFrameError:
                continue
            except MalformedFrameError as exc:
                raise ProtocolRejectionError(f"Malformed CONNACK: {exc}") from exc
        body = await reader.readexactly(remaining)
        return header + length_field + body

    async def _watch(self, reader: asyncio.StreamReader) -> None:
        """Drain inbound bytes until EOF, then mark the session closed."""
        try:
            while await reader.read(_READ_CHUNK):
                pass
        except OSError as exc:
            logger.warning("mqtt_socket_error", error=str(exc))
        if self._reader is reader:
            logger.warning("mqtt_connection_lost", host=self._host, port=self._port)
            self._watch_task = None
            await self._close_transport()

    async def _close_transport(self) -> None:
        writer = self._writer
        self._reader = None
        self._writer = None
        self._connect_task = None
        self._state = ConnectionState.CLOSED
        if writer is None:
            return
        writer.close()
        try:
            await writer.wait_closed()
        except OSError as exc:
            logger.debug("mqtt_close_error", error=str(exc))
