"""Shared pytest fixtures for telemetry simulator tests."""

from __future__ import annotations

import asyncio
from typing import Any, AsyncGenerator, Callable, List, Sequence, Tuple

import pytest
import pytest_asyncio

from telemetry_sim.mqtt.codec import decode_remaining_length
from telemetry_sim.schemas import MetricDefinition

CONNACK_ACCEPTED = b"\x20\x02\x00\x00"


def split_packets(data: bytes) -> List[Tuple[int, bytes]]:
    """Split a byte stream into ``(first_byte, body)`` pairs."""
    packets = []
    offset = 0
    while offset < len(data):
        first = data[offset]
        length, consumed = decode_remaining_length(data, offset + 1)
        start = offset + 1 + consumed
        packets.append((first, data[start:start + length]))
        offset = start + length
    return packets


class FakeBroker:
    """In-process TCP server that speaks just enough MQTT for the tests.

    Reads the CONNECT packet, answers with *connack_chunks* (one write per
    chunk, so a CONNACK can be fragmented on purpose) and records every
    byte received afterwards.
    """

    def __init__(
        self,
        connack_chunks: Sequence[bytes] = (CONNACK_ACCEPTED,),
        *,
        close_after_connack: bool = False,
        connack_delay: float = 0.0,
    ) -> None:
        self.connack_chunks = list(connack_chunks)
        self.close_after_connack = close_after_connack
        self.connack_delay = connack_delay
        self.connections = 0
        self.connect_packets: List[bytes] = []
        self.received = bytearray()
        self.client_gone = asyncio.Event()
        self._writers: List[asyncio.StreamWriter] = []
        self._server: Any = None
        self.port = 0

    @property
    def url(self) -> str:
        return f"mqtt://127.0.0.1:{self.port}"

    async def start(self) -> None:
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        self.port = self._server.sockets[0].getsockname()[1]

    async def stop(self) -> None:
        for writer in self._writers:
            writer.close()
        self._server.close()
        await self._server.wait_closed()

    async def drop_clients(self) -> None:
        for writer in self._writers:
            writer.close()

    def packets(self) -> List[Tuple[int, bytes]]:
        return split_packets(bytes(self.received))

    async def _handle(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        self.connections += 1
        self._writers.append(writer)
        try:
            header = await reader.readexactly(1)
            length_field = b""
            while True:
                length_field += await reader.readexactly(1)
                if not length_field[-1] & 0x80:
                    break
            length, _ = decode_remaining_length(length_field)
            body = await reader.readexactly(length)
            self.connect_packets.append(header + length_field + body)

            if self.connack_delay:
                await asyncio.sleep(self.connack_delay)
            for chunk in self.connack_chunks:
                writer.write(chunk)
                await writer.drain()
                await asyncio.sleep(0.01)

            if self.close_after_connack:
                return
            while True:
                data = await reader.read(4096)
                if not data:
                    break
                self.received.extend(data)
        except (asyncio.IncompleteReadError, ConnectionError):
            pass
        finally:
            writer.close()
            self.client_gone.set()


@pytest_asyncio.fixture()
async def broker_factory() -> AsyncGenerator[Callable[..., Any], None]:
    """Return an async factory that starts ``FakeBroker`` instances."""
    brokers: List[FakeBroker] = []

    async def _start(*args: Any, **kwargs: Any) -> FakeBroker:
        broker = FakeBroker(*args, **kwargs)
        await broker.start()
        brokers.append(broker)
        return broker

    yield _start
    for broker in brokers:
        await broker.stop()


@pytest_asyncio.fixture()
async def broker(broker_factory: Callable[..., Any]) -> FakeBroker:
    """A broker that accepts every connection."""
    return await broker_factory()


@pytest.fixture()
def fuel_level() -> MetricDefinition:
    return MetricDefinition.model_validate(
        {
            "id": "fuelLevel",
            "label": "Fuel",
            "unit": "%",
            "min": 5,
            "max": 100,
            "smoothing": 0.01,
            "frequency": 1,
            "precision": 1,
            "override": {"kind": "drain", "step": 0.1, "floor": 0},
        }
    )


@pytest.fixture()
def coolant_temp() -> MetricDefinition:
    return MetricDefinition(
        id="coolantTemp",
        label="Coolant",
        unit="°C",
        min=70,
        max=110,
        smoothing=0.05,
        frequency=5,
        precision=1,
    )
