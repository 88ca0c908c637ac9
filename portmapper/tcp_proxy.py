"""Forwarding of TCP connections from a local address to an upstream address."""

from __future__ import annotations

import asyncio
import sys
from dataclasses import dataclass

_CHUNK_SIZE = 64 * 1024


def _split_address(address: str) -> tuple[str, int]:
    host, sep, port = address.rpartition(":")
    if not sep or not port.isdigit():
        raise OSError(f"invalid socket address: {address}")
    return host.strip("[]"), int(port)


def _warn(message: str) -> None:
    print(message, file=sys.stderr, flush=True)


async def _pipe(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> int:
    """Copy from reader to writer until end of stream, then half-close."""
    total = 0
    while data := await reader.read(_CHUNK_SIZE):
        writer.write(data)
        await writer.drain()
        total += len(data)
    if writer.can_write_eof():
        writer.write_eof()
    return total


@dataclass
class TcpProxy:
    """Accepts TCP connections on ``listen`` and relays them to ``upstream``."""

    listen: str
    upstream: str

    def __str__(self) -> str:
        return f"{self.listen}->{self.upstream}"

    async def _handle(
        self,
        down_reader: asyncio.StreamReader,
        down_writer: asyncio.StreamWriter,
    ) -> None:
        try:
            up_reader, up_writer = await asyncio.open_connection(
                *_split_address(self.upstream)
            )
        except OSError as error:
            _warn(f"[warning][tcp][{self}] Failed to connect: {error}")
            down_writer.close()
            return

        try:
            sent, received = await asyncio.gather(
                _pipe(down_reader, up_writer),
                _pipe(up_reader, down_writer),
            )
        except OSError as error:
            _warn(f"[warning][tcp][{self}] Connection error: {error}")
        else:
            print(
                f"[info][tcp][{self}] Connection closed: {self.listen} "
                f"Send {sent}B to {self.upstream} and receive {received}B",
                flush=True,
            )
        finally:
            up_writer.close()
            down_writer.close()

    async def run(self) -> None:
        """Listen and relay connections until cancelled.

        Raises OSError if the listen address cannot be bound.
        """
        host, port = _split_address(self.listen)
        server = await asyncio.start_server(self._handle, host, port)
        print(f"[info][tcp][{self}] Listening", flush=True)
        async with server:
            await server.serve_forever()