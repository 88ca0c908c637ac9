"""Forwarding of UDP datagrams from a local address to an upstream address."""

from __future__ import annotations

import asyncio
import enum
import sys
from dataclasses import dataclass

DEFAULT_IDLE_TIMEOUT = 60.0


def _split_address(address: str) -> tuple[str, int]:
    host, sep, port = address.rpartition(":")
    if not sep or not port.isdigit():
        raise OSError(f"invalid socket address: {address}")
    return host.strip("[]"), int(port)


def _warn(message: str) -> None:
    print(message, file=sys.stderr, flush=True)


class _Direction(enum.Enum):
    TO_UPSTREAM = enum.auto()
    TO_DOWNSTREAM = enum.auto()


class _UpstreamProtocol(asyncio.DatagramProtocol):
    def __init__(self, session: _Session) -> None:
        self._session = session

    def datagram_received(self, data: bytes, addr) -> None:
        self._session.push(_Direction.TO_DOWNSTREAM, data)

    def error_received(self, exc: Exception) -> None:
        _warn(f"[warning][udp][{self._session.proxy}] Failed to send to upstream: {exc}")


class _Session:
    """Relays datagrams between one downstream peer and the upstream."""

    def __init__(self, proxy: UdpProxy, server, addr, sessions: dict) -> None:
        self.proxy = proxy
        self._server = server
        self._addr = addr
        self._sessions = sessions
        self._queue: asyncio.Queue[tuple[_Direction, bytes]] = asyncio.Queue()
        self._task = asyncio.ensure_future(self._run())

    def push(self, direction: _Direction, data: bytes) -> None:
        self._queue.put_nowait((direction, data[: self.proxy.buffer_size]))

    def cancel(self) -> None:
        self._task.cancel()

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            try:
                client, _ = await loop.create_datagram_endpoint(
                    lambda: _UpstreamProtocol(self),
                    remote_addr=_split_address(self.proxy.upstream),
                )
            except OSError as error:
                _warn(
                    f"[warning][udp][{self.proxy}] Failed to connect to upstream: {error}"
                )
                return
            try:
                await self._relay(client)
            finally:
                client.close()
        finally:
            if self._sessions.get(self._addr) is self:
                del self._sessions[self._addr]

    async def _relay(self, client) -> None:
        while True:
            try:
                direction, data = await asyncio.wait_for(
                    self._queue.get(), self.proxy.idle_timeout
                )
            except TimeoutError:
                print(
                    f"[info][udp][{self.proxy}] No data transport for "
                    f"{self.proxy.idle_timeout:g} seconds, closing connection",
                    flush=True,
                )
                return
            if direction is _Direction.TO_UPSTREAM:
                try:
                    client.sendto(data)
                except OSError as error:
                    _warn(f"[warning][udp][{self.proxy}] Failed to send to upstream: {error}")
            else:
                try:
                    self._server.sendto(data, self._addr)
                except OSError as error:
                    _warn(
                        f"[warning][udp][{self.proxy}] Failed to send to downstream: {error}"
                    )


class _ServerProtocol(asyncio.DatagramProtocol):
    def __init__(self, proxy: UdpProxy, sessions: dict) -> None:
        self._proxy = proxy
        self._sessions = sessions
        self._transport = None

    def connection_made(self, transport) -> None:
        self._transport = transport

    def datagram_received(self, data: bytes, addr) -> None:
        session = self._sessions.get(addr)
        if session is None:
            session = _Session(self._proxy, self._transport, addr, self._sessions)
            self._sessions[addr] = session
        session.push(_Direction.TO_UPSTREAM, data)

    def error_received(self, exc: Exception) -> None:
        _warn(f"[warning][udp][{self._proxy}] Failed to recv from downstream: {exc}")


@dataclass
class UdpProxy:
    """Receives datagrams on ``listen`` and relays them to ``upstream``.

    Each downstream peer gets its own upstream socket, which is dropped after
    ``idle_timeout`` seconds without traffic. Datagrams longer than
    ``buffer_size`` are truncated.
    """

    listen: str
    upstream: str
    buffer_size: int
    idle_timeout: float = DEFAULT_IDLE_TIMEOUT

    def __str__(self) -> str:
        return f"{self.listen}->{self.upstream}"

    async def run(self) -> None:
        """Listen and relay datagrams until cancelled.

        Raises OSError if the listen address cannot be bound.
        """
        loop = asyncio.get_running_loop()
        sessions: dict = {}
        transport, _ = await loop.create_datagram_endpoint(
            lambda: _ServerProtocol(self, sessions),
            local_addr=_split_address(self.listen),
        )
        print(f"[info][udp][{self}] Listening", flush=True)
        try:
            await loop.create_future()
        finally:
            for session in list(sessions.values()):
                session.cancel()
            transport.close()