import asyncio
import contextlib
import socket

import pytest

from portmapper.udp_proxy import UdpProxy


class _Collector(asyncio.DatagramProtocol):
    def __init__(self):
        self.queue = asyncio.Queue()

    def datagram_received(self, data, addr):
        self.queue.put_nowait(data)


class _Echo(asyncio.DatagramProtocol):
    def connection_made(self, transport):
        self.transport = transport

    def datagram_received(self, data, addr):
        self.transport.sendto(data, addr)


def _free_udp_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


async def _echo_upstream():
    loop = asyncio.get_running_loop()
    transport, _ = await loop.create_datagram_endpoint(
        _Echo, local_addr=("127.0.0.1", 0)
    )
    return transport, transport.get_extra_info("sockname")[1]


async def _client(port):
    loop = asyncio.get_running_loop()
    transport, collector = await loop.create_datagram_endpoint(
        _Collector, remote_addr=("127.0.0.1", port)
    )
    return transport, collector


def _drain(collector):
    while not collector.queue.empty():
        collector.queue.get_nowait()


async def _exchange(transport, collector, payload):
    for _ in range(100):
        transport.sendto(payload)
        try:
            return await asyncio.wait_for(collector.queue.get(), 0.1)
        except TimeoutError:
            continue
    raise AssertionError("no reply through the proxy")


async def _wait_for_output(capsys, text, timeout=5.0):
    collected = []
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        captured = capsys.readouterr()
        collected.append(captured.out)
        collected.append(captured.err)
        joined = "".join(collected)
        if text in joined:
            return joined
        await asyncio.sleep(0.02)
    return "".join(collected)


async def _stop(task):
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task


def test_str_shows_listen_and_upstream():
    proxy = UdpProxy("0.0.0.0:53", "example.com:53", 2048)
    assert str(proxy) == "0.0.0.0:53->example.com:53"


def test_default_idle_timeout_is_sixty_seconds():
    proxy = UdpProxy("0.0.0.0:53", "example.com:53", 2048)
    assert proxy.idle_timeout == 60


@pytest.mark.asyncio
async def test_relays_datagrams_both_ways():
    upstream, upstream_port = await _echo_upstream()
    listen_port = _free_udp_port()
    proxy = UdpProxy(f"127.0.0.1:{listen_port}", f"127.0.0.1:{upstream_port}", 2048)
    task = asyncio.create_task(proxy.run())
    client, collector = await _client(listen_port)
    try:
        assert await _exchange(client, collector, b"ping") == b"ping"
        _drain(collector)
        assert await _exchange(client, collector, b"second datagram") == b"second datagram"
    finally:
        client.close()
        await _stop(task)
        upstream.close()


@pytest.mark.asyncio
async def test_peers_get_their_own_replies():
    upstream, upstream_port = await _echo_upstream()
    listen_port = _free_udp_port()
    proxy = UdpProxy(f"127.0.0.1:{listen_port}", f"127.0.0.1:{upstream_port}", 2048)
    task = asyncio.create_task(proxy.run())
    first, first_collector = await _client(listen_port)
    second, second_collector = await _client(listen_port)
    try:
        assert await _exchange(first, first_collector, b"from first") == b"from first"
        assert await _exchange(second, second_collector, b"from second") == b"from second"
    finally:
        first.close()
        second.close()
        await _stop(task)
        upstream.close()


@pytest.mark.asyncio
async def test_long_datagrams_are_truncated_to_buffer_size():
    upstream, upstream_port = await _echo_upstream()
    listen_port = _free_udp_port()
    proxy = UdpProxy(f"127.0.0.1:{listen_port}", f"127.0.0.1:{upstream_port}", 4)
    task = asyncio.create_task(proxy.run())
    client, collector = await _client(listen_port)
    try:
        payload = b"abcdefgh"
        assert await _exchange(client, collector, payload) == payload[:4]
    finally:
        client.close()
        await _stop(task)
        upstream.close()


@pytest.mark.asyncio
async def test_idle_session_is_closed_and_reopened(capsys):
    upstream, upstream_port = await _echo_upstream()
    listen_port = _free_udp_port()
    proxy = UdpProxy(
        f"127.0.0.1:{listen_port}", f"127.0.0.1:{upstream_port}", 2048, 0.2
    )
    task = asyncio.create_task(proxy.run())
    client, collector = await _client(listen_port)
    try:
        assert await _exchange(client, collector, b"before") == b"before"
        output = await _wait_for_output(capsys, "closing connection")
        assert f"[info][udp][{proxy}] No data transport" in output
        _drain(collector)
        assert await _exchange(client, collector, b"after") == b"after"
    finally:
        client.close()
        await _stop(task)
        upstream.close()


@pytest.mark.asyncio
async def test_run_raises_when_port_is_taken():
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as blocker:
        blocker.bind(("127.0.0.1", 0))
        port = blocker.getsockname()[1]
        proxy = UdpProxy(f"127.0.0.1:{port}", "127.0.0.1:1", 2048)
        with pytest.raises(OSError):
            await asyncio.wait_for(proxy.run(), 5)


@pytest.mark.asyncio
async def test_run_rejects_malformed_listen_address():
    proxy = UdpProxy("no-port-here", "127.0.0.1:1", 2048)
    with pytest.raises(OSError):
        await asyncio.wait_for(proxy.run(), 5)