#!/usr/bin/env python3
"""Async tests for monitoring, boot debouncing and connection routing."""

import asyncio
import json
import os
import socket
import sys
import unittest

from aiohttp import web
from aiohttp import test_utils

# Add project root and tests directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))
sys.path.insert(0, os.path.dirname(__file__))

from wakeproxy.boot_gate import BootGate, BootResult
from wakeproxy.config_manager import ConfigManager
from wakeproxy.frame_codec import (
    MalformedVarInt, PacketBuffer, TruncatedFrame, decode_frame, encode_frame, read_frame
)
from wakeproxy.gateway_state import GatewayState
from wakeproxy.proxy_manager import ProxyManager
from wakeproxy.pterodactyl_client import PterodactylClient
from wakeproxy.server_monitor import ServerMonitor

from test_basic import build_handshake


def make_config(backend_port: int = 1) -> dict:
    """Default configuration pointed at local test sockets."""
    config = ConfigManager()._get_default_config()
    config["proxy"]["listen_address"] = "127.0.0.1"
    config["proxy"]["listen_port"] = 0
    config["server"]["host"] = "127.0.0.1"
    config["server"]["port"] = backend_port
    config["timing"]["server_check_timeout"] = 1
    config["timing"]["connection_timeout"] = 2
    config["timing"]["client_read_timeout"] = 1
    config["timing"]["wake_request_timeout"] = 2
    config["pterodactyl"]["api_key"] = "ptlc_test"
    config["pterodactyl"]["server_id"] = "abcd1234"
    return config


def closed_port() -> int:
    """Find a local port with nothing listening on it."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


def read_reply_json(data: bytes) -> dict:
    """Decode the JSON string carried by a single reply packet."""
    frame = decode_frame(data)
    assert frame.packet_id == 0x00
    return json.loads(PacketBuffer(frame.payload).read_string())


class FakeWakeClient:
    """Stands in for the Pterodactyl client and counts calls."""

    def __init__(self, success: bool = True, delay: float = 0.0):
        self.success = success
        self.delay = delay
        self.calls = 0
        self.release = None

    async def start_server(self) -> bool:
        self.calls += 1
        if self.release is not None:
            await self.release.wait()
        elif self.delay:
            await asyncio.sleep(self.delay)
        return self.success


class TestStreamFrames(unittest.IsolatedAsyncioTestCase):
    """Test frame reads from a stream."""

    def _reader(self, data: bytes, eof: bool = True) -> asyncio.StreamReader:
        reader = asyncio.StreamReader()
        reader.feed_data(data)
        if eof:
            reader.feed_eof()
        return reader

    async def test_reads_exactly_one_frame(self):
        """Test that the next frame stays in the stream."""
        reader = self._reader(build_handshake(1) + encode_frame(0x00))

        first = await read_frame(reader)
        second = await read_frame(reader)

        self.assertEqual(first.packet_id, 0x00)
        self.assertEqual(first.payload[-1], 1)
        self.assertEqual(second.payload, b'')

    async def test_malformed_varint_stops_after_five_bytes(self):
        """Test that an endless continuation run fails without draining the stream."""
        reader = self._reader(b'\xff' * 5 + b'rest', eof=False)

        with self.assertRaises(MalformedVarInt):
            await read_frame(reader)

        self.assertEqual(await reader.readexactly(4), b'rest')

    async def test_oversized_length_prefix_is_malformed(self):
        """Test that a length with bits past 31 is refused instead of wrapping to a small frame."""
        reader = self._reader(b'\x81\x80\x80\x80\x10\x00NEXT', eof=False)

        with self.assertRaises(MalformedVarInt):
            await read_frame(reader)

        self.assertEqual(await reader.readexactly(5), b'\x00NEXT')

    async def test_closed_mid_frame(self):
        """Test a stream that ends before the declared length."""
        with self.assertRaises(TruncatedFrame):
            await read_frame(self._reader(b'\x10\x00\x01'))

        with self.assertRaises(TruncatedFrame):
            await read_frame(self._reader(b''))


class TestBootGate(unittest.IsolatedAsyncioTestCase):
    """Test the boot request debounce."""

    def setUp(self):
        self.state = GatewayState()
        self.wake_client = FakeWakeClient(delay=0.05)
        self.gate = BootGate(self.state, self.wake_client)

    async def test_concurrent_requests_dispatch_once(self):
        results = await asyncio.gather(
            self.gate.request_boot("first"),
            self.gate.request_boot("second")
        )

        self.assertEqual(sorted(r.value for r in results),
                         [BootResult.ALREADY_REQUESTED.value, BootResult.DISPATCHED.value])
        self.assertEqual(self.wake_client.calls, 1)

    async def test_recovery_starts_new_down_period(self):
        self.assertEqual(await self.gate.request_boot(), BootResult.DISPATCHED)
        self.assertEqual(await self.gate.request_boot(), BootResult.ALREADY_REQUESTED)

        self.state.record_probe(True)
        self.state.record_probe(False)

        self.assertEqual(await self.gate.request_boot(), BootResult.DISPATCHED)
        self.assertEqual(self.wake_client.calls, 2)

    async def test_failed_call_is_not_retried_in_same_down_period(self):
        self.wake_client.success = False

        self.assertEqual(await self.gate.request_boot(), BootResult.FAILED)
        self.assertEqual(await self.gate.request_boot(), BootResult.ALREADY_REQUESTED)
        self.assertEqual(self.wake_client.calls, 1)

    async def test_raising_wake_client_counts_as_failure(self):
        """Test that an exception from the wake client becomes FAILED and keeps the claim."""
        async def broken_start():
            self.wake_client.calls += 1
            raise RuntimeError("panel client blew up")

        self.wake_client.start_server = broken_start

        self.assertEqual(await self.gate.request_boot(), BootResult.FAILED)
        self.assertEqual(await self.gate.request_boot(), BootResult.ALREADY_REQUESTED)
        self.assertEqual(self.wake_client.calls, 1)

    async def test_recovery_during_inflight_call_keeps_reset(self):
        """Test that a wake call finishing after recovery does not re-set the flag."""
        self.wake_client.release = asyncio.Event()

        task = asyncio.create_task(self.gate.request_boot())
        await asyncio.sleep(0)
        self.assertTrue(self.state.snapshot().boot_requested)

        self.state.record_probe(True)
        self.wake_client.release.set()
        self.assertEqual(await task, BootResult.DISPATCHED)

        self.assertFalse(self.state.snapshot().boot_requested)
        self.state.record_probe(False)
        self.assertIsNotNone(self.state.claim_boot_request())


class TestServerMonitor(unittest.IsolatedAsyncioTestCase):
    """Test backend health probing."""

    async def asyncSetUp(self):
        self.backend = await asyncio.start_server(self._accept, "127.0.0.1", 0)
        self.backend_port = self.backend.sockets[0].getsockname()[1]

    async def asyncTearDown(self):
        self.backend.close()
        await self.backend.wait_closed()

    async def _accept(self, reader, writer):
        writer.close()

    async def test_probe_tracks_backend(self):
        state = GatewayState()
        state.claim_boot_request()
        monitor = ServerMonitor(make_config(self.backend_port), state)

        self.assertTrue(await monitor.update_server_state())
        snapshot = state.snapshot()
        self.assertTrue(snapshot.reachable)
        self.assertFalse(snapshot.boot_requested)

        # A repeated success changes nothing
        self.assertTrue(await monitor.update_server_state())
        self.assertEqual(state.snapshot(), snapshot)

        self.backend.close()
        await self.backend.wait_closed()

        self.assertFalse(await monitor.update_server_state())
        self.assertFalse(state.snapshot().reachable)

    async def test_unreachable_backend_is_not_an_error(self):
        state = GatewayState()
        monitor = ServerMonitor(make_config(closed_port()), state)

        self.assertFalse(await monitor.update_server_state())
        self.assertFalse(state.reachable)

    async def test_monitoring_loop_start_stop(self):
        config = make_config(self.backend_port)
        config["timing"]["health_check_interval"] = 0.05
        state = GatewayState()
        monitor = ServerMonitor(config, state)

        await monitor.start_monitoring()
        for _ in range(50):
            if state.reachable:
                break
            await asyncio.sleep(0.05)
        await monitor.stop_monitoring()

        self.assertTrue(state.reachable)
        self.assertFalse(monitor.is_monitoring)
        self.assertTrue(monitor.monitor_task.done())


class TestPterodactylClient(unittest.IsolatedAsyncioTestCase):
    """Test the power signal call against a fake panel."""

    async def asyncSetUp(self):
        self.requests = []
        self.status = 204

        async def power(request):
            self.requests.append({
                "server": request.match_info["server"],
                "auth": request.headers.get("Authorization"),
                "body": await request.json()
            })
            return web.Response(status=self.status)

        app = web.Application()
        app.router.add_post('/api/client/servers/{server}/power', power)
        self.panel = test_utils.TestServer(app)
        await self.panel.start_server()

        config = make_config()
        config["pterodactyl"]["url"] = str(self.panel.make_url('/'))
        self.client = PterodactylClient(config)

    async def asyncTearDown(self):
        await self.panel.close()

    async def test_start_server_success(self):
        self.assertTrue(await self.client.start_server())
        self.assertEqual(self.requests, [{
            "server": "abcd1234",
            "auth": "Bearer ptlc_test",
            "body": {"signal": "start"}
        }])

    async def test_non_204_is_failure(self):
        self.status = 403
        self.assertFalse(await self.client.start_server())

    async def test_unreachable_panel_is_failure(self):
        config = make_config()
        config["pterodactyl"]["url"] = f"http://127.0.0.1:{closed_port()}"
        self.assertFalse(await PterodactylClient(config).start_server())

    def test_configuration_validation(self):
        self.assertTrue(self.client.validate_configuration())

        config = make_config()
        config["pterodactyl"]["api_key"] = ""
        self.assertFalse(PterodactylClient(config).validate_configuration())


class TestProxyRouting(unittest.IsolatedAsyncioTestCase):
    """End-to-end routing through the listener."""

    async def asyncSetUp(self):
        self.backend_connections = 0
        self.reply_after_eof = False
        self.backend = await asyncio.start_server(self._echo, "127.0.0.1", 0)
        backend_port = self.backend.sockets[0].getsockname()[1]

        self.wake_client = FakeWakeClient()
        self.manager = ProxyManager(make_config(backend_port), wake_client=self.wake_client)
        server = await self.manager.start_listener()
        self.proxy_port = server.sockets[0].getsockname()[1]

    async def asyncTearDown(self):
        self.manager.server.close()
        await self.manager.server.wait_closed()
        self.backend.close()
        await self.backend.wait_closed()

    async def _echo(self, reader, writer):
        self.backend_connections += 1
        try:
            if self.reply_after_eof:
                data = await reader.read()
                writer.write(b"reply:" + data)
                await writer.drain()
                return

            while True:
                data = await reader.read(1024)
                if not data:
                    break
                writer.write(b"echo:" + data)
                await writer.drain()
        finally:
            writer.close()

    async def _exchange(self, data: bytes) -> bytes:
        """Send data to the gateway and collect everything until it closes."""
        reader, writer = await asyncio.open_connection("127.0.0.1", self.proxy_port)
        writer.write(data)
        await writer.drain()
        reply = await asyncio.wait_for(reader.read(), timeout=5)
        writer.close()
        await writer.wait_closed()
        return reply

    async def test_status_query_while_offline(self):
        reply = await self._exchange(build_handshake(1))

        status = read_reply_json(reply)
        self.assertEqual(status["version"], {"name": "1.20.4", "protocol": 765})
        self.assertEqual(status["players"]["online"], 0)
        self.assertEqual(status["description"]["text"], "Join to start Server")
        self.assertEqual(self.wake_client.calls, 0)
        self.assertEqual(self.backend_connections, 0)

    async def test_join_attempts_while_offline(self):
        first = read_reply_json(await self._exchange(build_handshake(2)))
        self.assertEqual(first["text"], self.manager.config["minecraft"]["kick_message"])
        self.assertEqual(self.wake_client.calls, 1)

        second = read_reply_json(await self._exchange(build_handshake(2)))
        self.assertEqual(second["text"], self.manager.config["minecraft"]["kick_message_booting"])
        self.assertEqual(self.wake_client.calls, 1)
        self.assertEqual(self.backend_connections, 0)

    async def test_unknown_packet_closed_without_reply(self):
        self.assertEqual(await self._exchange(encode_frame(0x01, b'\x00' * 8)), b'')
        self.assertEqual(await self._exchange(b'\xff' * 5), b'')
        self.assertEqual(self.wake_client.calls, 0)

    async def test_passthrough_when_reachable(self):
        self.manager.state.record_probe(True)

        reader, writer = await asyncio.open_connection("127.0.0.1", self.proxy_port)
        handshake = build_handshake(2)
        writer.write(handshake)
        await writer.drain()
        reply = await asyncio.wait_for(reader.readexactly(len(handshake) + 5), timeout=5)
        writer.close()
        await writer.wait_closed()

        self.assertEqual(reply, b"echo:" + handshake)
        self.assertEqual(self.backend_connections, 1)
        self.assertEqual(self.wake_client.calls, 0)

    async def test_passthrough_keeps_reply_path_open_after_client_eof(self):
        """Test that a client half-close reaches the backend while its reply still flows back."""
        self.manager.state.record_probe(True)
        self.reply_after_eof = True

        reader, writer = await asyncio.open_connection("127.0.0.1", self.proxy_port)
        writer.write(b"hello")
        await writer.drain()
        writer.write_eof()

        reply = await asyncio.wait_for(reader.read(), timeout=5)
        writer.close()
        await writer.wait_closed()

        self.assertEqual(reply, b"reply:hello")
        self.assertEqual(self.backend_connections, 1)

    async def test_silent_client_is_dropped_after_read_timeout(self):
        """Test that an offline connection sending half a frame is closed after the read deadline."""
        loop = asyncio.get_running_loop()
        started = loop.time()

        self.assertEqual(await self._exchange(b'\x05\x00'), b'')
        self.assertEqual(await self._exchange(b''), b'')

        elapsed = loop.time() - started
        self.assertGreaterEqual(elapsed, 1.5)
        self.assertLess(elapsed, 4.5)
        self.assertEqual(self.wake_client.calls, 0)
        self.assertEqual(self.backend_connections, 0)

    async def test_initialize_requires_panel_credentials(self):
        config = make_config()
        config["pterodactyl"]["server_id"] = ""

        self.assertFalse(ProxyManager(config).initialize())
        self.assertTrue(ProxyManager(make_config()).initialize())

    async def test_backend_dial_failure_closes_client(self):
        self.manager.state.record_probe(True)
        self.manager.backend_port = closed_port()

        self.assertEqual(await self._exchange(b''), b'')
        self.assertEqual(self.backend_connections, 0)


if __name__ == '__main__':
    unittest.main()
