"""Main proxy manager routing connections by backend health."""

import asyncio
import logging
import signal
from typing import Optional

from .boot_gate import BootGate
from .gateway_state import GatewayState
from .offline_responder import OfflineResponder
from .pterodactyl_client import PterodactylClient
from .server_monitor import ServerMonitor


logger = logging.getLogger(__name__)


RELAY_BUFFER_SIZE = 32 * 1024


class ProxyManager:
    """Central coordinator for the wake-on-connect gateway."""

    def __init__(self, config: dict, wake_client=None):
        self.config = config
        self.listen_address = config["proxy"]["listen_address"]
        self.listen_port = config["proxy"]["listen_port"]
        self.backend_host = config["server"]["host"]
        self.backend_port = config["server"]["port"]
        self.connection_timeout = config["timing"]["connection_timeout"]

        # Core components
        self.state = GatewayState()
        self.wake_client = wake_client or PterodactylClient(config)
        self.boot_gate = BootGate(self.state, self.wake_client)
        self.responder = OfflineResponder(config, self.boot_gate)
        self.server_monitor = ServerMonitor(config, self.state)

        self.server: Optional[asyncio.Server] = None

        # Control
        self.is_running = False
        self.shutdown_event = asyncio.Event()

    def initialize(self) -> bool:
        """Check that the wake client can be used."""
        validate = getattr(self.wake_client, "validate_configuration", None)
        if validate is not None and not validate():
            logger.error("Wake API configuration validation failed")
            return False

        logger.info("All components initialized successfully")
        return True

    async def start(self) -> bool:
        """Start health monitoring and the listener."""
        if self.is_running:
            logger.warning("Proxy is already running")
            return False

        try:
            logger.info("Starting wake-on-connect gateway...")
            self._setup_signal_handlers()

            await self.server_monitor.start_monitoring()
            await self.start_listener()

            self.is_running = True
            logger.info("Wake-on-connect gateway started successfully")
            return True

        except Exception as e:
            logger.error(f"Failed to start proxy: {e}")
            await self.server_monitor.stop_monitoring()
            return False

    async def start_listener(self) -> asyncio.Server:
        """Bind the client-facing listener."""
        self.server = await asyncio.start_server(
            self._handle_connection,
            self.listen_address,
            self.listen_port
        )

        bound = self.server.sockets[0].getsockname()
        logger.info(f"Proxy server listening on {bound[0]}:{bound[1]}")
        return self.server

    async def _handle_connection(self, reader: asyncio.StreamReader,
                                 writer: asyncio.StreamWriter) -> None:
        """Route one client connection by the current backend health."""
        try:
            if self.state.snapshot().reachable:
                await self._forward_connection(reader, writer)
            else:
                await self.responder.handle_client_connection(reader, writer)
        except Exception as e:
            logger.error(f"Unhandled error for connection from {writer.get_extra_info('peername')}: {e}")
            writer.close()

    async def _forward_connection(self, client_reader: asyncio.StreamReader,
                                  client_writer: asyncio.StreamWriter) -> None:
        """Forward a connection transparently to the main server."""
        client_addr = client_writer.get_extra_info('peername')

        try:
            server_reader, server_writer = await asyncio.wait_for(
                asyncio.open_connection(self.backend_host, self.backend_port),
                timeout=self.connection_timeout
            )
        except (asyncio.TimeoutError, OSError) as e:
            logger.error(f"Failed to connect to server {self.backend_host}:{self.backend_port} "
                         f"for {client_addr}: {e}")
            await self._close_writer(client_writer)
            return

        logger.info(f"New connection being handled from {client_addr}")

        try:
            await asyncio.gather(
                self._relay(client_reader, server_writer, "client->server"),
                self._relay(server_reader, client_writer, "server->client")
            )
        finally:
            await self._close_writer(server_writer)
            await self._close_writer(client_writer)

        logger.debug(f"Connection from {client_addr} finished")

    async def _relay(self, source: asyncio.StreamReader,
                     dest: asyncio.StreamWriter, direction: str) -> None:
        """Copy bytes one way. EOF is passed on as a half-close, an error closes the destination."""
        try:
            while True:
                data = await source.read(RELAY_BUFFER_SIZE)
                if not data:
                    break
                dest.write(data)
                await dest.drain()

            if dest.can_write_eof():
                dest.write_eof()
        except (ConnectionError, OSError) as e:
            logger.debug(f"Forwarding {direction} ended: {e}")
            await self._close_writer(dest)

    @staticmethod
    async def _close_writer(writer: asyncio.StreamWriter) -> None:
        if writer.is_closing():
            return
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass

    async def run_forever(self) -> None:
        """Run the proxy service until shutdown."""
        try:
            logger.info("Wake-on-connect gateway running...")
            await self.shutdown_event.wait()
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        """Shutdown the proxy service gracefully."""
        if not self.is_running:
            return

        logger.info("Shutting down wake-on-connect gateway...")
        self.is_running = False

        try:
            await self.server_monitor.stop_monitoring()

            if self.server:
                self.server.close()
                await self.server.wait_closed()

            logger.info("Wake-on-connect gateway shutdown complete")

        except Exception as e:
            logger.error(f"Error during shutdown: {e}")

    def _setup_signal_handlers(self) -> None:
        """Set up signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        for signame in ('SIGTERM', 'SIGINT'):
            if not hasattr(signal, signame):
                continue
            try:
                loop.add_signal_handler(getattr(signal, signame), self._request_shutdown, signame)
            except (NotImplementedError, RuntimeError):
                # Not supported on this platform or outside the main thread
                logger.debug(f"Cannot install handler for {signame}")

    def _request_shutdown(self, signame: str) -> None:
        logger.info(f"Received {signame}, initiating shutdown...")
        self.shutdown_event.set()
