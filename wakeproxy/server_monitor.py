"""Backend health checking that drives the gateway mode."""

import asyncio
import logging
from typing import Optional

from .gateway_state import GatewayState
from .utils import check_port_open, format_duration


logger = logging.getLogger(__name__)


class ServerMonitor:
    """Monitors main game server reachability and records it in the gateway state."""

    def __init__(self, config: dict, state: GatewayState):
        self.config = config
        self.state = state
        self.backend_host = config["server"]["host"]
        self.backend_port = config["server"]["port"]

        # Monitoring configuration
        self.health_check_interval = config["timing"]["health_check_interval"]
        self.server_check_timeout = config["timing"]["server_check_timeout"]

        # Monitoring task
        self.monitor_task: Optional[asyncio.Task] = None
        self.is_monitoring = False

    async def check_server_reachable(self) -> bool:
        """Check if the backend accepts TCP connections."""
        return await check_port_open(
            self.backend_host,
            self.backend_port,
            timeout=self.server_check_timeout
        )

    async def update_server_state(self) -> bool:
        """Probe the backend once and record the result. Returns reachability."""
        reachable = await self.check_server_reachable()

        previous_duration = self.state.record_probe(reachable)
        if previous_duration is not None:
            since = format_duration(previous_duration)
            if reachable:
                logger.info(f"Server health changed to online, time since last change: {since}")
            else:
                logger.warning(f"Server health changed to offline, time since last change: {since}")

        return reachable

    async def start_monitoring(self) -> None:
        """Start continuous server monitoring."""
        if self.is_monitoring:
            logger.warning("Server monitoring is already running")
            return

        self.is_monitoring = True
        self.monitor_task = asyncio.create_task(self._monitoring_loop())
        logger.info(f"Server monitoring started for {self.backend_host}:{self.backend_port} "
                    f"(interval: {self.health_check_interval}s)")

    async def stop_monitoring(self) -> None:
        """Stop server monitoring."""
        if not self.is_monitoring:
            return

        self.is_monitoring = False

        if self.monitor_task and not self.monitor_task.done():
            self.monitor_task.cancel()
            try:
                await self.monitor_task
            except asyncio.CancelledError:
                pass

        logger.info("Server monitoring stopped")

    async def _monitoring_loop(self) -> None:
        """Main monitoring loop."""
        while self.is_monitoring:
            try:
                await self.update_server_state()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error in monitoring loop: {e}")

            await asyncio.sleep(self.health_check_interval)
