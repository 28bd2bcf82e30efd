"""Pterodactyl client API caller used to power on the game server."""

import asyncio
import logging
from typing import Any, Dict

import aiohttp


logger = logging.getLogger(__name__)


class PterodactylClient:
    """Sends power signals to a server through the Pterodactyl client API."""

    def __init__(self, config: dict):
        self.config = config
        panel_config = config["pterodactyl"]
        self.panel_url = panel_config["url"].rstrip('/')
        self.api_key = panel_config["api_key"]
        self.server_id = panel_config["server_id"]
        self.request_timeout = config["timing"]["wake_request_timeout"]

    @property
    def power_url(self) -> str:
        return f"{self.panel_url}/api/client/servers/{self.server_id}/power"

    async def send_power_signal(self, signal: str) -> bool:
        """Send a power signal; the panel answers 204 No Content on success."""
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json"
        }
        timeout = aiohttp.ClientTimeout(total=self.request_timeout)

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(self.power_url, json={"signal": signal}, headers=headers) as response:
                    if response.status == 204:
                        logger.info(f"Power signal '{signal}' accepted for server {self.server_id}")
                        return True

                    body = await response.text()
                    logger.error(f"Power signal '{signal}' rejected for server {self.server_id}: "
                                 f"status {response.status}, body {body[:200]!r}")
                    return False

        except asyncio.TimeoutError:
            logger.error(f"Power signal '{signal}' timed out after {self.request_timeout}s")
            return False
        except aiohttp.ClientError as e:
            logger.error(f"Error sending power signal '{signal}' to {self.panel_url}: {e}")
            return False

    async def start_server(self) -> bool:
        """Ask the panel to start the server."""
        return await self.send_power_signal("start")

    def validate_configuration(self) -> bool:
        """Validate Pterodactyl configuration."""
        problems = []
        if not self.panel_url.startswith(("http://", "https://")):
            problems.append(f"invalid panel URL {self.panel_url!r}")
        if not self.api_key:
            problems.append("API key is not set")
        if not self.server_id:
            problems.append("server ID is not set")

        if problems:
            logger.error(f"Pterodactyl configuration validation failed: {', '.join(problems)}")
            return False

        logger.debug("Pterodactyl configuration validation successful")
        return True

    def get_request_info(self) -> Dict[str, Any]:
        """Get information about the wake request target."""
        return {
            "power_url": self.power_url,
            "server_id": self.server_id,
            "api_key_set": bool(self.api_key),
            "request_timeout": self.request_timeout
        }
