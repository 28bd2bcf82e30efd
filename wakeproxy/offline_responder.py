"""Minecraft protocol responses served while the backend is offline."""

import asyncio
import json
import logging

from .boot_gate import BootGate, BootResult
from .frame_codec import FrameDecodeError, PacketBuffer, encode_frame, read_frame
from .handshake import Intent, classify, parse_handshake


logger = logging.getLogger(__name__)


STATUS_RESPONSE_PACKET_ID = 0x00
LOGIN_DISCONNECT_PACKET_ID = 0x00


class OfflineResponder:
    """Answers a single handshake while the main server is down."""

    def __init__(self, config: dict, boot_gate: BootGate):
        self.config = config
        self.minecraft_config = config["minecraft"]
        self.boot_gate = boot_gate
        self.read_timeout = config["timing"]["client_read_timeout"]

        self.server_info = {
            "version": {
                "name": self.minecraft_config["version_name"],
                "protocol": self.minecraft_config["protocol_version"]
            },
            "players": {
                "max": self.minecraft_config["max_players_display"],
                "online": 0
            },
            "description": {
                "text": self.minecraft_config["motd_offline"],
                "color": self.minecraft_config["motd_color"]
            }
        }

    def create_status_response(self) -> str:
        """Create a status response JSON string."""
        return json.dumps(self.server_info, separators=(',', ':'))

    def create_status_response_packet(self) -> bytes:
        """Create a status response packet."""
        buffer = PacketBuffer()
        buffer.write_string(self.create_status_response())
        return encode_frame(STATUS_RESPONSE_PACKET_ID, buffer.to_bytes())

    def create_disconnect_packet(self, reason: str) -> bytes:
        """Create a login disconnect packet with a reason."""
        disconnect_json = json.dumps({
            "text": reason,
            "color": self.minecraft_config["kick_color"]
        })

        buffer = PacketBuffer()
        buffer.write_string(disconnect_json)
        return encode_frame(LOGIN_DISCONNECT_PACKET_ID, buffer.to_bytes())

    def kick_message_for(self, result: BootResult) -> str:
        """Pick the disconnect text for the outcome of a boot request."""
        if result == BootResult.ALREADY_REQUESTED:
            return self.minecraft_config["kick_message_booting"]
        return self.minecraft_config["kick_message"]

    async def handle_client_connection(self, reader: asyncio.StreamReader,
                                       writer: asyncio.StreamWriter) -> Intent:
        """
        Handle one offline Minecraft connection: read a frame, reply once, close.

        Returns:
            Intent: what the client asked for (UNKNOWN on any read failure)
        """
        client_addr = writer.get_extra_info('peername')

        try:
            try:
                frame = await asyncio.wait_for(read_frame(reader), timeout=self.read_timeout)
            except asyncio.TimeoutError:
                logger.debug(f"Handshake timeout from {client_addr}")
                return Intent.UNKNOWN
            except FrameDecodeError as e:
                logger.debug(f"Invalid frame from {client_addr}: {e}")
                return Intent.UNKNOWN

            intent = classify(frame)

            if intent == Intent.STATUS_QUERY:
                logger.info(f"Server list ping received from {client_addr}")
                writer.write(self.create_status_response_packet())
                await writer.drain()

            elif intent == Intent.JOIN_ATTEMPT:
                handshake = parse_handshake(frame)
                logger.info(f"Server join received from {client_addr} "
                            f"(protocol {handshake.protocol_version}, "
                            f"address {handshake.server_address}:{handshake.server_port})")
                result = await self.boot_gate.request_boot(f"join attempt from {client_addr}")
                writer.write(self.create_disconnect_packet(self.kick_message_for(result)))
                await writer.drain()

            else:
                logger.debug(f"Unrecognised packet 0x{frame.packet_id:02x} from {client_addr}, closing")

            return intent

        except Exception as e:
            logger.error(f"Error handling offline connection from {client_addr}: {e}")
            return Intent.UNKNOWN

        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                pass
