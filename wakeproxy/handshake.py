"""Classification of the client handshake into a status query or a join attempt."""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .frame_codec import Frame, FrameDecodeError, PacketBuffer


logger = logging.getLogger(__name__)


HANDSHAKE_PACKET_ID = 0x00

NEXT_STATE_STATUS = 0x01
NEXT_STATE_LOGIN = 0x02


class Intent(Enum):
    """What a client wants from the offline gateway."""
    STATUS_QUERY = "status_query"
    JOIN_ATTEMPT = "join_attempt"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Handshake:
    """Decoded handshake packet fields."""
    protocol_version: int
    server_address: str
    server_port: int
    next_state: int


def parse_handshake(frame: Frame) -> Optional[Handshake]:
    """Parse a handshake frame, returning None for any other packet shape."""
    if frame.packet_id != HANDSHAKE_PACKET_ID:
        return None

    buffer = PacketBuffer(frame.payload)
    try:
        protocol_version = buffer.read_varint()
        server_address = buffer.read_string()
        server_port = buffer.read_ushort()
        next_state = buffer.read_varint()
    except (FrameDecodeError, UnicodeDecodeError) as e:
        logger.debug(f"Failed to parse handshake packet: {e}")
        return None

    if buffer.remaining():
        logger.debug(f"Handshake packet has {buffer.remaining()} trailing bytes")
        return None

    return Handshake(
        protocol_version=protocol_version,
        server_address=server_address,
        server_port=server_port,
        next_state=next_state  # 1 = status, 2 = login
    )


def classify(frame: Frame) -> Intent:
    """Determine the client's intent from its first frame."""
    if frame.packet_id != HANDSHAKE_PACKET_ID or not frame.payload:
        return Intent.UNKNOWN

    # The next-state VarInt is the last field, so its value is the terminal byte
    marker = frame.payload[-1]
    if marker not in (NEXT_STATE_STATUS, NEXT_STATE_LOGIN):
        return Intent.UNKNOWN

    handshake = parse_handshake(frame)
    if handshake is None or handshake.next_state != marker:
        return Intent.UNKNOWN

    if marker == NEXT_STATE_LOGIN:
        return Intent.JOIN_ATTEMPT
    return Intent.STATUS_QUERY
