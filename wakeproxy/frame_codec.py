"""Length-prefixed packet framing and VarInt encoding for the Minecraft protocol."""

import asyncio
import struct
from dataclasses import dataclass
from typing import Tuple


MAX_VARINT_BYTES = 5
MAX_VARINT_VALUE = 0xFFFFFFFF

# Largest packet the vanilla client/server will accept (3-byte VarInt length)
MAX_FRAME_LENGTH = 2097151


class FrameDecodeError(Exception):
    """Base class for frame decoding failures."""


class TruncatedFrame(FrameDecodeError):
    """The stream or buffer ended in the middle of a frame."""


class MalformedVarInt(FrameDecodeError):
    """A VarInt used more than five bytes."""


class LengthMismatch(FrameDecodeError):
    """The declared frame length does not fit its contents."""


@dataclass(frozen=True)
class Frame:
    """One decoded packet: declared length, packet ID and the remaining payload."""
    length: int
    packet_id: int
    payload: bytes


def encode_varint(value: int) -> bytes:
    """Encode a non-negative integer as a VarInt."""
    if value < 0:
        raise ValueError("VarInt cannot be negative")
    if value > MAX_VARINT_VALUE:
        raise ValueError(f"VarInt value {value} exceeds 32 bits")

    data = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value != 0:
            byte |= 0x80
        data.append(byte)
        if value == 0:
            break

    return bytes(data)


def _check_final_byte(index: int, byte: int) -> None:
    # The fifth byte may only carry bits 28-31
    if index == MAX_VARINT_BYTES - 1 and byte & 0xF0:
        raise MalformedVarInt(f"VarInt exceeds 32 bits or is longer than {MAX_VARINT_BYTES} bytes")


def decode_varint(data: bytes, pos: int = 0) -> Tuple[int, int]:
    """
    Decode a VarInt from data starting at pos.

    Returns:
        Tuple[int, int]: (value, position after the VarInt)
    """
    value = 0

    for index in range(MAX_VARINT_BYTES):
        if pos >= len(data):
            raise TruncatedFrame("Unexpected end of buffer while reading VarInt")

        byte = data[pos]
        pos += 1
        _check_final_byte(index, byte)
        value |= (byte & 0x7F) << (7 * index)

        if (byte & 0x80) == 0:
            return value, pos

    raise MalformedVarInt(f"VarInt longer than {MAX_VARINT_BYTES} bytes")


def encode_frame(packet_id: int, payload: bytes = b'') -> bytes:
    """Create a complete packet with its length prefix."""
    body = encode_varint(packet_id) + payload
    return encode_varint(len(body)) + body


def _frame_from_body(length: int, body: bytes) -> Frame:
    try:
        packet_id, pos = decode_varint(body)
    except TruncatedFrame as e:
        raise LengthMismatch(f"Declared length {length} is too short for the packet ID") from e

    return Frame(length=length, packet_id=packet_id, payload=body[pos:])


def _check_length(length: int, max_length: int) -> None:
    if length <= 0:
        raise LengthMismatch(f"Invalid frame length {length}")
    if length > max_length:
        raise LengthMismatch(f"Frame length {length} exceeds limit of {max_length}")


def decode_frame(data: bytes, max_length: int = MAX_FRAME_LENGTH) -> Frame:
    """
    Decode the first frame in data.

    Bytes after the frame (for example a pipelined next packet) are ignored.
    """
    length, pos = decode_varint(data)
    _check_length(length, max_length)

    end = pos + length
    if end > len(data):
        raise TruncatedFrame(f"Frame declares {length} bytes but only {len(data) - pos} are available")

    return _frame_from_body(length, data[pos:end])


async def read_varint(reader: asyncio.StreamReader) -> int:
    """Read a VarInt from the stream one byte at a time."""
    value = 0

    for index in range(MAX_VARINT_BYTES):
        try:
            byte = (await reader.readexactly(1))[0]
        except asyncio.IncompleteReadError as e:
            raise TruncatedFrame("Connection closed while reading VarInt") from e

        _check_final_byte(index, byte)
        value |= (byte & 0x7F) << (7 * index)
        if (byte & 0x80) == 0:
            return value

    raise MalformedVarInt(f"VarInt longer than {MAX_VARINT_BYTES} bytes")


async def read_frame(reader: asyncio.StreamReader, max_length: int = MAX_FRAME_LENGTH) -> Frame:
    """Read exactly one frame from the stream, never reading past its end."""
    length = await read_varint(reader)
    _check_length(length, max_length)

    try:
        body = await reader.readexactly(length)
    except asyncio.IncompleteReadError as e:
        raise TruncatedFrame(
            f"Connection closed after {len(e.partial)} of {length} frame bytes"
        ) from e

    return _frame_from_body(length, body)


class PacketBuffer:
    """Handles packet payload reads and writes."""

    def __init__(self, data: bytes = b''):
        self.data = data
        self.pos = 0

    def read_varint(self) -> int:
        """Read a VarInt from the buffer."""
        value, self.pos = decode_varint(self.data, self.pos)
        return value

    def write_varint(self, value: int) -> None:
        """Write a VarInt to the buffer."""
        self.data += encode_varint(value)

    def read_string(self) -> str:
        """Read a UTF-8 string from the buffer."""
        length = self.read_varint()
        if self.pos + length > len(self.data):
            raise TruncatedFrame("String length exceeds buffer size")

        string_data = self.data[self.pos:self.pos + length]
        self.pos += length

        return string_data.decode('utf-8')

    def write_string(self, value: str) -> None:
        """Write a UTF-8 string to the buffer."""
        encoded = value.encode('utf-8')
        self.write_varint(len(encoded))
        self.data += encoded

    def read_ushort(self) -> int:
        """Read an unsigned short (2 bytes, big-endian)."""
        if self.pos + 2 > len(self.data):
            raise TruncatedFrame("Not enough data for unsigned short")

        value = struct.unpack('>H', self.data[self.pos:self.pos + 2])[0]
        self.pos += 2
        return value

    def write_ushort(self, value: int) -> None:
        """Write an unsigned short (2 bytes, big-endian)."""
        self.data += struct.pack('>H', value)

    def remaining(self) -> int:
        """Get number of remaining bytes in buffer."""
        return len(self.data) - self.pos

    def to_bytes(self) -> bytes:
        """Get the complete buffer as bytes."""
        return self.data
