# SPDX-License-Identifier: MIT
# Copyright (c) 2026 ADNT Sarl <info@adnt.io>

"""
iBoot USB protocol definitions and request builders.

This module defines the control-request shapes used to talk to an
iBoot bootloader (recovery / DFU mode) and the packet plan used when
staging a file on the device.
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import Iterator, Optional, Union

APPLE_VENDOR_ID = 0x05AC

# Fixed by the bootloader's receive buffer
PACKET_SIZE = 2048
RESPONSE_SIZE = 2048
STATUS_SIZE = 6
STATUS_FLAG_OFFSET = 4

REBOOT_COMMAND = "reboot"


class ProductMode(IntEnum):
    """USB product ids exposed by the bootloader in each mode."""
    OTHER = 0
    RECOVERY = 0x1281
    DFU = 0x1222
    WTF = 0x1227

    def __str__(self) -> str:
        return self.name.lower()

    @classmethod
    def classify(cls, product_id: int) -> "ProductMode":
        """Map a raw product id to a mode, OTHER when unknown."""
        try:
            mode = cls(product_id)
        except ValueError:
            return cls.OTHER
        return mode


class RequestType(IntEnum):
    """bmRequestType values used by the bootloader."""
    VENDOR_OUT = 0x40
    CLASS_INTERFACE_OUT = 0x21
    CLASS_INTERFACE_IN = 0xA1


class Request(IntEnum):
    """bRequest codes."""
    COMMAND = 0x00
    FILE = 0x01
    STATUS = 0x03


class StatusFlag(IntEnum):
    """Values expected at byte 4 of a status response."""
    PACKET_RECEIVED = 5
    COMPLETION_FIRST = 6
    COMPLETION_SECOND = 7

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class ControlRequest:
    """A single control transfer, ready for ``Device.ctrl_transfer``."""
    request_type: int
    request: int
    value: int = 0
    index: int = 0
    data_or_length: Union[bytes, int, None] = None

    @property
    def is_in(self) -> bool:
        return bool(self.request_type & 0x80)


@dataclass(frozen=True)
class StatusResponse:
    """Six-byte status reply; only the flag byte is meaningful."""
    raw: bytes

    @property
    def flag(self) -> Optional[int]:
        if len(self.raw) <= STATUS_FLAG_OFFSET:
            return None
        return self.raw[STATUS_FLAG_OFFSET]

    @property
    def is_complete(self) -> bool:
        return len(self.raw) == STATUS_SIZE

    def matches(self, expected_flag: int) -> bool:
        return self.is_complete and self.flag == expected_flag


@dataclass(frozen=True)
class TransferPlan:
    """
    Packet layout of a payload.

    Packets are numbered from 0 and cover the payload contiguously;
    only the last one may be shorter than ``packet_size``.
    """
    length: int
    packet_size: int = PACKET_SIZE

    def __post_init__(self):
        if self.length < 0:
            raise ValueError("Payload length cannot be negative")
        if self.packet_size <= 0:
            raise ValueError("Packet size must be positive")

    @property
    def packet_count(self) -> int:
        return -(-self.length // self.packet_size)

    @property
    def last_packet_size(self) -> int:
        if self.length == 0:
            return 0
        return self.length % self.packet_size or self.packet_size

    @property
    def completion_value(self) -> int:
        """wValue of the zero-length request that ends the transfer."""
        return self.packet_count

    def packets(self) -> Iterator[tuple[int, int, int]]:
        """Yield ``(sequence, start, stop)`` for every packet."""
        for sequence in range(self.packet_count):
            start = sequence * self.packet_size
            yield sequence, start, min(start + self.packet_size, self.length)

    def packet_sizes(self) -> list[int]:
        return [stop - start for _, start, stop in self.packets()]


def plan_transfer(length: int, packet_size: int = PACKET_SIZE) -> TransferPlan:
    """Build the packet plan for a payload of ``length`` bytes."""
    return TransferPlan(length=length, packet_size=packet_size)


def encode_command(text: str) -> ControlRequest:
    """
    Encode a textual bootloader command.

    Args:
        text: Command line, e.g. "setenv auto-boot true"

    Returns:
        ControlRequest carrying the NUL-terminated command
    """
    return ControlRequest(
        request_type=RequestType.VENDOR_OUT,
        request=Request.COMMAND,
        data_or_length=text.encode("utf-8") + b"\x00",
    )


def encode_status_request() -> ControlRequest:
    """Encode the fixed six-byte status request."""
    return ControlRequest(
        request_type=RequestType.CLASS_INTERFACE_IN,
        request=Request.STATUS,
        data_or_length=STATUS_SIZE,
    )


def encode_file_packet(sequence: int, chunk: bytes) -> ControlRequest:
    """Encode one packet of a file transfer."""
    if sequence < 0:
        raise ValueError("Packet sequence cannot be negative")
    return ControlRequest(
        request_type=RequestType.CLASS_INTERFACE_OUT,
        request=Request.FILE,
        value=sequence,
        data_or_length=bytes(chunk),
    )


def encode_file_completion(packet_count: int) -> ControlRequest:
    """
    Encode the zero-length request that ends a file transfer.

    The device keys on the empty payload; the value is the number of
    packets that were sent.
    """
    return ControlRequest(
        request_type=RequestType.CLASS_INTERFACE_OUT,
        request=Request.FILE,
        value=packet_count,
        data_or_length=b"",
    )


def decode_status(data) -> StatusResponse:
    """Wrap whatever ``ctrl_transfer`` returned for a status request."""
    return StatusResponse(raw=bytes(data) if data is not None else b"")


def decode_response_text(data: bytes) -> str:
    """Render drained device output as text, stopping at the first NUL."""
    end = data.find(b"\x00")
    if end != -1:
        data = data[:end]
    return data.decode("utf-8", errors="replace")
