# SPDX-License-Identifier: MIT
# Copyright (c) 2026 ADNT Sarl <info@adnt.io>

"""
iBoot USB protocol - Python client library.

This package provides a Python interface to communicate with an iBoot
bootloader (recovery or DFU mode) over USB.

Example usage:
    from iboot_protocol import Session, ProductMode

    with Session(ProductMode.RECOVERY) as session:
        print(session.describe())

        # Send a command
        session.send_command("bgcolor 255 12 255")

        # Stage a file
        session.send_file(
            "iBEC.img3",
            progress_callback=lambda sent, total: print(f"{sent}/{total}")
        )

        # Read what the device printed
        print(session.drain_response(timeout_ms=500))
"""

from .config import SessionConfig
from .dispatcher import (
    Dispatcher,
    Exit,
    Raw,
    Reset,
    Result,
    Send,
    SetTimeout,
    parse_line,
    result_for_error,
)
from .protocol import (
    APPLE_VENDOR_ID,
    PACKET_SIZE,
    RESPONSE_SIZE,
    ControlRequest,
    ProductMode,
    Request,
    RequestType,
    StatusFlag,
    StatusResponse,
    TransferPlan,
    decode_response_text,
    decode_status,
    encode_command,
    encode_file_completion,
    encode_file_packet,
    encode_status_request,
    plan_transfer,
)
from .session import (
    CommandNotAllowedError,
    CommandResult,
    DeviceConfigError,
    DeviceNotFoundError,
    IBootError,
    SendError,
    Session,
    SessionClosedError,
    TransferError,
    TransportError,
    UnexpectedStatusError,
)

__version__ = "0.1.0"

__all__ = [
    # Config
    "SessionConfig",
    # Protocol types
    "APPLE_VENDOR_ID",
    "PACKET_SIZE",
    "RESPONSE_SIZE",
    "ControlRequest",
    "ProductMode",
    "Request",
    "RequestType",
    "StatusFlag",
    "StatusResponse",
    "TransferPlan",
    # Protocol encoding
    "decode_response_text",
    "decode_status",
    "encode_command",
    "encode_file_completion",
    "encode_file_packet",
    "encode_status_request",
    "plan_transfer",
    # Session
    "Session",
    "CommandResult",
    "IBootError",
    "DeviceNotFoundError",
    "DeviceConfigError",
    "CommandNotAllowedError",
    "TransportError",
    "SessionClosedError",
    "SendError",
    "TransferError",
    "UnexpectedStatusError",
    # Dispatcher
    "Dispatcher",
    "Result",
    "Exit",
    "Raw",
    "Reset",
    "Send",
    "SetTimeout",
    "parse_line",
    "result_for_error",
]
