#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
# Copyright (c) 2026 ADNT Sarl <info@adnt.io>

"""
Command shell for iBoot devices over USB.

Usage:
    python iboot_shell.py info
    python iboot_shell.py command bgcolor 255 12 255
    python iboot_shell.py --mode dfu send iBSS.img3
    python iboot_shell.py reset
    python iboot_shell.py shell

Requirements:
    pip install pyusb
"""

import argparse
import logging
import sys
from pathlib import Path

try:
    import usb.core
except ImportError:
    print("Error: pyusb not installed. Run: pip install pyusb")
    sys.exit(1)

from iboot_protocol import Dispatcher, ProductMode, Result, Session, SessionConfig
from iboot_protocol.dispatcher import Raw, Send, result_for_error
from iboot_protocol.session import DeviceConfigError, DeviceNotFoundError, IBootError

MODES = {
    "recovery": ProductMode.RECOVERY,
    "dfu": ProductMode.DFU,
    "wtf": ProductMode.WTF,
}


def parse_product_id(value: str) -> int:
    """Parse a hex USB product id such as 1281 or 0x1281."""
    try:
        product_id = int(value, 16)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a hex product id: {value!r}") from None
    if not 0 <= product_id <= 0xFFFF:
        raise argparse.ArgumentTypeError(f"product id out of range: {value!r}")
    return product_id


def parse_timeout(value: str) -> int:
    """Parse a positive timeout in milliseconds."""
    try:
        timeout_ms = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a number: {value!r}") from None
    if timeout_ms <= 0:
        raise argparse.ArgumentTypeError("timeout must be positive")
    return timeout_ms


def progress(sent: int, total: int):
    pct = sent * 100 // total if total else 100
    print(f"\rUploading: {pct:3d}% ({sent}/{total} bytes)", end="", flush=True)
    if sent >= total:
        print()


def cmd_info(session: Session) -> Result:
    """Print the connected device."""
    print("Device:")
    print(f"  Name:     {session.name or '<unknown>'}")
    print(f"  Serial:   {session.serial or '<unknown>'}")
    print(f"  Mode:     {session.mode!s} (PID 0x{session.product_id:04X})")
    print(f"  Endpoint: 0x{session.response_endpoint:02X}")
    return Result.SUCCESS


def cmd_command(dispatcher: Dispatcher, words: list) -> Result:
    """Send one command and print any reply."""
    result = dispatcher.dispatch(Raw(" ".join(words)))
    if result is Result.SUCCESS:
        dispatcher.print_pending()
    return result


def cmd_send(dispatcher: Dispatcher, path: Path) -> Result:
    """Stage a file on the device."""
    size = path.stat().st_size
    print(f"File: {path} ({size} bytes)")
    return dispatcher.dispatch(Send(path))


def cmd_reset(session: Session) -> Result:
    """Reset the device."""
    print("Resetting device... ", end="", flush=True)
    session.reset()
    print("OK")
    return Result.SUCCESS


def main():
    parser = argparse.ArgumentParser(
        description="Command shell for iBoot devices over USB"
    )
    parser.add_argument(
        "--mode", "-m",
        choices=sorted(MODES),
        default="recovery",
        help="Bootloader mode to look for (default: recovery)"
    )
    parser.add_argument(
        "--product-id",
        type=parse_product_id,
        help="Explicit USB product id in hex (overrides --mode)"
    )
    parser.add_argument(
        "--timeout", "-t",
        type=parse_timeout,
        default=500,
        help="Response read timeout in milliseconds"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Log every USB transfer"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # info command
    subparsers.add_parser("info", help="Show the connected device")

    # command command
    command_parser = subparsers.add_parser("command", help="Send one command")
    command_parser.add_argument("words", nargs="+", help="Command text")

    # send command
    send_parser = subparsers.add_parser("send", help="Stage a file on the device")
    send_parser.add_argument("file", type=Path, help="File to send")

    # reset command
    subparsers.add_parser("reset", help="Reset the device")

    # shell command
    subparsers.add_parser("shell", help="Interactive shell (/send, /timeout, /reset, /exit)")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    if args.command == "send" and not args.file.exists():
        print(f"Error: File not found: {args.file}")
        sys.exit(1)

    config = SessionConfig(response_timeout_ms=args.timeout)
    product_id = args.product_id if args.product_id is not None else MODES[args.mode]

    try:
        session = Session(product_id, config)
    except (DeviceNotFoundError, DeviceConfigError) as e:
        print(f"Error: {e}")
        sys.exit(result_for_error(e).exit_code)
    except usb.core.NoBackendError as e:
        print(f"Error: no USB backend available: {e}")
        sys.exit(1)

    dispatcher = Dispatcher(session, config, progress_callback=progress)
    try:
        if args.command == "info":
            result = cmd_info(session)
        elif args.command == "command":
            result = cmd_command(dispatcher, args.words)
        elif args.command == "send":
            result = cmd_send(dispatcher, args.file)
        elif args.command == "reset":
            result = cmd_reset(session)
        else:
            print(session.describe())
            result = dispatcher.run()
    except IBootError as e:
        result = result_for_error(e)
        print(f"Error: {e}")
    finally:
        session.close()

    sys.exit(result.exit_code)


if __name__ == "__main__":
    main()
