# SPDX-License-Identifier: MIT
# Copyright (c) 2026 ADNT Sarl <info@adnt.io>

"""
USB session with an iBoot bootloader.

Handles device discovery and configuration, text commands, staged file
transfers with their status handshake, and draining device output.
"""

import logging
from enum import Enum
from pathlib import Path
from typing import Callable, Iterator, Optional

import usb.core
import usb.util

from .config import SessionConfig
from .protocol import (
    RESPONSE_SIZE,
    REBOOT_COMMAND,
    ControlRequest,
    ProductMode,
    StatusFlag,
    StatusResponse,
    decode_status,
    encode_command,
    encode_file_completion,
    encode_file_packet,
    encode_status_request,
    plan_transfer,
)

logger = logging.getLogger(__name__)

CONTROL_INTERFACE = 0


class IBootError(Exception):
    """Base exception for iBoot session errors."""
    pass


class DeviceNotFoundError(IBootError):
    """No device matched the vendor/product ids."""
    pass


class DeviceConfigError(IBootError):
    """The device was found but could not be configured."""
    pass


class CommandNotAllowedError(IBootError):
    """Text commands are not accepted in the session's product mode."""
    pass


class TransportError(IBootError):
    """A single USB transfer failed."""
    pass


class SessionClosedError(TransportError):
    """Operation attempted on a closed session."""
    pass


class SendError(TransportError):
    """A text command could not be delivered."""
    pass


class TransferError(TransportError):
    """A file packet or the completion request could not be delivered."""

    def __init__(self, message: str, sequence: Optional[int] = None):
        super().__init__(message)
        self.sequence = sequence


class UnexpectedStatusError(IBootError):
    """The device answered a status request with the wrong flag."""

    def __init__(self, expected: int, actual: Optional[int]):
        actual_desc = "none" if actual is None else str(actual)
        super().__init__(f"Expected status flag {expected}, got {actual_desc}")
        self.expected = expected
        self.actual = actual


class CommandResult(Enum):
    """Outcome of a successfully handled text command."""
    OK = "ok"
    REBOOTING = "rebooting"


class Session:
    """
    USB session with a bootloader-mode device.

    Opening happens in the constructor; a failed open leaves nothing
    claimed. Can be used as a context manager:
        with Session(ProductMode.RECOVERY) as s:
            s.send_command("bgcolor 255 12 255")
    """

    def __init__(self, product_id: int, config: Optional[SessionConfig] = None):
        """
        Find, open and configure a device.

        Args:
            product_id: USB product id, usually a ProductMode member
            config: Session settings (defaults to SessionConfig())

        Raises:
            DeviceNotFoundError: If no matching device is attached
            DeviceConfigError: If configuration or interface setup fails
        """
        self._config = config or SessionConfig()
        self._product_id = int(product_id)
        self._mode = ProductMode.classify(self._product_id)
        self._dev = None
        self._interface: Optional[int] = None
        self._endpoint: Optional[int] = None
        self._name: Optional[str] = None
        self._serial: Optional[str] = None

        dev = usb.core.find(
            idVendor=self._config.vendor_id, idProduct=self._product_id
        )
        if dev is None:
            raise DeviceNotFoundError(
                f"No device found in {self._mode!s} mode "
                f"(VID=0x{self._config.vendor_id:04X}, PID=0x{self._product_id:04X})"
            )
        self._dev = dev

        try:
            self._configure()
        except Exception:
            self.close()
            raise

        self._name = _read_string(dev, "product")
        self._serial = _read_string(dev, "serial_number")
        logger.info(
            "Opened %s device (interface %d, response endpoint 0x%02X)",
            self._mode, self._interface, self._endpoint,
        )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    @property
    def is_open(self) -> bool:
        return self._dev is not None

    @property
    def config(self) -> SessionConfig:
        return self._config

    @property
    def mode(self) -> ProductMode:
        return self._mode

    @property
    def product_id(self) -> int:
        return self._product_id

    @property
    def name(self) -> Optional[str]:
        return self._name

    @property
    def serial(self) -> Optional[str]:
        return self._serial

    @property
    def response_endpoint(self) -> Optional[int]:
        return self._endpoint

    def describe(self) -> str:
        """One-line description of the connected device."""
        name = self._name or "<unknown device>"
        if self._serial:
            return f"{name} [{self._mode!s}] {self._serial}"
        return f"{name} [{self._mode!s}]"

    def close(self):
        """
        Release the interface and the device.

        Safe to call more than once and on a partially opened session.
        A failing release step is logged and the remaining steps still run.
        """
        dev, self._dev = self._dev, None
        if dev is None:
            return

        if self._interface is not None:
            try:
                usb.util.release_interface(dev, self._interface)
            except usb.core.USBError as exc:
                logger.warning("Failed to release interface %d: %s", self._interface, exc)
            self._interface = None

        try:
            usb.util.dispose_resources(dev)
        except usb.core.USBError as exc:
            logger.warning("Failed to dispose device resources: %s", exc)

        self._endpoint = None
        self._name = None
        self._serial = None
        logger.info("Session closed")

    def reset(self):
        """
        Reset the device and close the session.

        The session cannot be used afterwards, even if the reset fails.

        Raises:
            TransportError: If the reset request fails
        """
        dev = self._require_open()
        logger.info("Resetting device")
        try:
            dev.reset()
        except usb.core.USBError as exc:
            raise TransportError(f"Device reset failed: {exc}") from exc
        finally:
            self.close()

    def send_command(self, text: str) -> CommandResult:
        """
        Send a text command to the bootloader.

        The device drops off the bus when it reboots, so a failed
        "reboot" is expected; the session is closed in that case.

        Returns:
            CommandResult.REBOOTING for "reboot", CommandResult.OK otherwise

        Raises:
            CommandNotAllowedError: If the product mode refuses commands
            SendError: If the transfer fails
        """
        self._require_open()
        if not self._config.allows_commands(self._mode):
            raise CommandNotAllowedError(f"Commands are not accepted in {self._mode!s} mode")

        rebooting = text == REBOOT_COMMAND
        try:
            self._control(encode_command(text))
        except usb.core.USBError as exc:
            if not rebooting:
                raise SendError(f"Failed to send command {text!r}: {exc}") from exc
            logger.debug("Device went away during reboot: %s", exc)

        if rebooting:
            self.close()
            return CommandResult.REBOOTING
        return CommandResult.OK

    def poll_status(self, expected_flag: int) -> StatusResponse:
        """
        Request the device status and check its flag byte.

        Raises:
            TransportError: If the status request fails
            UnexpectedStatusError: If the flag differs or the reply is short
        """
        try:
            data = self._control(encode_status_request())
        except usb.core.USBError as exc:
            raise TransportError(f"Status request failed: {exc}") from exc

        status = decode_status(data)
        if not status.matches(expected_flag):
            raise UnexpectedStatusError(expected_flag, status.flag)
        return status

    def send_buffer(
        self,
        payload: bytes,
        progress_callback: Optional[Callable[[int, int], None]] = None,
    ) -> None:
        """
        Stage a payload on the device.

        Every packet is acknowledged with a status poll before the next
        one goes out, then the zero-length completion request and two
        more polls finish the transfer. The first failure aborts.

        Args:
            payload: Complete file contents
            progress_callback: Optional callback(bytes_sent, total_bytes)

        Raises:
            TransferError: If a packet or the completion request fails
            TransportError: If a status request fails
            UnexpectedStatusError: If the device reports an unexpected flag
        """
        self._require_open()
        plan = plan_transfer(len(payload))
        logger.info("Sending %d bytes in %d packets", plan.length, plan.packet_count)

        with memoryview(payload) as view:
            for sequence, start, stop in plan.packets():
                self._send_file_request(encode_file_packet(sequence, view[start:stop]), sequence)
                self.poll_status(StatusFlag.PACKET_RECEIVED)

                if progress_callback:
                    progress_callback(stop, plan.length)

            self._send_file_request(
                encode_file_completion(plan.completion_value), plan.completion_value
            )
            self.poll_status(StatusFlag.COMPLETION_FIRST)
            self.poll_status(StatusFlag.COMPLETION_SECOND)

        logger.info("Transfer of %d bytes complete", plan.length)

    def send_file(
        self,
        path: Path,
        progress_callback: Optional[Callable[[int, int], None]] = None,
    ) -> int:
        """
        Stage a file on the device.

        The whole file is read before the first packet is sent.

        Returns:
            Number of bytes transferred

        Raises:
            FileNotFoundError: If the file does not exist
        """
        payload = Path(path).read_bytes()
        self.send_buffer(payload, progress_callback)
        return len(payload)

    def drain_response(self, timeout_ms: Optional[int] = None) -> bytes:
        """
        Read pending device output from the bulk IN endpoint.

        Args:
            timeout_ms: Read timeout (defaults to config.response_timeout_ms)

        Returns:
            The bytes read; empty when the device had nothing to say

        Raises:
            TransportError: On any failure other than a timeout
            ValueError: If timeout_ms is not positive
        """
        dev = self._require_open()
        if timeout_ms is None:
            timeout_ms = self._config.response_timeout_ms
        if timeout_ms <= 0:
            raise ValueError("Timeout must be positive")

        try:
            data = dev.read(self._endpoint, RESPONSE_SIZE, timeout_ms)
        except usb.core.USBTimeoutError:
            return b""
        except usb.core.USBError as exc:
            raise TransportError(f"Response read failed: {exc}") from exc

        logger.debug("Drained %d bytes", len(data))
        return bytes(data)

    def _require_open(self):
        if self._dev is None:
            raise SessionClosedError("Session is closed")
        return self._dev

    def _control(self, request: ControlRequest):
        """Issue one control transfer; USBError propagates to the caller."""
        dev = self._require_open()
        logger.debug(
            "ctrl type=0x%02X req=0x%02X value=%d data=%s",
            request.request_type, request.request, request.value,
            request.data_or_length if request.is_in else len(request.data_or_length),
        )
        return dev.ctrl_transfer(
            request.request_type,
            request.request,
            request.value,
            request.index,
            request.data_or_length,
            self._config.control_timeout_ms,
        )

    def _send_file_request(self, request: ControlRequest, sequence: int):
        try:
            written = self._control(request)
        except usb.core.USBError as exc:
            raise TransferError(f"File packet {sequence} failed: {exc}", sequence) from exc

        expected = len(request.data_or_length)
        if written != expected:
            raise TransferError(
                f"File packet {sequence} short write: {written}/{expected} bytes", sequence
            )

    def _configure(self):
        """Select the configuration and find the response endpoint."""
        try:
            self._dev.set_configuration(self._config.configuration)
        except (usb.core.USBError, ValueError) as exc:
            # pyusb raises ValueError for an unknown configuration value
            raise DeviceConfigError(
                f"Could not set configuration {self._config.configuration}: {exc}"
            ) from exc

        for intf in self._candidate_interfaces():
            number = intf.bInterfaceNumber
            self._claim(number)
            endpoint = _find_bulk_in(intf)
            if endpoint is not None:
                self._endpoint = endpoint
                return
            logger.debug("Interface %d has no bulk IN endpoint", number)
            self._release_candidate(number)

        raise DeviceConfigError("No interface with a bulk IN endpoint found")

    def _candidate_interfaces(self) -> Iterator:
        try:
            cfg = self._dev.get_active_configuration()
        except usb.core.USBError as exc:
            raise DeviceConfigError(f"Could not read configuration: {exc}") from exc

        for intf in cfg:
            if intf.bInterfaceNumber != CONTROL_INTERFACE:
                yield intf

    def _claim(self, number: int):
        try:
            if self._dev.is_kernel_driver_active(number):
                self._dev.detach_kernel_driver(number)
                logger.debug("Detached kernel driver from interface %d", number)
        except (NotImplementedError, usb.core.USBError) as exc:
            # Not supported on every platform
            logger.debug("Kernel driver check skipped for interface %d: %s", number, exc)

        try:
            usb.util.claim_interface(self._dev, number)
        except usb.core.USBError as exc:
            raise DeviceConfigError(f"Could not claim interface {number}: {exc}") from exc
        self._interface = number

    def _release_candidate(self, number: int):
        try:
            usb.util.release_interface(self._dev, number)
        except usb.core.USBError as exc:
            raise DeviceConfigError(f"Could not release interface {number}: {exc}") from exc
        self._interface = None


def _find_bulk_in(intf) -> Optional[int]:
    """Return the address of the first bulk IN endpoint of an interface."""
    for ep in intf:
        if (
            usb.util.endpoint_direction(ep.bEndpointAddress) == usb.util.ENDPOINT_IN
            and usb.util.endpoint_type(ep.bmAttributes) == usb.util.ENDPOINT_TYPE_BULK
        ):
            return ep.bEndpointAddress
    return None


def _read_string(dev, attribute: str) -> Optional[str]:
    """Read a string descriptor property, None when unavailable."""
    try:
        return getattr(dev, attribute)
    except (usb.core.USBError, ValueError, NotImplementedError) as exc:
        logger.debug("Could not read device %s: %s", attribute, exc)
        return None
