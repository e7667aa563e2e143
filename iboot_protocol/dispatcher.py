# SPDX-License-Identifier: MIT
# Copyright (c) 2026 ADNT Sarl <info@adnt.io>

"""
Operator input handling for an interactive session.

Lines are parsed once into actions; the Dispatcher routes each action
to the session and reports the outcome as a Result.
"""

import logging
from dataclasses import dataclass
from enum import IntEnum
from pathlib import Path
from typing import Callable, Optional, Union

from .config import SessionConfig
from .protocol import decode_response_text
from .session import (
    CommandNotAllowedError,
    CommandResult,
    DeviceConfigError,
    DeviceNotFoundError,
    Session,
    TransportError,
    UnexpectedStatusError,
)

logger = logging.getLogger(__name__)

PROMPT = "> "


class Result(IntEnum):
    """Outcome of an operation, as rendered by the CLI."""
    SUCCESS = 0
    NOT_FOUND = 1
    TRANSPORT_ERROR = 2
    UNEXPECTED_STATUS = 3
    REBOOTING = 4
    DEVICE_ERROR = 5
    NOT_PERMITTED = 6
    FILE_ERROR = 7

    def __str__(self) -> str:
        return self.name

    @property
    def is_ok(self) -> bool:
        return self in (Result.SUCCESS, Result.REBOOTING)

    @property
    def exit_code(self) -> int:
        return 0 if self.is_ok else 1


@dataclass(frozen=True)
class Exit:
    pass


@dataclass(frozen=True)
class Reset:
    pass


@dataclass(frozen=True)
class Send:
    path: Path


@dataclass(frozen=True)
class SetTimeout:
    timeout_ms: int

    def __post_init__(self):
        # libusb treats a zero timeout as unlimited
        if self.timeout_ms <= 0:
            raise ValueError("Timeout must be positive")


@dataclass(frozen=True)
class Raw:
    text: str


Action = Union[Exit, Reset, Send, SetTimeout, Raw]


def parse_line(line: str) -> Action:
    """
    Parse one line of operator input.

    Args:
        line: Input line, e.g. "/send iBEC.img3" or "setenv auto-boot true"

    Returns:
        The parsed action

    Raises:
        ValueError: If a slash command is missing or has a bad argument
    """
    text = line.strip()
    name, _, argument = text.partition(" ")
    argument = argument.strip()

    if text == "/exit":
        return Exit()
    if text == "/reset":
        return Reset()
    if name == "/send":
        if not argument:
            raise ValueError("Usage: /send <file>")
        return Send(Path(argument))
    if name == "/timeout":
        try:
            timeout_ms = int(argument)
        except ValueError:
            raise ValueError("Usage: /timeout <milliseconds>") from None
        return SetTimeout(timeout_ms)
    return Raw(text)


def result_for_error(exc: Exception) -> Result:
    """Map a session or file error to the Result it is reported as."""
    if isinstance(exc, DeviceNotFoundError):
        return Result.NOT_FOUND
    if isinstance(exc, DeviceConfigError):
        return Result.DEVICE_ERROR
    if isinstance(exc, CommandNotAllowedError):
        return Result.NOT_PERMITTED
    if isinstance(exc, UnexpectedStatusError):
        return Result.UNEXPECTED_STATUS
    if isinstance(exc, TransportError):
        return Result.TRANSPORT_ERROR
    if isinstance(exc, (FileNotFoundError, IsADirectoryError, PermissionError)):
        return Result.FILE_ERROR
    raise TypeError(f"No result for {type(exc).__name__}")


class Dispatcher:
    """Routes parsed actions to a Session."""

    def __init__(
        self,
        session: Session,
        config: Optional[SessionConfig] = None,
        output: Callable[[str], None] = print,
        progress_callback: Optional[Callable[[int, int], None]] = None,
    ):
        self._session = session
        self._config = config or session.config
        self._timeout_ms = self._config.response_timeout_ms
        self._output = output
        self._progress = progress_callback

    @property
    def timeout_ms(self) -> int:
        """Timeout used when draining device output."""
        return self._timeout_ms

    def dispatch(self, action: Action) -> Result:
        """Execute one action; session errors become a Result."""
        try:
            return self._execute(action)
        except (
            CommandNotAllowedError,
            UnexpectedStatusError,
            TransportError,
            FileNotFoundError,
            IsADirectoryError,
            PermissionError,
        ) as exc:
            self._output(f"Error: {exc}")
            return result_for_error(exc)

    def print_pending(self) -> bool:
        """Print whatever the device has sent since the last read."""
        text = decode_response_text(self._session.drain_response(self._timeout_ms))
        if text:
            self._output(text)
        return bool(text)

    def run(self, read_line: Callable[[str], str] = input) -> Result:
        """
        Interactive loop.

        Stops on /exit, /reset, a reboot, end of input or a closed session.

        Returns:
            Result of the last dispatched action
        """
        result = Result.SUCCESS
        while self._session.is_open:
            try:
                self.print_pending()
            except TransportError as exc:
                self._output(f"Error: {exc}")

            try:
                line = read_line(PROMPT)
            except EOFError:
                break

            try:
                action = parse_line(line)
            except ValueError as exc:
                self._output(f"Error: {exc}")
                continue

            if isinstance(action, Exit):
                break
            result = self.dispatch(action)
            if isinstance(action, Reset) or result is Result.REBOOTING:
                break
        return result

    def _execute(self, action: Action) -> Result:
        if isinstance(action, Raw):
            if not action.text:
                return Result.SUCCESS
            if self._session.send_command(action.text) is CommandResult.REBOOTING:
                self._output("Device is rebooting")
                return Result.REBOOTING
            return Result.SUCCESS

        if isinstance(action, Send):
            sent = self._session.send_file(action.path, self._progress)
            self._output(f"Sent {action.path} ({sent} bytes)")
            return Result.SUCCESS

        if isinstance(action, SetTimeout):
            self._timeout_ms = action.timeout_ms
            logger.debug("Response timeout set to %d ms", action.timeout_ms)
            return Result.SUCCESS

        if isinstance(action, Reset):
            self._session.reset()
            return Result.SUCCESS

        if isinstance(action, Exit):
            return Result.SUCCESS

        raise TypeError(f"Unknown action: {action!r}")
