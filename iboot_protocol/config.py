# SPDX-License-Identifier: MIT
# Copyright (c) 2026 ADNT Sarl <info@adnt.io>

"""Session configuration."""

from dataclasses import dataclass, field, replace

from .protocol import APPLE_VENDOR_ID, ProductMode

# The final protocol revision refuses commands only in WTF mode
DEFAULT_COMMAND_MODES = frozenset(
    {ProductMode.RECOVERY, ProductMode.DFU, ProductMode.OTHER}
)


@dataclass(frozen=True)
class SessionConfig:
    """
    Settings threaded into a Session and its Dispatcher.

    Attributes:
        vendor_id: USB vendor id to match
        configuration: bConfigurationValue selected after opening
        control_timeout_ms: Timeout for every control transfer
        response_timeout_ms: Initial timeout for draining device output
        command_modes: Product modes allowed to receive text commands
    """
    vendor_id: int = APPLE_VENDOR_ID
    configuration: int = 1
    control_timeout_ms: int = 1000
    response_timeout_ms: int = 500
    command_modes: frozenset = field(default=DEFAULT_COMMAND_MODES)

    def __post_init__(self):
        # libusb treats a zero timeout as unlimited
        if self.control_timeout_ms <= 0 or self.response_timeout_ms <= 0:
            raise ValueError("Timeouts must be positive")

    def allows_commands(self, mode: ProductMode) -> bool:
        return mode in self.command_modes

    def with_timeout(self, timeout_ms: int) -> "SessionConfig":
        """Return a copy with a new response timeout."""
        return replace(self, response_timeout_ms=timeout_ms)
