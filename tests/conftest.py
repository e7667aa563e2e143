# SPDX-License-Identifier: MIT
# Copyright (c) 2026 ADNT Sarl <info@adnt.io>

"""Pytest configuration for integration tests."""

import time

import pytest

from iboot_protocol.protocol import ProductMode

DEVICE_MODES = {
    "recovery": ProductMode.RECOVERY,
    "dfu": ProductMode.DFU,
}


def pytest_addoption(parser):
    """Add custom command-line options."""
    parser.addoption(
        "--device",
        action="store",
        default=None,
        choices=sorted(DEVICE_MODES),
        help="Mode of the connected device (recovery or dfu)",
    )
    parser.addoption(
        "--allow-reset",
        action="store_true",
        default=False,
        help="Allow tests that reset or reboot the device",
    )


def pytest_collection_modifyitems(config, items):
    """Skip hardware tests unless a device was named."""
    if config.getoption("--device"):
        return
    skip = pytest.mark.skip(reason="needs --device recovery|dfu")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip)


def wait_for_session(product_id: int, timeout: float = 10.0):
    """Open a Session, retrying while the device enumerates."""
    from iboot_protocol.session import DeviceNotFoundError, Session

    start = time.time()
    while True:
        try:
            return Session(product_id)
        except DeviceNotFoundError:
            if time.time() - start >= timeout:
                raise
        time.sleep(0.5)


@pytest.fixture(scope="session")
def device_mode(request):
    """Get the device mode from the command line."""
    return DEVICE_MODES[request.config.getoption("--device")]


@pytest.fixture(scope="session")
def allow_reset(request):
    """Check if destructive tests may run."""
    return request.config.getoption("--allow-reset")


@pytest.fixture
def session(device_mode):
    """
    Open a session to the connected device.

    Function-scoped so a test that resets the device does not leave
    a stale handle for the next one.
    """
    from iboot_protocol.session import IBootError

    try:
        session = wait_for_session(device_mode, timeout=5.0)
    except IBootError as e:
        pytest.fail(f"Device not available: {e}")

    yield session
    session.close()
