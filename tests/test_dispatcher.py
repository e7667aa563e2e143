# SPDX-License-Identifier: MIT
# Copyright (c) 2026 ADNT Sarl <info@adnt.io>

"""Tests for input parsing and the Dispatcher."""

from pathlib import Path
from unittest.mock import Mock

import pytest

from iboot_protocol.config import SessionConfig
from iboot_protocol.dispatcher import (
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
from iboot_protocol.session import (
    CommandNotAllowedError,
    CommandResult,
    DeviceConfigError,
    DeviceNotFoundError,
    SendError,
    Session,
    TransferError,
    TransportError,
    UnexpectedStatusError,
)


def make_session(responses: list = None) -> Mock:
    """Mock Session that stays open and returns queued device output."""
    session = Mock(spec=Session)
    session.is_open = True
    session.config = SessionConfig(response_timeout_ms=500)
    session.send_command.return_value = CommandResult.OK
    queued = list(responses or [])
    session.drain_response.side_effect = lambda timeout_ms=None: queued.pop(0) if queued else b""
    return session


def scripted(lines: list):
    """read_line replacement that ends with EOF."""
    remaining = list(lines)

    def read_line(prompt):
        if not remaining:
            raise EOFError
        return remaining.pop(0)

    return read_line


class TestParseLine:
    """Tests for parse_line."""

    def test_exit(self):
        assert parse_line("/exit") == Exit()

    def test_reset(self):
        assert parse_line("/reset\n") == Reset()

    def test_send(self):
        assert parse_line("/send iBEC.img3") == Send(Path("iBEC.img3"))

    def test_send_path_with_spaces(self):
        assert parse_line("/send  my files/iBSS.img3 ") == Send(Path("my files/iBSS.img3"))

    def test_send_missing_path(self):
        with pytest.raises(ValueError, match="/send <file>"):
            parse_line("/send")

    def test_timeout(self):
        assert parse_line("/timeout 2000") == SetTimeout(2000)

    def test_timeout_not_a_number(self):
        with pytest.raises(ValueError, match="/timeout <milliseconds>"):
            parse_line("/timeout soon")

    def test_timeout_negative(self):
        with pytest.raises(ValueError, match="positive"):
            parse_line("/timeout -5")

    def test_timeout_zero(self):
        """A zero timeout is refused rather than blocking forever."""
        with pytest.raises(ValueError, match="positive"):
            parse_line("/timeout 0")

    def test_set_timeout_zero(self):
        with pytest.raises(ValueError, match="positive"):
            SetTimeout(0)

    def test_raw(self):
        assert parse_line("setenv auto-boot true\n") == Raw("setenv auto-boot true")

    def test_raw_unknown_slash(self):
        """Unknown slash words are ordinary commands."""
        assert parse_line("/sendfile x") == Raw("/sendfile x")


class TestResult:
    """Tests for Result enum."""

    def test_values(self):
        assert Result.SUCCESS == 0
        assert Result.NOT_FOUND == 1
        assert Result.TRANSPORT_ERROR == 2
        assert Result.UNEXPECTED_STATUS == 3
        assert Result.REBOOTING == 4

    def test_exit_code(self):
        """Only success and rebooting exit with 0."""
        assert Result.SUCCESS.exit_code == 0
        assert Result.REBOOTING.exit_code == 0
        for result in Result:
            if result not in (Result.SUCCESS, Result.REBOOTING):
                assert result.exit_code == 1

    def test_str(self):
        assert str(Result.UNEXPECTED_STATUS) == "UNEXPECTED_STATUS"


class TestResultForError:
    """Tests for result_for_error."""

    @pytest.mark.parametrize(
        "exc, expected",
        [
            (DeviceNotFoundError("x"), Result.NOT_FOUND),
            (DeviceConfigError("x"), Result.DEVICE_ERROR),
            (CommandNotAllowedError("x"), Result.NOT_PERMITTED),
            (UnexpectedStatusError(5, 0), Result.UNEXPECTED_STATUS),
            (TransportError("x"), Result.TRANSPORT_ERROR),
            (SendError("x"), Result.TRANSPORT_ERROR),
            (TransferError("x", 2), Result.TRANSPORT_ERROR),
            (FileNotFoundError("x"), Result.FILE_ERROR),
        ],
    )
    def test_mapping(self, exc, expected):
        assert result_for_error(exc) is expected

    def test_unknown(self):
        with pytest.raises(TypeError):
            result_for_error(RuntimeError("x"))


class TestDispatch:
    """Tests for Dispatcher.dispatch."""

    def test_raw_sends_command(self):
        session = make_session()
        dispatcher = Dispatcher(session, output=Mock())

        assert dispatcher.dispatch(Raw("bgcolor 255 12 255")) is Result.SUCCESS
        session.send_command.assert_called_once_with("bgcolor 255 12 255")

    def test_blank_line_ignored(self):
        session = make_session()
        dispatcher = Dispatcher(session, output=Mock())

        assert dispatcher.dispatch(Raw("")) is Result.SUCCESS
        session.send_command.assert_not_called()

    def test_reboot(self):
        session = make_session()
        session.send_command.return_value = CommandResult.REBOOTING
        output = Mock()
        dispatcher = Dispatcher(session, output=output)

        assert dispatcher.dispatch(Raw("reboot")) is Result.REBOOTING
        output.assert_called_once_with("Device is rebooting")

    def test_send_file(self):
        session = make_session()
        session.send_file.return_value = 5000
        progress = Mock()
        output = Mock()
        dispatcher = Dispatcher(session, output=output, progress_callback=progress)

        assert dispatcher.dispatch(Send(Path("iBEC.img3"))) is Result.SUCCESS
        session.send_file.assert_called_once_with(Path("iBEC.img3"), progress)
        output.assert_called_once_with("Sent iBEC.img3 (5000 bytes)")

    def test_set_timeout(self):
        session = make_session()
        dispatcher = Dispatcher(session, output=Mock())
        assert dispatcher.timeout_ms == 500

        assert dispatcher.dispatch(SetTimeout(2500)) is Result.SUCCESS
        assert dispatcher.timeout_ms == 2500

        dispatcher.print_pending()
        session.drain_response.assert_called_once_with(2500)

    def test_timeout_from_config(self):
        session = make_session()
        dispatcher = Dispatcher(session, SessionConfig(response_timeout_ms=1500), output=Mock())

        assert dispatcher.timeout_ms == 1500

    def test_reset(self):
        session = make_session()
        dispatcher = Dispatcher(session, output=Mock())

        assert dispatcher.dispatch(Reset()) is Result.SUCCESS
        session.reset.assert_called_once_with()

    @pytest.mark.parametrize(
        "exc, expected",
        [
            (UnexpectedStatusError(5, 2), Result.UNEXPECTED_STATUS),
            (TransferError("File packet 1 failed", 1), Result.TRANSPORT_ERROR),
            (FileNotFoundError("missing.img3"), Result.FILE_ERROR),
        ],
    )
    def test_send_errors(self, exc, expected):
        session = make_session()
        session.send_file.side_effect = exc
        output = Mock()
        dispatcher = Dispatcher(session, output=output)

        assert dispatcher.dispatch(Send(Path("x.img3"))) is expected
        output.assert_called_once_with(f"Error: {exc}")

    def test_command_errors(self):
        session = make_session()
        session.send_command.side_effect = CommandNotAllowedError("Commands are not accepted in wtf mode")
        dispatcher = Dispatcher(session, output=Mock())

        assert dispatcher.dispatch(Raw("getenv build-version")) is Result.NOT_PERMITTED

        session.send_command.side_effect = SendError("Pipe error")
        assert dispatcher.dispatch(Raw("getenv build-version")) is Result.TRANSPORT_ERROR


class TestPrintPending:
    """Tests for Dispatcher.print_pending."""

    def test_prints_text(self):
        session = make_session([b"build-version: iBoot-1537.0.0\x00\x00\x00"])
        output = Mock()
        dispatcher = Dispatcher(session, output=output)

        assert dispatcher.print_pending() is True
        output.assert_called_once_with("build-version: iBoot-1537.0.0")

    def test_silent_device(self):
        session = make_session()
        output = Mock()
        dispatcher = Dispatcher(session, output=output)

        assert dispatcher.print_pending() is False
        output.assert_not_called()


class TestRun:
    """Tests for the interactive loop."""

    def test_runs_until_exit(self):
        session = make_session()
        dispatcher = Dispatcher(session, output=Mock())

        result = dispatcher.run(scripted(["getenv build-version", "/exit", "never sent"]))

        assert result is Result.SUCCESS
        session.send_command.assert_called_once_with("getenv build-version")

    def test_stops_at_eof(self):
        session = make_session()
        dispatcher = Dispatcher(session, output=Mock())

        assert dispatcher.run(scripted([])) is Result.SUCCESS

    def test_drains_before_prompt(self):
        session = make_session([b"] \x00"])
        output = Mock()
        dispatcher = Dispatcher(session, output=output)

        dispatcher.run(scripted(["/exit"]))

        output.assert_called_once_with("] ")

    def test_stops_on_reboot(self):
        session = make_session()
        session.send_command.return_value = CommandResult.REBOOTING
        dispatcher = Dispatcher(session, output=Mock())

        result = dispatcher.run(scripted(["reboot", "never sent"]))

        assert result is Result.REBOOTING
        session.send_command.assert_called_once_with("reboot")

    def test_stops_on_reset(self):
        session = make_session()
        dispatcher = Dispatcher(session, output=Mock())

        dispatcher.run(scripted(["/reset", "never sent"]))

        session.reset.assert_called_once_with()
        session.send_command.assert_not_called()

    def test_bad_input_continues(self):
        session = make_session()
        output = Mock()
        dispatcher = Dispatcher(session, output=output)

        dispatcher.run(scripted(["/timeout soon", "/timeout 0", "/timeout 100", "/exit"]))

        output.assert_any_call("Error: Usage: /timeout <milliseconds>")
        output.assert_any_call("Error: Timeout must be positive")
        assert dispatcher.timeout_ms == 100

    def test_failed_transfer_keeps_running(self):
        session = make_session()
        session.send_file.side_effect = UnexpectedStatusError(5, 0)
        dispatcher = Dispatcher(session, output=Mock())

        result = dispatcher.run(scripted(["/send iBEC.img3", "getenv build-version"]))

        assert result is Result.SUCCESS
        session.send_command.assert_called_once_with("getenv build-version")

    def test_drain_error_reported(self):
        session = make_session()
        session.drain_response.side_effect = TransportError("Response read failed: No such device")
        output = Mock()
        dispatcher = Dispatcher(session, output=output)

        dispatcher.run(scripted(["/exit"]))

        output.assert_called_once_with("Error: Response read failed: No such device")

    def test_closed_session_stops(self):
        session = make_session()
        session.is_open = False
        read_line = Mock()
        dispatcher = Dispatcher(session, output=Mock())

        dispatcher.run(read_line)

        read_line.assert_not_called()
