"""
Tests for command-line parsing and startup validation.
"""

import argparse
import sys
from unittest.mock import patch

import pytest

from serialfork import __main__ as entry
from serialfork.config import DEFAULT_TCP_PORT, DEFAULT_WEB_PORT, _validate, parse_args


def test_defaults():
    args = parse_args(["/dev/ttyACM*"])
    assert args.device == "/dev/ttyACM*"
    assert args.port == DEFAULT_TCP_PORT == 5050
    assert args.webport == DEFAULT_WEB_PORT == 8080
    assert args.baud == 115200
    assert args.listen == "0.0.0.0"
    assert args.verbose is False


def test_overrides():
    args = parse_args(
        ["/dev/ttyUSB0", "--port", "6000", "--webport", "0", "--baud", "57600", "-v"]
    )
    assert (args.port, args.webport, args.baud, args.verbose) == (6000, 0, 57600, True)


def test_missing_device_exits():
    with pytest.raises(SystemExit):
        parse_args([])


@pytest.mark.parametrize(
    "argv, message",
    [
        (["/dev/ttyUSB0", "--port", "0"], "--port"),
        (["/dev/ttyUSB0", "--port", "70000"], "--port"),
        (["/dev/ttyUSB0", "--webport", "-1"], "--webport"),
        (["/dev/ttyUSB0", "--baud", "0"], "--baud"),
        (["  "], "non-empty"),
    ],
)
def test_invalid_values(argv, message):
    with pytest.raises(ValueError, match=message):
        parse_args(argv)


def test_windows_requires_com_prefix():
    args = argparse.Namespace(
        device="/dev/ttyUSB0", baud=115200, port=5050, webport=8080
    )
    with pytest.raises(ValueError, match="COM"):
        _validate(args, platform="win32")
    args.device = "COM4"
    _validate(args, platform="win32")


def test_main_exits_with_usage_error(capsys):
    with patch.object(sys, "argv", ["serialfork", "/dev/ttyUSB0", "--port", "0"]):
        with pytest.raises(SystemExit) as exc:
            entry.main()
    assert exc.value.code == 1
    assert "Error:" in capsys.readouterr().err


def test_main_exits_on_bind_failure(capsys):
    with (
        patch.object(sys, "argv", ["serialfork", "/dev/ttyUSB0"]),
        patch.object(entry, "run_bridge", side_effect=OSError("address in use")),
    ):
        with pytest.raises(SystemExit) as exc:
            entry.main()
    assert exc.value.code == 1
    assert "address in use" in capsys.readouterr().err


def test_main_passes_arguments():
    with (
        patch.object(sys, "argv", ["serialfork", "/dev/ttyACM*", "--webport", "9000"]),
        patch.object(entry, "run_bridge") as run,
    ):
        entry.main()
    run.assert_called_once_with(
        device="/dev/ttyACM*",
        baud=115200,
        listen="0.0.0.0",
        tcp_port=5050,
        web_port=9000,
        verbose=False,
    )
