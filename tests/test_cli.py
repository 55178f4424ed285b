"""
Tests for command line parsing and exit codes.
"""

import logging
import socket
import tempfile
from pathlib import Path

import pytest
from click.testing import CliRunner

import relaycat.cli
from relaycat.cli import ArgumentError, main, parse_port, parse_size, parse_target
from relaycat.config import Config, reset_config, set_config
from relaycat.network import Direction, RelayWriteError, SessionOutcome


@pytest.fixture(autouse=True)
def isolated_config():
    """Keep tests away from the user's ~/.relaycat."""
    with tempfile.TemporaryDirectory() as tmpdir:
        set_config(Config(data_dir=Path(tmpdir)))
        yield
    reset_config()

    # The command installs its own stderr handler; drop it with the captured stream
    root = logging.getLogger()
    for handler in list(root.handlers):
        if type(handler) is logging.StreamHandler:
            root.removeHandler(handler)


@pytest.fixture
def runner():
    return CliRunner()


class TestParseTarget:
    """Tests for argument validation."""

    def test_connect(self):
        """Test connect mode takes hostname and port."""
        target = parse_target(("example.com", "80"))

        assert target.host == "example.com"
        assert target.port == 80
        assert target.protocol == "tcp"
        assert not target.listen

    def test_listen_udp(self):
        """Test listen mode takes only a port."""
        target = parse_target(("9000",), listen=True, udp=True)

        assert target.host is None
        assert target.port == 9000
        assert target.protocol == "udp"
        assert target.listen

    def test_source_port(self):
        """Test the source port is parsed as an integer."""
        target = parse_target(("localhost", "80"), source_port="4000")
        assert target.source_port == 4000

    def test_connect_needs_two_arguments(self):
        with pytest.raises(ArgumentError, match="mandatory"):
            parse_target(("localhost",))

    def test_connect_rejects_extra_arguments(self):
        with pytest.raises(ArgumentError):
            parse_target(("localhost", "80", "81"))

    def test_listen_needs_port(self):
        with pytest.raises(ArgumentError, match="-l option"):
            parse_target((), listen=True)

    def test_listen_rejects_extra_arguments(self):
        with pytest.raises(ArgumentError):
            parse_target(("localhost", "80"), listen=True)

    def test_port_must_be_integer(self):
        with pytest.raises(ArgumentError, match="integer value"):
            parse_target(("localhost", "http"))

    def test_source_port_must_be_integer(self):
        with pytest.raises(ArgumentError, match="Source port"):
            parse_target(("localhost", "80"), source_port="abc")

    def test_port_range(self):
        """Test ports outside the valid range are refused."""
        with pytest.raises(ArgumentError):
            parse_port("0", "Destination port")
        with pytest.raises(ArgumentError):
            parse_port("65536", "Destination port")
        assert parse_port("0", "Source port", allow_zero=True) == 0

    def test_buffer_size(self):
        assert parse_size("4096") == 4096
        with pytest.raises(ArgumentError):
            parse_size("0")
        with pytest.raises(ArgumentError):
            parse_size("big")


class TestMain:
    """Tests for the relaycat command."""

    def test_no_arguments_prints_usage(self, runner):
        """Test a bare invocation shows usage and fails."""
        result = runner.invoke(main, [])

        assert result.exit_code == 1
        assert "relaycat [-lu]" in result.output

    def test_missing_port(self, runner):
        result = runner.invoke(main, ["localhost"])
        assert result.exit_code == 1

    def test_listen_missing_port(self, runner):
        result = runner.invoke(main, ["-l"])
        assert result.exit_code == 1

    def test_bad_port(self, runner):
        result = runner.invoke(main, ["localhost", "http"])

        assert result.exit_code == 1
        assert "integer value" in result.output

    def test_bad_source_port(self, runner):
        result = runner.invoke(main, ["-p", "x", "localhost", "80"])
        assert result.exit_code == 1

    def test_bad_buffer_size(self, runner):
        result = runner.invoke(main, ["-b", "0", "localhost", "80"])
        assert result.exit_code == 1

    def test_connection_refused_exits_1(self, runner):
        """Test a failed dial is fatal."""
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.bind(("127.0.0.1", 0))
            port = s.getsockname()[1]

        result = runner.invoke(main, ["127.0.0.1", str(port)])

        assert result.exit_code == 1

    def test_write_error_exits_1(self, runner, monkeypatch):
        """Test a write failure during the relay is fatal."""
        async def broken_session(target, bind_host, buffer_size):
            raise RelayWriteError(Direction.INBOUND, BrokenPipeError("Broken pipe"))

        monkeypatch.setattr(relaycat.cli, "_run_session", broken_session)

        result = runner.invoke(main, ["localhost", "80"])

        assert result.exit_code == 1
        assert "Write error: Broken pipe" in result.output

    def test_source_port_ignored_when_listening(self, runner, monkeypatch):
        """Test -p in listen mode warns and the session still runs."""
        calls = []

        async def session(target, bind_host, buffer_size):
            calls.append((target, bind_host, buffer_size))
            return SessionOutcome.REMOTE_CLOSED

        monkeypatch.setattr(relaycat.cli, "_run_session", session)

        result = runner.invoke(main, ["-l", "-p", "4000", "9000"])

        assert result.exit_code == 0
        assert "Source port is ignored in listen mode" in result.output

        target, bind_host, buffer_size = calls[0]
        assert target.listen
        assert target.port == 9000
        assert bind_host is None
        assert buffer_size == 1024


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
