from __future__ import annotations

import pytest

from powerload import cli
from powerload.config import TransportProtocol
from powerload.errors import ConfigurationError


def test_build_config_from_flags() -> None:
    args = cli.build_parser().parse_args(
        [
            "-u", "example.com/api",
            "-n", "50",
            "-c", "5",
            "-m", "post",
            "-H", "Authorization: Bearer abc",
            "-H", "X-Trace:1",
            "-d", '{"k": 1}',
            "--delay", "20",
        ]
    )
    config = cli.build_config(args)
    assert config.target == "http://example.com/api"
    assert config.protocol is TransportProtocol.HTTP
    assert config.method == "POST"
    assert config.headers == {"Authorization": "Bearer abc", "X-Trace": "1"}
    assert config.total_requests == 50
    assert config.concurrency == 5
    assert config.delay_ms == 20.0


def test_tcp_target_is_left_alone() -> None:
    args = cli.build_parser().parse_args(["-u", "10.0.0.5", "-p", "tcp", "--port", "7000"])
    config = cli.build_config(args)
    assert config.target == "10.0.0.5"
    assert config.host == "10.0.0.5"
    assert config.port == 7000


def test_malformed_header_is_a_configuration_error() -> None:
    args = cli.build_parser().parse_args(["-u", "example.com", "-H", "no-separator"])
    with pytest.raises(ConfigurationError):
        cli.build_config(args)


def test_main_reports_configuration_errors(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main(["-u", "127.0.0.1", "-p", "udp"]) == 2
    assert "requires a positive port" in capsys.readouterr().err
