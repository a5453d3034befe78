"""Tests for s3up CLI helpers."""
import argparse
import logging
import os

import pytest

from conftest import FakeTransport
from s3up import cli
from s3up.cli import (
    CLIError,
    _load_env_file,
    _resolve_config,
    _setup_logging,
    parse_size,
    run_cli,
)
from s3up.errors import RequestRejectedError
from s3up.models import MB
from s3up.orchestrator import StreamUploadOrchestrator


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    # _load_env_file writes os.environ directly
    monkeypatch.setattr(os, "environ", os.environ.copy())
    for name in ("S3UP_PART_SIZE", "S3UP_CONCURRENCY", "S3UP_MAX_RETRIES", "S3UP_ENDPOINT_URL", "LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    yield
    logging.disable(logging.NOTSET)
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.setLevel(logging.WARNING)


def _args(**overrides) -> argparse.Namespace:
    values = {"part_size": None, "concurrency": None, "max_retries": None}
    values.update(overrides)
    return argparse.Namespace(**values)


def _patch_transport(monkeypatch, transport):
    def factory(destination, config, **kwargs):
        return StreamUploadOrchestrator(destination, config, transport=transport)

    monkeypatch.setattr(cli, "StreamUploadOrchestrator", factory)


@pytest.mark.parametrize(
    "value,expected",
    [
        ("32MB", 32 * MB),
        ("1gb", 1024 * MB),
        ("512KB", 512 * 1024),
        (" 8mb ", 8 * MB),
        ("12345", 12345),
    ],
)
def test_parse_size(value, expected):
    assert parse_size(value) == expected


@pytest.mark.parametrize("value", ["", "MB", "1.5GB", "ten", "-5MB"])
def test_parse_size_rejects_garbage(value):
    with pytest.raises(ValueError, match="Cannot parse size"):
        parse_size(value)


def test_load_env_file(tmp_path, monkeypatch):
    env_path = tmp_path / "custom.env"
    env_path.write_text(
        "\n".join(
            [
                "# comment",
                "S3UP_PART_SIZE=64MB",
                "S3UP_ENDPOINT_URL='http://127.0.0.1:9000'",
                "export S3UP_CONCURRENCY=12",
            ]
        ),
        encoding="utf-8",
    )

    _load_env_file(env_path)

    assert os.environ["S3UP_PART_SIZE"] == "64MB"
    assert os.environ["S3UP_ENDPOINT_URL"] == "http://127.0.0.1:9000"
    assert os.environ["S3UP_CONCURRENCY"] == "12"


def test_load_env_file_keeps_existing(tmp_path, monkeypatch):
    env_path = tmp_path / "custom.env"
    env_path.write_text("S3UP_CONCURRENCY=12\n", encoding="utf-8")
    monkeypatch.setenv("S3UP_CONCURRENCY", "3")

    _load_env_file(env_path)

    assert os.environ["S3UP_CONCURRENCY"] == "3"


def test_load_env_file_missing(tmp_path):
    with pytest.raises(CLIError, match="not found"):
        _load_env_file(tmp_path / "nope.env")


def test_setup_logging_defaults_to_silent():
    mode = _setup_logging(debug=False, silent=False, log_level=None)
    assert mode == "silent"
    assert logging.getLogger("s3up").isEnabledFor(logging.ERROR) is False


def test_setup_logging_debug_mode():
    mode = _setup_logging(debug=True, silent=False, log_level=None)
    assert mode == "DEBUG"
    assert logging.getLogger("s3up").isEnabledFor(logging.DEBUG) is True
    assert logging.getLogger("botocore").isEnabledFor(logging.DEBUG) is False


def test_setup_logging_from_env(monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "info")
    assert _setup_logging(debug=False, silent=False, log_level=None) == "INFO"


def test_resolve_config_defaults():
    config = _resolve_config(_args())
    assert config.part_size == 32 * MB
    assert config.concurrency == 8
    assert config.max_attempts == 5


def test_resolve_config_env_fallback(monkeypatch):
    monkeypatch.setenv("S3UP_PART_SIZE", "16MB")
    monkeypatch.setenv("S3UP_CONCURRENCY", "3")
    monkeypatch.setenv("S3UP_MAX_RETRIES", "0")

    config = _resolve_config(_args())

    assert config.part_size == 16 * MB
    assert config.concurrency == 3
    assert config.max_attempts == 1


def test_resolve_config_flags_win(monkeypatch):
    monkeypatch.setenv("S3UP_CONCURRENCY", "3")
    config = _resolve_config(_args(concurrency=6, part_size=8 * MB))
    assert config.concurrency == 6
    assert config.part_size == 8 * MB


def test_resolve_config_rejects_small_parts():
    with pytest.raises(CLIError, match="Part size too small"):
        _resolve_config(_args(part_size=1 * MB))


def test_resolve_config_rejects_bad_env(monkeypatch):
    monkeypatch.setenv("S3UP_CONCURRENCY", "many")
    with pytest.raises(CLIError, match="S3UP_CONCURRENCY"):
        _resolve_config(_args())


def test_run_cli_without_path_prints_help(capsys):
    assert run_cli([]) == 0
    assert "s3-up" in capsys.readouterr().out


def test_run_cli_rejects_bad_destination(capsys):
    assert run_cli(["bucket/key", "--silent"]) == 1
    assert "s3://" in capsys.readouterr().err


def test_run_cli_missing_input_file(tmp_path, capsys):
    code = run_cli(["s3://bucket/key", "--silent", "-i", str(tmp_path / "missing.bin")])
    assert code == 1
    assert "Failed to open input file" in capsys.readouterr().err


def test_run_cli_uploads_file(tmp_path, monkeypatch):
    payload = b"hello world" * 100
    input_path = tmp_path / "input.bin"
    input_path.write_bytes(payload)
    transport = FakeTransport()
    _patch_transport(monkeypatch, transport)

    code = run_cli(["s3://bucket/dir/out.bin", "--silent", "--part-size", "5MB", "-i", str(input_path)])

    assert code == 0
    assert transport.reassemble() == payload
    assert len(transport.complete_calls) == 1


def test_run_cli_reports_failure(tmp_path, monkeypatch, capsys):
    input_path = tmp_path / "input.bin"
    input_path.write_bytes(b"data")
    transport = FakeTransport(failures={1: [RequestRejectedError("AccessDenied")]})
    _patch_transport(monkeypatch, transport)

    code = run_cli(["s3://bucket/out.bin", "--silent", "-i", str(input_path)])

    assert code == 1
    assert transport.abort_calls == ["upload-1"]
    assert "AccessDenied" in capsys.readouterr().err


def test_run_cli_warns_when_abort_fails(tmp_path, monkeypatch, capsys):
    input_path = tmp_path / "input.bin"
    input_path.write_bytes(b"data")
    transport = FakeTransport(
        failures={1: [RequestRejectedError("AccessDenied")]},
        abort_error=RequestRejectedError("AccessDenied"),
    )
    _patch_transport(monkeypatch, transport)

    code = run_cli(["s3://bucket/out.bin", "--silent", "-i", str(input_path)])

    assert code == 1
    assert "could not be aborted" in capsys.readouterr().err
