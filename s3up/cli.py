"""Command line interface for s3up package."""
from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import os
import sys
from pathlib import Path
from typing import BinaryIO, Iterator, Optional, Sequence

from rich.logging import RichHandler

from . import __version__
from .cli_progress import StreamUploadProgress, render_configuration_summary, render_result, _human_size
from .errors import ConfigurationError
from .models import GB, KB, MB, Destination, UploadConfig
from .orchestrator import StreamUploadOrchestrator

DEFAULT_PART_SIZE = "32MB"
DEFAULT_CONCURRENCY = 8
DEFAULT_MAX_RETRIES = 4

_SIZE_SUFFIXES = (("gb", GB), ("mb", MB), ("kb", KB))


class CLIError(RuntimeError):
    """Raised when CLI validation/execution fails."""


def parse_size(value: str) -> int:
    """Parse ``32MB``, ``1gb``, ``512KB`` or a plain byte count."""
    text = value.strip().lower()
    for suffix, multiplier in _SIZE_SUFFIXES:
        if text.endswith(suffix):
            number = text[: -len(suffix)].strip()
            if not number.isdigit():
                break
            return int(number) * multiplier
    else:
        if text.isdigit():
            return int(text)
    raise ValueError(f"Cannot parse size: '{value}'")


def _size_arg(value: str) -> int:
    try:
        return parse_size(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def _setup_logging(debug: bool, silent: bool, log_level: Optional[str]) -> str:
    """
    Configure logging.

    Default behavior is silent unless --debug or --log-level is provided.
    Returns a string describing effective mode.
    """
    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    logging.disable(logging.NOTSET)

    env_level = os.getenv("LOG_LEVEL")
    if silent or (not debug and not log_level and not env_level):
        logging.disable(logging.CRITICAL)
        root_logger.setLevel(logging.CRITICAL + 1)
        return "silent"

    if debug:
        level = logging.DEBUG
    elif log_level:
        level = getattr(logging, log_level.upper(), logging.INFO)
    else:
        level = getattr(logging, env_level.upper(), logging.INFO)

    handler = RichHandler(
        rich_tracebacks=True,
        markup=False,
        show_time=False,
        show_path=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(handler)
    root_logger.setLevel(level)
    # boto internals are noisy at DEBUG
    for name in ("botocore", "boto3", "urllib3", "httpx", "httpcore"):
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
    return logging.getLevelName(level)


def _strip_optional_quotes(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
        return value[1:-1]
    return value


def _load_env_file(path: Path, override: bool = False) -> None:
    if not path.exists():
        raise CLIError(f"env file not found: {path}")
    if not path.is_file():
        raise CLIError(f"env path is not a file: {path}")

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise CLIError(f"could not read env file {path}: {exc}") from exc

    for raw_line in content.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export ") :].strip()
        if "=" not in line:
            continue

        key, value = line.split("=", 1)
        key = key.strip()
        if not key:
            continue

        value = _strip_optional_quotes(value.strip())
        if override or key not in os.environ:
            os.environ[key] = value


def _resolve_default_env_file() -> Optional[Path]:
    default_env = Path(".env")
    return default_env if default_env.exists() and default_env.is_file() else None


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise CLIError(f"{name} must be an integer, got '{raw}'") from exc


def _resolve_config(args: argparse.Namespace) -> UploadConfig:
    part_size = args.part_size
    if part_size is None:
        try:
            part_size = parse_size(os.getenv("S3UP_PART_SIZE") or DEFAULT_PART_SIZE)
        except ValueError as exc:
            raise CLIError(f"S3UP_PART_SIZE: {exc}") from exc

    concurrency = args.concurrency
    if concurrency is None:
        concurrency = _env_int("S3UP_CONCURRENCY", DEFAULT_CONCURRENCY)

    max_retries = args.max_retries
    if max_retries is None:
        max_retries = _env_int("S3UP_MAX_RETRIES", DEFAULT_MAX_RETRIES)
    if max_retries < 0:
        raise CLIError("--max-retries cannot be negative")

    try:
        return UploadConfig(
            part_size=part_size,
            concurrency=concurrency,
            max_attempts=max_retries + 1,
        ).validate()
    except ConfigurationError as exc:
        raise CLIError(str(exc)) from exc


@contextlib.contextmanager
def _open_source(input_path: Optional[Path]) -> Iterator[BinaryIO]:
    if input_path is None:
        yield sys.stdin.buffer
        return
    try:
        handle = open(input_path, "rb")
    except OSError as exc:
        raise CLIError(f"Failed to open input file: {exc}") from exc
    with handle:
        yield handle


async def _run_upload(
    destination: Destination,
    config: UploadConfig,
    source: BinaryIO,
    region: Optional[str],
    endpoint_url: Optional[str],
    profile: Optional[str],
    show_progress: bool,
    quiet: bool,
) -> int:
    async with StreamUploadOrchestrator(
        destination,
        config,
        region=region,
        endpoint_url=endpoint_url,
        profile=profile,
    ) as orchestrator:
        session = orchestrator.create_session()
        progress = StreamUploadProgress(destination.uri) if show_progress else None
        if progress is not None:
            session.on_state_change(progress.on_state_change)
            session.on_part_complete(progress.on_part_complete)
            session.on_part_failed(progress.on_part_failed)
            progress.start()

        try:
            result = await session.run(source)
        finally:
            if progress is not None:
                progress.stop()

    if progress is not None:
        progress.complete(result)
    elif not quiet:
        render_result(result)

    if result.success:
        return 0

    print(f"ERROR: {result.error}", file=sys.stderr)
    if not result.cleaned_up:
        print(
            f"WARNING: multipart upload {result.upload_id} for {destination} could not be aborted "
            f"({result.cleanup_error})",
            file=sys.stderr,
        )
    return 1


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="s3-up",
        description="Stream standard input (or a file) to S3 using concurrent multipart uploads.",
    )
    parser.add_argument("s3_path", nargs="?", help="S3 path to upload to (s3://bucket/key)")
    parser.add_argument(
        "-i",
        "--input",
        type=Path,
        default=None,
        help="Input file name (default: standard input)",
    )
    parser.add_argument(
        "--part-size",
        "--block-size",
        dest="part_size",
        type=_size_arg,
        default=None,
        help=f"Size of each uploaded part, e.g. 32MB (default from S3UP_PART_SIZE or {DEFAULT_PART_SIZE})",
    )
    parser.add_argument(
        "-c",
        "--concurrency",
        type=int,
        default=None,
        help=f"Parts uploaded at the same time (default from S3UP_CONCURRENCY or {DEFAULT_CONCURRENCY})",
    )
    parser.add_argument(
        "--max-retries",
        type=int,
        default=None,
        help=(
            "How often each request is retried before giving up "
            f"(default from S3UP_MAX_RETRIES or {DEFAULT_MAX_RETRIES})"
        ),
    )
    parser.add_argument(
        "--endpoint-url",
        default=None,
        help="Custom S3 endpoint (default from S3UP_ENDPOINT_URL)",
    )
    parser.add_argument("--region", default=None, help="AWS region (default from AWS configuration)")
    parser.add_argument("--profile", default=None, help="AWS profile name")
    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Load environment variables from this .env file",
    )
    parser.add_argument("--no-progress", action="store_true", help="Do not render a progress bar")
    parser.add_argument("--debug", action="store_true", help="Enable debug logs")
    parser.add_argument("--silent", action="store_true", help="Only print errors")
    parser.add_argument(
        "--log-level",
        default=None,
        help="Explicit log level (DEBUG/INFO/WARNING/ERROR)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"s3-up {__version__}",
    )
    return parser


def run_cli(argv: Optional[Sequence[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    used_env_file = args.env_file or _resolve_default_env_file()
    if used_env_file is not None:
        try:
            _load_env_file(Path(used_env_file))
        except CLIError as exc:
            print(f"ERROR: {exc}", file=sys.stderr)
            return 1

    effective_log_mode = _setup_logging(
        debug=args.debug,
        silent=args.silent,
        log_level=args.log_level,
    )

    if args.s3_path is None:
        parser.print_help()
        return 0

    try:
        destination = Destination.parse(args.s3_path)
        config = _resolve_config(args)
    except (CLIError, ConfigurationError) as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    endpoint_url = args.endpoint_url or os.getenv("S3UP_ENDPOINT_URL")
    region = args.region or os.getenv("AWS_REGION") or os.getenv("AWS_DEFAULT_REGION")
    profile = args.profile or os.getenv("AWS_PROFILE")
    input_path = Path(args.input).expanduser() if args.input else None

    if not args.silent:
        render_configuration_summary(
            {
                "Source": str(input_path) if input_path else "stdin",
                "Dest": destination.uri,
                "Part Size": _human_size(config.part_size),
                "Concurrency": config.concurrency,
                "Max Buffered": _human_size(config.max_buffered_bytes),
                "Max Attempts": config.max_attempts,
                "Region": region or "(aws default)",
                "Endpoint": endpoint_url or "-",
                "Profile": profile or "-",
                "Env File": str(used_env_file) if used_env_file else "-",
                "Logging": effective_log_mode,
            }
        )

    show_progress = not (args.silent or args.no_progress)
    try:
        with _open_source(input_path) as source:
            return asyncio.run(
                _run_upload(
                    destination=destination,
                    config=config,
                    source=source,
                    region=region,
                    endpoint_url=endpoint_url,
                    profile=profile,
                    show_progress=show_progress,
                    quiet=args.silent,
                )
            )
    except CLIError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("Cancelled.", file=sys.stderr)
        return 130


def main() -> None:
    raise SystemExit(run_cli())


if __name__ == "__main__":
    main()
