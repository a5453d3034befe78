"""Tests for s3up models."""
import pytest

from s3up.errors import (
    CleanupFailureError,
    ConfigurationError,
    DestinationError,
    ManifestInconsistencyError,
)
from s3up.models import (
    GB,
    MB,
    Destination,
    Part,
    PartResult,
    SessionState,
    UploadConfig,
    UploadResult,
    UploadStatus,
    build_manifest,
)
from s3up.services.retry import RetryPolicy


class TestDestination:
    def test_parse(self):
        dest = Destination.parse("s3://my-bucket/backups/2024/db.tar.zst")
        assert dest.bucket == "my-bucket"
        assert dest.key == "backups/2024/db.tar.zst"
        assert str(dest) == "s3://my-bucket/backups/2024/db.tar.zst"

    @pytest.mark.parametrize("value", ["my-bucket/key", "s3://bucket", "s3://bucket/", "s3:///key", "http://b/k"])
    def test_parse_invalid(self, value):
        with pytest.raises(DestinationError):
            Destination.parse(value)

    def test_destination_error_is_configuration_error(self):
        with pytest.raises(ConfigurationError):
            Destination.parse("nope")


class TestPartResult:
    def test_ok(self):
        result = PartResult.ok(3, '"abc"', size=10, attempts=2)
        assert result.success is True
        assert result.etag == '"abc"'
        assert result.error is None

    def test_fail(self):
        error = RuntimeError("boom")
        result = PartResult.fail(4, error, size=10)
        assert result.success is False
        assert result.etag is None
        assert result.error is error

    def test_part_size(self):
        assert Part(1, b"12345").size == 5


class TestBuildManifest:
    def _results(self, numbers):
        return {n: PartResult.ok(n, f"e{n}") for n in numbers}

    def test_sorted_manifest(self):
        results = {n: PartResult.ok(n, f"e{n}") for n in [3, 1, 2]}
        assert build_manifest(results, 3) == [(1, "e1"), (2, "e2"), (3, "e3")]

    def test_gap(self):
        with pytest.raises(ManifestInconsistencyError, match="missing parts \\[2\\]"):
            build_manifest(self._results([1, 3]), 3)

    def test_extra_part(self):
        with pytest.raises(ManifestInconsistencyError):
            build_manifest(self._results([1, 2, 3]), 2)

    def test_failed_entry(self):
        results = self._results([1])
        results[2] = PartResult.fail(2, RuntimeError("x"))
        with pytest.raises(ManifestInconsistencyError):
            build_manifest(results, 2)

    def test_zero_parts(self):
        with pytest.raises(ManifestInconsistencyError):
            build_manifest({}, 0)


class TestUploadResult:
    def test_ok(self):
        dest = Destination("b", "k")
        result = UploadResult.ok(dest, location="https://b/k", upload_id="u", part_count=2, total_bytes=9)
        assert result.success is True
        assert result.status == UploadStatus.SUCCESS
        assert result.cleaned_up is True

    def test_fail_with_cleanup_error(self):
        dest = Destination("b", "k")
        cause = RuntimeError("denied")
        result = UploadResult.fail(
            dest,
            RuntimeError("part 2"),
            upload_id="u",
            cleanup_error=CleanupFailureError("u", cause),
        )
        assert result.success is False
        assert result.cleaned_up is False
        assert "u" in str(result.cleanup_error)


class TestUploadConfig:
    def test_defaults(self):
        config = UploadConfig().validate()
        assert config.part_size == 32 * MB
        assert config.concurrency == 8
        assert config.max_attempts == 5
        assert config.max_parts == 10000
        assert config.max_buffered_bytes == 8 * 32 * MB

    @pytest.mark.parametrize(
        "kwargs,message",
        [
            ({"part_size": 4 * MB}, "too small"),
            ({"part_size": 6 * GB}, "too large"),
            ({"concurrency": 0}, "concurrency"),
            ({"max_attempts": 0}, "max_attempts"),
            ({"max_parts": 0}, "max_parts"),
            ({"backoff_multiplier": 0.5}, "backoff"),
        ],
    )
    def test_invalid(self, kwargs, message):
        with pytest.raises(ConfigurationError, match=message):
            UploadConfig(**kwargs).validate()

    def test_immutable(self):
        config = UploadConfig()
        with pytest.raises(AttributeError):
            config.part_size = 1

    def test_retry_policy(self):
        policy = UploadConfig(max_attempts=3, backoff_initial=0.5, backoff_max=4.0).retry_policy()
        assert isinstance(policy, RetryPolicy)
        assert policy.max_attempts == 3
        assert policy.backoff.delay(1) == 0.5
        assert policy.backoff.delay(10) == 4.0


def test_terminal_states():
    assert SessionState.DONE.is_terminal
    assert SessionState.ABORTED.is_terminal
    assert not SessionState.ACTIVE.is_terminal
