"""Unit tests for the remote operation sequencing."""

import io
from unittest.mock import Mock

import pytest

from conftest import FakeExecutor
from promdump import __version__
from promdump.config import PromdumpConfig
from promdump.errors import (
    ChecksumMismatch,
    ConfigurationError,
    PermissionDenied,
    RemoteCommandError,
    TransportError,
)
from promdump.models import TimeRange
from promdump.orchestrator import OperationContext, Orchestrator

ARTIFACT = b"extractor tarball"
WINDOW = TimeRange(1_600_000_000_000_000_000, 1_600_000_360_000_000_000)


@pytest.fixture
def config(tmp_path):
    return PromdumpConfig(
        namespace="monitoring",
        container="prometheus-server",
        data_dir="/prometheus",
        request_timeout=3,
        transfer_timeout=60,
        cache_dir=str(tmp_path / "cache"),
        download_uri="https://example.com/promdump-v0.2.0.tar.gz",
        checksum_uri="https://example.com/promdump-v0.2.0.tar.gz.sha256",
        force_download=False,
        debug=False,
        log_level="ERROR",
    )


def build(config, executor, distributor=None):
    context = OperationContext.build(config, "prometheus-0", executor)
    if distributor is None:
        distributor = Mock()
        distributor.fetch.side_effect = lambda *args: io.BytesIO(ARTIFACT)
    context.distributor = distributor
    return Orchestrator(context)


class TestExtract:
    def test_full_sequence(self, config, fake_executor):
        fake_executor.respond("-min-time", stdout=b"archive")
        orchestrator = build(config, fake_executor)
        out = io.BytesIO()

        orchestrator.extract(WINDOW, out)

        assert out.getvalue() == b"archive"
        assert fake_executor.reviews == ["monitoring"]
        assert fake_executor.calls == [
            ["/prometheus/promdump", "-version"],
            ["sh", "-c", "head -c 17 | tar -C /prometheus -xzf -"],
            ["/prometheus/promdump", "-min-time", str(WINDOW.start), "-max-time", str(WINDOW.end),
             "-data-dir", "/prometheus"],
            ["rm", "-f", "/prometheus/promdump"],
        ]
        assert fake_executor.stdin_data[1] == ARTIFACT
        orchestrator.context.distributor.fetch.assert_called_once_with(
            False, config.download_uri, config.checksum_uri
        )

    def test_denied_sends_no_exec(self, config):
        executor = FakeExecutor(allowed=False, reason="forbidden")
        orchestrator = build(config, executor)

        with pytest.raises(PermissionDenied):
            orchestrator.extract(WINDOW, io.BytesIO())

        assert executor.calls == []
        orchestrator.context.distributor.fetch.assert_not_called()

    def test_matching_extractor_skips_upload(self, config, fake_executor):
        fake_executor.respond("-version", stdout=f"{__version__}\n".encode())
        orchestrator = build(config, fake_executor)

        orchestrator.extract(WINDOW, io.BytesIO())

        assert fake_executor.commands() == ["/prometheus/promdump", "/prometheus/promdump"]
        orchestrator.context.distributor.fetch.assert_not_called()

    def test_missing_extractor_is_uploaded(self, config, fake_executor):
        fake_executor.respond("-version", error=RemoteCommandError(["promdump"], 127))
        orchestrator = build(config, fake_executor)

        orchestrator.extract(WINDOW, io.BytesIO())

        assert fake_executor.commands() == ["/prometheus/promdump", "sh", "/prometheus/promdump", "rm"]

    def test_extractor_without_version_flag_is_replaced(self, config, fake_executor):
        fake_executor.respond(
            "-version", error=RemoteCommandError(["promdump"], 2, "flag provided but not defined: -version")
        )
        orchestrator = build(config, fake_executor)

        orchestrator.extract(WINDOW, io.BytesIO())

        assert fake_executor.commands() == ["/prometheus/promdump", "sh", "/prometheus/promdump", "rm"]
        orchestrator.context.distributor.fetch.assert_called_once()

    def test_other_extractor_version_is_replaced(self, config, fake_executor):
        fake_executor.respond("-version", stdout=b"0.1.0\n")
        orchestrator = build(config, fake_executor)

        orchestrator.extract(WINDOW, io.BytesIO())

        assert fake_executor.commands() == ["/prometheus/promdump", "sh", "/prometheus/promdump", "rm"]

    def test_cleanup_runs_after_extract_failure(self, config, fake_executor):
        fake_executor.respond("-min-time", error=RemoteCommandError(["promdump"], 1))
        orchestrator = build(config, fake_executor)

        with pytest.raises(RemoteCommandError):
            orchestrator.extract(WINDOW, io.BytesIO())

        assert fake_executor.calls[-1] == ["rm", "-f", "/prometheus/promdump"]

    def test_cleanup_runs_after_upload_failure(self, config, fake_executor):
        fake_executor.respond("tar", error=TransportError("stream reset"))
        orchestrator = build(config, fake_executor)

        with pytest.raises(TransportError, match="stream reset"):
            orchestrator.extract(WINDOW, io.BytesIO())

        assert fake_executor.commands() == ["/prometheus/promdump", "sh", "rm"]

    def test_cleanup_failure_does_not_mask_result(self, config, fake_executor):
        fake_executor.respond("-min-time", error=RemoteCommandError(["promdump"], 1))
        fake_executor.respond("rm", error=TransportError("connection lost"))
        orchestrator = build(config, fake_executor)

        with pytest.raises(RemoteCommandError):
            orchestrator.extract(WINDOW, io.BytesIO())

    def test_cleanup_failure_after_success_is_logged(self, config, fake_executor):
        fake_executor.respond("rm", error=TransportError("connection lost"))
        orchestrator = build(config, fake_executor)

        orchestrator.extract(WINDOW, io.BytesIO())

    def test_download_failure_skips_upload_and_cleanup(self, config, fake_executor):
        distributor = Mock()
        distributor.fetch.side_effect = ChecksumMismatch("aa", "bb")
        orchestrator = build(config, fake_executor, distributor)

        with pytest.raises(ChecksumMismatch):
            orchestrator.extract(WINDOW, io.BytesIO())

        assert fake_executor.commands() == ["/prometheus/promdump"]

    def test_force_download(self, config, fake_executor):
        config.force_download = True
        orchestrator = build(config, fake_executor)

        orchestrator.extract(WINDOW, io.BytesIO())

        assert orchestrator.context.distributor.fetch.call_args.args[0] is True


class TestMeta:
    def test_meta(self, config, fake_executor):
        fake_executor.respond("-meta", stdout=b"Head Block Metadata")
        orchestrator = build(config, fake_executor)
        out = io.BytesIO()

        orchestrator.meta(out)

        assert out.getvalue() == b"Head Block Metadata"
        assert ["/prometheus/promdump", "-meta", "-data-dir", "/prometheus"] in fake_executor.calls


class TestRestore:
    def test_restore(self, config, fake_executor, tmp_path):
        dump = tmp_path / "dump.tar.gz"
        dump.write_bytes(b"dump contents")
        orchestrator = build(config, fake_executor)

        orchestrator.restore(str(dump))

        assert fake_executor.calls == [
            ["sh", "-c", "rm -rf /prometheus/*"],
            ["sh", "-c", "head -c 13 | tar -C /prometheus -xzf -"],
        ]
        assert fake_executor.stdin_data[1] == b"dump contents"

    def test_missing_dump_file(self, config, fake_executor, tmp_path):
        orchestrator = build(config, fake_executor)

        with pytest.raises(ConfigurationError):
            orchestrator.restore(str(tmp_path / "missing.tar.gz"))

        assert fake_executor.reviews == []
        assert fake_executor.calls == []

    def test_denied_restore_wipes_nothing(self, config, tmp_path):
        dump = tmp_path / "dump.tar.gz"
        dump.write_bytes(b"dump contents")
        executor = FakeExecutor(allowed=False)
        orchestrator = build(config, executor)

        with pytest.raises(PermissionDenied):
            orchestrator.restore(str(dump))

        assert executor.calls == []


def test_context_requires_pod(config, fake_executor):
    with pytest.raises(ConfigurationError):
        OperationContext.build(config, "", fake_executor)
