"""Unit tests for the metadata report."""

from promdump.models import CatalogSummary, HeadSummary, parse_time
from promdump.report import MSG_NO_HEAD_BLOCK, MSG_NO_PERSISTENT_BLOCKS, format_report

HEAD = HeadSummary(parse_time("2021-04-01 21:00:00"), parse_time("2021-04-01 22:00:00"))


def test_full_report():
    summary = CatalogSummary(
        block_count=2,
        total_samples=1500,
        total_series=15,
        total_size_bytes=4096,
        earliest=parse_time("2021-03-30 01:05:00"),
        latest=parse_time("2021-04-01 20:52:31"),
        head=HEAD,
    )

    report = format_report(summary)

    lines = report.splitlines()
    assert lines[0] == "Head Block Metadata"
    assert lines[1] == "-" * len("Head Block Metadata")
    assert "Persistent Blocks Metadata" in lines
    assert "2021-04-01 21:00:00" in report
    assert "2021-03-30 01:05:00" in report
    assert "2021-04-01 20:52:31" in report
    row = next(line for line in lines if line.startswith("Total number of samples"))
    assert row.split()[-1] == "1500"
    row = next(line for line in lines if line.startswith("Total size"))
    assert row.split()[-1] == "4096"


def test_no_head_block():
    report = format_report(CatalogSummary())
    assert report.startswith(MSG_NO_HEAD_BLOCK)
    assert report.rstrip().endswith(MSG_NO_PERSISTENT_BLOCKS)


def test_head_without_persistent_blocks():
    report = format_report(CatalogSummary(head=HEAD))
    assert "Head Block Metadata" in report
    assert "Persistent Blocks Metadata" not in report
    assert report.rstrip().endswith(MSG_NO_PERSISTENT_BLOCKS)
