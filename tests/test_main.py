import logging
from pathlib import Path

from media_indexer import stats as counters
from media_indexer.config import UnchangedPolicy, ratio_num_cpus
from media_indexer.main import build_settings, parse_args
from media_indexer.stats import RunStats


def test_cli_builds_settings():
    args = parse_args([
        "-p", "/photos", "--db", "/data/index.db", "--thumbnails", "/data/thumbs",
        "-l", "http://geo/api/v1/name", "--reindex", "-a", "/mnt/photos",
        "--unchanged-policy", "signature-and-mtime", "--dry-run",
    ])
    settings = build_settings(args)

    assert settings.scan_path == Path("/photos")
    assert settings.db_path == Path("/data/index.db")
    assert settings.thumbnail_dir == Path("/data/thumbs")
    assert settings.location_lookup_url == "http://geo/api/v1/name"
    assert settings.force_reindex
    assert settings.alias_path_override == "/mnt/photos"
    assert settings.unchanged_policy == UnchangedPolicy.SIGNATURE_AND_MTIME
    assert settings.make_no_changes


def test_cli_defaults():
    settings = build_settings(parse_args(["--path", "/photos"]))
    assert settings.unchanged_policy == UnchangedPolicy.SIGNATURE
    assert not settings.force_reindex
    assert not settings.make_no_changes
    assert settings.location_lookup_url is None
    assert settings.ffmpeg_path == "ffmpeg"


def test_ratio_num_cpus_never_below_one():
    assert ratio_num_cpus(0.0001) == 1
    assert ratio_num_cpus(1.0) >= 1


def test_run_summary_is_logged(caplog):
    stats = RunStats()
    stats.increment(counters.SUPPORTED_FILES_FOUND, 10)
    stats.increment(counters.INDEXED_FILES, 7)
    stats.increment(counters.DUPLICATES_IGNORED, 3)

    with caplog.at_level(logging.INFO):
        stats.log_summary(2.0)

    text = caplog.text
    assert "5.00 files/second" in text
    assert "7 files indexed, 3 duplicates ignored" in text
    assert stats.snapshot()[counters.INDEXED_FILES] == 7
