"""
Run counters shared by the pipeline stages.
"""
import logging
import threading
from collections import Counter
from typing import Dict

# Counter names, grouped by the stage that owns them
DIRECTORIES_SCANNED = "directories_scanned"
FILES_SCANNED = "files_scanned"
SUPPORTED_FILES_FOUND = "supported_files_found"
SIGNATURE_FAILURES = "signature_failures"

NEW_FILES = "new_files"
CHANGED_FILES = "changed_files"
UNCHANGED_FILES = "unchanged_files"
DUPLICATES_IGNORED = "duplicates_ignored"
CHECK_FAILED = "check_failed"

METADATA_INVOCATIONS = "metadata_invocations"
METADATA_FAILED = "metadata_failed"

PLACENAME_LOOKUPS = "placename_lookups"
PLACENAME_CACHE_HITS = "placename_cache_hits"
FAILED_LOOKUPS = "failed_lookups"
SERVER_ERRORS = "server_errors"
LOOKUP_FAILURES = "lookup_failures"

GENERATED_IMAGE = "generated_image"
FAILED_IMAGE = "failed_image"
GENERATED_VIDEO = "generated_video"
FAILED_VIDEO = "failed_video"
THUMBNAILS_SKIPPED = "thumbnails_skipped"
FAILED_CHECKS = "failed_thumbnail_checks"

INDEXED_FILES = "indexed_files"
FAILED_INDEX_ATTEMPTS = "failed_index_attempts"
MEDIA_REMOVED = "media_removed"
STAGE_ERRORS = "stage_errors"


class RunStats:
    """Thread-safe named counters for one indexing run."""

    def __init__(self):
        self._counts: Counter = Counter()
        self._lock = threading.Lock()

    def increment(self, name: str, amount: int = 1) -> int:
        with self._lock:
            self._counts[name] += amount
            return self._counts[name]

    def get(self, name: str) -> int:
        with self._lock:
            return self._counts[name]

    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._counts)

    def log_summary(self, seconds: float):
        c = self.snapshot()
        get = lambda name: c.get(name, 0)
        files_per_second = get(SUPPORTED_FILES_FOUND) / seconds if seconds > 0 else 0.0

        logging.info(
            f"[{seconds:.3f} seconds, {files_per_second:.2f} files/second], "
            f"Scanned {get(DIRECTORIES_SCANNED)} folders and {get(FILES_SCANNED)} files, "
            f"found {get(SUPPORTED_FILES_FOUND)} supported files."
        )
        logging.info(
            f"{get(CHECK_FAILED)} failed repository checks, "
            f"{get(SIGNATURE_FAILURES)} failed signatures"
        )
        logging.info(
            f"{get(METADATA_INVOCATIONS)} metadata extractions, {get(METADATA_FAILED)} failed"
        )
        logging.info(
            f"{get(PLACENAME_LOOKUPS)} locations lookup attempts, "
            f"{get(FAILED_LOOKUPS)} location lookup failures, "
            f"{get(SERVER_ERRORS)} server errors, {get(LOOKUP_FAILURES)} other failures"
        )
        logging.info(
            f"{get(GENERATED_IMAGE)} image thumbnails created, {get(FAILED_IMAGE)} failed; "
            f"{get(GENERATED_VIDEO)} video thumbnails created, {get(FAILED_VIDEO)} failed; "
            f"{get(FAILED_CHECKS)} failed thumbnail checks"
        )
        logging.info(
            f"{get(INDEXED_FILES)} files indexed, {get(DUPLICATES_IGNORED)} duplicates ignored, "
            f"{get(UNCHANGED_FILES)} unchanged, {get(FAILED_INDEX_ATTEMPTS)} failed and "
            f"{get(CHANGED_FILES)} added due to detected changes"
        )
        logging.info(
            f"{get(NEW_FILES)} new media, {get(MEDIA_REMOVED)} removed from the index"
        )
        if get(STAGE_ERRORS):
            logging.warning(f"{get(STAGE_ERRORS)} unexpected stage errors")
