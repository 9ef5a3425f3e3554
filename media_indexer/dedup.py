"""
Duplicate and change detection against the current run and the existing index.
"""
import logging
import threading
from typing import Dict, Iterable, Set

from . import stats as counters
from .config import ALIAS_SEPARATOR, UnchangedPolicy
from .database.ops import IndexStore
from .exceptions import IndexStoreError
from .models import CandidateFile, Classification
from .stats import RunStats


class DuplicateTracker:
    """Content signatures seen so far in this run."""

    def __init__(self):
        self._seen: Set[str] = set()
        self._lock = threading.Lock()

    def check_and_add(self, signature: str) -> bool:
        """Returns True if the signature was already seen."""
        with self._lock:
            if signature in self._seen:
                return True
            self._seen.add(signature)
            return False

    def __len__(self):
        with self._lock:
            return len(self._seen)


class ChangeDetector:
    def __init__(self, store: IndexStore, stats: RunStats,
                 force_reindex: bool = False,
                 policy: UnchangedPolicy = UnchangedPolicy.SIGNATURE):
        self.store = store
        self.stats = stats
        self.force_reindex = force_reindex
        self.policy = policy
        self.duplicates = DuplicateTracker()
        self._visited: Dict[str, Set[str]] = {}
        self._unlisted: Set[str] = set()
        self._lock = threading.Lock()

    def classify(self, candidate: CandidateFile) -> Classification:
        if self.duplicates.check_and_add(candidate.signature):
            self.stats.increment(counters.DUPLICATES_IGNORED)
            if self._holds_other_content(candidate):
                # Left unvisited so the stale document is removed
                logging.info(f"{candidate.full_path} now duplicates earlier content, dropping its document")
            else:
                self._mark_visited(candidate.aliased_path, candidate.alias)
            logging.debug(f"Ignoring duplicate content: {candidate.full_path}")
            return Classification.DUPLICATE

        self._mark_visited(candidate.aliased_path, candidate.alias)
        try:
            stored = self.store.get(candidate.aliased_path)
        except IndexStoreError as e:
            # Treated as new; the commit replaces whatever is there
            self.stats.increment(counters.CHECK_FAILED)
            logging.error(f"Index check failed for {candidate.full_path}: {e}")
            stored = None

        if stored is None:
            self.stats.increment(counters.NEW_FILES)
            return Classification.NEW

        if not self.force_reindex and self._is_unchanged(candidate, stored.signature, stored.file_modified):
            self.stats.increment(counters.UNCHANGED_FILES)
            return Classification.UNCHANGED

        self.stats.increment(counters.CHANGED_FILES)
        return Classification.CHANGED

    def _is_unchanged(self, candidate: CandidateFile, signature: str, file_modified: float) -> bool:
        if signature != candidate.signature:
            return False
        if self.policy == UnchangedPolicy.SIGNATURE_AND_MTIME:
            return file_modified == candidate.last_modified
        return True

    def _holds_other_content(self, candidate: CandidateFile) -> bool:
        """True when the path is indexed with a signature other than its current one."""
        try:
            stored = self.store.get(candidate.aliased_path)
        except IndexStoreError as e:
            self.stats.increment(counters.CHECK_FAILED)
            logging.error(f"Index check failed for {candidate.full_path}: {e}")
            return False
        return stored is not None and stored.signature != candidate.signature

    def _mark_visited(self, aliased_path: str, alias: str = ""):
        alias = alias or aliased_path.split(ALIAS_SEPARATOR, 1)[0]
        with self._lock:
            self._visited.setdefault(alias, set()).add(aliased_path)

    def mark_present(self, skipped_paths: Iterable[str] = (), unlisted_dirs: Iterable[str] = ()):
        """
        Keeps documents for files the scan saw but couldn't read, and for
        everything under directories it couldn't list.
        """
        for path in skipped_paths:
            self._mark_visited(path)
        with self._lock:
            for directory in unlisted_dirs:
                self._unlisted.add(directory.rstrip(ALIAS_SEPARATOR) + ALIAS_SEPARATOR)

    def visited_paths(self, alias: str) -> Set[str]:
        with self._lock:
            return set(self._visited.get(alias, ()))

    def unvisited_paths(self, alias: str) -> Set[str]:
        """Indexed paths under alias that this run's scan didn't see."""
        with self._lock:
            unlisted = tuple(self._unlisted)
        return {
            path for path in self.store.paths_for_alias(alias) - self.visited_paths(alias)
            if not path.startswith(unlisted)
        }

    def remove_unvisited(self, alias: str, make_no_changes: bool = False) -> int:
        removed = 0
        for path in sorted(self.unvisited_paths(alias)):
            if make_no_changes:
                logging.info(f"Would remove {path} (no longer on disk)")
                continue
            try:
                if self.store.delete(path):
                    removed += 1
                    self.stats.increment(counters.MEDIA_REMOVED)
                    logging.info(f"Removed {path} (no longer on disk)")
            except IndexStoreError as e:
                logging.error(f"Failed removing {path}: {e}")
        return removed
