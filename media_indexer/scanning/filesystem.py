import os
import logging
import mimetypes
from pathlib import Path
from typing import Iterator, Set, Optional

from .. import config
from .. import stats as counters
from ..aliases import make_aliased_path
from ..exceptions import SignatureError
from ..models import CandidateFile
from ..stats import RunStats
from .hasher import FileHasher


def classify_mime_type(path: Path) -> Optional[str]:
    """
    Returns the MIME type for a supported media file, None for anything else.
    Known extensions win; otherwise the type is sniffed from the name.
    """
    if path.name.startswith("._"):
        # AppleDouble resource forks
        return None

    ext = path.suffix.lower()
    if ext in config.SUPPORTED_EXTS:
        return config.EXT_TO_MIME.get(ext) or mimetypes.guess_type(path.name)[0]

    guessed, _ = mimetypes.guess_type(path.name)
    if guessed and guessed.split("/")[0] in ("image", "video"):
        return guessed
    return None


class DiskScanner:
    """
    After a scan, ``skipped_paths`` holds the aliased paths of supported files
    that couldn't be read and ``unlisted_dirs`` the aliased directories that
    couldn't be listed. Both are still on disk as far as the index is concerned.
    """

    def __init__(self, stats: RunStats, hasher: Optional[FileHasher] = None):
        self.stats = stats
        self.hasher = hasher or FileHasher()
        self.skipped_paths: Set[str] = set()
        self.unlisted_dirs: Set[str] = set()

    def scan(self,
             root: Path,
             alias: str,
             skip_dirs: Optional[Set[Path]] = None) -> Iterator[CandidateFile]:
        """
        Generator that yields a CandidateFile for every supported file in root.
        Files that can't be read are logged, counted and skipped.
        """
        skip_dirs = skip_dirs or set()
        self.skipped_paths = set()
        self.unlisted_dirs = set()

        for path in self._iter_files(root, skip_dirs, alias):
            self.stats.increment(counters.FILES_SCANNED)

            mime_type = classify_mime_type(path)
            if mime_type is None:
                continue
            self.stats.increment(counters.SUPPORTED_FILES_FOUND)

            candidate = self._process_single_file(root, alias, path, mime_type)
            if candidate:
                yield candidate

    def _process_single_file(self,
                             root: Path,
                             alias: str,
                             path: Path,
                             mime_type: str) -> Optional[CandidateFile]:
        aliased_path = make_aliased_path(alias, path.relative_to(root).as_posix())
        try:
            stat_result = path.stat()
            signature = self.hasher.compute_signature(path)
        except (OSError, SignatureError) as e:
            self.stats.increment(counters.SIGNATURE_FAILURES)
            self.skipped_paths.add(aliased_path)
            logging.warning(f"Skipping unreadable file {path}: {e}")
            return None

        return CandidateFile(
            full_path=path,
            aliased_path=aliased_path,
            signature=signature,
            length_in_bytes=stat_result.st_size,
            mime_type=mime_type,
            last_modified=stat_result.st_mtime,
            alias=alias,
        )

    def _iter_files(self, root: Path, skip_dirs: Set[Path], alias: Optional[str] = None) -> Iterator[Path]:
        """Depth-first walker using os.scandir for speed."""
        stack = [root]
        while stack:
            current = stack.pop()
            if skip_dirs and any(sd == current or sd in current.parents for sd in skip_dirs):
                continue

            try:
                with os.scandir(current) as it:
                    entries = list(it)
            except OSError:
                logging.warning(f"Permission denied: {current}")
                if alias is not None:
                    relative = "" if current == root else current.relative_to(root).as_posix()
                    self.unlisted_dirs.add(make_aliased_path(alias, relative))
                continue

            self.stats.increment(counters.DIRECTORIES_SCANNED)

            # Sort for stable traversal order
            entries.sort(key=lambda e: e.name.lower())

            dirs = []
            files = []
            for e in entries:
                if e.is_dir(follow_symlinks=False):
                    dirs.append(Path(e.path))
                elif e.is_file(follow_symlinks=False):
                    files.append(Path(e.path))

            # Push dirs to stack (reversed so we process A before Z)
            for d in reversed(dirs):
                stack.append(d)

            for f in files:
                yield f
