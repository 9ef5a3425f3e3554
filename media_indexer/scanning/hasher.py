import hashlib
from pathlib import Path

from .. import config
from ..exceptions import SignatureError


class FileHasher:
    """
    Computes the content signature used for duplicate and change detection.

    The whole file is read (SHA-256), so identical bytes always produce the
    same signature and any byte change produces a different one.
    """

    def compute_signature(self, path: Path) -> str:
        try:
            return self._full_sha256(path)
        except OSError as e:
            raise SignatureError(f"Failed computing signature for {path}: {e}") from e

    def _full_sha256(self, path: Path) -> str:
        """Reads entire file. High I/O cost."""
        h = hashlib.sha256()
        with open(path, 'rb') as f:
            while chunk := f.read(config.HASH_CHUNK_SIZE):
                h.update(chunk)
        return h.hexdigest()
