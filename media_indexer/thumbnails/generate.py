import logging
import tempfile
from pathlib import Path
from typing import Optional

from .. import config
from .. import stats as counters
from ..aliases import split_aliased_path
from ..exceptions import ThumbnailError
from ..models import ThumbnailRequest
from ..stats import RunStats
from .backends import FrameExtractor, PillowThumbnailBackend, ThumbnailBackend


def thumbnail_path(thumbnail_root: Path, aliased_path: str) -> Path:
    """
    '<root>/<alias>/<relative path>.jpg'. The original extension stays in the
    name so IMG_1.JPG and IMG_1.MOV don't collide.
    """
    alias, partial = split_aliased_path(aliased_path)
    return thumbnail_root / alias / f"{partial}.jpg"


class ThumbnailChecker:
    """Decides whether a thumbnail is missing or older than its source."""

    def __init__(self, thumbnail_root: Path, stats: RunStats):
        self.thumbnail_root = thumbnail_root
        self.stats = stats

    def needs_thumbnail(self, request: ThumbnailRequest) -> bool:
        thumb = thumbnail_path(self.thumbnail_root, request.aliased_path)
        try:
            if not thumb.exists():
                return True
            current = thumb.stat().st_mtime >= request.full_path.stat().st_mtime
        except OSError as e:
            self.stats.increment(counters.FAILED_CHECKS)
            logging.error(f"Thumbnail check failed for {request.full_path}: {e}")
            return True

        if current:
            self.stats.increment(counters.THUMBNAILS_SKIPPED)
        return not current


class ThumbnailGenerator:
    """
    Images go through the configured backend. Videos have a frame pulled at
    1s (or 0s for very short clips) which is then resized in process.
    """

    def __init__(self,
                 thumbnail_root: Path,
                 backend: ThumbnailBackend,
                 frame_extractor: FrameExtractor,
                 stats: RunStats,
                 frame_backend: Optional[ThumbnailBackend] = None):
        self.thumbnail_root = thumbnail_root
        self.backend = backend
        self.frame_extractor = frame_extractor
        self.frame_backend = frame_backend or PillowThumbnailBackend()
        self.stats = stats

    def generate(self, request: ThumbnailRequest) -> bool:
        media_type = request.mime_type.split("/")[0].lower()
        thumb = thumbnail_path(self.thumbnail_root, request.aliased_path)

        try:
            thumb.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logging.error(f"Unable to create directory for '{thumb}': {e}")
            self._count_failure(media_type)
            return False

        if media_type == "image":
            ok = self._generate_image(request.full_path, thumb)
        elif media_type == "video":
            ok = self._generate_video(request.full_path, thumb)
        else:
            logging.error(f"Unhandled mediaType: {request.mime_type} for {request.full_path}")
            return False

        if ok:
            created = self.stats.get(counters.GENERATED_IMAGE) + self.stats.get(counters.GENERATED_VIDEO)
            if created % config.THUMBNAIL_PROGRESS_INTERVAL == 0:
                logging.info(f"Generated thumbnail {created} [{request.full_path}]")
        return ok

    def _generate_image(self, source: Path, thumb: Path) -> bool:
        try:
            self.backend.create(source, thumb)
        except ThumbnailError as e:
            logging.error(f"Failed thumbnail generation on {source}: {e}")
            self.stats.increment(counters.FAILED_IMAGE)
            return False
        self.stats.increment(counters.GENERATED_IMAGE)
        return True

    def _generate_video(self, source: Path, thumb: Path) -> bool:
        with tempfile.TemporaryDirectory(prefix="media-indexer-") as tmp_dir:
            frame = Path(tmp_dir) / "frame.jpg"
            try:
                for offset in config.VIDEO_FRAME_OFFSETS:
                    try:
                        self.frame_extractor.extract_frame(source, frame, offset)
                    except ThumbnailError as e:
                        logging.debug(f"Frame extraction at {offset} failed for {source}: {e}")
                    if frame.exists():
                        break
                    logging.debug(f"No frame at {offset} in {source}")
                if not frame.exists():
                    raise ThumbnailError(f"No frame could be extracted from {source}")
                self.frame_backend.create(frame, thumb)
            except ThumbnailError as e:
                logging.error(f"Failed thumbnail generation on {source}: {e}")
                self.stats.increment(counters.FAILED_VIDEO)
                return False

        self.stats.increment(counters.GENERATED_VIDEO)
        return True

    def _count_failure(self, media_type: str):
        if media_type == "video":
            self.stats.increment(counters.FAILED_VIDEO)
        elif media_type == "image":
            self.stats.increment(counters.FAILED_IMAGE)
