"""
Thumbnail and video-frame producers.

Each concern has an external-tool implementation and (for thumbnails) an
in-process Pillow implementation; the tool is preferred when it's installed.
"""
import logging
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path

from PIL import Image

from .. import config
from ..exceptions import ThumbnailError, ToolUnavailableError
from ..tooling import is_exec_working


class ThumbnailBackend(ABC):
    name = "thumbnail"
    # Share of the CPUs given to thumbnail generation with this backend
    worker_ratio = 1.0

    @abstractmethod
    def create(self, source: Path, dest: Path):
        """Writes a JPEG thumbnail of source to dest, or raises ThumbnailError."""


class VipsThumbnailBackend(ThumbnailBackend):
    name = "vipsthumbnail"
    worker_ratio = 1.0

    def __init__(self, vipsthumbnail_path: str = "vipsthumbnail", timeout: float = 120.0):
        self.vipsthumbnail_path = vipsthumbnail_path
        self.timeout = timeout

    @classmethod
    def is_available(cls, vipsthumbnail_path: str = "vipsthumbnail") -> bool:
        return is_exec_working(vipsthumbnail_path, "--vips-version")

    def create(self, source: Path, dest: Path):
        # Width is effectively unbounded; height is the cap
        size = f"10000x{config.THUMBNAIL_MAX_HEIGHT}"
        output = f"{dest}[Q={config.THUMBNAIL_JPEG_QUALITY},optimize_coding,strip]"
        cmd = [self.vipsthumbnail_path, "-s", size, "-o", output, str(source)]
        try:
            subprocess.run(cmd, check=True, capture_output=True, timeout=self.timeout)
        except subprocess.CalledProcessError as e:
            stderr = e.stderr.decode(errors="replace").strip() if e.stderr else ""
            raise ThumbnailError(f"vipsthumbnail failed for {source}: {stderr or e}") from e
        except (OSError, subprocess.SubprocessError) as e:
            raise ThumbnailError(f"vipsthumbnail failed for {source}: {e}") from e


class PillowThumbnailBackend(ThumbnailBackend):
    """Slower in-process resize: nearest neighbour, never enlarges."""

    name = "pillow"
    worker_ratio = 0.5

    def create(self, source: Path, dest: Path):
        try:
            with Image.open(source) as im:
                thumb = im.convert("RGB") if im.mode not in ("RGB", "L") else im.copy()
            thumb.thumbnail((10000, config.THUMBNAIL_MAX_HEIGHT), Image.Resampling.NEAREST)
            thumb.save(dest, "JPEG", quality=config.THUMBNAIL_JPEG_QUALITY)
        except (OSError, ValueError, Image.DecompressionBombError) as e:
            raise ThumbnailError(f"Pillow failed creating a thumbnail of {source}: {e}") from e


class FrameExtractor(ABC):
    name = "frame"

    @abstractmethod
    def extract_frame(self, source: Path, dest: Path, offset: str):
        """
        Writes the frame at offset ("HH:MM:SS.s") to dest. A clip shorter than
        offset may leave dest missing without raising.
        """


class FfmpegFrameExtractor(FrameExtractor):
    name = "ffmpeg"

    def __init__(self, ffmpeg_path: str = "ffmpeg", timeout: float = 120.0):
        self.ffmpeg_path = ffmpeg_path
        self.timeout = timeout

    @classmethod
    def is_available(cls, ffmpeg_path: str = "ffmpeg") -> bool:
        return is_exec_working(ffmpeg_path, "-version")

    def extract_frame(self, source: Path, dest: Path, offset: str):
        cmd = [
            self.ffmpeg_path, "-loglevel", "error", "-y",
            "-ss", offset, "-i", str(source),
            "-frames:v", "1", str(dest),
        ]
        try:
            subprocess.run(cmd, check=True, capture_output=True, timeout=self.timeout)
        except subprocess.CalledProcessError as e:
            stderr = e.stderr.decode(errors="replace").strip() if e.stderr else ""
            raise ThumbnailError(f"Failed executing ffmpeg for '{source}': {stderr or e}") from e
        except (OSError, subprocess.SubprocessError) as e:
            raise ThumbnailError(f"Failed executing ffmpeg for '{source}': {e}") from e


def select_thumbnail_backend(vipsthumbnail_path: str = "vipsthumbnail") -> ThumbnailBackend:
    if VipsThumbnailBackend.is_available(vipsthumbnail_path):
        return VipsThumbnailBackend(vipsthumbnail_path)
    logging.warning(
        f"Unable to use the 'vipsthumbnail' command, defaulting to slower thumbnail generation "
        f"(path is '{vipsthumbnail_path}')"
    )
    return PillowThumbnailBackend()


def require_frame_extractor(ffmpeg_path: str = "ffmpeg") -> FrameExtractor:
    if not FfmpegFrameExtractor.is_available(ffmpeg_path):
        raise ToolUnavailableError(f"ffmpeg isn't usable (path is '{ffmpeg_path}')")
    return FfmpegFrameExtractor(ffmpeg_path)
