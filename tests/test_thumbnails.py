import os
import shutil
import pytest
from pathlib import Path
from PIL import Image

from media_indexer import stats as counters
from media_indexer.exceptions import ThumbnailError, ToolUnavailableError
from media_indexer.models import ThumbnailRequest
from media_indexer.thumbnails import backends
from media_indexer.thumbnails.backends import (
    FrameExtractor,
    PillowThumbnailBackend,
    require_frame_extractor,
    select_thumbnail_backend,
)
from media_indexer.thumbnails.generate import ThumbnailChecker, ThumbnailGenerator, thumbnail_path


def _make_image(path: Path, size=(800, 600), color=(200, 30, 30)):
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new("RGB", size, color).save(path, "JPEG")
    return path


class ScriptedFrameExtractor(FrameExtractor):
    """Writes a frame only for the offsets it's told the clip has."""

    def __init__(self, frame_source: Path, offsets_with_frames=("00:00:01.0",),
                 error=None, failing_offsets=None):
        self.frame_source = frame_source
        self.offsets_with_frames = offsets_with_frames
        self.error = error
        self.failing_offsets = failing_offsets
        self.calls = []

    def extract_frame(self, source, dest, offset):
        self.calls.append((offset, dest))
        if self.error and (self.failing_offsets is None or offset in self.failing_offsets):
            raise self.error
        if offset in self.offsets_with_frames:
            shutil.copy(self.frame_source, dest)


def test_thumbnail_path_keeps_extension():
    root = Path("/thumbs")
    assert thumbnail_path(root, "3\\2016\\IMG_1.JPG") == root / "3" / "2016" / "IMG_1.JPG.jpg"


def test_pillow_backend_caps_height(tmp_path):
    src = _make_image(tmp_path / "big.jpg", size=(1000, 500))
    dest = tmp_path / "thumb.jpg"
    PillowThumbnailBackend().create(src, dest)

    with Image.open(dest) as im:
        assert im.format == "JPEG"
        assert im.height == 170
        assert im.width == 340


def test_pillow_backend_never_enlarges(tmp_path):
    src = _make_image(tmp_path / "small.jpg", size=(100, 50))
    dest = tmp_path / "thumb.jpg"
    PillowThumbnailBackend().create(src, dest)
    with Image.open(dest) as im:
        assert im.size == (100, 50)


def test_pillow_backend_rejects_non_images(tmp_path):
    src = tmp_path / "fake.jpg"
    src.write_bytes(b"not an image")
    with pytest.raises(ThumbnailError):
        PillowThumbnailBackend().create(src, tmp_path / "thumb.jpg")


def test_image_generation(tmp_path, stats):
    src = _make_image(tmp_path / "photos" / "a.jpg")
    thumbs = tmp_path / "thumbs"
    generator = ThumbnailGenerator(thumbs, PillowThumbnailBackend(), ScriptedFrameExtractor(src), stats)

    assert generator.generate(ThumbnailRequest(src, "1\\a.jpg", "image/jpeg"))
    assert (thumbs / "1" / "a.jpg.jpg").exists()
    assert stats.get(counters.GENERATED_IMAGE) == 1


def test_image_failure_is_counted(tmp_path, stats):
    src = tmp_path / "broken.jpg"
    src.write_bytes(b"garbage")
    generator = ThumbnailGenerator(tmp_path / "thumbs", PillowThumbnailBackend(),
                                   ScriptedFrameExtractor(src), stats)

    assert not generator.generate(ThumbnailRequest(src, "1\\broken.jpg", "image/jpeg"))
    assert stats.get(counters.FAILED_IMAGE) == 1


def test_video_frame_at_one_second(tmp_path, stats):
    frame = _make_image(tmp_path / "frame.jpg")
    clip = tmp_path / "clip.mp4"
    clip.write_bytes(b"video")
    extractor = ScriptedFrameExtractor(frame, offsets_with_frames=("00:00:01.0",))
    thumbs = tmp_path / "thumbs"
    generator = ThumbnailGenerator(thumbs, PillowThumbnailBackend(), extractor, stats)

    assert generator.generate(ThumbnailRequest(clip, "1\\clip.mp4", "video/mp4"))
    assert [offset for offset, _ in extractor.calls] == ["00:00:01.0"]
    assert (thumbs / "1" / "clip.mp4.jpg").exists()
    assert stats.get(counters.GENERATED_VIDEO) == 1


def test_short_video_retries_at_zero(tmp_path, stats):
    frame = _make_image(tmp_path / "frame.jpg")
    clip = tmp_path / "short.mov"
    clip.write_bytes(b"video")
    extractor = ScriptedFrameExtractor(frame, offsets_with_frames=("00:00:00.0",))
    generator = ThumbnailGenerator(tmp_path / "thumbs", PillowThumbnailBackend(), extractor, stats)

    assert generator.generate(ThumbnailRequest(clip, "1\\short.mov", "video/quicktime"))
    assert [offset for offset, _ in extractor.calls] == ["00:00:01.0", "00:00:00.0"]

    # The temporary frame is gone afterwards
    assert all(not dest.exists() for _, dest in extractor.calls)
    assert all(not dest.parent.exists() for _, dest in extractor.calls)


def test_video_without_frames_fails_and_cleans_up(tmp_path, stats):
    clip = tmp_path / "empty.mp4"
    clip.write_bytes(b"video")
    extractor = ScriptedFrameExtractor(tmp_path / "unused.jpg", offsets_with_frames=())
    generator = ThumbnailGenerator(tmp_path / "thumbs", PillowThumbnailBackend(), extractor, stats)

    assert not generator.generate(ThumbnailRequest(clip, "1\\empty.mp4", "video/mp4"))
    assert stats.get(counters.FAILED_VIDEO) == 1
    assert len(extractor.calls) == 2
    assert all(not dest.parent.exists() for _, dest in extractor.calls)


def test_frame_extractor_error_cleans_up(tmp_path, stats):
    clip = tmp_path / "bad.mp4"
    clip.write_bytes(b"video")
    extractor = ScriptedFrameExtractor(tmp_path / "unused.jpg", error=ThumbnailError("ffmpeg died"))
    generator = ThumbnailGenerator(tmp_path / "thumbs", PillowThumbnailBackend(), extractor, stats)

    assert not generator.generate(ThumbnailRequest(clip, "1\\bad.mp4", "video/mp4"))
    assert stats.get(counters.FAILED_VIDEO) == 1
    # Every offset is tried before giving up
    assert [offset for offset, _ in extractor.calls] == ["00:00:01.0", "00:00:00.0"]
    assert not extractor.calls[0][1].parent.exists()


def test_error_at_one_second_retries_at_zero(tmp_path, stats):
    frame = _make_image(tmp_path / "frame.jpg")
    clip = tmp_path / "blip.mp4"
    clip.write_bytes(b"video")
    extractor = ScriptedFrameExtractor(frame, offsets_with_frames=("00:00:00.0",),
                                       error=ThumbnailError("seek past end"),
                                       failing_offsets=("00:00:01.0",))
    thumbs = tmp_path / "thumbs"
    generator = ThumbnailGenerator(thumbs, PillowThumbnailBackend(), extractor, stats)

    assert generator.generate(ThumbnailRequest(clip, "1\\blip.mp4", "video/mp4"))
    assert [offset for offset, _ in extractor.calls] == ["00:00:01.0", "00:00:00.0"]
    assert (thumbs / "1" / "blip.mp4.jpg").exists()
    assert stats.get(counters.GENERATED_VIDEO) == 1
    assert stats.get(counters.FAILED_VIDEO) == 0


def test_checker_skips_current_thumbnails(tmp_path, stats):
    src = _make_image(tmp_path / "photos" / "a.jpg")
    thumbs = tmp_path / "thumbs"
    checker = ThumbnailChecker(thumbs, stats)
    request = ThumbnailRequest(src, "1\\a.jpg", "image/jpeg")

    assert checker.needs_thumbnail(request)

    thumb = thumbnail_path(thumbs, "1\\a.jpg")
    _make_image(thumb, size=(10, 10))
    source_mtime = src.stat().st_mtime
    os.utime(thumb, (source_mtime + 10, source_mtime + 10))
    assert not checker.needs_thumbnail(request)
    assert stats.get(counters.THUMBNAILS_SKIPPED) == 1

    # Source edited after the thumbnail was made
    os.utime(src, (source_mtime + 20, source_mtime + 20))
    assert checker.needs_thumbnail(request)


def test_checker_counts_failed_checks(tmp_path, stats):
    thumbs = tmp_path / "thumbs"
    _make_image(thumbnail_path(thumbs, "1\\gone.jpg"))
    checker = ThumbnailChecker(thumbs, stats)

    request = ThumbnailRequest(tmp_path / "gone.jpg", "1\\gone.jpg", "image/jpeg")
    assert checker.needs_thumbnail(request)
    assert stats.get(counters.FAILED_CHECKS) == 1


def test_backend_selection_falls_back_to_pillow(monkeypatch):
    monkeypatch.setattr(backends, "is_exec_working", lambda *args, **kwargs: False)
    backend = select_thumbnail_backend("no-such-vipsthumbnail")
    assert isinstance(backend, PillowThumbnailBackend)
    assert backend.worker_ratio == 0.5


def test_backend_selection_prefers_vips(monkeypatch):
    monkeypatch.setattr(backends, "is_exec_working", lambda *args, **kwargs: True)
    assert isinstance(select_thumbnail_backend(), backends.VipsThumbnailBackend)


def test_missing_ffmpeg_is_fatal(monkeypatch):
    monkeypatch.setattr(backends, "is_exec_working", lambda *args, **kwargs: False)
    with pytest.raises(ToolUnavailableError):
        require_frame_extractor("no-such-ffmpeg")


def test_vips_command_line(monkeypatch, tmp_path):
    seen = {}

    def fake_run(cmd, **kwargs):
        seen["cmd"] = cmd
        seen["check"] = kwargs.get("check")

    monkeypatch.setattr(backends.subprocess, "run", fake_run)
    backends.VipsThumbnailBackend("vipsthumbnail").create(tmp_path / "a.jpg", tmp_path / "t.jpg")

    assert seen["check"] is True
    assert seen["cmd"] == [
        "vipsthumbnail", "-s", "10000x170",
        "-o", f"{tmp_path / 't.jpg'}[Q=85,optimize_coding,strip]",
        str(tmp_path / "a.jpg"),
    ]


def test_ffmpeg_failure_raises_thumbnail_error(monkeypatch, tmp_path):
    def fake_run(cmd, **kwargs):
        raise backends.subprocess.CalledProcessError(1, cmd, stderr=b"Invalid data")

    monkeypatch.setattr(backends.subprocess, "run", fake_run)
    with pytest.raises(ThumbnailError, match="Invalid data"):
        backends.FfmpegFrameExtractor("ffmpeg").extract_frame(
            tmp_path / "a.mp4", tmp_path / "f.jpg", "00:00:01.0")
