import json
import subprocess
import pytest
from datetime import datetime
from PIL import Image

from media_indexer.exceptions import MetadataExtractionError
from media_indexer.metadata import extract as extract_module
from media_indexer.metadata.extract import (
    ExifToolExtractor,
    NativeExtractor,
    select_metadata_extractor,
)


# Mock MediaInfo class structure
class MockTrack:
    def __init__(self, track_type="General", **kwargs):
        self.track_type = track_type
        for k, v in kwargs.items():
            setattr(self, k, v)


class MockMediaInfo:
    def __init__(self, tracks):
        self.tracks = tracks

    @classmethod
    def parse(cls, path):
        return cls([
            MockTrack(duration=5000, recorded_date="2023-01-01 12:00:00", device_model="TestCam"),
            MockTrack("Video", width=1920, height=1080),
        ])


def test_video_metadata_extraction(monkeypatch, tmp_path):
    monkeypatch.setattr(extract_module, "MediaInfo", MockMediaInfo)

    vid = tmp_path / "test.mp4"
    vid.touch()

    blob = NativeExtractor().extract(vid)
    quicktime = blob["QuickTime"]

    assert blob["File"]["MIMEType"] == "video/mp4"
    assert quicktime["Duration"] == 5.0
    assert quicktime["CreateDate"] == "2023:01:01 12:00:00"
    assert quicktime["Model"] == "TestCam"
    assert (quicktime["ImageWidth"], quicktime["ImageHeight"]) == (1920, 1080)


def test_image_without_exif_still_reports_file_info(tmp_path):
    img = tmp_path / "plain.jpg"
    Image.new("RGB", (64, 32)).save(img, "JPEG")

    blob = NativeExtractor().extract(img)
    assert blob["File"]["MIMEType"] == "image/jpeg"
    assert blob["File"]["ImageWidth"] == 64
    assert blob["File"]["ImageHeight"] == 32
    assert blob["EXIF"] == {}
    # "2016:03:05 10:00:00+01:00" style
    datetime.strptime(blob["File"]["FileModifyDate"], "%Y:%m:%d %H:%M:%S%z")


def test_native_extractor_missing_file(tmp_path):
    with pytest.raises(MetadataExtractionError):
        NativeExtractor().extract(tmp_path / "gone.jpg")


def test_exiftool_output_is_parsed(monkeypatch, tmp_path):
    payload = [{"SourceFile": "a.jpg", "EXIF": {"ISO": 200}}]
    seen = {}

    def fake_check_output(cmd, **kwargs):
        seen["cmd"] = cmd
        return json.dumps(payload)

    monkeypatch.setattr(extract_module.subprocess, "check_output", fake_check_output)
    blob = ExifToolExtractor("exiftool").extract(tmp_path / "a.jpg")

    assert blob["EXIF"]["ISO"] == 200
    assert seen["cmd"][:3] == ["exiftool", "-j", "-g"]


@pytest.mark.parametrize("output", ["not json", "[]", "{}"])
def test_exiftool_bad_output(monkeypatch, tmp_path, output):
    monkeypatch.setattr(extract_module.subprocess, "check_output", lambda cmd, **kwargs: output)
    with pytest.raises(MetadataExtractionError):
        ExifToolExtractor().extract(tmp_path / "a.jpg")


def test_exiftool_failure(monkeypatch, tmp_path):
    def fail(cmd, **kwargs):
        raise subprocess.CalledProcessError(1, cmd)

    monkeypatch.setattr(extract_module.subprocess, "check_output", fail)
    with pytest.raises(MetadataExtractionError):
        ExifToolExtractor().extract(tmp_path / "a.jpg")


def test_selection_falls_back_to_native(monkeypatch):
    monkeypatch.setattr(extract_module, "is_exec_working", lambda *args, **kwargs: False)
    assert isinstance(select_metadata_extractor("no-such-exiftool"), NativeExtractor)

    monkeypatch.setattr(extract_module, "is_exec_working", lambda *args, **kwargs: True)
    assert isinstance(select_metadata_extractor(), ExifToolExtractor)
