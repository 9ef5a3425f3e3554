import json
import logging
import subprocess
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

import exifread
from PIL import Image

from .. import config
from ..exceptions import MetadataExtractionError
from ..tooling import is_exec_working

# Type hint 'Any' prevents Pylance from complaining about "None" having no attribute "parse"
MediaInfo: Any = None
try:
    from pymediainfo import MediaInfo
except ImportError:
    MediaInfo = None


class MetadataExtractor(ABC):
    """
    Produces the grouped metadata blob for one file, shaped like
    `exiftool -j -g` output: {"File": {...}, "EXIF": {...}, "QuickTime": {...},
    "Composite": {...}, "IPTC": {...}, "XMP": {...}}.
    """

    name = "metadata"

    @abstractmethod
    def extract(self, path: Path) -> Dict[str, Any]:
        ...


class ExifToolExtractor(MetadataExtractor):
    """
    Wraps the 'exiftool' command line utility, one invocation per file.
    Must be installed and on the system PATH.
    """

    name = "exiftool"

    def __init__(self, exiftool_path: str = "exiftool", timeout: float = 120.0):
        self.exiftool_path = exiftool_path
        self.timeout = timeout

    @classmethod
    def is_available(cls, exiftool_path: str = "exiftool") -> bool:
        return is_exec_working(exiftool_path, "-ver")

    def extract(self, path: Path) -> Dict[str, Any]:
        # -j = JSON output
        # -g = group tags by family 0 (File, EXIF, QuickTime, ...)
        cmd = [self.exiftool_path, "-j", "-g", "-api", "largefilesupport=1", str(path)]
        try:
            out = subprocess.check_output(cmd, stderr=subprocess.DEVNULL, text=True, timeout=self.timeout)
        except (OSError, subprocess.SubprocessError) as e:
            raise MetadataExtractionError(f"exiftool failed for {path}: {e}") from e

        try:
            data_list = json.loads(out)
        except ValueError as e:
            raise MetadataExtractionError(f"exiftool returned malformed JSON for {path}: {e}") from e

        if not isinstance(data_list, list) or not data_list or not isinstance(data_list[0], dict):
            raise MetadataExtractionError(f"exiftool returned no metadata for {path}")
        return data_list[0]


class NativeExtractor(MetadataExtractor):
    """
    In-process fallback when exiftool isn't installed.

    Strategies:
      - Images: 'exifread' for tags, Pillow for dimensions.
      - Video: 'pymediainfo' for the container dates, duration and size.
    """

    name = "native"

    def extract(self, path: Path) -> Dict[str, Any]:
        try:
            stat_result = path.stat()
        except OSError as e:
            raise MetadataExtractionError(f"Unable to stat {path}: {e}") from e

        ext = path.suffix.lower()
        mime_type = config.EXT_TO_MIME.get(ext, "application/octet-stream")
        modified = datetime.fromtimestamp(stat_result.st_mtime).astimezone()
        blob: Dict[str, Any] = {
            "File": {
                "FileName": path.name,
                "MIMEType": mime_type,
                "FileModifyDate": modified.strftime(config.EXIF_DATE_FORMAT) + _format_offset(modified),
            }
        }

        if mime_type.startswith("video/"):
            blob["QuickTime"] = self._extract_mediainfo(path)
        else:
            blob["EXIF"] = self._extract_exifread(path)
            blob["File"].update(self._image_dimensions(path))
        return blob

    def _extract_exifread(self, path: Path) -> Dict[str, Any]:
        try:
            with path.open('rb') as f:
                # details=False skips makernotes and thumbnails
                tags = exifread.process_file(f, details=False)
        except Exception as e:
            raise MetadataExtractionError(f"ExifRead failed for {path}: {e}") from e

        exif: Dict[str, Any] = {}
        printable = {
            "Make": "Image Make",
            "Model": "Image Model",
            "LensModel": "EXIF LensModel",
            "LensInfo": "EXIF LensSpecification",
            "CreateDate": "EXIF DateTimeDigitized",
            "DateTimeOriginal": "EXIF DateTimeOriginal",
            "ModifyDate": "Image DateTime",
            "ExposureTime": "EXIF ExposureTime",
            "ExposureProgram": "EXIF ExposureProgram",
            "WhiteBalance": "EXIF WhiteBalance",
            "Flash": "EXIF Flash",
            "ISO": "EXIF ISOSpeedRatings",
        }
        for name, tag in printable.items():
            if tag in tags:
                exif[name] = str(tags[tag].printable).strip()

        for name, tag in (("FNumber", "EXIF FNumber"), ("ApertureValue", "EXIF ApertureValue")):
            value = _first_ratio(tags.get(tag))
            if value is not None:
                exif[name] = round(value, 1)

        focal = _first_ratio(tags.get("EXIF FocalLength"))
        if focal is not None:
            exif["FocalLength"] = f"{focal:.1f} mm"

        for axis in ("Latitude", "Longitude"):
            dms = _ratios_to_dms(tags.get(f"GPS GPS{axis}"))
            ref = tags.get(f"GPS GPS{axis}Ref")
            if dms:
                exif[f"GPS{axis}"] = dms
            if ref is not None:
                exif[f"GPS{axis}Ref"] = _HEMISPHERES.get(str(ref.printable).strip(), str(ref.printable))
        return exif

    def _image_dimensions(self, path: Path) -> Dict[str, int]:
        try:
            with Image.open(path) as im:
                width, height = im.size
            return {"ImageWidth": width, "ImageHeight": height}
        except Exception as e:
            logging.debug(f"Pillow couldn't read dimensions of {path}: {e}")
            return {}

    def _extract_mediainfo(self, path: Path) -> Dict[str, Any]:
        if MediaInfo is None:
            logging.debug("pymediainfo not installed. Skipping video metadata.")
            return {}

        try:
            mi = MediaInfo.parse(str(path))
        except Exception as e:
            raise MetadataExtractionError(f"MediaInfo failed for {path}: {e}") from e

        data: Dict[str, Any] = {}
        for track in mi.tracks:
            if track.track_type == "General":
                if getattr(track, "duration", None):
                    # MediaInfo duration is in milliseconds
                    data["Duration"] = float(track.duration) / 1000.0

                for field in ("encoded_date", "tagged_date", "recorded_date"):
                    dt = _parse_mediainfo_date(getattr(track, field, None))
                    if dt:
                        data["CreateDate"] = dt.strftime(config.EXIF_DATE_FORMAT)
                        break

                make = getattr(track, "make", None) or getattr(track, "performer", None)
                model = getattr(track, "model", None) or getattr(track, "device_model", None)
                if make:
                    data["Make"] = make
                if model:
                    data["Model"] = model

            elif track.track_type == "Video":
                if getattr(track, "width", None) and getattr(track, "height", None):
                    data["ImageWidth"] = int(track.width)
                    data["ImageHeight"] = int(track.height)
        return data


def select_metadata_extractor(exiftool_path: str = "exiftool") -> MetadataExtractor:
    """Picks exiftool when it runs, otherwise the in-process extractor."""
    if ExifToolExtractor.is_available(exiftool_path):
        return ExifToolExtractor(exiftool_path)
    logging.warning(f"exiftool isn't usable (path is '{exiftool_path}'), using the built-in extractor")
    return NativeExtractor()


# --- Internal Helpers ---

_HEMISPHERES = {"N": "North", "S": "South", "E": "East", "W": "West"}


def _format_offset(dt: datetime) -> str:
    # exiftool style: +HH:MM
    offset = dt.strftime("%z")
    return f"{offset[:3]}:{offset[3:]}" if offset else ""


def _first_ratio(tag) -> Optional[float]:
    if tag is None or not getattr(tag, "values", None):
        return None
    try:
        return float(tag.values[0])
    except (TypeError, ValueError, ZeroDivisionError):
        return None


def _ratios_to_dms(tag) -> Optional[str]:
    if tag is None or len(getattr(tag, "values", [])) != 3:
        return None
    try:
        degrees, minutes, seconds = (float(v) for v in tag.values)
    except (TypeError, ValueError, ZeroDivisionError):
        return None
    # Some cameras write fractional minutes and zero seconds
    total = degrees + minutes / 60.0 + seconds / 3600.0
    whole_degrees = int(total)
    whole_minutes = int((total - whole_degrees) * 60)
    seconds = (total - whole_degrees - whole_minutes / 60.0) * 3600.0
    return f"{whole_degrees} deg {whole_minutes}' {seconds:.2f}\""


def _parse_mediainfo_date(value: Optional[str]) -> Optional[datetime]:
    """Handles '2016-05-06 10:11:12 UTC' and 'UTC 2016-05-06 10:11:12'."""
    if not value:
        return None
    clean = value.replace("UTC", "").strip()
    try:
        return datetime.fromisoformat(clean)
    except ValueError:
        pass
    try:
        return datetime.strptime(clean.split(".")[0], "%Y-%m-%d %H:%M:%S")
    except ValueError:
        return None
