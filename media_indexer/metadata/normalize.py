"""
Turns a candidate file plus its raw metadata into the canonical Media document.

Nothing here fails a candidate: unusable values are dropped and explained by
a warning that travels with the document.
"""
import logging
from datetime import date, datetime
from typing import Any, Dict, Optional

from .. import config
from .. import stats as counters
from ..exceptions import MetadataExtractionError
from ..models import CandidateFile, GeoPoint, Media
from ..stats import RunStats
from . import values
from .extract import MetadataExtractor

# Fixed leap year so every calendar day keeps the same index across years
_DAY_OF_YEAR_BASE = 2016

_HEMISPHERE_NAMES = {
    "N": "North", "NORTH": "North",
    "S": "South", "SOUTH": "South",
    "E": "East", "EAST": "East",
    "W": "West", "WEST": "West",
}


def day_of_year(month: int, day: int) -> int:
    """Day index 1-366 for a calendar day, with Feb 29 always day 60."""
    return date(_DAY_OF_YEAR_BASE, month, day).timetuple().tm_yday


def day_of_year_from_date(dt: datetime) -> int:
    return day_of_year(dt.month, dt.day)


class MetadataNormalizer:
    def __init__(self, extractor: MetadataExtractor, stats: RunStats):
        self.extractor = extractor
        self.stats = stats

    def normalize(self, candidate: CandidateFile) -> Media:
        """
        Extracts metadata (one extractor call) unless the candidate already
        carries it, then reconciles it into a Media document.
        """
        blob = candidate.raw_metadata
        if blob is None:
            self.stats.increment(counters.METADATA_INVOCATIONS)
            try:
                blob = self.extractor.extract(candidate.full_path)
            except MetadataExtractionError as e:
                self.stats.increment(counters.METADATA_FAILED)
                logging.error(f"Metadata extraction failed for {candidate.full_path}: {e}")
                candidate.add_warning(f"Unable to read metadata: {e}")
                blob = {}
        return populate(candidate, blob)


def populate(candidate: CandidateFile, blob: Dict[str, Any]) -> Media:
    file_group = _group(blob, "File")
    exif = _group(blob, "EXIF")

    media = Media(
        filename=candidate.full_path.name,
        path=candidate.aliased_path,
        signature=candidate.signature,
        length_in_bytes=candidate.length_in_bytes,
        mime_type=values.decode_text(file_group.get("MIMEType")) or candidate.mime_type,
        file_modified=candidate.last_modified,

        exposure_program=values.decode_text(exif.get("ExposureProgram")),
        flash=values.decode_text(exif.get("Flash")),
        white_balance=values.decode_text(exif.get("WhiteBalance")),
        lens_info=values.decode_text(exif.get("LensInfo")),
        lens_model=values.decode_text(exif.get("LensModel")),
    )

    media.aperture = _apply(candidate, values.decode_float(exif.get("ApertureValue"), "ApertureValue"))
    media.f_number = _apply(candidate, values.decode_float(exif.get("FNumber"), "FNumber"))
    media.iso = _apply(candidate, values.decode_iso(exif.get("ISO")))
    media.focal_length_mm = _apply(candidate, values.decode_focal_length(exif.get("FocalLength")))

    exposure = values.decode_exposure_time(exif.get("ExposureTime"))
    media.exposure_time = _apply(candidate, exposure)
    media.exposure_time_string = exposure.original

    populate_keywords(media, candidate, blob)
    populate_date_time(media, candidate, blob)
    populate_location(media, candidate, blob)
    populate_dimensions(media, candidate, blob)
    populate_camera_make_and_model(media, blob)

    media.warnings = list(candidate.warnings)
    return media


def populate_keywords(media: Media, candidate: CandidateFile, blob: Dict[str, Any]):
    # Keywords are the union of IPTC:Keywords and XMP:Subject
    keywords = set()
    for group, tag in (("IPTC", "Keywords"), ("XMP", "Subject")):
        decoded = values.decode_keywords(_group(blob, group).get(tag), f"{group}.{tag}")
        if decoded.warning:
            candidate.add_warning(decoded.warning)
        keywords |= decoded.value
    media.keywords = sorted(keywords)


def populate_date_time(media: Media, candidate: CandidateFile, blob: Dict[str, Any]):
    """
    Precedence: QuickTime CreateDate, QuickTime ContentCreateDate (has an
    offset), EXIF CreateDate / DateTimeOriginal / ModifyDate, then the file
    modification time.
    """
    quicktime = _group(blob, "QuickTime")
    exif = _group(blob, "EXIF")
    file_group = _group(blob, "File")

    date_time: Optional[datetime] = None

    if quicktime.get("CreateDate"):
        date_time = _parse_date(candidate, "CreateDate", quicktime["CreateDate"], config.EXIF_DATE_FORMAT)

    if date_time is None and quicktime.get("ContentCreateDate"):
        date_time = _parse_date(
            candidate, "ContentCreateDate", quicktime["ContentCreateDate"], config.EXIF_DATE_OFFSET_FORMAT)

    if date_time is None:
        exif_date = exif.get("CreateDate") or exif.get("DateTimeOriginal") or exif.get("ModifyDate")
        if exif_date:
            date_time = _parse_date(candidate, "EXIF date", exif_date, config.EXIF_DATE_FORMAT)

    file_modify = None
    if file_group.get("FileModifyDate"):
        file_modify = _parse_date(
            candidate, "File.FileModifyDate", file_group["FileModifyDate"], config.EXIF_DATE_OFFSET_FORMAT)

    if date_time is None:
        candidate.add_warning("No usable date in EXIF, using file timestamp")
        date_time = file_modify
    if date_time is None:
        date_time = datetime.fromtimestamp(candidate.last_modified).astimezone()

    if file_modify is not None:
        # Allow a small difference for file systems (FAT) with poor timestamp granularity
        difference = abs((file_modify - _as_aware(date_time)).total_seconds())
        if difference > config.DATE_MISMATCH_TOLERANCE_SECONDS:
            candidate.add_warning(
                f"File modify date does not match media date ({file_modify.isoformat()} - {date_time.isoformat()})")

    media.date_time = date_time
    media.date = date_time.strftime("%Y%m%d")
    media.month_name = date_time.strftime("%B %b")
    media.day_name = date_time.strftime("%A %a")
    media.day_of_year = day_of_year_from_date(date_time)


def populate_location(media: Media, candidate: CandidateFile, blob: Dict[str, Any]):
    position = _group(blob, "Composite").get("GPSPosition")
    if position:
        location = _location_from_gps_position(candidate, position)
        if location:
            media.location = location
            return

    exif = _group(blob, "EXIF")
    media.location = _location_from_gps_and_ref(
        candidate,
        exif.get("GPSLatitude"), exif.get("GPSLatitudeRef"),
        exif.get("GPSLongitude"), exif.get("GPSLongitudeRef"),
    )


def populate_dimensions(media: Media, candidate: CandidateFile, blob: Dict[str, Any]):
    file_group = _group(blob, "File")
    quicktime = _group(blob, "QuickTime")

    for group in (file_group, quicktime):
        width = _apply(candidate, values.decode_int(group.get("ImageWidth"), "ImageWidth"))
        height = _apply(candidate, values.decode_int(group.get("ImageHeight"), "ImageHeight"))
        if width and height:
            media.width, media.height = width, height
            break

    media.duration_seconds = _apply(candidate, values.decode_duration(quicktime.get("Duration")))


def populate_camera_make_and_model(media: Media, blob: Dict[str, Any]):
    exif = _group(blob, "EXIF")
    quicktime = _group(blob, "QuickTime")

    make = values.decode_text(exif.get("Make")) or values.decode_text(quicktime.get("Make"))
    model = values.decode_text(exif.get("Model")) or values.decode_text(quicktime.get("Model"))
    media.original_camera_make = make
    media.original_camera_model = model

    # "Canon" + "Canon EOS 5D" reads better as "Canon" + "EOS 5D"
    if make and model and model.lower().startswith(make.lower()) and len(model) > len(make):
        model = model[len(make):].strip()
    media.camera_make = make
    media.camera_model = model


# --- Location helpers ---

def _location_from_gps_position(candidate: CandidateFile, position: Any) -> Optional[GeoPoint]:
    # 47 deg 37' 23.06" N, 122 deg 20' 59.08" W
    if not isinstance(position, str):
        candidate.add_warning(f"Unsupported GPSPosition: '{position}'")
        return None

    axes = position.split(",")
    if len(axes) != 2:
        candidate.add_warning(f"Unsupported GPSPosition: '{position}'")
        return None

    parsed = []
    for name, axis, allowed in (("latitude", axes[0], ("N", "S")), ("longitude", axes[1], ("E", "W"))):
        tokens = axis.split()
        if len(tokens) != 5:
            candidate.add_warning(f"Unsupported GPSPosition ({name}): '{position}'")
            return None
        if tokens[4] not in allowed:
            candidate.add_warning(f"Unsupported GPSPosition ({name} ref): '{position}'")
            return None
        parsed.append((" ".join(tokens[:4]), _HEMISPHERE_NAMES[tokens[4]]))

    (latitude, latitude_ref), (longitude, longitude_ref) = parsed
    return _location_from_gps_and_ref(candidate, latitude, latitude_ref, longitude, longitude_ref)


def _location_from_gps_and_ref(candidate: CandidateFile,
                               latitude: Any, latitude_ref: Any,
                               longitude: Any, longitude_ref: Any) -> Optional[GeoPoint]:
    # All or nothing for location
    parts = (latitude, latitude_ref, longitude, longitude_ref)
    if all(p is None or p == "" for p in parts):
        return None

    description = f"{latitude} {latitude_ref}, {longitude} {longitude_ref}"
    if any(p is None or p == "" for p in parts):
        candidate.add_warning(f"Ignoring poorly formed location: {description}")
        return None

    lat_ref = _HEMISPHERE_NAMES.get(str(latitude_ref).strip().upper())
    lon_ref = _HEMISPHERE_NAMES.get(str(longitude_ref).strip().upper())
    if lat_ref not in ("North", "South") or lon_ref not in ("East", "West"):
        candidate.add_warning(
            f"Ignoring poorly formed location - invalid reference: '{latitude_ref}', '{longitude_ref}' ({description})")
        return None

    try:
        lat = _coordinate_to_float(latitude)
        lon = _coordinate_to_float(longitude)
    except ValueError as e:
        candidate.add_warning(f"Ignoring location, unable to parse lat/lon: {e} ({description})")
        return None

    if lat_ref == "South":
        lat = -lat
    if lon_ref == "West":
        lon = -lon

    if not (-90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0):
        candidate.add_warning(f"Ignoring location, out of range: {lat}, {lon} ({description})")
        return None

    return GeoPoint(latitude=lat, longitude=lon)


def _coordinate_to_float(raw: Any) -> float:
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        # exiftool -n style decimal degrees; the reference carries the sign
        return abs(float(raw))
    if not isinstance(raw, str):
        raise ValueError(f"Unexpected coordinate type {type(raw).__name__}")
    return values.dms_to_decimal(raw.rstrip("NSEW "))


# --- General helpers ---

def _group(blob: Dict[str, Any], name: str) -> Dict[str, Any]:
    group = blob.get(name)
    return group if isinstance(group, dict) else {}


def _apply(candidate: CandidateFile, decoded: values.Decoded):
    if decoded.warning:
        candidate.add_warning(decoded.warning)
    return decoded.value


def _parse_date(candidate: CandidateFile, name: str, raw: Any, fmt: str) -> Optional[datetime]:
    if not isinstance(raw, str):
        candidate.add_warning(f"Failed parsing {name} '{raw}': not a string (in {candidate.full_path})")
        return None

    text = raw.strip()
    if fmt == config.EXIF_DATE_FORMAT:
        # Naive local timestamp; ignore sub-seconds or a trailing zone if present
        text = text[:19]
    try:
        return datetime.strptime(text, fmt)
    except ValueError as e:
        candidate.add_warning(f"Failed parsing {name} '{raw}': {e} (in {candidate.full_path})")
        return None


def _as_aware(dt: datetime) -> datetime:
    # Naive values are local wall-clock times
    return dt if dt.tzinfo is not None else dt.astimezone()
