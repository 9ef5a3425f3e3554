from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional, List, Dict, Any

from .config import ALIAS_SEPARATOR


@dataclass
class AliasEntry:
    """
    Maps an absolute scan root to the short alias stored in indexed paths.
    """
    alias: str
    path: str
    date_added: datetime
    date_last_indexed: Optional[datetime] = None


@dataclass
class CandidateFile:
    """
    Represents a supported file found during a scan.
    Only the warnings list changes after the scanner emits it.
    """
    full_path: Path
    aliased_path: str
    signature: str
    length_in_bytes: int
    mime_type: str
    last_modified: float
    alias: str = ""
    raw_metadata: Optional[Dict[str, Any]] = None
    warnings: List[str] = field(default_factory=list)

    def add_warning(self, message: str):
        self.warnings.append(message)


@dataclass(frozen=True)
class GeoPoint:
    latitude: float
    longitude: float


class Classification(str, Enum):
    NEW = "new"
    CHANGED = "changed"
    UNCHANGED = "unchanged"
    DUPLICATE = "duplicate"


@dataclass
class ThumbnailRequest:
    full_path: Path
    aliased_path: str
    mime_type: str


@dataclass
class Media:
    """
    The searchable document committed to the index for one file.
    """
    filename: str
    path: str               # aliased path
    signature: str
    length_in_bytes: int
    mime_type: str
    file_modified: float = 0.0

    date_time: Optional[datetime] = None
    date: str = ""
    month_name: str = ""
    day_name: str = ""
    day_of_year: int = 0

    location: Optional[GeoPoint] = None
    placename: Optional[str] = None

    camera_make: Optional[str] = None
    camera_model: Optional[str] = None
    original_camera_make: Optional[str] = None
    original_camera_model: Optional[str] = None
    lens_info: Optional[str] = None
    lens_model: Optional[str] = None

    aperture: Optional[float] = None
    exposure_program: Optional[str] = None
    exposure_time: Optional[float] = None
    exposure_time_string: Optional[str] = None
    f_number: Optional[float] = None
    focal_length_mm: Optional[float] = None
    iso: Optional[int] = None
    white_balance: Optional[str] = None
    flash: Optional[str] = None

    width: Optional[int] = None
    height: Optional[int] = None
    duration_seconds: Optional[float] = None

    keywords: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def alias(self) -> str:
        return self.path.split(ALIAS_SEPARATOR, 1)[0]

    def add_warning(self, message: str):
        self.warnings.append(message)

    def to_document(self) -> Dict[str, Any]:
        """Flattens into the lower-case field names the search index uses."""
        doc: Dict[str, Any] = {
            "filename": self.filename,
            "path": self.path,
            "signature": self.signature,
            "lengthinbytes": self.length_in_bytes,
            "mimetype": self.mime_type,
            "filemodified": self.file_modified,
            "datetime": self.date_time.isoformat() if self.date_time else None,
            "date": self.date,
            "monthname": self.month_name,
            "dayname": self.day_name,
            "dayofyear": self.day_of_year,
            "location": (
                {"lat": self.location.latitude, "lon": self.location.longitude}
                if self.location else None
            ),
            "placename": self.placename,
            "cameramake": self.camera_make,
            "cameramodel": self.camera_model,
            "originalcameramake": self.original_camera_make,
            "originalcameramodel": self.original_camera_model,
            "lensinfo": self.lens_info,
            "lensmodel": self.lens_model,
            "aperture": self.aperture,
            "exposureprogram": self.exposure_program,
            "exposuretime": self.exposure_time,
            "exposuretimestring": self.exposure_time_string,
            "fnumber": self.f_number,
            "focallengthmm": self.focal_length_mm,
            "iso": self.iso,
            "whitebalance": self.white_balance,
            "flash": self.flash,
            "width": self.width,
            "height": self.height,
            "durationseconds": self.duration_seconds,
            "keywords": sorted(self.keywords),
            "warnings": list(self.warnings),
        }
        return {k: v for k, v in doc.items() if v is not None}

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Media":
        location = doc.get("location")
        date_time = doc.get("datetime")
        return cls(
            filename=doc["filename"],
            path=doc["path"],
            signature=doc["signature"],
            length_in_bytes=doc.get("lengthinbytes", 0),
            mime_type=doc.get("mimetype", ""),
            file_modified=doc.get("filemodified", 0.0),
            date_time=datetime.fromisoformat(date_time) if date_time else None,
            date=doc.get("date", ""),
            month_name=doc.get("monthname", ""),
            day_name=doc.get("dayname", ""),
            day_of_year=doc.get("dayofyear", 0),
            location=GeoPoint(location["lat"], location["lon"]) if location else None,
            placename=doc.get("placename"),
            camera_make=doc.get("cameramake"),
            camera_model=doc.get("cameramodel"),
            original_camera_make=doc.get("originalcameramake"),
            original_camera_model=doc.get("originalcameramodel"),
            lens_info=doc.get("lensinfo"),
            lens_model=doc.get("lensmodel"),
            aperture=doc.get("aperture"),
            exposure_program=doc.get("exposureprogram"),
            exposure_time=doc.get("exposuretime"),
            exposure_time_string=doc.get("exposuretimestring"),
            f_number=doc.get("fnumber"),
            focal_length_mm=doc.get("focallengthmm"),
            iso=doc.get("iso"),
            white_balance=doc.get("whitebalance"),
            flash=doc.get("flash"),
            width=doc.get("width"),
            height=doc.get("height"),
            duration_seconds=doc.get("durationseconds"),
            keywords=list(doc.get("keywords", [])),
            warnings=list(doc.get("warnings", [])),
        )
