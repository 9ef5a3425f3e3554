"""
Configuration constants and run settings for the media indexer.
"""
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

# --- File Type Definitions ---
IMAGE_EXTS = {'.jpg', '.jpeg', '.jpe', '.png', '.gif', '.tif', '.tiff', '.heic', '.bmp'}
RAW_EXTS = {'.cr2', '.cr3', '.nef', '.arw', '.orf', '.rw2', '.dng'}
VIDEO_EXTS = {'.mp4', '.mov', '.m4v', '.avi', '.mts', '.m2ts', '.3gp', '.mpg', '.mpeg'}

# Extension to MIME Mapping
# Used before exiftool reports File:MIMEType, and as the fallback when it doesn't
EXT_TO_MIME = {
    '.jpg': 'image/jpeg', '.jpeg': 'image/jpeg', '.jpe': 'image/jpeg',
    '.png': 'image/png', '.gif': 'image/gif', '.bmp': 'image/bmp',
    '.tif': 'image/tiff', '.tiff': 'image/tiff', '.heic': 'image/heic',
    '.cr2': 'image/x-canon-cr2', '.cr3': 'image/x-canon-cr3',
    '.nef': 'image/x-nikon-nef', '.arw': 'image/x-sony-arw',
    '.orf': 'image/x-olympus-orf', '.rw2': 'image/x-panasonic-rw2',
    '.dng': 'image/x-adobe-dng',
    '.mp4': 'video/mp4', '.m4v': 'video/x-m4v', '.mov': 'video/quicktime',
    '.avi': 'video/x-msvideo', '.mts': 'video/mp2t', '.m2ts': 'video/mp2t',
    '.3gp': 'video/3gpp', '.mpg': 'video/mpeg', '.mpeg': 'video/mpeg',
}
SUPPORTED_EXTS = IMAGE_EXTS | RAW_EXTS | VIDEO_EXTS

# --- Hashing ---
HASH_CHUNK_SIZE = 1024 * 1024  # 1 MB chunks for reading

# --- Aliases ---
# Composite aliased paths look like "3\2016\Vacation\IMG_0001.JPG"
ALIAS_SEPARATOR = "\\"

# --- Metadata Parsing ---
EXIF_DATE_FORMAT = "%Y:%m:%d %H:%M:%S"
EXIF_DATE_OFFSET_FORMAT = "%Y:%m:%d %H:%M:%S%z"
# FAT and friends store modification times with 2 second granularity
DATE_MISMATCH_TOLERANCE_SECONDS = 2.0

# --- Location ---
# Coordinates rounded to this many decimals share a cached placename (~100m)
LOCATION_CACHE_PRECISION = 3
LOCATION_LOOKUP_TIMEOUT = 10.0

# --- Thumbnails ---
THUMBNAIL_MAX_HEIGHT = 170
THUMBNAIL_JPEG_QUALITY = 85
THUMBNAIL_PROGRESS_INTERVAL = 500
VIDEO_FRAME_OFFSETS = ("00:00:01.0", "00:00:00.0")

# --- Pipeline ---
QUEUE_CAPACITY = 10000
COMMIT_PROGRESS_INTERVAL = 1000


def ratio_num_cpus(ratio: float) -> int:
    """Worker count for a stage, scaled from the CPU count and never below one."""
    return max(1, int((os.cpu_count() or 1) * ratio))


class UnchangedPolicy(str, Enum):
    """How a previously indexed file is judged to be unchanged."""
    SIGNATURE = "signature"
    SIGNATURE_AND_MTIME = "signature-and-mtime"


@dataclass
class IndexerSettings:
    scan_path: Path
    db_path: Path
    thumbnail_dir: Path
    location_lookup_url: Optional[str] = None

    force_reindex: bool = False
    unchanged_policy: UnchangedPolicy = UnchangedPolicy.SIGNATURE
    make_no_changes: bool = False
    alias_path_override: Optional[str] = None

    exiftool_path: str = "exiftool"
    ffmpeg_path: str = "ffmpeg"
    vipsthumbnail_path: str = "vipsthumbnail"

    queue_capacity: int = QUEUE_CAPACITY
    location_timeout: float = LOCATION_LOOKUP_TIMEOUT
    worker_counts: dict = field(default_factory=dict)
