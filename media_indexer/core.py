import logging
import time
from typing import Optional

from tqdm import tqdm

from . import config
from . import stats as counters
from .aliases import AliasRegistry
from .config import IndexerSettings
from .database.db import DBManager
from .database.ops import IndexStore
from .dedup import ChangeDetector
from .exceptions import IndexStoreError, MediaIndexerError
from .location import HttpReverseGeocoder, LocationResolver, ReverseGeocoder
from .metadata.extract import MetadataExtractor, select_metadata_extractor
from .metadata.normalize import MetadataNormalizer
from .models import CandidateFile, Classification, Media, ThumbnailRequest
from .pipeline import Pipeline
from .scanning.filesystem import DiskScanner
from .stats import RunStats
from .thumbnails.backends import (
    FrameExtractor,
    ThumbnailBackend,
    require_frame_extractor,
    select_thumbnail_backend,
)
from .thumbnails.generate import ThumbnailChecker, ThumbnailGenerator

# Stage names
CHECK = "check"
METADATA = "metadata"
LOCATION = "location"
COMMIT = "commit"
THUMBNAIL_CHECK = "thumbnail-check"
THUMBNAIL_GENERATE = "thumbnail-generate"

# Share of the CPUs per stage; thumbnail generation follows the backend
STAGE_RATIOS = {
    METADATA: 1.0,
    LOCATION: 1.0,
    THUMBNAIL_CHECK: 0.5,
}


class IndexerApp:
    """
    Indexes one scan root:
    1. Scan & sign every supported file
    2. Classify against this run and the index (duplicate, unchanged, changed, new)
    3. Normalize metadata, resolve placenames, commit
    4. Check & generate thumbnails alongside
    5. Remove documents for files no longer on disk

    Collaborators not passed in are chosen by probing the installed tools.
    """

    def __init__(self,
                 settings: IndexerSettings,
                 extractor: Optional[MetadataExtractor] = None,
                 frame_extractor: Optional[FrameExtractor] = None,
                 thumbnail_backend: Optional[ThumbnailBackend] = None,
                 geocoder: Optional[ReverseGeocoder] = None,
                 show_progress: bool = True):
        self.settings = settings
        self.extractor = extractor
        self.frame_extractor = frame_extractor
        self.thumbnail_backend = thumbnail_backend
        self.geocoder = geocoder
        self.show_progress = show_progress
        self.db_manager = DBManager(settings.db_path)

    def prepare_tools(self):
        """Probes the external tools once; ffmpeg is required, the rest have fallbacks."""
        if self.frame_extractor is None:
            self.frame_extractor = require_frame_extractor(self.settings.ffmpeg_path)
        if self.extractor is None:
            self.extractor = select_metadata_extractor(self.settings.exiftool_path)
        if self.thumbnail_backend is None:
            self.thumbnail_backend = select_thumbnail_backend(self.settings.vipsthumbnail_path)
        if self.geocoder is None and self.settings.location_lookup_url:
            self.geocoder = HttpReverseGeocoder(
                self.settings.location_lookup_url, timeout=self.settings.location_timeout)
        if self.geocoder is None:
            logging.warning("No location lookup configured, placenames will not be resolved")

    def run(self) -> RunStats:
        started = time.monotonic()
        self.prepare_tools()

        scan_root = self.settings.scan_path.resolve()
        if not scan_root.is_dir():
            raise MediaIndexerError(f"Scan path is not a directory: {scan_root}")

        stats = RunStats()
        with self.db_manager as conn:
            store = IndexStore(conn, self.db_manager.lock)
            registry = AliasRegistry(store, self.settings.alias_path_override)
            registry.load()
            alias = registry.resolve_alias(str(scan_root))
            logging.info(f"Indexing {scan_root} as alias '{alias}'")

            detector = ChangeDetector(
                store, stats,
                force_reindex=self.settings.force_reindex,
                policy=self.settings.unchanged_policy,
            )
            pipeline = self._build_pipeline(store, detector, stats)
            pipeline.start()

            scanner = DiskScanner(stats)
            try:
                for candidate in tqdm(scanner.scan(scan_root, alias), desc="Scanning",
                                      unit="file", disable=not self.show_progress):
                    pipeline.submit(CHECK, candidate)
            finally:
                pipeline.wait()

            detector.mark_present(scanner.skipped_paths, scanner.unlisted_dirs)
            detector.remove_unvisited(alias, make_no_changes=self.settings.make_no_changes)
            if not self.settings.make_no_changes:
                registry.record_last_indexed(alias)

        stats.log_summary(time.monotonic() - started)
        return stats

    def _build_pipeline(self, store: IndexStore, detector: ChangeDetector, stats: RunStats) -> Pipeline:
        normalizer = MetadataNormalizer(self.extractor, stats)
        resolver = LocationResolver(self.geocoder, stats)
        checker = ThumbnailChecker(self.settings.thumbnail_dir, stats)
        generator = ThumbnailGenerator(
            self.settings.thumbnail_dir, self.thumbnail_backend, self.frame_extractor, stats)
        make_no_changes = self.settings.make_no_changes

        def check(candidate: CandidateFile, emit):
            classification = detector.classify(candidate)
            if classification == Classification.DUPLICATE:
                return
            emit(THUMBNAIL_CHECK, ThumbnailRequest(
                candidate.full_path, candidate.aliased_path, candidate.mime_type))
            if classification != Classification.UNCHANGED:
                emit(METADATA, candidate)

        def normalize(candidate: CandidateFile, emit):
            emit(LOCATION, normalizer.normalize(candidate))

        def locate(media: Media, emit):
            resolver.resolve(media)
            emit(COMMIT, media)

        def commit(media: Media, emit):
            if make_no_changes:
                logging.info(f"Would index {media.path}")
                return
            try:
                store.put(media)
            except IndexStoreError as e:
                stats.increment(counters.FAILED_INDEX_ATTEMPTS)
                logging.error(f"Failed indexing {media.path}: {e}")
                return
            indexed = stats.increment(counters.INDEXED_FILES)
            if indexed % config.COMMIT_PROGRESS_INTERVAL == 0:
                logging.info(f"Indexed {indexed} files [{media.path}]")

        def check_thumbnail(request: ThumbnailRequest, emit):
            if checker.needs_thumbnail(request):
                emit(THUMBNAIL_GENERATE, request)

        def generate_thumbnail(request: ThumbnailRequest, emit):
            if make_no_changes:
                logging.info(f"Would generate a thumbnail for {request.aliased_path}")
                return
            generator.generate(request)

        pipeline = Pipeline(stats, capacity=self.settings.queue_capacity)
        # Scan order decides which copy of duplicated content is indexed, every run
        pipeline.add_stage(CHECK, check, self._workers(CHECK, fixed=1), downstream=[METADATA, THUMBNAIL_CHECK])
        pipeline.add_stage(METADATA, normalize, self._workers(METADATA), downstream=[LOCATION])
        pipeline.add_stage(LOCATION, locate, self._workers(LOCATION), downstream=[COMMIT])
        # A single writer; the store serializes statements anyway
        pipeline.add_stage(COMMIT, commit, self._workers(COMMIT, fixed=1))
        pipeline.add_stage(THUMBNAIL_CHECK, check_thumbnail, self._workers(THUMBNAIL_CHECK),
                           downstream=[THUMBNAIL_GENERATE])
        pipeline.add_stage(THUMBNAIL_GENERATE, generate_thumbnail,
                           self._workers(THUMBNAIL_GENERATE, ratio=self.thumbnail_backend.worker_ratio))
        return pipeline

    def _workers(self, stage: str, ratio: Optional[float] = None, fixed: Optional[int] = None) -> int:
        configured = self.settings.worker_counts.get(stage)
        if configured:
            return configured
        if fixed:
            return fixed
        return config.ratio_num_cpus(ratio if ratio is not None else STAGE_RATIOS[stage])

