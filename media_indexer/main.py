import argparse
import logging
import sys
from pathlib import Path

from .config import IndexerSettings, UnchangedPolicy
from .core import IndexerApp
from .exceptions import MediaIndexerError


def setup_logging(log_dir: Path, verbose: bool):
    """Sets up logging to both console and a file beside the database."""
    log_level = logging.DEBUG if verbose else logging.INFO

    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "media_indexer.log"

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=[
            logging.FileHandler(log_file, encoding='utf-8'),
            logging.StreamHandler(sys.stdout)
        ]
    )

    # Silence chatty libraries
    logging.getLogger("exifread").setLevel(logging.ERROR)
    logging.getLogger("PIL").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Media Indexer: scan, enrich and index photos & videos")

    p.add_argument("-p", "--path", type=Path, required=True, help="Directory to index")
    p.add_argument("--db", type=Path, default=Path("media_index.db"), help="SQLite index database")
    p.add_argument("--thumbnails", type=Path, default=Path("thumbnails"), help="Thumbnail root directory")
    p.add_argument("-l", "--location-lookup-url", default=None,
                   help="Reverse geocoding URL, queried as ?lat=..&lon=..")

    p.add_argument("--reindex", action="store_true", help="Reindex files even if unchanged")
    p.add_argument("-a", "--alias-override", default=None,
                   help="Override the path of the first alias (for development)")
    p.add_argument("--unchanged-policy", choices=[policy.value for policy in UnchangedPolicy],
                   default=UnchangedPolicy.SIGNATURE.value,
                   help="What must match for a previously indexed file to be skipped")
    p.add_argument("--dry-run", action="store_true", help="Report what would change without changing anything")

    p.add_argument("--exiftool", default="exiftool", help="Path to exiftool")
    p.add_argument("--ffmpeg", default="ffmpeg", help="Path to ffmpeg")
    p.add_argument("--vipsthumbnail", default="vipsthumbnail", help="Path to vipsthumbnail")
    p.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    return p.parse_args(argv)


def build_settings(args) -> IndexerSettings:
    return IndexerSettings(
        scan_path=args.path,
        db_path=args.db,
        thumbnail_dir=args.thumbnails.resolve(),
        location_lookup_url=args.location_lookup_url,
        force_reindex=args.reindex,
        unchanged_policy=UnchangedPolicy(args.unchanged_policy),
        make_no_changes=args.dry_run,
        alias_path_override=args.alias_override,
        exiftool_path=args.exiftool,
        ffmpeg_path=args.ffmpeg,
        vipsthumbnail_path=args.vipsthumbnail,
    )


def main(argv=None):
    args = parse_args(argv)
    settings = build_settings(args)

    setup_logging(settings.db_path.resolve().parent, args.verbose)

    logging.info("=== Media Indexer Started ===")
    logging.info(f"Path:       {settings.scan_path.resolve()}")
    logging.info(f"Database:   {settings.db_path}")
    logging.info(f"Thumbnails: {settings.thumbnail_dir}")
    if settings.make_no_changes:
        logging.info("DRY RUN: nothing will be indexed, removed or generated")

    app = IndexerApp(settings)

    try:
        app.run()
    except KeyboardInterrupt:
        logging.warning("Operation cancelled by user.")
        sys.exit(1)
    except MediaIndexerError as e:
        logging.error(f"Fatal: {e}")
        sys.exit(1)
    except Exception:
        logging.exception("Fatal error during indexing.")
        sys.exit(1)


if __name__ == "__main__":
    main()
