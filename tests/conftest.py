import pytest
import sqlite3
from datetime import datetime
from pathlib import Path

from media_indexer.database.schema import init_schema
from media_indexer.database.ops import IndexStore
from media_indexer.models import CandidateFile, Media
from media_indexer.stats import RunStats


@pytest.fixture
def conn():
    """Returns an in-memory SQLite connection with the schema initialized."""
    c = sqlite3.connect(":memory:", check_same_thread=False)
    init_schema(c)
    try:
        yield c
    finally:
        c.close()


@pytest.fixture
def store(conn):
    """Returns an IndexStore attached to the in-memory DB."""
    return IndexStore(conn)


@pytest.fixture
def stats():
    return RunStats()


def make_candidate(aliased_path="1\\a.jpg", signature="sig-a", mime_type="image/jpeg",
                   last_modified=1_500_000_000.0, full_path=None):
    return CandidateFile(
        full_path=full_path or Path("/photos") / aliased_path.split("\\", 1)[1].replace("\\", "/"),
        aliased_path=aliased_path,
        signature=signature,
        length_in_bytes=10,
        mime_type=mime_type,
        last_modified=last_modified,
        alias=aliased_path.split("\\", 1)[0],
    )


def make_media(path="1\\a.jpg", signature="sig-a", when=datetime(2016, 3, 5, 10, 0, 0),
               day_of_year=65, file_modified=1_500_000_000.0):
    return Media(
        filename=path.rsplit("\\", 1)[-1],
        path=path,
        signature=signature,
        length_in_bytes=10,
        mime_type="image/jpeg",
        file_modified=file_modified,
        date_time=when,
        day_of_year=day_of_year,
    )
