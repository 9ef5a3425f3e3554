import json
import sqlite3
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, UTC
from typing import Optional, List, Any, Set, Tuple

from ..exceptions import IndexStoreError
from ..models import AliasEntry, Media

# Columns `query` may filter on
QUERYABLE_FIELDS = {"path", "alias", "signature", "day_of_year", "mime_type"}


@dataclass
class StoredSignature:
    signature: str
    file_modified: float
    indexed_at: str


class IndexStore:
    """
    SQLite-backed document store for media documents and scan-root aliases.

    Every statement runs under one lock, so a single connection can be shared
    by all pipeline workers.
    """

    def __init__(self, conn: sqlite3.Connection, lock: Optional[threading.RLock] = None):
        self.conn = conn
        self.lock = lock or threading.RLock()

    def _execute(self, sql: str, params: Tuple = (), commit: bool = False) -> List[tuple]:
        try:
            with self.lock:
                cur = self.conn.execute(sql, params)
                rows = cur.fetchall()
                if commit:
                    self.conn.commit()
                return rows
        except sqlite3.Error as e:
            raise IndexStoreError(f"Database operation failed: {e}") from e

    # --- Media documents ---

    def get(self, path: str) -> Optional[StoredSignature]:
        """Returns the signature and timestamps held for an aliased path."""
        rows = self._execute(
            "SELECT signature, file_modified, indexed_at FROM media WHERE path = ?", (path,)
        )
        if not rows:
            return None
        signature, file_modified, indexed_at = rows[0]
        return StoredSignature(signature, file_modified, indexed_at)

    def get_document(self, path: str) -> Optional[Media]:
        rows = self._execute("SELECT document FROM media WHERE path = ?", (path,))
        if not rows:
            return None
        return Media.from_document(json.loads(rows[0][0]))

    def put(self, media: Media):
        """Inserts or replaces the document for media.path."""
        doc = media.to_document()
        self._execute("""
            INSERT OR REPLACE INTO media
            (path, alias, signature, file_modified, date_time, day_of_year, mime_type, indexed_at, document)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            media.path, media.alias, media.signature, media.file_modified,
            doc.get("datetime"), media.day_of_year, media.mime_type,
            datetime.now(UTC).isoformat(), json.dumps(doc),
        ), commit=True)

    def delete(self, path: str) -> bool:
        with self.lock:
            existed = self.get(path) is not None
            self._execute("DELETE FROM media WHERE path = ?", (path,), commit=True)
        return existed

    def query(self, **predicates: Any) -> List[Media]:
        """Returns documents whose columns equal every given predicate."""
        unknown = set(predicates) - QUERYABLE_FIELDS
        if unknown:
            raise ValueError(f"Unsupported query fields: {sorted(unknown)}")

        clauses = " AND ".join(f"{name} = ?" for name in predicates)
        sql = "SELECT document FROM media"
        if clauses:
            sql += f" WHERE {clauses}"
        sql += " ORDER BY path"
        rows = self._execute(sql, tuple(predicates.values()))
        return [Media.from_document(json.loads(r[0])) for r in rows]

    def paths_for_alias(self, alias: str) -> Set[str]:
        rows = self._execute("SELECT path FROM media WHERE alias = ?", (alias,))
        return {r[0] for r in rows}

    def count(self) -> int:
        return self._execute("SELECT COUNT(*) FROM media")[0][0]

    def available_day(self, day_of_year: int, after: bool) -> Optional[Tuple[int, int]]:
        """
        Finds the nearest day-of-year holding media, strictly after (or before)
        the given day, wrapping around the end (or start) of the year.

        Returns:
            (month, day) of a matching document, or None if no other day has media.
        """
        if after:
            forward = ("day_of_year > ?", "ASC")
            wrapped = ("day_of_year < ?", "ASC")
        else:
            forward = ("day_of_year < ?", "DESC")
            wrapped = ("day_of_year > ?", "DESC")

        for where, order in (forward, wrapped):
            rows = self._execute(
                f"SELECT date_time FROM media WHERE {where} AND date_time IS NOT NULL "
                f"ORDER BY day_of_year {order} LIMIT 1",
                (day_of_year,),
            )
            if rows:
                dt = datetime.fromisoformat(rows[0][0])
                return dt.month, dt.day
        return None

    # --- Aliases ---

    def load_aliases(self) -> List[AliasEntry]:
        rows = self._execute(
            "SELECT alias, path, date_added, date_last_indexed FROM aliases ORDER BY date_added"
        )
        return [
            AliasEntry(
                alias=alias,
                path=path,
                date_added=datetime.fromisoformat(added),
                date_last_indexed=datetime.fromisoformat(last) if last else None,
            )
            for alias, path, added, last in rows
        ]

    def insert_alias(self, entry: AliasEntry) -> bool:
        """Adds a new alias; returns False if another writer already owns it."""
        try:
            with self.lock:
                self.conn.execute(
                    "INSERT INTO aliases (alias, path, date_added, date_last_indexed) VALUES (?, ?, ?, ?)",
                    (
                        entry.alias, entry.path, entry.date_added.isoformat(),
                        entry.date_last_indexed.isoformat() if entry.date_last_indexed else None,
                    ),
                )
                self.conn.commit()
            return True
        except sqlite3.IntegrityError:
            logging.warning(f"Alias '{entry.alias}' was already taken")
            return False
        except sqlite3.Error as e:
            raise IndexStoreError(f"Failed adding alias '{entry.alias}': {e}") from e

    def update_alias(self, entry: AliasEntry):
        self._execute(
            "UPDATE aliases SET date_last_indexed = ? WHERE alias = ?",
            (
                entry.date_last_indexed.isoformat() if entry.date_last_indexed else None,
                entry.alias,
            ),
            commit=True,
        )

