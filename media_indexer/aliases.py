"""
Maps absolute scan roots to short aliases so indexed paths stay valid when
the media moves to another machine or mount point.

An aliased path is the alias, the separator, then the path relative to the
root, e.g. "3\\2016\\Vacation\\IMG_0001.JPG".
"""
import logging
import posixpath
import threading
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from . import config
from .database.ops import IndexStore
from .exceptions import AliasError
from .models import AliasEntry


def split_aliased_path(aliased: str) -> Tuple[str, str]:
    """
    Splits an aliased path at the first separator.
    Further separators in the remainder are normalized to '/'.
    """
    alias, sep, partial = aliased.partition(config.ALIAS_SEPARATOR)
    if not sep:
        return aliased, ""
    return alias, partial.replace(config.ALIAS_SEPARATOR, "/")


def make_aliased_path(alias: str, relative: str) -> str:
    relative = relative.replace("/", config.ALIAS_SEPARATOR).strip(config.ALIAS_SEPARATOR)
    return f"{alias}{config.ALIAS_SEPARATOR}{relative}"


class AliasRegistry:
    """
    In-memory cache of the alias table, reloaded from the store on a miss in
    case another process added an entry since the last load.

    Allocation of a new alias is serialized within this process only; two
    processes adding different roots at the same moment can pick the same
    number, and the loser's insert is rejected by the store.
    """

    def __init__(self, store: IndexStore, path_override: Optional[str] = None):
        self.store = store
        self.path_override = path_override
        self._entries: List[AliasEntry] = []
        self._lock = threading.Lock()

    def load(self):
        entries = self._fetch_entries()
        for entry in entries:
            logging.debug(
                f"Alias '{entry.alias}' maps to '{entry.path}', last indexed: {entry.date_last_indexed}"
            )
        with self._lock:
            self._entries = entries

    def visit_all(self, callback: Callable[[AliasEntry], None]):
        with self._lock:
            entries = list(self._entries)
        for entry in entries:
            callback(entry)

    # --- Lookups ---

    def resolve_alias(self, path: str) -> str:
        """Returns the alias for a scan root, allocating a new one if needed."""
        entry = self._lookup(self._find_via_path, path)
        if entry:
            return entry.alias

        with self._lock:
            # Another thread may have allocated it while we waited
            entry = self._find_via_path(path)
            if entry:
                return entry.alias
            return self._add_new_alias(path).alias

    def path_for_alias(self, alias: str) -> str:
        entry = self._lookup(self._find_via_alias, alias)
        if entry is None:
            raise AliasError(f"Unable to find path for {alias}")
        return entry.path

    def resolve_path(self, aliased: str) -> str:
        """Turns an aliased path back into a full path on this machine."""
        alias, partial = split_aliased_path(aliased)
        base = self.path_for_alias(alias)
        if not partial:
            return base
        return posixpath.join(Path(base).as_posix(), partial)

    def full_path_for_aliased_path(self, aliased: str) -> Path:
        return Path(self.resolve_path(aliased))

    def is_valid_alias(self, alias: str) -> bool:
        return self._lookup(self._find_via_alias, alias) is not None

    def is_valid_aliased_path(self, aliased: str) -> bool:
        alias, _ = split_aliased_path(aliased)
        return self.is_valid_alias(alias)

    def record_last_indexed(self, alias: str):
        entry = self._lookup(self._find_via_alias, alias)
        if entry is None:
            raise AliasError(f"Failed updating alias: Cannot find alias '{alias}'")
        entry.date_last_indexed = datetime.now()
        self.store.update_alias(entry)

    # --- Internals ---

    def _fetch_entries(self) -> List[AliasEntry]:
        entries = self.store.load_aliases()
        if entries and self.path_override:
            logging.info(f"Overriding the alias path from '{entries[0].path}' to '{self.path_override}'")
            entries[0].path = self.path_override
        return entries

    def _lookup(self, finder, key: str) -> Optional[AliasEntry]:
        entry = finder(key)
        if entry is None:
            # re-load in case someone else added it recently
            self.load()
            entry = finder(key)
        return entry

    def _find_via_path(self, path: str) -> Optional[AliasEntry]:
        for entry in list(self._entries):
            if entry.path.casefold() == path.casefold():
                return entry
        return None

    def _find_via_alias(self, alias: str) -> Optional[AliasEntry]:
        for entry in list(self._entries):
            if entry.alias.casefold() == alias.casefold():
                return entry
        return None

    def _add_new_alias(self, path: str) -> AliasEntry:
        # Caller holds self._lock
        self._entries = self._fetch_entries()
        entry = AliasEntry(
            alias=str(next_alias_number(self._entries)),
            path=path,
            date_added=datetime.now(),
        )
        logging.warning(f"Adding alias '{entry.alias}' for '{entry.path}'")
        if not self.store.insert_alias(entry):
            raise AliasError(f"Failed creating alias entry for new path '{path}'")
        self._entries.append(entry)
        return entry


def next_alias_number(entries: List[AliasEntry]) -> int:
    numbers = [int(e.alias) for e in entries if e.alias.isdigit()]
    return max(numbers) + 1 if numbers else 1
