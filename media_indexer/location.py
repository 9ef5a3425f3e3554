"""
Resolves GPS coordinates to placenames through the reverse-geocoding service.
"""
import logging
import threading
from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple

import requests

from . import config
from . import stats as counters
from .exceptions import (
    LocationConnectionError,
    LocationLookupError,
    LocationResponseError,
    LocationServerError,
)
from .models import GeoPoint, Media
from .stats import RunStats

# Fields checked, in order, for the placename in the service's JSON reply
PLACENAME_FIELDS = ("fullDescription", "displayName", "placename")


class ReverseGeocoder(ABC):
    @abstractmethod
    def lookup(self, location: GeoPoint) -> str:
        """Returns the placename or raises a LocationLookupError."""


class HttpReverseGeocoder(ReverseGeocoder):
    """GET <url>?lat=..&lon=.. against the ReverseNameLookup style service."""

    def __init__(self, url: str,
                 timeout: float = config.LOCATION_LOOKUP_TIMEOUT,
                 session: Optional[requests.Session] = None):
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

    def lookup(self, location: GeoPoint) -> str:
        params = {"lat": location.latitude, "lon": location.longitude}
        try:
            response = self.session.get(self.url, params=params, timeout=self.timeout)
        except requests.RequestException as exc:
            raise LocationConnectionError(f"Location lookup failed: {exc}") from exc

        if response.status_code < 200 or response.status_code >= 300:
            raise LocationServerError(
                response.status_code,
                f"Location lookup returned HTTP {response.status_code}: {response.text[:200]}",
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise LocationResponseError(f"Location lookup returned invalid JSON: {exc}") from exc

        if isinstance(payload, dict):
            for field in PLACENAME_FIELDS:
                value = payload.get(field)
                if isinstance(value, str) and value.strip():
                    return value.strip()
        raise LocationResponseError(f"Location lookup returned no placename: {payload!r}")


class LocationResolver:
    """
    Attaches placenames to media with a location, caching by rounded
    coordinates so a burst of nearby shots costs one lookup.
    """

    def __init__(self, geocoder: Optional[ReverseGeocoder], stats: RunStats,
                 precision: int = config.LOCATION_CACHE_PRECISION):
        self.geocoder = geocoder
        self.stats = stats
        self.precision = precision
        self._cache: Dict[Tuple[float, float], str] = {}
        # One lookup in flight per cache key; other workers wait for its result
        self._key_locks: Dict[Tuple[float, float], threading.Lock] = {}
        self._lock = threading.Lock()

    def cache_key(self, location: GeoPoint) -> Tuple[float, float]:
        return round(location.latitude, self.precision), round(location.longitude, self.precision)

    def resolve(self, media: Media) -> Optional[str]:
        """
        Sets media.placename when the location can be resolved.
        Failures add a warning to the media; they never raise.
        """
        if media.location is None or self.geocoder is None:
            return None

        key = self.cache_key(media.location)
        with self._lock_for(key):
            with self._lock:
                cached = self._cache.get(key)
            if cached is not None:
                self.stats.increment(counters.PLACENAME_CACHE_HITS)
                media.placename = cached
                return cached

            self.stats.increment(counters.PLACENAME_LOOKUPS)
            try:
                placename = self.geocoder.lookup(media.location)
            except LocationConnectionError as e:
                self.stats.increment(counters.FAILED_LOOKUPS)
                return self._failed(media, e)
            except LocationServerError as e:
                self.stats.increment(counters.SERVER_ERRORS)
                return self._failed(media, e)
            except LocationLookupError as e:
                self.stats.increment(counters.LOOKUP_FAILURES)
                return self._failed(media, e)

            with self._lock:
                self._cache[key] = placename
        media.placename = placename
        return placename

    def _lock_for(self, key: Tuple[float, float]) -> threading.Lock:
        with self._lock:
            return self._key_locks.setdefault(key, threading.Lock())

    def _failed(self, media: Media, error: LocationLookupError) -> None:
        logging.warning(f"Placename lookup failed for {media.path}: {error}")
        media.add_warning(f"Unable to resolve placename: {error}")
        return None
