"""Station name normalization and fuzzy lookup for live feeds."""

import logging
import re
import unicodedata
from typing import Dict, Iterable, List, Optional

from .models import Railway, Station

logger = logging.getLogger(__name__)

_SUFFIX_RE = re.compile(r"Underground Station", re.IGNORECASE)
_NON_ALNUM_RE = re.compile(r"[^a-zA-Z0-9 ]+")
_SPACES_RE = re.compile(r"\s+")

# Trailing tokens this short are treated as truncation noise ("ST P")
MAX_TRIM_TOKEN_LENGTH = 2


def normalize_station_key(name: Optional[str]) -> str:
    """Normalize a station name into an upper-case lookup key."""
    if not name:
        return ""
    key = unicodedata.normalize("NFKC", str(name))
    key = _SUFFIX_RE.sub("", key)
    key = key.replace("&", "and")
    key = _NON_ALNUM_RE.sub(" ", key)
    key = _SPACES_RE.sub(" ", key)
    return key.strip().upper()


class StationResolver:
    """Indexes stations by normalized name and station code."""

    def __init__(self):
        """Initialize an empty resolver."""
        self.stations: Dict[str, Station] = {}  # lookup key -> Station
        self.name_keys: Dict[str, None] = {}  # insertion-ordered set of name keys

    @classmethod
    def from_stations(cls, stations: Iterable[Station]) -> "StationResolver":
        resolver = cls()
        for station in stations:
            resolver.add_station(station)
        return resolver

    def add_station(self, station: Station) -> None:
        """Index a station by its full name, its short name and its code."""
        name = (station.name or "").strip()
        if not name:
            return

        norm = normalize_station_key(name)
        short = normalize_station_key(re.sub(r" Underground Station$", "", name, flags=re.IGNORECASE))
        for key in (norm, short):
            if key:
                self.stations[key] = station
                self.name_keys[key] = None

        # Station IDs look like "tfl.victoria.940GZZLUBXN"; the last part is the NaPTAN code
        if station.id:
            code = str(station.id).split(".")[-1]
            if code:
                self.stations[code.upper()] = station

    def get(self, key: str) -> Optional[Station]:
        """Exact lookup by an already-normalized key or upper-case code."""
        return self.stations.get(key)

    def get_station(self, name: str) -> Station:
        """
        Resolve a station by name, raising if nothing matches.

        Raises:
            ValueError: If no station matches.
        """
        station = self.resolve(name)
        if station is None:
            raise ValueError(f"No station found matching '{name}'")
        return station

    def resolve(self, name: Optional[str]) -> Optional[Station]:
        """
        Resolve a free-text station name.

        Tries an exact normalized match, then the closest-length prefix match
        among known names, then retries with short trailing tokens removed.
        """
        normalized = normalize_station_key(name)
        if not normalized:
            return None
        if normalized in self.stations:
            return self.stations[normalized]
        if not self.name_keys:
            return None

        match = self._find_by_prefix(normalized)
        if match:
            return match

        tokens = normalized.split(" ")
        while len(tokens) > 1:
            if len(tokens[-1]) > MAX_TRIM_TOKEN_LENGTH:
                break
            tokens.pop()
            match = self._find_by_prefix(" ".join(tokens))
            if match:
                return match

        logger.debug(f"Unresolved station name '{name}'")
        return None

    def _find_by_prefix(self, key: str) -> Optional[Station]:
        best = None
        best_delta = None
        for candidate in self.name_keys:
            if candidate.startswith(key) or key.startswith(candidate):
                delta = abs(len(candidate) - len(key))
                if best_delta is None or delta < best_delta:
                    best_delta = delta
                    best = candidate
        return self.stations[best] if best else None


def station_index_lookup(railway: Railway) -> Dict[str, int]:
    """Map station IDs to their index on a railway (first occurrence wins)."""
    lookup: Dict[str, int] = {}
    for index, station_id in enumerate(railway.stations):
        lookup.setdefault(station_id, index)
    return lookup


def find_station_index(stations: List[str], station_id: Optional[str], start: int = 0, reverse: bool = False) -> int:
    """
    Index of `station_id` searching forward from `start`, or backward from
    `start` when `reverse` is set. Returns -1 when not found.
    """
    if station_id is None:
        return -1
    if reverse:
        upper = min(start, len(stations) - 1) if start >= 0 else len(stations) - 1
        for i in range(upper, -1, -1):
            if stations[i] == station_id:
                return i
        return -1
    for i in range(max(start, 0), len(stations)):
        if stations[i] == station_id:
            return i
    return -1
