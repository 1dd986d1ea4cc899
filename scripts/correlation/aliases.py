"""
Location Alias Table

In-memory lookup over the curated location_mapping reference table.
Loaded once per run and shared read-only by every worker.
"""

import logging
from typing import Optional, List, Dict, Iterable, Iterator, Tuple

from .models import LocationAlias
from .normalizer import normalize_location

logger = logging.getLogger(__name__)


LOAD_SQL = """
    SELECT location_name,
           location_type,
           parent_company,
           related_names,
           coordinates[1] AS latitude,
           coordinates[0] AS longitude,
           service_area_km
    FROM location_mapping
    WHERE COALESCE(is_active, TRUE)
    ORDER BY location_name
"""


def _valid_coordinates(lat, lon) -> bool:
    try:
        lat = float(lat)
        lon = float(lon)
    except (TypeError, ValueError):
        return False
    return -90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0


class LocationAliasTable:
    """
    Resolves free-text place names to canonical LocationAlias entries.

    Resolution order:
    1. Exact (normalized) match on a canonical name
    2. Exact (normalized) match on any entry's alias list
    3. Substring containment in either direction against canonical names
       and aliases; the longest matching name wins, ties go to the
       alphabetically first canonical name
    4. None
    """

    def __init__(self, entries: Iterable[LocationAlias], min_substring_length: int = 3):
        self.min_substring_length = min_substring_length
        self._entries: Dict[str, LocationAlias] = {}
        self._by_name: Dict[str, LocationAlias] = {}
        self._by_alias: Dict[str, LocationAlias] = {}
        # (normalized name, entry) for every canonical name and alias
        self._names: List[Tuple[str, LocationAlias]] = []

        for entry in entries:
            key = normalize_location(entry.name)
            if not key:
                logger.warning(f"Skipping location alias with empty name: {entry!r}")
                continue
            if key in self._by_name:
                # "BP Kewdale" and "BP-Kewdale" are distinct rows but one key
                logger.warning(f"Skipping {entry.name!r}: normalizes to the same name as "
                               f"{self._by_name[key].name!r}")
                continue
            self._entries[entry.name] = entry
            self._by_name[key] = entry
            self._names.append((key, entry))

        for key, entry in sorted(self._by_name.items()):
            for alias in entry.aliases:
                alias_key = normalize_location(alias)
                if not alias_key or alias_key == key:
                    continue
                # Alias lists may overlap; first canonical name (sorted) keeps it
                self._by_alias.setdefault(alias_key, entry)
                self._names.append((alias_key, entry))

    @classmethod
    def load(cls, conn, min_substring_length: int = 3) -> "LocationAliasTable":
        """Load active entries from the location_mapping table."""
        cursor = conn.cursor()
        cursor.execute(LOAD_SQL)
        rows = cursor.fetchall()

        entries = []
        for row in rows:
            name, location_type, parent, related, lat, lon, radius = row
            if (lat is not None or lon is not None) and not _valid_coordinates(lat, lon):
                logger.warning(f"Dropping invalid coordinates for {name!r}: ({lat}, {lon})")
                lat = lon = None
            entries.append(LocationAlias(
                name=name,
                location_type=location_type or "other",
                parent_company=parent,
                aliases=list(related or []),
                latitude=float(lat) if lat is not None else None,
                longitude=float(lon) if lon is not None else None,
                service_radius_km=float(radius) if radius else None,
            ))

        table = cls(entries, min_substring_length=min_substring_length)
        logger.info(f"Loaded {len(table)} location aliases")
        return table

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[LocationAlias]:
        return iter(self._entries.values())

    def __contains__(self, name: str) -> bool:
        return normalize_location(name) in self._by_name

    def get(self, canonical_name: str) -> Optional[LocationAlias]:
        """Look up an entry by its canonical name (normalized)."""
        return self._by_name.get(normalize_location(canonical_name))

    def resolve(self, text: Optional[str]) -> Optional[LocationAlias]:
        """Return the best-matching entry for a free-text location, or None."""
        key = normalize_location(text)
        if not key:
            return None

        entry = self._by_name.get(key)
        if entry is not None:
            return entry

        entry = self._by_alias.get(key)
        if entry is not None:
            return entry

        if len(key) < self.min_substring_length:
            return None

        best = None
        best_rank = None
        for name, candidate in self._names:
            if len(name) < self.min_substring_length:
                continue
            if name in key or key in name:
                rank = (-len(name), candidate.name)
                if best_rank is None or rank < best_rank:
                    best, best_rank = candidate, rank
        return best

    def matches(self, text: Optional[str], entry: LocationAlias) -> bool:
        """True when text equals the entry's canonical name or one of its aliases."""
        key = normalize_location(text)
        if not key:
            return False
        if key == normalize_location(entry.name):
            return True
        return any(key == normalize_location(alias) for alias in entry.aliases)
