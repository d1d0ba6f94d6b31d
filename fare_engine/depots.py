"""
Depot directory: the known set of named, geolocated termini.

The directory is built once from an external table (JSON file or a list of loose
records), validated at the boundary and deduplicated by name (first occurrence
wins). After construction it is read-only, so concurrent readers need no locking.
To change depot data, build a new directory and swap the reference held by the
caller (the app does this under `fare_engine.main._directory_lock`).
"""
from __future__ import annotations
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

from pydantic import ValidationError

from fare_engine.errors import DepotNotFound
from fare_engine.models import Depot, NearbyDepot
from fare_engine.tools.distance import haversine_km

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RejectedRecord:
    index: int
    record: Any
    reason: str


def parse_depot_records(records: Iterable[Any]) -> Tuple[List[Depot], List[RejectedRecord]]:
    """
    Convert loose records into Depot, dropping duplicates by name (first wins).
    Records missing coordinates or carrying bad values are rejected, not repaired.
    """
    seen: Dict[str, Depot] = {}
    rejected: List[RejectedRecord] = []
    for i, rec in enumerate(records):
        if not isinstance(rec, Mapping):
            rejected.append(RejectedRecord(i, rec, "not an object"))
            continue
        try:
            depot = Depot.model_validate(dict(rec))
        except ValidationError as e:
            reason = "; ".join(f"{'.'.join(map(str, err['loc']))}: {err['msg']}" for err in e.errors())
            rejected.append(RejectedRecord(i, rec, reason))
            continue
        if depot.name in seen:
            continue
        seen[depot.name] = depot
    return list(seen.values()), rejected


@dataclass(frozen=True)
class DepotDirectory:
    depots: Tuple[Depot, ...]
    rejected: Tuple[RejectedRecord, ...] = ()
    _by_name: Mapping[str, Depot] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "_by_name", MappingProxyType({d.name: d for d in self.depots}))

    # ----- construction -----
    @classmethod
    def from_records(cls, records: Iterable[Any]) -> "DepotDirectory":
        depots, rejected = parse_depot_records(records)
        for r in rejected:
            logger.warning("Rejected depot record #%s: %s", r.index, r.reason)
        return cls(depots=tuple(depots), rejected=tuple(rejected))

    @classmethod
    def from_file(cls, path: Path) -> "DepotDirectory":
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        # accept either a bare list or the {"depots": [...]} API envelope
        if isinstance(data, dict) and isinstance(data.get("depots"), list):
            data = data["depots"]
        if not isinstance(data, list):
            logger.error("Depot source %s is neither a list nor a {\"depots\": [...]} object", path)
            raise ValueError(f"unrecognised depot source shape in {path}")
        directory = cls.from_records(data)
        logger.info("Loaded %d depots from %s (%d rejected)", len(directory), path, len(directory.rejected))
        return directory

    # ----- lookup -----
    def __len__(self) -> int:
        return len(self.depots)

    def __iter__(self) -> Iterator[Depot]:
        return iter(self.depots)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name in self._by_name

    def get(self, name: str) -> Optional[Depot]:
        return self._by_name.get(name)

    def resolve(self, *names: str) -> List[Depot]:
        """Look up every name; raise DepotNotFound listing all unknown ones."""
        missing = [n for n in names if n not in self._by_name]
        if missing:
            raise DepotNotFound(missing)
        return [self._by_name[n] for n in names]

    def nearby(self, lat: float, lon: float, radius_km: float = 50.0, limit: int = 5) -> List[NearbyDepot]:
        """Depots within radius_km of (lat, lon), nearest first."""
        hits = []
        for d in self.depots:
            dist = haversine_km(lat, lon, d.lat, d.lon)
            if dist <= radius_km:
                hits.append((dist, d))
        hits.sort(key=lambda h: h[0])
        return [
            NearbyDepot(id=d.id, name=d.name, lat=d.lat, lon=d.lon, distance_km=round(dist, 2))
            for dist, d in hits[: max(0, limit)]
        ]
