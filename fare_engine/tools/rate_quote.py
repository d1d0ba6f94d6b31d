# fare_engine/tools/rate_quote.py
from __future__ import annotations
import json
import logging
import math
from datetime import date, datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from pydantic import ValidationError

from fare_engine.errors import NoMatchingRateTier
from fare_engine.models import CharterCostBreakdown, RateCardEntry

logger = logging.getLogger(__name__)

# Empty positioning run added to each leg of a round-trip charter (garage -> pickup, drop -> garage).
DEAD_KM_PER_LEG = 20.0

DateLike = Union[date, datetime]

# ========= Rate card loading =========
def parse_rate_card(rows: Iterable[Dict]) -> Tuple[List[RateCardEntry], List[Dict]]:
    """
    Validate loosely-shaped rate rows into RateCardEntry.
    Returns (entries, rejected) where rejected rows carry the row index and reason.
    """
    entries: List[RateCardEntry] = []
    rejected: List[Dict] = []
    for i, row in enumerate(rows):
        try:
            entries.append(RateCardEntry.model_validate(row))
        except ValidationError as e:
            rejected.append({"index": i, "row": row, "reason": e.errors(include_url=False)})
    return entries, rejected

def load_rate_card(path: Path) -> List[RateCardEntry]:
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict) and isinstance(data.get("rates"), list):
        data = data["rates"]
    if not isinstance(data, list):
        logger.error("Rate card %s is neither a list nor a {\"rates\": [...]} object", path)
        raise ValueError(f"unrecognised rate card shape in {path}")
    entries, rejected = parse_rate_card(data)
    for r in rejected:
        logger.warning("Rejected rate card row %s: %s", r["index"], r["reason"])
    return entries

# ========= Tier selection =========
def select_rate(rate_card: Sequence[RateCardEntry], bus_type: str, seating_capacity: int) -> RateCardEntry:
    """
    Row with the requested bus type and the smallest seating capacity that still
    fits the party. Ties keep rate-card order.
    """
    fits = [r for r in rate_card if r.bus_type == bus_type and r.seating_capacity >= seating_capacity]
    if not fits:
        raise NoMatchingRateTier(f"no {bus_type} row with capacity >= {seating_capacity}")
    return min(fits, key=lambda r: r.seating_capacity)

# ========= Charter costing =========
def charter_days(journey: DateLike, return_: DateLike) -> int:
    """Billable days: whole days between the dates, rounded up, never fewer than one."""
    if isinstance(journey, datetime) != isinstance(return_, datetime):
        # compare like with like; a bare date counts from midnight
        journey = journey if isinstance(journey, datetime) else datetime.combine(journey, datetime.min.time())
        return_ = return_ if isinstance(return_, datetime) else datetime.combine(return_, datetime.min.time())
    days = (return_ - journey).total_seconds() / 86400
    return max(1, math.ceil(days))

def requested_distance(one_way_km: float, round_trip: bool = False) -> float:
    one_way_km = max(0.0, float(one_way_km or 0))
    if not round_trip:
        return one_way_km
    return 2 * (one_way_km + DEAD_KM_PER_LEG)

def charter_cost(rate: RateCardEntry, distance_km: float, num_days: int) -> CharterCostBreakdown:
    """
    totalKm   = max(distance, minKmPerDay * days)
    totalCost = totalKm * ratePerKm + driverAllowance * days + permitCharges
    """
    num_days = max(1, int(num_days))
    distance_km = max(0.0, float(distance_km or 0))
    total_km = max(distance_km, float(rate.min_km_per_day * num_days))
    base_fare = total_km * rate.rate_per_km
    allowance = rate.driver_allowance * num_days
    permit = rate.permit_charges
    return CharterCostBreakdown(
        base_fare=base_fare,
        driver_allowance=allowance,
        permit_charges=permit,
        num_days=num_days,
        total_km=total_km,
        total_cost=base_fare + allowance + permit,
    )

def rate_quote(
    rate_card: Sequence[RateCardEntry],
    bus_type: str,
    seating_capacity: int,
    distance_km: float,
    journey_date: DateLike,
    return_date: DateLike,
    round_trip: Optional[bool] = False,
) -> Tuple[RateCardEntry, float, CharterCostBreakdown]:
    """
    Private-charter quote. Returns (selected rate row, requested km, breakdown).
    Raises NoMatchingRateTier when no row fits.
    """
    rate = select_rate(rate_card, bus_type, seating_capacity)
    km = requested_distance(distance_km, bool(round_trip))
    days = charter_days(journey_date, return_date)
    return rate, km, charter_cost(rate, km, days)
