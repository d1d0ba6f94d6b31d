# fare_engine/tools/fare_chart.py
from __future__ import annotations
import math
from datetime import time
from typing import Dict

from fare_engine.models import FareTiers, GroupTicketQuote

# Per-stage tariff in whole rupees (INR). express is 1.5x ordinary, shivneri 5x.
STAGE_RATES: Dict[str, int] = {
    "ordinary": 10,
    "express": 15,
    "shivneri": 50,
}

NIGHT_SURCHARGE = 0.18          # 22:00 - 04:59
NIGHT_START_HOUR = 22
NIGHT_END_HOUR = 5
CONCESSION_FACTOR = 0.5
RESERVATION_CHARGE = 5          # per passenger

def fares_for_stages(stages: int) -> FareTiers:
    """All three tariff tiers for a stage count; non-positive stages cost nothing."""
    if stages <= 0:
        return FareTiers(ordinary=0, express=0, shivneri=0)
    return FareTiers(**{tier: stages * rate for tier, rate in STAGE_RATES.items()})

def _ceil_rupees(amount: float) -> int:
    # float noise (100 * 1.18 == 118.00000000000001) must not add a rupee
    return math.ceil(round(amount, 6))

def is_night_service(departure: time) -> bool:
    return departure.hour >= NIGHT_START_HOUR or departure.hour < NIGHT_END_HOUR

def quote_group_ticket(
    stages: int,
    service: str = "ordinary",
    full_passengers: int = 1,
    concession_passengers: int = 0,
    night: bool = False,
) -> GroupTicketQuote:
    """
    Counter-style ticket price for a party travelling on one service class.
    Per-ticket fares and totals are rounded up to whole rupees.
    """
    service = (service or "ordinary").lower()
    rate = STAGE_RATES.get(service)
    if rate is None:
        raise ValueError(f"unknown service class: {service!r}")
    if full_passengers < 0 or concession_passengers < 0:
        raise ValueError("passenger counts must be non-negative")

    full = max(0, stages) * rate
    if night:
        full *= 1 + NIGHT_SURCHARGE
    concession = full * CONCESSION_FACTOR

    total_full = full_passengers * full
    total_concession = concession_passengers * concession
    reservation = (full_passengers + concession_passengers) * RESERVATION_CHARGE

    return GroupTicketQuote(
        stages=max(0, stages),
        service=service,
        night_service=night,
        fare_per_full_ticket=_ceil_rupees(full),
        fare_per_concession_ticket=_ceil_rupees(concession),
        total_full_fare=_ceil_rupees(total_full),
        total_concession_fare=_ceil_rupees(total_concession),
        total_reservation_charges=reservation,
        total_fare=_ceil_rupees(total_full + total_concession + reservation),
    )
