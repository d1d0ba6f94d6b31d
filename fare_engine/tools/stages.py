# fare_engine/tools/stages.py
from __future__ import annotations
import math
from typing import Callable, Dict

# Two stage rules exist and they are NOT interchangeable:
#  - scheduled_fallback: ~9 km per stage, floor of 2. Used by /calculate-fare when
#    no published stage table is available for a depot pair.
#  - generic: ~6 km per stage, floor of 1. Used by the ticket calculator, which
#    adds TICKET_EXTRA_STAGES on top.
SCHEDULED_KM_PER_STAGE = 9.0
SCHEDULED_MIN_STAGES = 2
GENERIC_KM_PER_STAGE = 6.0
GENERIC_MIN_STAGES = 1
TICKET_EXTRA_STAGES = 4

StageRule = Callable[[float], int]

def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))

def scheduled_fallback_stages(distance_km: float) -> int:
    return max(SCHEDULED_MIN_STAGES, _round_half_up(max(0.0, distance_km) / SCHEDULED_KM_PER_STAGE))

def generic_stage_estimate(distance_km: float) -> int:
    return max(GENERIC_MIN_STAGES, _round_half_up(max(0.0, distance_km) / GENERIC_KM_PER_STAGE))

def ticket_stages(distance_km: float) -> int:
    """Stage count billed by the ticket calculator (generic estimate + fixed extra stages)."""
    return generic_stage_estimate(distance_km) + TICKET_EXTRA_STAGES

STAGE_RULES: Dict[str, StageRule] = {
    "scheduled_fallback": scheduled_fallback_stages,
    "generic": generic_stage_estimate,
    "ticket": ticket_stages,
}

def get_stage_rule(name: str) -> StageRule:
    try:
        return STAGE_RULES[name]
    except KeyError:
        raise ValueError(f"unknown stage rule: {name!r} (known: {sorted(STAGE_RULES)})") from None

def describe_stages(stages: int, distance_km: float) -> str:
    return f"Estimated {stages} stages (~{distance_km:.1f} km)"
