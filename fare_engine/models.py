from __future__ import annotations
from datetime import date
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from fare_engine.tools.clock import parse_clock

# JSON on the wire is camelCase; python attributes stay snake_case.
class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FrozenCamelModel(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# ========= Reference data =========
class Depot(FrozenCamelModel):
    id: Optional[int] = None
    name: str = Field(..., min_length=1)
    lat: float = Field(..., ge=-90, le=90, allow_inf_nan=False)
    lon: float = Field(..., ge=-180, le=180, allow_inf_nan=False)

    @field_validator("name")
    @classmethod
    def _strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("depot name is empty")
        return v


BusType = Literal["Non-AC", "AC"]

class RateCardEntry(FrozenCamelModel):
    bus_type: BusType
    vehicle_type: str = "Generic"
    seating_capacity: int = Field(..., gt=0)
    rate_per_km: float = Field(..., ge=0)
    min_km_per_day: int = Field(..., ge=0)
    driver_allowance: float = Field(..., ge=0)
    permit_charges: float = Field(..., ge=0)


# ========= Scheduled route =========
class FareTiers(BaseModel):
    ordinary: int = Field(0, ge=0)
    express: int = Field(0, ge=0)
    shivneri: int = Field(0, ge=0)


class StageFareResult(BaseModel):
    stages: int = Field(..., ge=0)
    details: str
    fares: FareTiers


class CalculateFareResponse(StageFareResult):
    origin: str
    destination: str


class DepotsResponse(BaseModel):
    depots: List[Depot]


class NearbyDepot(CamelModel):
    id: Optional[int] = None
    name: str
    lat: float
    lon: float
    distance_km: float


class NearbyDepotsResponse(BaseModel):
    depots: List[NearbyDepot]


ServiceClass = Literal["ordinary", "express", "shivneri"]

class TicketQuoteRequest(CamelModel):
    origin_depot: str = Field(..., min_length=1)
    destination_depot: str = Field(..., min_length=1)
    service: ServiceClass = "ordinary"
    full_passengers: int = Field(1, ge=0)
    concession_passengers: int = Field(0, ge=0)
    departure_time: Optional[str] = Field(None, description="HH:MM, 24h; defaults to now")

    @field_validator("departure_time")
    @classmethod
    def _clock_time(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and parse_clock(v) is None:
            raise ValueError("departureTime must look like HH:MM")
        return v


class GroupTicketQuote(CamelModel):
    stages: int
    service: ServiceClass
    night_service: bool
    fare_per_full_ticket: int
    fare_per_concession_ticket: int
    total_full_fare: int
    total_concession_fare: int
    total_reservation_charges: int
    total_fare: int


class TicketQuoteResponse(GroupTicketQuote):
    origin: str
    destination: str
    distance_km: float


# ========= Private charter =========
class TripRequest(CamelModel):
    origin: Optional[str] = None
    destination: Optional[str] = None
    distance_km: float = Field(..., ge=0, allow_inf_nan=False)
    bus_type: BusType
    seating_capacity: int = Field(..., gt=0)
    journey_date: date
    return_date: date
    round_trip: bool = False
    time_of_travel: Optional[str] = None

    @field_validator("bus_type", mode="before")
    @classmethod
    def _normalize_bus_type(cls, v):
        # accept "non-ac", "nonac", "ac" etc.
        if isinstance(v, str):
            key = v.strip().lower().replace("-", "").replace(" ", "").replace("_", "")
            if key == "nonac":
                return "Non-AC"
            if key == "ac":
                return "AC"
        return v

    @model_validator(mode="after")
    def _dates_in_order(self):
        if self.return_date < self.journey_date:
            raise ValueError("returnDate must not be before journeyDate")
        return self


class CharterCostBreakdown(CamelModel):
    base_fare: float = Field(..., ge=0)
    driver_allowance: float = Field(..., ge=0)
    permit_charges: float = Field(..., ge=0)
    num_days: int = Field(..., ge=1)
    total_km: float = Field(..., ge=0)
    total_cost: float = Field(..., ge=0)


class CharterQuoteResponse(CharterCostBreakdown):
    requested_km: float
    rate: RateCardEntry


# ========= AI-assisted estimate =========
class EstimateFareInput(CamelModel):
    start_location: str = Field(..., min_length=1, description="The starting location for the bus route.")
    destination: str = Field(..., min_length=1, description="The destination for the bus route.")
    distance_km: float = Field(..., ge=0, allow_inf_nan=False, description="Total journey distance in km.")
    bus_type: str = Field(..., min_length=1, description="Standard or Luxury.")
    time_of_travel: str = Field(..., min_length=1, description="HH:MM or a descriptive time of day.")


class AIEstimateResult(BaseModel):
    # provider output is matched against the wire names only
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=False)

    estimated_fare: float = Field(..., ge=0, allow_inf_nan=False)
    nearby_operators: str

    @field_validator("estimated_fare", mode="before")
    @classmethod
    def _real_number(cls, v):
        # the provider must return a number, not "1200" or "about 1200"
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            raise ValueError("estimatedFare must be a JSON number")
        return v
