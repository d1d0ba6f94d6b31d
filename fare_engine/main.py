# fare_engine/main.py
from datetime import datetime
from typing import List, Optional
import logging
import threading

from fastapi import FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from dotenv import load_dotenv

from fare_engine.agent.graph import build_graph, calculate_fare as run_scheduled_fare, resolved_lookup
from fare_engine.depots import DepotDirectory
from fare_engine.errors import FareEngineError, InternalError, MissingParameter
from fare_engine.estimator import AIFareEstimator
from fare_engine.generation import HFTextGenerator, RulesTextGenerator
from fare_engine.models import (
    AIEstimateResult, CalculateFareResponse, CharterQuoteResponse, DepotsResponse,
    EstimateFareInput, NearbyDepotsResponse, RateCardEntry, TicketQuoteRequest, TicketQuoteResponse,
    TripRequest,
)
from fare_engine.settings import settings
from fare_engine.tools.clock import parse_clock
from fare_engine.tools.fare_chart import is_night_service, quote_group_ticket
from fare_engine.tools.rate_quote import load_rate_card, rate_quote
from fare_engine.tools.stages import ticket_stages

load_dotenv()  # loads variables from .env at repo root

log = logging.getLogger("uvicorn")
logging.basicConfig(level=settings.log_level.upper())

# ========= Reference data + strategies, built once =========
directory: Optional[DepotDirectory] = None
rate_card: List[RateCardEntry] = []
scheduled_app = None        # langgraph lookup, /9 stage rule
ticket_app = None           # langgraph lookup, /6 + 4 stage rule
fare_estimator: Optional[AIFareEstimator] = None

# guards swapping the directory reference; readers never take it
_directory_lock = threading.Lock()

def install_directory(new_directory: DepotDirectory):
    """Swap in a freshly built directory (and the lookups that close over it)."""
    global directory, scheduled_app, ticket_app
    with _directory_lock:
        directory = new_directory
        scheduled_app = build_graph(new_directory)
        ticket_app = build_graph(new_directory, stage_rule=ticket_stages)

def _build_estimator() -> AIFareEstimator:
    if settings.estimate_provider == "rules":
        provider = RulesTextGenerator()
    else:
        provider = HFTextGenerator(
            base_model_id=settings.base_model,
            adapter_id=settings.adapter_id,
            hf_token=settings.hf_token,
            max_new_tokens=settings.estimate_max_new_tokens,
        )
    return AIFareEstimator(provider, timeout_s=settings.estimate_timeout_s)

def _boot():
    global rate_card, fare_estimator
    install_directory(DepotDirectory.from_file(settings.depots_path))
    rate_card = load_rate_card(settings.rate_card_path)
    fare_estimator = _build_estimator()
    log.info(
        f"Loaded {len(directory)} depots, {len(rate_card)} rate rows; "
        f"estimate provider={settings.estimate_provider}"
    )

_boot()

# ========= FastAPI app =========
app = FastAPI(title="Bus Fare & Stage Estimation Engine", version="1.0")

@app.exception_handler(FareEngineError)
async def fare_engine_error_handler(request: Request, exc: FareEngineError):
    # details stay in the log; callers get the public message only
    log.warning(f"{request.url.path}: {type(exc).__name__}: {exc}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.public_message})

@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    log.warning(f"Validation error at {request.url.path}: {errors}")
    fields = [".".join(str(p) for p in err.get("loc", ())[1:]) for err in errors]
    if any(err.get("type") == "missing" for err in errors):
        return JSONResponse(status_code=400, content={"error": "Missing required field(s)", "fields": fields})
    return JSONResponse(status_code=422, content={"error": "Invalid request", "fields": fields})

# ========= Endpoints =========
@app.get("/health")
def health():
    return {
        "status": "ok",
        "depots": len(directory) if directory is not None else 0,
        "rate_card_rows": len(rate_card),
        "estimate_provider": settings.estimate_provider,
        "model_loaded": bool(getattr(getattr(fare_estimator, "provider", None), "loaded", False)),
    }


@app.get("/calculate-fare", response_model=CalculateFareResponse)
def calculate_fare(
    originDepot: Optional[str] = Query(default=None),
    destinationDepot: Optional[str] = Query(default=None),
):
    originDepot = (originDepot or "").strip()
    destinationDepot = (destinationDepot or "").strip()
    if not originDepot or not destinationDepot:
        raise MissingParameter(public_message="Missing originDepot or destinationDepot")
    try:
        result = run_scheduled_fare(scheduled_app, originDepot, destinationDepot)
    except FareEngineError:
        raise
    except Exception as e:
        log.exception(f"Fare calculation error: {e}")
        raise InternalError(str(e)) from e
    return CalculateFareResponse(origin=originDepot, destination=destinationDepot, **result.model_dump())


@app.get("/depots", response_model=DepotsResponse)
def list_depots():
    return DepotsResponse(depots=list(directory))


@app.get("/depots/nearby", response_model=NearbyDepotsResponse)
def nearby_depots(
    lat: float = Query(..., ge=-90, le=90),
    lon: float = Query(..., ge=-180, le=180),
    radiusKm: float = Query(default=settings.nearby_radius_km, gt=0),
    limit: int = Query(default=settings.nearby_limit, ge=1, le=100),
):
    return NearbyDepotsResponse(depots=directory.nearby(lat, lon, radius_km=radiusKm, limit=limit))


@app.post("/ticket-quote", response_model=TicketQuoteResponse)
def ticket_quote(req: TicketQuoteRequest):
    # departure_time is already validated as a clock time
    departure = parse_clock(req.departure_time) if req.departure_time else datetime.now().time()

    final_state = resolved_lookup(ticket_app, req.origin_depot, req.destination_depot)
    quote = quote_group_ticket(
        final_state["stages"],
        service=req.service,
        full_passengers=req.full_passengers,
        concession_passengers=req.concession_passengers,
        night=is_night_service(departure),
    )
    return TicketQuoteResponse(
        origin=req.origin_depot.strip(),
        destination=req.destination_depot.strip(),
        distance_km=round(final_state["distance_km"], 1),
        **quote.model_dump(),
    )


@app.post("/charter-quote", response_model=CharterQuoteResponse)
def charter_quote(req: TripRequest):
    rate, requested_km, breakdown = rate_quote(
        rate_card,
        bus_type=req.bus_type,
        seating_capacity=req.seating_capacity,
        distance_km=req.distance_km,
        journey_date=req.journey_date,
        return_date=req.return_date,
        round_trip=req.round_trip,
    )
    return CharterQuoteResponse(requested_km=requested_km, rate=rate, **breakdown.model_dump())


@app.post("/estimate-fare", response_model=AIEstimateResult)
async def estimate_fare(req: EstimateFareInput):
    """
    AI-assisted blended fare. Provider or schema failures surface as one generic
    message; no retries are made here.
    """
    return await fare_estimator.estimate(req)
