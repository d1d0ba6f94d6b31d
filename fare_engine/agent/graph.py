from __future__ import annotations
from typing import Any, Dict, List, Literal

from typing_extensions import TypedDict

from langgraph.graph import StateGraph, START, END

from fare_engine.depots import DepotDirectory
from fare_engine.errors import DepotNotFound
from fare_engine.models import Depot, StageFareResult
from fare_engine.tools.distance import depot_distance_km
from fare_engine.tools.fare_chart import fares_for_stages
from fare_engine.tools.stages import StageRule, describe_stages, scheduled_fallback_stages

# -------- Lookup State --------
class FareState(TypedDict, total=False):
    origin_name: str
    destination_name: str
    # resolve
    origin: Depot
    destination: Depot
    missing: List[str]
    outcome: Literal["scheduled", "unresolved"]
    # measure / stage / fare
    distance_km: float
    stages: int
    details: str
    fares: Dict[str, int]

# -------- Nodes --------
def node_resolve(state: FareState, directory: DepotDirectory) -> FareState:
    """Both endpoints must be known depots; otherwise the lookup ends unresolved."""
    names = [(state["origin_name"] or "").strip(), (state["destination_name"] or "").strip()]
    try:
        state["origin"], state["destination"] = directory.resolve(*names)
    except DepotNotFound as e:
        state["missing"] = e.names
        state["outcome"] = "unresolved"
        return state
    state["outcome"] = "scheduled"
    return state

def node_measure(state: FareState) -> FareState:
    # no route table is available, so straight-line distance stands in
    state["distance_km"] = depot_distance_km(state["origin"], state["destination"])
    return state

def node_stage(state: FareState, stage_rule: StageRule) -> FareState:
    stages = stage_rule(state["distance_km"])
    state["stages"] = stages
    state["details"] = describe_stages(stages, state["distance_km"])
    return state

def node_fare(state: FareState) -> FareState:
    state["fares"] = fares_for_stages(state["stages"]).model_dump()
    return state

def node_unresolved(state: FareState) -> FareState:
    state["details"] = "Depot not found"
    return state

def route_after_resolve(state: FareState) -> str:
    return "measure" if state.get("outcome") == "scheduled" else "unresolved"

# -------- Builder --------
def build_graph(directory: DepotDirectory, stage_rule: StageRule = scheduled_fallback_stages):
    """
    Compile the scheduled-route lookup:
        resolve -> measure -> stage -> fare -> END
        resolve -> unresolved -> END
    The directory and stage rule are injected so one graph serves each stage formula.
    """
    g = StateGraph(FareState)

    def _resolve(state: FareState) -> FareState:
        return node_resolve(state, directory)

    def _stage(state: FareState) -> FareState:
        return node_stage(state, stage_rule)

    g.add_node("resolve", _resolve)
    g.add_node("measure", node_measure)
    g.add_node("stage", _stage)
    g.add_node("fare", node_fare)
    g.add_node("unresolved", node_unresolved)

    g.add_edge(START, "resolve")
    g.add_conditional_edges("resolve", route_after_resolve, {"measure": "measure", "unresolved": "unresolved"})
    g.add_edge("measure", "stage")
    g.add_edge("stage", "fare")
    g.add_edge("fare", END)
    g.add_edge("unresolved", END)

    return g.compile()

# -------- Runner convenience --------
def run_lookup(app, origin_name: str, destination_name: str) -> Dict[str, Any]:
    """Run the compiled graph and return the final state."""
    init: FareState = {"origin_name": origin_name, "destination_name": destination_name}
    return app.invoke(init)

def resolved_lookup(app, origin_name: str, destination_name: str) -> Dict[str, Any]:
    """Final state of a lookup that reached the fare chart; raises DepotNotFound otherwise."""
    final_state = run_lookup(app, origin_name, destination_name)
    if final_state.get("outcome") != "scheduled":
        raise DepotNotFound(final_state.get("missing") or [origin_name, destination_name])
    return final_state

def calculate_fare(app, origin_name: str, destination_name: str) -> StageFareResult:
    """Scheduled-route fare for a depot pair; raises DepotNotFound for unknown names."""
    final_state = resolved_lookup(app, origin_name, destination_name)
    return StageFareResult(
        stages=final_state["stages"],
        details=final_state["details"],
        fares=final_state["fares"],
    )
