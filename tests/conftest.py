# tests/conftest.py
import math
import os, sys
import pytest
from dotenv import load_dotenv

# project root on path
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

# load env once; tests never load model weights
load_dotenv()
os.environ["ESTIMATE_PROVIDER"] = "rules"

# Depots on the equator, spaced so great-circle distances are exact round numbers.
def _lon_for_km(km: float) -> float:
    return math.degrees(km / 6371.0)

EQUATOR_DEPOTS = [
    {"id": 1, "name": "Alpha", "lat": 0.0, "lon": 0.0},
    {"id": 2, "name": "Bravo", "lat": 0.0, "lon": _lon_for_km(81.0)},
    {"id": 3, "name": "Charlie", "lat": 0.0, "lon": _lon_for_km(90.0)},
    {"id": 4, "name": "Delta", "lat": 0.0, "lon": _lon_for_km(5.0)},
]

@pytest.fixture(scope="session")
def equator_directory():
    from fare_engine.depots import DepotDirectory
    return DepotDirectory.from_records(EQUATOR_DEPOTS)
