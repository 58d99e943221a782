"""
Scoring model configuration for GeoScore.

Owns every numeric constant and type table that affects the location score.
Search radius and HTTP settings remain in maps_client.py.

Frozen dataclasses provide type checking and IDE support without
the indirection of YAML/JSON config files.
"""

import math
from dataclasses import dataclass
from typing import Dict, FrozenSet, Tuple


# =============================================================================
# Dataclasses
# =============================================================================

@dataclass(frozen=True)
class ProximityConfig:
    """Weight table and cutoff radius for one proximity aggregation.

    Types missing from ``weights`` contribute nothing.  Risk tables carry
    negative weights (see location_scorer.risk_score).
    """
    weights: Dict[str, float]
    max_distance_m: float


@dataclass(frozen=True)
class FactorBounds:
    """Clamp range and jitter amplitude for one factor.

    Jitter is ``(rng() - 0.5) * jitter_span``, so its magnitude never
    exceeds half the span.
    """
    floor: float
    ceiling: float
    jitter_span: float = 0.0
    rng_tag: str = ""


@dataclass(frozen=True)
class CompetitionZone:
    """A concentric radius around the origin and its pressure weight.

    Zones overlap: a competitor inside the smallest radius counts toward
    every zone.
    """
    radius_m: float
    weight: float


@dataclass(frozen=True)
class FootTrafficConfig:
    proximity: ProximityConfig
    density_types: FrozenSet[str]
    density_points_per_place: float
    density_bonus_max: float
    bounds: FactorBounds


@dataclass(frozen=True)
class SafetyConfig:
    baseline: float
    positive: ProximityConfig
    risk: ProximityConfig
    positive_factor: float
    risk_factor: float
    bounds: FactorBounds


@dataclass(frozen=True)
class CompetitionConfig:
    zones: Tuple[CompetitionZone, ...]
    uncontested_score: float
    pressure_penalty: float
    contested_floor: float
    bounds: FactorBounds


@dataclass(frozen=True)
class AccessibilityConfig:
    base_intercept: float
    log_multiplier: float
    base_cap: float
    variety_types: FrozenSet[str]
    variety_points: float
    bounds: FactorBounds


@dataclass(frozen=True)
class CompositeWeights:
    """Factor weights for the final GeoScore.  Must sum to 1.0."""
    foot_traffic: float
    safety: float
    competition: float
    accessibility: float

    def total(self) -> float:
        return self.foot_traffic + self.safety + self.competition + self.accessibility


@dataclass(frozen=True)
class StabilityConfig:
    """Constants for the descriptive stability metrics."""
    std_dev_penalty: float = 2.0
    full_quality_poi_count: int = 50


@dataclass(frozen=True)
class ScoreBand:
    """Maps a minimum score threshold to a human-readable band label."""
    threshold: int
    label: str


@dataclass(frozen=True)
class BusinessType:
    """A selectable business category and the POI tags it competes with."""
    key: str                           # URL-safe identifier, e.g. "food_service"
    label: str                         # Human-readable, e.g. "Food & Dining"
    competitor_types: FrozenSet[str]   # Places API type tags


@dataclass(frozen=True)
class ScoringModel:
    """Top-level container for all scoring parameters.

    A single module-level instance (SCORING_MODEL) is the source of truth.
    Bump `version` on every change that alters score outputs.
    """
    version: str
    earth_radius_m: float
    decay_radius_fraction: float
    foot_traffic: FootTrafficConfig
    safety: SafetyConfig
    competition: CompetitionConfig
    accessibility: AccessibilityConfig
    composite: CompositeWeights
    stability: StabilityConfig
    score_bands: Tuple[ScoreBand, ...]


# =============================================================================
# Pure scoring functions
# =============================================================================

def clamp(value: float, floor: float, ceiling: float) -> float:
    return max(floor, min(ceiling, value))


def round_half_up(x: float) -> int:
    """Round to the nearest integer, with .5 always rounding up.

    Uses floor(x + 0.5) instead of Python's round() to avoid banker's
    rounding (round-half-to-even), which would move published scores at
    .5 boundaries (e.g. round(62.5) -> 62).
    """
    return int(math.floor(x + 0.5))


def apply_bounds(bounds: FactorBounds, value: float) -> int:
    """Clamp *value* to the factor's range and round it."""
    return round_half_up(clamp(value, bounds.floor, bounds.ceiling))


def get_score_band(score: int) -> ScoreBand:
    """Return the first band whose threshold the score meets."""
    for band in SCORING_MODEL.score_bands:
        if score >= band.threshold:
            return band
    return SCORING_MODEL.score_bands[-1]


# =============================================================================
# SCORING_MODEL: current production values
# =============================================================================

TRANSIT_TYPES = frozenset({
    "bus_station",
    "train_station",
    "subway_station",
    "transit_station",
})

_TRAFFIC_WEIGHTS = {
    "shopping_mall": 1.0,
    "transit_station": 0.9,
    "bus_station": 0.8,
    "train_station": 0.9,
    "subway_station": 0.9,
    "restaurant": 0.7,
    "cafe": 0.6,
    "store": 0.5,
    "bank": 0.4,
    "pharmacy": 0.4,
    "gas_station": 0.3,
    "convenience_store": 0.5,
}

_SAFETY_WEIGHTS = {
    "police": 1.0,
    "hospital": 0.9,
    "fire_station": 0.8,
    "school": 0.7,
    "university": 0.7,
    "transit_station": 0.6,
    "bus_station": 0.5,
    "train_station": 0.6,
    "pharmacy": 0.4,
    "bank": 0.4,
}

# Negative = risk.  Never merge into _SAFETY_WEIGHTS: the aggregator keeps
# one weight per POI, so a mixed table would let a positive tag mask a risk.
_RISK_WEIGHTS = {
    "night_club": -0.6,
    "bar": -0.4,
    "liquor_store": -0.3,
}


SCORING_MODEL = ScoringModel(
    version="1.0.0",
    earth_radius_m=6371e3,
    # decay = exp(-d / (cutoff * 0.3)); a POI at the cutoff keeps ~3.6%.
    decay_radius_fraction=0.3,

    foot_traffic=FootTrafficConfig(
        proximity=ProximityConfig(weights=_TRAFFIC_WEIGHTS, max_distance_m=800),
        density_types=frozenset({"shopping_mall", "transit_station", "restaurant"}),
        density_points_per_place=3,
        density_bonus_max=20,
        bounds=FactorBounds(floor=10, ceiling=95, jitter_span=10, rng_tag="traffic"),
    ),

    safety=SafetyConfig(
        baseline=70,
        positive=ProximityConfig(weights=_SAFETY_WEIGHTS, max_distance_m=1000),
        risk=ProximityConfig(weights=_RISK_WEIGHTS, max_distance_m=500),
        positive_factor=0.3,
        risk_factor=0.2,
        bounds=FactorBounds(floor=20, ceiling=95, jitter_span=6, rng_tag="safety"),
    ),

    competition=CompetitionConfig(
        zones=(
            CompetitionZone(radius_m=200, weight=1.0),
            CompetitionZone(radius_m=500, weight=0.7),
            CompetitionZone(radius_m=1000, weight=0.4),
        ),
        uncontested_score=90,
        pressure_penalty=8,
        contested_floor=20,
        bounds=FactorBounds(floor=15, ceiling=95, jitter_span=8, rng_tag="competition"),
    ),

    accessibility=AccessibilityConfig(
        base_intercept=30,
        log_multiplier=20,
        base_cap=90,
        variety_types=TRANSIT_TYPES,
        variety_points=5,
        bounds=FactorBounds(floor=15, ceiling=95),
    ),

    composite=CompositeWeights(
        foot_traffic=0.30,
        safety=0.20,
        competition=0.25,
        accessibility=0.25,
    ),

    stability=StabilityConfig(),

    score_bands=(
        ScoreBand(75, "Excellent Location"),
        ScoreBand(60, "Good Location"),
        ScoreBand(0, "Needs Improvement"),
    ),
)


# =============================================================================
# Business types: competitor tag sets for the Competition factor
# =============================================================================

BUSINESS_TYPES = {
    "food_service": BusinessType(
        key="food_service",
        label="Food & Dining",
        competitor_types=frozenset({"restaurant", "cafe", "bakery", "meal_takeaway", "food"}),
    ),
    "retail": BusinessType(
        key="retail",
        label="Retail Store",
        competitor_types=frozenset({
            "store", "clothing_store", "shoe_store", "book_store", "electronics_store",
        }),
    ),
    "grocery": BusinessType(
        key="grocery",
        label="Grocery & Supermarket",
        competitor_types=frozenset({"grocery_or_supermarket", "supermarket", "convenience_store"}),
    ),
    "electronics": BusinessType(
        key="electronics",
        label="Electronics & Tech",
        competitor_types=frozenset({"electronics_store", "computer_store", "phone_store"}),
    ),
    "health": BusinessType(
        key="health",
        label="Health & Wellness",
        competitor_types=frozenset({
            "pharmacy", "hospital", "doctor", "dentist", "physiotherapist",
        }),
    ),
    "automotive": BusinessType(
        key="automotive",
        label="Automotive",
        competitor_types=frozenset({"car_dealer", "car_repair", "gas_station", "car_wash"}),
    ),
    "beauty": BusinessType(
        key="beauty",
        label="Beauty & Personal Care",
        competitor_types=frozenset({"beauty_salon", "hair_care", "spa", "nail_salon"}),
    ),
    "fitness": BusinessType(
        key="fitness",
        label="Fitness & Recreation",
        competitor_types=frozenset({"gym", "fitness_center", "sports_club", "yoga_studio"}),
    ),
    "education": BusinessType(
        key="education",
        label="Education & Services",
        competitor_types=frozenset({"school", "university", "library", "tutoring"}),
    ),
}

# Used when no (or an unknown) business type is supplied.
DEFAULT_COMPETITOR_TYPES = frozenset({
    "store", "restaurant", "shop", "establishment", "shopping_mall",
})


def competitor_types_for(business_type_key) -> FrozenSet[str]:
    """Return the competitor tag set for a business type key.

    Unknown keys and None fall back to DEFAULT_COMPETITOR_TYPES.
    """
    business_type = BUSINESS_TYPES.get(business_type_key) if business_type_key else None
    if business_type is None:
        return DEFAULT_COMPETITOR_TYPES
    return business_type.competitor_types


# Validate at import time (ValueError, not assert, so validation is never
# stripped by python -O).
_wsum = SCORING_MODEL.composite.total()
if abs(_wsum - 1.0) >= 0.001:
    raise ValueError(f"Composite weights sum to {_wsum}, expected 1.0")
for _k, _bt in BUSINESS_TYPES.items():
    if _k != _bt.key:
        raise ValueError(f"Business type {_k!r} registered under key {_bt.key!r}")
    if not _bt.competitor_types:
        raise ValueError(f"Business type {_k!r} has no competitor types")
for _name, _table in (
    ("safety.positive", SCORING_MODEL.safety.positive.weights),
    ("safety.risk", SCORING_MODEL.safety.risk.weights),
):
    _want_positive = _name == "safety.positive"
    if any((w > 0) != _want_positive for w in _table.values()):
        raise ValueError(f"Weight table {_name} mixes positive and risk weights")
