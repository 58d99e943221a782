"""
Descriptive analysis bundle that accompanies every GeoScore.

Nothing here feeds back into the score.  The bucket labels and synthetic
hourly/weekly series are for the report and its charts; the series reuse the
coordinate-seeded PRNG so a location always renders the same curves.
"""

from dataclasses import dataclass, asdict
from typing import Callable, Dict, List, Sequence, Tuple, TYPE_CHECKING

from scoring_config import round_half_up
from stable_random import make_rng

if TYPE_CHECKING:
    from location_scorer import POI, FactorScores, StabilityMetrics


# =============================================================================
# Data classes
# =============================================================================

@dataclass(frozen=True)
class HourlyPoint:
    hour: str          # "00:00" .. "23:00"
    pedestrians: int
    vehicles: int
    safety: int


@dataclass(frozen=True)
class WeeklyPoint:
    day: str           # "Mon" .. "Sun"
    traffic: int
    sales: int
    competition: int


@dataclass(frozen=True)
class CompetitorAnalysis:
    total: int
    density: str                  # Low | Medium | High
    types: Dict[str, int]         # first type tag -> count, in encounter order
    market_saturation: str        # Open | Competitive | Saturated


@dataclass(frozen=True)
class SafetyMetrics:
    crime_risk: str               # Low | Medium | High
    lighting: str                 # Poor | Good | Excellent
    surveillance: str             # Low | Medium | High
    emergency_services: int


@dataclass(frozen=True)
class DetailedAnalysis:
    hourly_traffic: Tuple[HourlyPoint, ...]
    weekly_trends: Tuple[WeeklyPoint, ...]
    competitor_analysis: CompetitorAnalysis
    safety_metrics: SafetyMetrics
    location_factors: Dict[str, int]
    stability_metrics: "StabilityMetrics"

    def to_dict(self) -> dict:
        return {
            "hourly_traffic": [asdict(p) for p in self.hourly_traffic],
            "weekly_trends": [asdict(p) for p in self.weekly_trends],
            "competitor_analysis": asdict(self.competitor_analysis),
            "safety_metrics": asdict(self.safety_metrics),
            "location_factors": dict(self.location_factors),
            "stability_metrics": asdict(self.stability_metrics),
        }


# =============================================================================
# Thresholds
# =============================================================================

EMERGENCY_TYPES = frozenset({"hospital", "police", "fire_station"})

# Category -> type tags counted for the location-factor summary.  "transit"
# is counted from the transit station list rather than from nearby POIs.
LOCATION_FACTOR_TYPES = {
    "restaurants": frozenset({"restaurant"}),
    "healthcare": frozenset({"hospital", "pharmacy", "doctor"}),
    "education": frozenset({"school", "university"}),
    "shopping": frozenset({"shopping_mall", "store"}),
    "entertainment": frozenset({"movie_theater", "amusement_park", "casino"}),
}

WEEKDAYS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
WEEKDAY_MULTIPLIERS = {"Mon": 0.9, "Fri": 1.1, "Sat": 1.2, "Sun": 0.85}


def _has_any(poi: "POI", types) -> bool:
    return any(t in types for t in poi.types)


def competitor_density(count: int) -> str:
    if count > 15:
        return "High"
    if count >= 8:
        return "Medium"
    return "Low"


def market_saturation(count: int) -> str:
    if count > 20:
        return "Saturated"
    if count > 10:
        return "Competitive"
    return "Open"


def crime_risk(safety: int) -> str:
    if safety < 40:
        return "High"
    if safety < 70:
        return "Medium"
    return "Low"


def lighting_quality(safety: int) -> str:
    if safety > 80:
        return "Excellent"
    if safety > 60:
        return "Good"
    return "Poor"


def surveillance_level(transit_count: int) -> str:
    if transit_count > 3:
        return "High"
    if transit_count > 1:
        return "Medium"
    return "Low"


def hour_multiplier(hour: int) -> float:
    """Time-of-day traffic shape: quiet overnight, peaking in the evening."""
    if hour < 6:
        return 0.3
    if hour < 10:
        return 0.7
    if hour < 17:
        return 0.9
    if hour < 21:
        return 1.0
    return 0.6


# =============================================================================
# Builders
# =============================================================================

def analyze_competitors(competitors: Sequence["POI"]) -> CompetitorAnalysis:
    histogram: Dict[str, int] = {}
    for poi in competitors:
        first = poi.types[0] if poi.types else "other"
        histogram[first] = histogram.get(first, 0) + 1

    total = len(competitors)
    return CompetitorAnalysis(
        total=total,
        density=competitor_density(total),
        types=histogram,
        market_saturation=market_saturation(total),
    )


def analyze_safety(
    safety: int,
    nearby: Sequence["POI"],
    transit: Sequence["POI"],
) -> SafetyMetrics:
    return SafetyMetrics(
        crime_risk=crime_risk(safety),
        lighting=lighting_quality(safety),
        surveillance=surveillance_level(len(transit)),
        emergency_services=sum(1 for p in nearby if _has_any(p, EMERGENCY_TYPES)),
    )


def count_location_factors(nearby: Sequence["POI"], transit: Sequence["POI"]) -> Dict[str, int]:
    counts = {
        name: sum(1 for p in nearby if _has_any(p, types))
        for name, types in LOCATION_FACTOR_TYPES.items()
    }
    counts["transit"] = len(transit)
    return counts


def hourly_series(base: int, rnd: Callable[[], float]) -> Tuple[HourlyPoint, ...]:
    """24 synthetic hourly points shaped by hour_multiplier().

    Draws three values per hour, in field order, from *rnd*.
    """
    points: List[HourlyPoint] = []
    for h in range(24):
        mult = hour_multiplier(h)
        night_penalty = 15 if (h >= 22 or h <= 5) else 0
        pedestrians = max(5, round_half_up(base * mult + (rnd() - 0.5) * 12))
        vehicles = max(2, round_half_up(base * 0.8 * mult + (rnd() - 0.5) * 10))
        safety = max(30, round_half_up(85 - night_penalty + (rnd() - 0.5) * 8))
        points.append(HourlyPoint(
            hour=f"{h:02d}:00",
            pedestrians=pedestrians,
            vehicles=vehicles,
            safety=safety,
        ))
    return tuple(points)


def weekly_series(base: int, rnd: Callable[[], float]) -> Tuple[WeeklyPoint, ...]:
    points: List[WeeklyPoint] = []
    for day in WEEKDAYS:
        mult = WEEKDAY_MULTIPLIERS.get(day, 1.0)
        traffic = max(10, round_half_up(base * mult + (rnd() - 0.5) * 6))
        sales = max(5, round_half_up(base * mult * 0.7 + (rnd() - 0.5) * 5))
        competition = max(20, round_half_up(70 + (rnd() - 0.5) * 15))
        points.append(WeeklyPoint(day=day, traffic=traffic, sales=sales, competition=competition))
    return tuple(points)


def build_detailed_analysis(
    origin,
    nearby: Sequence["POI"],
    transit: Sequence["POI"],
    competitors: Sequence["POI"],
    factors: "FactorScores",
    stability: "StabilityMetrics",
) -> DetailedAnalysis:
    """Assemble the descriptive bundle for one scored location."""
    lat, lng = origin
    return DetailedAnalysis(
        hourly_traffic=hourly_series(factors.foot_traffic, make_rng(lat, lng, "hourly")),
        weekly_trends=weekly_series(factors.foot_traffic, make_rng(lat, lng, "weekly")),
        competitor_analysis=analyze_competitors(competitors),
        safety_metrics=analyze_safety(factors.safety, nearby, transit),
        location_factors=count_location_factors(nearby, transit),
        stability_metrics=stability,
    )

