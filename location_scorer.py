#!/usr/bin/env python3
"""
GeoScore Location Evaluator

Scores a candidate small-business location 0-100 from nearby points of
interest and transit stations.  Four factors feed a fixed-weight composite:

  - Foot traffic   (proximity to traffic generators + density bonus)
  - Safety         (proximity to safety anchors minus nightlife risk)
  - Competition    (overlapping-zone pressure from same-category businesses)
  - Accessibility  (transit station count and variety)

Scoring is a pure function of (coordinates, POIs, transit stations,
business type).  The small jitter on three factors comes from a PRNG seeded
by the coordinates, so repeated runs agree exactly.

Requirements:
- Google Maps API key (for Geocoding and Places) when scoring an address

Usage:
    python location_scorer.py "350 5th Ave, New York, NY"
    python location_scorer.py "350 5th Ave, New York, NY" --business-type food_service --json
"""

import argparse
import json
import logging
import math
import os
import sys
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, asdict
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from dotenv import load_dotenv

from analysis import DetailedAnalysis, build_detailed_analysis
from geo_math import InvalidInput, Point, distance_meters, validate_point
from geo_trace import get_trace, set_trace, traced_stage
from location_store import LocationSnapshot, LocationStore, location_key_from_address
from maps_client import GoogleMapsClient, SEARCH_RADIUS_M
from scoring_config import (
    SCORING_MODEL,
    apply_bounds,
    clamp,
    competitor_types_for,
    get_score_band,
    round_half_up,
)
from stable_random import make_rng

logger = logging.getLogger(__name__)

load_dotenv()


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass(frozen=True)
class POI:
    """A nearby place.  ``types`` is the only classification signal."""
    name: str
    location: Optional[Point]
    types: Tuple[str, ...] = ()
    rating: Optional[float] = None
    rating_count: Optional[int] = None
    vicinity: Optional[str] = None
    place_id: Optional[str] = None

    @classmethod
    def from_place(cls, place: Mapping) -> "POI":
        """Build a POI from a Places API result dict.

        A missing or malformed geometry yields ``location=None`` so the POI
        still counts toward type tallies but not toward distance scoring.
        """
        location = None
        loc = (place.get("geometry") or {}).get("location") or {}
        try:
            location = validate_point((loc["lat"], loc["lng"]))
        except (KeyError, TypeError, InvalidInput):
            location = None

        rating = place.get("rating")
        rating_count = place.get("user_ratings_total")
        return cls(
            name=place.get("name") or "",
            location=location,
            types=tuple(place.get("types") or ()),
            rating=float(rating) if rating is not None else None,
            rating_count=int(rating_count) if rating_count is not None else None,
            vicinity=place.get("vicinity"),
            place_id=place.get("place_id"),
        )

    def to_place(self) -> Dict:
        """Inverse of from_place(), for caching."""
        place = {
            "name": self.name,
            "types": list(self.types),
        }
        if self.location is not None:
            place["geometry"] = {"location": {"lat": self.location.lat, "lng": self.location.lng}}
        if self.rating is not None:
            place["rating"] = self.rating
        if self.rating_count is not None:
            place["user_ratings_total"] = self.rating_count
        if self.vicinity is not None:
            place["vicinity"] = self.vicinity
        if self.place_id is not None:
            place["place_id"] = self.place_id
        return place


@dataclass(frozen=True)
class FactorScores:
    foot_traffic: int
    safety: int
    competition: int
    accessibility: int

    def as_tuple(self) -> Tuple[int, int, int, int]:
        return (self.foot_traffic, self.safety, self.competition, self.accessibility)


@dataclass(frozen=True)
class StabilityMetrics:
    """Descriptive only; never feeds back into the score."""
    consistency_score: int
    data_quality: int
    confidence_level: int


@dataclass(frozen=True)
class ScoreResult:
    score: int
    factors: FactorScores
    detailed_analysis: DetailedAnalysis
    model_version: str = ""

    @property
    def score_band(self) -> str:
        return get_score_band(self.score).label

    def to_dict(self) -> Dict:
        return {
            "score": self.score,
            "score_band": self.score_band,
            "factors": asdict(self.factors),
            "detailed_analysis": self.detailed_analysis.to_dict(),
            "model_version": self.model_version,
        }


# =============================================================================
# PROXIMITY AGGREGATION
# =============================================================================

def _poi_weight(poi: POI, weights: Mapping[str, float]) -> float:
    """Highest weight among the POI's types, never below 0.

    One weight per POI: a place tagged both "train_station" and
    "transit_station" is not counted twice.
    """
    best = 0.0
    for t in poi.types:
        w = weights.get(t, 0.0)
        if w > best:
            best = w
    return best


def proximity_score(
    origin: Point,
    pois: Iterable[POI],
    weights: Mapping[str, float],
    max_distance_m: float,
) -> float:
    """Decay-weighted average of POI weights within *max_distance_m*, 0-100.

    Each POI within the cutoff contributes its best weight with decay
    ``exp(-d / (max_distance_m * 0.3))``.  Because the result is an average
    and not a sum, it stays bounded however many POIs there are.  POIs
    without a location, beyond the cutoff, or with no positive-weight type
    contribute nothing.  Returns exactly 0 when nothing contributes.
    """
    decay_scale = max_distance_m * SCORING_MODEL.decay_radius_fraction
    total_score = 0.0
    total_weight = 0.0

    for poi in pois:
        if poi.location is None:
            continue
        distance = distance_meters(origin, poi.location)
        if distance > max_distance_m:
            continue

        weight = _poi_weight(poi, weights)
        if weight > 0:
            decay = math.exp(-distance / decay_scale)
            total_score += weight * decay
            total_weight += decay

    if total_weight <= 0:
        return 0.0
    return min(100.0, (total_score / total_weight) * 100)


def risk_score(
    origin: Point,
    pois: Iterable[POI],
    risk_weights: Mapping[str, float],
    max_distance_m: float,
) -> float:
    """Magnitude of nearby risk, 0-100, from a table of negative weights.

    The table is negated before aggregation, so each POI contributes its
    worst (most negative) matching risk type.
    """
    magnitudes = {t: -w for t, w in risk_weights.items()}
    return proximity_score(origin, pois, magnitudes, max_distance_m)


def _jitter(origin: Point, tag: str, span: float) -> float:
    rng = make_rng(origin.lat, origin.lng, tag)
    return (rng() - 0.5) * span


# =============================================================================
# FACTOR SCORERS
# =============================================================================

def score_foot_traffic(origin: Point, pois: Sequence[POI]) -> int:
    cfg = SCORING_MODEL.foot_traffic
    base = proximity_score(origin, pois, cfg.proximity.weights, cfg.proximity.max_distance_m)

    high_traffic = sum(1 for p in pois if any(t in cfg.density_types for t in p.types))
    density_bonus = min(cfg.density_bonus_max, high_traffic * cfg.density_points_per_place)

    jitter = _jitter(origin, cfg.bounds.rng_tag, cfg.bounds.jitter_span)
    final = apply_bounds(cfg.bounds, base + density_bonus + jitter)

    logger.debug(
        "Foot traffic: base=%.1f density=%s jitter=%.2f final=%d",
        base, density_bonus, jitter, final,
    )
    return final


def score_safety(origin: Point, pois: Sequence[POI]) -> int:
    cfg = SCORING_MODEL.safety
    positive = proximity_score(origin, pois, cfg.positive.weights, cfg.positive.max_distance_m)
    risk = risk_score(origin, pois, cfg.risk.weights, cfg.risk.max_distance_m)

    adjusted = cfg.baseline + positive * cfg.positive_factor - risk * cfg.risk_factor
    jitter = _jitter(origin, cfg.bounds.rng_tag, cfg.bounds.jitter_span)
    final = apply_bounds(cfg.bounds, adjusted + jitter)

    logger.debug(
        "Safety: positive=%.1f risk=%.1f jitter=%.2f final=%d",
        positive, risk, jitter, final,
    )
    return final


def competition_pressure(origin: Point, competitors: Sequence[POI]) -> float:
    """Weighted competitor count over overlapping zones.

    A competitor at 150 m counts in the 200 m, 500 m, and 1000 m zones.
    Competitors without a location are not counted.
    """
    distances = [
        distance_meters(origin, c.location)
        for c in competitors
        if c.location is not None
    ]
    pressure = 0.0
    for zone in SCORING_MODEL.competition.zones:
        in_zone = sum(1 for d in distances if d <= zone.radius_m)
        pressure += in_zone * zone.weight
    return pressure


def score_competition(origin: Point, competitors: Sequence[POI]) -> int:
    cfg = SCORING_MODEL.competition
    pressure = competition_pressure(origin, competitors)

    base = cfg.uncontested_score
    if pressure > 0:
        base = max(cfg.contested_floor, cfg.uncontested_score - pressure * cfg.pressure_penalty)

    jitter = _jitter(origin, cfg.bounds.rng_tag, cfg.bounds.jitter_span)
    final = apply_bounds(cfg.bounds, base + jitter)

    logger.debug(
        "Competition: count=%d pressure=%.1f jitter=%.2f final=%d",
        len(competitors), pressure, jitter, final,
    )
    return final


def score_accessibility(transit_stations: Sequence[POI]) -> int:
    """Count-based transit score.  Deliberately has no jitter."""
    cfg = SCORING_MODEL.accessibility
    count = len(transit_stations)
    base = min(cfg.base_cap, cfg.base_intercept + math.log(count + 1) * cfg.log_multiplier)

    variety = {t for s in transit_stations for t in s.types if t in cfg.variety_types}
    variety_bonus = len(variety) * cfg.variety_points

    final = apply_bounds(cfg.bounds, base + variety_bonus)
    logger.debug(
        "Accessibility: count=%d base=%.1f variety=%s final=%d",
        count, base, variety_bonus, final,
    )
    return final


def filter_competitors(pois: Sequence[POI], business_type_key: Optional[str] = None) -> List[POI]:
    """POIs that compete with the given business type.

    Unknown or missing keys use the broad default set.  Filtering an
    already-filtered list with the same key returns it unchanged.
    """
    relevant = competitor_types_for(business_type_key)
    return [p for p in pois if any(t in relevant for t in p.types)]


# =============================================================================
# COMPOSITE
# =============================================================================

def composite_score(factors: FactorScores) -> int:
    w = SCORING_MODEL.composite
    weighted = (
        factors.foot_traffic * w.foot_traffic
        + factors.safety * w.safety
        + factors.competition * w.competition
        + factors.accessibility * w.accessibility
    )
    return round_half_up(weighted)


def stability_metrics(factors: FactorScores, poi_count: int) -> StabilityMetrics:
    cfg = SCORING_MODEL.stability
    scores = factors.as_tuple()
    mean = sum(scores) / len(scores)
    variance = sum((s - mean) ** 2 for s in scores) / len(scores)
    std_dev = math.sqrt(variance)

    consistency = max(0.0, 100 - std_dev * cfg.std_dev_penalty)
    data_quality = min(100.0, (poi_count / cfg.full_quality_poi_count) * 100)
    confidence = clamp((consistency + data_quality) / 2, 0, 100)

    return StabilityMetrics(
        consistency_score=round_half_up(consistency),
        data_quality=round_half_up(data_quality),
        confidence_level=round_half_up(confidence),
    )


def score_location(
    coordinates,
    nearby_pois: Sequence[POI],
    transit_stations: Sequence[POI] = (),
    business_type_key: Optional[str] = None,
) -> ScoreResult:
    """Score one location.

    Pure: identical arguments (including POI order) give equal results.
    Raises InvalidInput for unusable coordinates.  Empty lists are fine and
    drive every factor to its floor behaviour.
    """
    origin = validate_point(coordinates)
    nearby_pois = list(nearby_pois)
    transit_stations = list(transit_stations)

    competitors = filter_competitors(nearby_pois, business_type_key)

    factors = FactorScores(
        foot_traffic=score_foot_traffic(origin, nearby_pois),
        safety=score_safety(origin, nearby_pois),
        competition=score_competition(origin, competitors),
        accessibility=score_accessibility(transit_stations),
    )
    score = composite_score(factors)
    stability = stability_metrics(factors, len(nearby_pois))

    logger.info(
        "GeoScore (%.6f, %.6f): pois=%d transit=%d competitors=%d "
        "factors=%s score=%d consistency=%d",
        origin.lat, origin.lng, len(nearby_pois), len(transit_stations),
        len(competitors), factors.as_tuple(), score, stability.consistency_score,
    )

    analysis = build_detailed_analysis(
        origin, nearby_pois, transit_stations, competitors, factors, stability,
    )
    return ScoreResult(
        score=score,
        factors=factors,
        detailed_analysis=analysis,
        model_version=SCORING_MODEL.version,
    )


# =============================================================================
# ADDRESS EVALUATION (maps client + store + engine)
# =============================================================================

def _pois(places: Iterable[Mapping]) -> List[POI]:
    return [POI.from_place(p) for p in places]


def evaluate_address(
    address: str,
    maps: GoogleMapsClient,
    store: Optional[LocationStore] = None,
    business_type_key: Optional[str] = None,
) -> LocationSnapshot:
    """Geocode, collect nearby places, score, and cache an address.

    A fresh cached snapshot skips all provider calls.  If it was scored for a
    different business type, it is re-scored from the cached places (only
    Competition and its analysis change).  Provider failures propagate as
    ValueError / requests exceptions before any scoring.
    """
    key = location_key_from_address(address)

    cached = None
    if store is not None:
        with traced_stage("cache"):
            cached = store.get(key)

    if cached is not None and not cached.is_seeded:
        trace = get_trace()
        if trace:
            trace.cache_hit = True
        if cached.business_type_key == business_type_key:
            logger.info("Cache hit for %r (key=%s)", address, key)
            return cached

        logger.info(
            "Cache hit for %r; re-scoring for business type %r",
            address, business_type_key,
        )
        with traced_stage("scoring"):
            result = score_location(
                Point(cached.lat, cached.lng),
                _pois(cached.nearby_places),
                _pois(cached.transit_stations),
                business_type_key,
            )
        snapshot = LocationSnapshot(
            address=cached.address,
            key=key,
            lat=cached.lat,
            lng=cached.lng,
            result=result.to_dict(),
            nearby_places=cached.nearby_places,
            transit_stations=cached.transit_stations,
            business_type_key=business_type_key,
            last_updated=cached.last_updated,
        )
        store.put(key, snapshot)
        return snapshot

    with traced_stage("geocode"):
        geo = maps.geocode(address)

    parent_trace = get_trace()

    def _fetch(stage_name, fn, *args):
        set_trace(parent_trace)
        with traced_stage(stage_name):
            return fn(*args)

    with ThreadPoolExecutor(max_workers=2) as pool:
        places_future = pool.submit(
            _fetch, "places", maps.places_nearby,
            geo.lat, geo.lng, "establishment", SEARCH_RADIUS_M,
        )
        transit_future = pool.submit(
            _fetch, "transit", maps.transit_stations, geo.lat, geo.lng, SEARCH_RADIUS_M,
        )
        nearby_places = places_future.result()
        transit_places = transit_future.result()

    with traced_stage("scoring"):
        result = score_location(
            Point(geo.lat, geo.lng),
            _pois(nearby_places),
            _pois(transit_places),
            business_type_key,
        )

    snapshot = LocationSnapshot(
        address=geo.formatted_address,
        key=key,
        lat=geo.lat,
        lng=geo.lng,
        result=result.to_dict(),
        nearby_places=nearby_places,
        transit_stations=transit_places,
        business_type_key=business_type_key,
    )
    if store is not None:
        store.put(key, snapshot)
    return snapshot


# =============================================================================
# CLI
# =============================================================================

def format_result(snapshot: LocationSnapshot) -> str:
    result = snapshot.result
    factors = result["factors"]
    analysis = result["detailed_analysis"]
    competitors = analysis["competitor_analysis"]
    safety = analysis["safety_metrics"]
    stability = analysis["stability_metrics"]

    lines = [
        "=" * 60,
        f"GeoScore: {snapshot.address}",
        f"({snapshot.lat:.6f}, {snapshot.lng:.6f})",
        "=" * 60,
        f"SCORE: {result['score']}/100  ({result['score_band']})",
        "",
        f"  Foot traffic   {factors['foot_traffic']:>3}",
        f"  Safety         {factors['safety']:>3}",
        f"  Competition    {factors['competition']:>3}",
        f"  Accessibility  {factors['accessibility']:>3}",
        "",
        f"Competitors: {competitors['total']} "
        f"(density {competitors['density']}, market {competitors['market_saturation']})",
        f"Crime risk: {safety['crime_risk']}  Lighting: {safety['lighting']}  "
        f"Surveillance: {safety['surveillance']}  "
        f"Emergency services: {safety['emergency_services']}",
        f"Confidence: {stability['confidence_level']}%  "
        f"(consistency {stability['consistency_score']}, data {stability['data_quality']})",
        "",
        f"Model version: {result['model_version']}",
    ]
    return "\n".join(lines)


def main():
    parser = argparse.ArgumentParser(
        description="Score a location for small-business suitability"
    )
    parser.add_argument(
        "address",
        nargs="?",
        help="Address to evaluate"
    )
    parser.add_argument(
        "--business-type",
        default=None,
        help="Business type key used to select competitors (e.g. food_service)"
    )
    parser.add_argument(
        "--api-key",
        default=os.environ.get("GOOGLE_MAPS_API_KEY"),
        help="Google Maps API key (or set GOOGLE_MAPS_API_KEY env var)"
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output as JSON instead of formatted text"
    )

    args = parser.parse_args()

    if not args.address:
        parser.print_help()
        sys.exit(1)

    if not args.api_key:
        print("Error: Google Maps API key required. Set GOOGLE_MAPS_API_KEY or use --api-key")
        sys.exit(1)

    logging.basicConfig(level=logging.INFO)
    maps = GoogleMapsClient(args.api_key)
    try:
        snapshot = evaluate_address(args.address, maps, business_type_key=args.business_type)
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)

    if args.json:
        print(json.dumps(snapshot.result, indent=2))
    else:
        print(format_result(snapshot))


if __name__ == "__main__":
    main()
