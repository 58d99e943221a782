import os
import logging
import uuid
from functools import wraps
from flask import Flask, request, jsonify, g
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from werkzeug.middleware.proxy_fix import ProxyFix
from dotenv import load_dotenv
import requests

from geo_math import validate_point
from geo_trace import TraceContext, set_trace, clear_trace
from location_scorer import evaluate_address
from location_store import SQLiteLocationStore
from maps_client import GoogleMapsClient, SEARCH_RADIUS_M
from scoring_config import BUSINESS_TYPES, SCORING_MODEL

load_dotenv()

# ---------------------------------------------------------------------------
# Sentry error tracking: gated on SENTRY_DSN, silent when unset (local dev)
# ---------------------------------------------------------------------------
_sentry_dsn = os.environ.get("SENTRY_DSN")
if _sentry_dsn:
    import sentry_sdk
    from sentry_sdk.integrations.flask import FlaskIntegration

    def _sentry_before_send(event, hint):
        """Demote expected failures to breadcrumbs; only unexpected errors become Sentry events."""
        exc_info = hint.get("exc_info")
        if exc_info:
            exc_type, exc_value, _ = exc_info
            msg = str(exc_value) if exc_value else ""
            # Geocoding failed for bad address (ZERO_RESULTS, etc.)
            if exc_type is ValueError and "Geocoding failed" in msg:
                sentry_sdk.add_breadcrumb(
                    category="geocoding",
                    message=msg,
                    level="warning",
                )
                return None
            # Maps provider timeouts / request failures
            if exc_type is not None and issubclass(exc_type, requests.exceptions.RequestException):
                sentry_sdk.add_breadcrumb(
                    category="maps",
                    message=msg,
                    level="warning",
                )
                return None
        return event

    sentry_sdk.init(
        dsn=_sentry_dsn,
        integrations=[FlaskIntegration()],
        traces_sample_rate=0.0,
        environment=os.environ.get("GEOSCORE_ENVIRONMENT", "production"),
        before_send=_sentry_before_send,
    )

app = Flask(__name__)

# Proxy fix: most PaaS hosts run behind a reverse proxy that sets
# X-Forwarded-For.  ProxyFix rewrites request.remote_addr to the real
# client IP so both Flask-Limiter and logging see the correct address.
app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Rate limiting: every /api/* route proxies to a billed maps API.
# In-memory storage is per-process.
# ---------------------------------------------------------------------------
RATE_LIMIT_DEFAULT = os.environ.get("RATE_LIMIT_DEFAULT", "60/minute")
RATE_LIMIT_SCORE = os.environ.get("RATE_LIMIT_SCORE", "20/hour")

limiter = Limiter(
    get_remote_address,
    app=app,
    default_limits=[RATE_LIMIT_DEFAULT],
    storage_uri="memory://",
)
logging.getLogger("flask-limiter").setLevel(logging.WARNING)

# ---------------------------------------------------------------------------
# Startup: warn immediately if required config is missing
# ---------------------------------------------------------------------------
if not os.environ.get("GOOGLE_MAPS_API_KEY"):
    logger.warning(
        "GOOGLE_MAPS_API_KEY is not set. "
        "Maps lookups and scoring will fail until it is configured. "
        "For local development, add it to a .env file."
    )

# Snapshot cache shared by /api/score requests in this process.
location_store = SQLiteLocationStore()


def _generate_request_id():
    return uuid.uuid4().hex[:10]


@app.before_request
def _set_request_context():
    g.request_id = _generate_request_id()


def _check_service_config():
    """
    Validate required service configuration.
    Returns (is_ok, missing_keys) tuple.
    """
    missing = []
    if not os.environ.get("GOOGLE_MAPS_API_KEY"):
        missing.append("GOOGLE_MAPS_API_KEY")
    return (len(missing) == 0, missing)


def _maps_client() -> GoogleMapsClient:
    return GoogleMapsClient(os.environ["GOOGLE_MAPS_API_KEY"])


class _BadRequest(Exception):
    """Missing or malformed query parameter."""


def _required_arg(name: str) -> str:
    value = request.args.get(name, "").strip()
    if not value:
        raise _BadRequest(f"{name} is required")
    return value


def _coords_from_args():
    """Parse and validate ?lat=&lng= into a Point."""
    lat = _required_arg("lat")
    lng = _required_arg("lng")
    try:
        return validate_point((float(lat), float(lng)))
    except ValueError as e:
        raise _BadRequest(f"Invalid coordinates: {e}")


def _radius_from_args() -> int:
    raw = request.args.get("radius", "").strip()
    if not raw:
        return SEARCH_RADIUS_M
    try:
        radius = int(raw)
    except ValueError:
        raise _BadRequest("radius must be an integer")
    if radius <= 0 or radius > 50000:
        raise _BadRequest("radius must be between 1 and 50000 meters")
    return radius


def maps_endpoint(view):
    """Shared config check and error mapping for maps-backed JSON routes.

    503 when the API key is missing, 400 for bad parameters or provider
    failures, 502 when the provider is unreachable, 500 otherwise.
    """
    @wraps(view)
    def wrapper(*args, **kwargs):
        request_id = getattr(g, "request_id", "unknown")
        config_ok, missing_keys = _check_service_config()
        if not config_ok:
            logger.error("[%s] Missing required env vars: %s", request_id, missing_keys)
            return jsonify({
                "error": "Maps API key is not configured",
                "missing_keys": missing_keys,
                "request_id": request_id,
            }), 503
        try:
            return view(*args, **kwargs)
        except _BadRequest as e:
            return jsonify({"error": str(e), "request_id": request_id}), 400
        except requests.RequestException as e:
            logger.warning("[%s] Maps provider request failed: %s", request_id, e)
            return jsonify({
                "error": "Maps provider unavailable",
                "details": str(e),
                "request_id": request_id,
            }), 502
        except ValueError as e:
            logger.info("[%s] %s %s: %s", request_id, request.method, request.path, e)
            return jsonify({"error": str(e), "request_id": request_id}), 400
        except Exception as e:
            logger.exception("[%s] Unexpected error in %s", request_id, request.path)
            return jsonify({
                "error": "Internal server error",
                "details": str(e),
                "request_id": request_id,
            }), 500
    return wrapper


# ---------------------------------------------------------------------------
# Maps proxy routes
# ---------------------------------------------------------------------------

@app.route("/api/geocode")
@maps_endpoint
def api_geocode():
    address = _required_arg("address")
    result = _maps_client().geocode(address)
    return jsonify({
        "lat": result.lat,
        "lng": result.lng,
        "formatted_address": result.formatted_address,
    })


@app.route("/api/reverse-geocode")
@maps_endpoint
def api_reverse_geocode():
    point = _coords_from_args()
    return jsonify({"results": _maps_client().reverse_geocode(point.lat, point.lng)})


@app.route("/api/places")
@maps_endpoint
def api_places():
    point = _coords_from_args()
    radius = _radius_from_args()
    place_type = request.args.get("type", "").strip() or "establishment"
    places = _maps_client().places_nearby(point.lat, point.lng, place_type, radius)
    return jsonify({"results": places})


@app.route("/api/transit")
@maps_endpoint
def api_transit():
    point = _coords_from_args()
    radius = _radius_from_args()
    return jsonify({"results": _maps_client().transit_stations(point.lat, point.lng, radius)})


@app.route("/api/place-details")
@maps_endpoint
def api_place_details():
    place_id = _required_arg("place_id")
    return jsonify({"result": _maps_client().place_details(place_id)})


@app.route("/api/autocomplete")
@maps_endpoint
def api_autocomplete():
    text = request.args.get("input", "").strip()
    return jsonify({"predictions": _maps_client().autocomplete(text)})


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------

@app.route("/api/score")
@limiter.limit(RATE_LIMIT_SCORE)
@maps_endpoint
def api_score():
    """Evaluate an address and return its GeoScore snapshot.

    Query: ?address=...&business_type=food_service (business_type optional;
    unknown keys fall back to the default competitor set).
    """
    request_id = g.request_id
    address = _required_arg("address")
    business_type = request.args.get("business_type", "").strip() or None
    logger.info("[%s] GET /api/score address=%r business_type=%s",
                request_id, address, business_type)

    trace_ctx = TraceContext(trace_id=request_id)
    set_trace(trace_ctx)
    try:
        snapshot = evaluate_address(
            address,
            _maps_client(),
            store=location_store,
            business_type_key=business_type,
        )
    finally:
        trace_ctx.log_summary()
        clear_trace()

    payload = snapshot.to_dict()
    payload["cached"] = trace_ctx.cache_hit
    payload["request_id"] = request_id
    return jsonify(payload)


@app.route("/api/business-types")
def api_business_types():
    return jsonify({
        "business_types": [
            {
                "key": bt.key,
                "label": bt.label,
                "competitor_types": sorted(bt.competitor_types),
            }
            for bt in BUSINESS_TYPES.values()
        ],
    })


@app.route("/healthz")
@limiter.exempt
def healthz():
    """Lightweight health-check endpoint for monitoring."""
    config_ok, missing = _check_service_config()
    return jsonify({
        "status": "ok" if config_ok else "degraded",
        "missing_keys": missing,
        "model_version": SCORING_MODEL.version,
    }), 200 if config_ok else 503


# ---------------------------------------------------------------------------
# Error handlers
# ---------------------------------------------------------------------------

@app.errorhandler(429)
def rate_limit_exceeded(e):
    return jsonify({
        "error": "Too many requests. Please wait and try again.",
    }), 429


@app.errorhandler(404)
def not_found(e):
    return jsonify({"error": "Not found"}), 404


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5001))
    debug = os.environ.get("FLASK_DEBUG", "0") == "1"
    app.run(host="0.0.0.0", port=port, debug=debug)
