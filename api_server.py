"""Flask API server for the census analyzer."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from flask import Flask, jsonify
from flask_cors import CORS

from census_client import FetchError
from fields import NAME, NATIONAL_NAME
from reporting import format_for_display, to_records
from result_cache import ResultCache, build_cache
from settings import Settings

logger = logging.getLogger(__name__)

settings = Settings.from_env()

app = Flask(__name__)
CORS(app, origins=list(settings.allowed_origins), supports_credentials=True)

cache = None

ENDPOINTS = [
    {"path": "/health", "method": "GET", "description": "Health check and cache status"},
    {"path": "/api/census/raw", "method": "GET", "description": "Census data with numeric values"},
    {"path": "/api/census/formatted", "method": "GET", "description": "Display-ready census data"},
    {"path": "/api/census/analysis", "method": "GET", "description": "Narrative analysis only"},
    {"path": "/api/census/summary", "method": "GET", "description": "Summary statistics and top states"},
    {"path": "/api/cache/clear", "method": "POST", "description": "Clear the data cache to force a fresh fetch"},
    {"path": "/api/docs", "method": "GET", "description": "This documentation"},
]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def get_cache() -> ResultCache:
    """Build the process-wide cache on first use."""
    global cache
    if cache is None:
        cache = build_cache(settings)
        logger.info("Result cache ready (ttl=%ss)", cache.ttl_seconds)
    return cache


def _failure(error: str, exc: Exception):
    return jsonify({"success": False, "error": error, "message": str(exc)}), 500


@app.route("/health", methods=["GET"])
def health():
    result_cache = get_cache()
    age = result_cache.age_seconds()
    return jsonify({
        "status": "healthy",
        "timestamp": _now(),
        "cache": {
            "hasData": result_cache.peek() is not None,
            "age": age or 0,
            "state": result_cache.state,
            "valid": result_cache.state == "fresh",
        },
    })


@app.route("/api/census/raw", methods=["GET"])
def census_raw():
    try:
        lookup = get_cache().get_or_compute()
    except FetchError as exc:
        logger.exception("Error fetching census data")
        return _failure("Failed to fetch census data", exc)
    result = lookup.entry.result
    return jsonify({
        "success": True,
        "data": to_records(result.dataset),
        "analysis": result.analysis,
        "timestamp": _now(),
        "cached": lookup.cached,
    })


@app.route("/api/census/formatted", methods=["GET"])
def census_formatted():
    try:
        lookup = get_cache().get_or_compute()
    except FetchError as exc:
        logger.exception("Error fetching formatted census data")
        return _failure("Failed to fetch formatted census data", exc)
    result = lookup.entry.result
    return jsonify({
        "success": True,
        "data": to_records(format_for_display(result.dataset)),
        "analysis": result.analysis,
        "timestamp": _now(),
        "cached": lookup.cached,
    })


@app.route("/api/census/analysis", methods=["GET"])
def census_analysis():
    try:
        lookup = get_cache().get_or_compute()
    except FetchError as exc:
        logger.exception("Error fetching analysis")
        return _failure("Failed to fetch analysis", exc)
    result = lookup.entry.result
    return jsonify({
        "success": True,
        "analysis": result.analysis,
        "dataPoints": len(result.dataset),
        "timestamp": _now(),
        "cached": lookup.cached,
    })


@app.route("/api/census/summary", methods=["GET"])
def census_summary():
    try:
        lookup = get_cache().get_or_compute()
    except FetchError as exc:
        logger.exception("Error fetching summary")
        return _failure("Failed to fetch summary", exc)

    rows = to_records(lookup.entry.result.dataset)
    national = next((r for r in rows if r[NAME] == NATIONAL_NAME), {})
    states = [r for r in rows if r[NAME] != NATIONAL_NAME]
    summary = {
        "totalHispanicPopulation": national.get("HispanicPop") or 0,
        "totalPopulation": national.get("TotalPop") or 0,
        "hispanicPercentage": national.get("HispanicPct") or 0,
        "spanishSpeakersPercentage": national.get("SpanishPct") or 0,
        "statesIncluded": len(states),
        "topStates": [
            {"name": s[NAME], "hispanicPop": s.get("HispanicPop"), "hispanicPercent": s.get("HispanicPct")}
            for s in states[:5]
        ],
    }
    return jsonify({"success": True, "summary": summary, "timestamp": _now(), "cached": lookup.cached})


@app.route("/api/cache/clear", methods=["POST"])
def cache_clear():
    get_cache().clear()
    return jsonify({"success": True, "message": "Cache cleared successfully", "timestamp": _now()})


@app.route("/api/docs", methods=["GET"])
def docs():
    return jsonify({
        "title": "Census Data API",
        "description": "API for accessing US Hispanic demographic data with AI analysis",
        "version": "1.0.0",
        "endpoints": ENDPOINTS,
        "caching": f"Data is cached for {int(settings.cache_ttl_seconds)} seconds to avoid repeated Census API calls",
    })


@app.errorhandler(404)
def not_found(_error):
    return jsonify({
        "success": False,
        "error": "Endpoint not found",
        "availableEndpoints": [e["path"] for e in ENDPOINTS],
    }), 404


@app.errorhandler(500)
def server_error(error):
    logger.error("Server error: %s", error)
    return jsonify({"success": False, "error": "Internal server error", "message": str(error)}), 500


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    print("=" * 60)
    print("CENSUS DATA API SERVER")
    print("=" * 60)
    for endpoint in ENDPOINTS:
        print(f"  {endpoint['method']:<5}{endpoint['path']:<24}- {endpoint['description']}")
    print("=" * 60)

    app.run(host="0.0.0.0", port=settings.port, threaded=True)
