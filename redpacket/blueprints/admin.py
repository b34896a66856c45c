"""
Admin Blueprint - Health Checks, Metrics and Reference Data

Provides monitoring and operational endpoints for infrastructure health.
"""

import logging
import time
from typing import Any, Dict

from flask import Blueprint, Response, current_app, jsonify
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from redpacket.database import check_database_health, check_redis_health
from redpacket.metrics import registry

logger = logging.getLogger(__name__)

admin_bp = Blueprint("admin", __name__)


@admin_bp.route("/api/health")
def health():
    """
    Comprehensive health check endpoint.

    Redis is optional: its absence is reported but does not degrade status.

    Returns:
        JSON health status with service information
    """
    cfg = current_app.config["APP_CONFIG"]
    health_status: Dict[str, Any] = {
        "status": "healthy",
        "timestamp": time.time(),
        "service": cfg.get("APP_NAME", "RedPacket"),
        "version": cfg.get("APP_VERSION", "1.0.0"),
        "components": {},
    }

    database = check_database_health()
    health_status["components"]["database"] = database
    if database["status"] != "healthy":
        health_status["status"] = "degraded"

    cache = check_redis_health()
    if cache["status"] == "unavailable":
        health_status["components"]["redis"] = {"status": "optional_unavailable"}
    else:
        health_status["components"]["redis"] = cache
        if cache["status"] != "healthy":
            health_status["status"] = "degraded"

    return jsonify(health_status), 200 if health_status["status"] == "healthy" else 503


@admin_bp.route("/health/live")
def liveness():
    """
    Kubernetes liveness probe - checks if app is running.

    Returns:
        200 if process is alive
    """
    return jsonify({"status": "alive"}), 200


@admin_bp.route("/health/ready")
def readiness():
    """
    Kubernetes readiness probe - checks if app is ready to serve traffic.

    Returns:
        200 if ready, 503 if not ready
    """
    database = check_database_health()
    if database["status"] != "healthy":
        logger.warning(f"Readiness check failed: {database.get('error')}")
        return jsonify({"status": "not_ready", "error": database.get("error")}), 503
    return jsonify({"status": "ready"}), 200


@admin_bp.route("/metrics")
def prometheus_metrics():
    """Prometheus text exposition of the service counters."""
    return Response(generate_latest(registry), content_type=CONTENT_TYPE_LATEST)


@admin_bp.route("/api/books")
def books():
    """Names of the books puzzles are drawn from, usable as ``bookName``."""
    return jsonify(current_app.extensions["redpacket.excerpts"].book_names())
