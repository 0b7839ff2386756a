"""
Read API served from the Dash app's Flask server.

GET /api/infections?state=&hospital=&infectionType=
GET /health
"""

from __future__ import annotations

import logging

from flask import Blueprint, Response, current_app, jsonify, request

from database import query_infections, test_connection

logger = logging.getLogger(__name__)

ENGINE_KEY = "HAI_ENGINE"


def create_blueprint() -> Blueprint:
    bp = Blueprint("query_api", __name__)

    @bp.route("/api/infections", methods=["GET"])
    def get_infections():
        engine = current_app.config[ENGINE_KEY]
        try:
            df = query_infections(
                engine,
                state=request.args.get("state"),
                hospital=request.args.get("hospital"),
                infection_type=request.args.get("infectionType"),
            )
        except Exception as e:
            logger.error("Infection query failed: %s", e)
            return jsonify({"error": "Database query failed"}), 500

        # NaN is not valid JSON; nulls go out as null
        payload = df.to_json(orient="records")
        return Response(payload, mimetype="application/json")

    @bp.route("/health", methods=["GET"])
    def health_check():
        engine = current_app.config[ENGINE_KEY]
        db_status = "healthy" if test_connection(engine) else "unhealthy"
        body = {
            "status": "healthy" if db_status == "healthy" else "degraded",
            "database": db_status,
            "service": "hai_infection_map",
        }
        return jsonify(body)

    return bp


def register_api(server, engine) -> None:
    """Attach the read API to a Flask server bound to `engine`."""
    server.config[ENGINE_KEY] = engine
    server.register_blueprint(create_blueprint())
