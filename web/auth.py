"""API key authentication for admin endpoints."""

import secrets

from flask import current_app, g, jsonify, request


def require_admin_key():
    """``before_request`` hook guarding admin blueprints.

    When ``ADMIN_API_KEYS`` is empty the admin API is open (development).
    Otherwise the request must carry a matching ``X-API-Key`` header or
    ``api_key`` query parameter.
    """
    keys = current_app.config.get("ADMIN_API_KEYS") or []
    if not keys:
        g.admin_actor = "admin"
        return None

    api_key = request.headers.get("X-API-Key") or request.args.get("api_key")
    if api_key:
        for index, key_value in enumerate(keys, start=1):
            if secrets.compare_digest(api_key, key_value):
                g.admin_actor = f"api-key-{index}"
                return None

    return jsonify({
        "success": False,
        "error": "Authentication required. Provide X-API-Key header.",
    }), 401


def current_actor() -> str:
    """Name recorded in the audit log for the current admin request."""
    return g.get("admin_actor", "admin")
