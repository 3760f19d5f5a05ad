"""Admin API: issue, renew, deactivate and report on licences."""

from flask import Blueprint, Response, current_app, jsonify, request

from licence.results import ResultCode
from web.auth import current_actor, require_admin_key
from web.services import (
    get_audit_log,
    get_lifecycle,
    get_report_generator,
)

bp = Blueprint("admin", __name__)
bp.before_request(require_admin_key)

# Result codes caused by missing or malformed request parameters
_BAD_REQUEST_CODES = {ResultCode.MISSING_KEY, ResultCode.INVALID_MONTHS}


def _error(message, status=400):
    return jsonify({"success": False, "error": message}), status


def _payload() -> dict:
    """Request parameters from a JSON object body, else from form fields."""
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    return request.form.to_dict()


def _result_response(result, **extra):
    body = result.to_dict()
    body.update(extra)
    status = 400 if result.code in _BAD_REQUEST_CODES else 200
    return jsonify(body), status


def _int_value(value, default):
    if value in (None, ""):
        return default
    return int(value)


# ── Licences ─────────────────────────────────────────────────────────

@bp.route("/create-license", methods=["POST"])
def create_licence():
    data = _payload()
    licence_type = data.get("type") or "perpetual"
    try:
        months = _int_value(
            data.get("months"), current_app.config["DEFAULT_SUBSCRIPTION_MONTHS"]
        )
        licence = get_lifecycle().create(
            licence_type=licence_type,
            subscription_months=months,
            customer_email=data.get("customer_email", ""),
            customer_name=data.get("customer_name", ""),
        )
    except (TypeError, ValueError):
        return _error(f"Invalid licence type or months: {licence_type!r}, {data.get('months')!r}")

    get_audit_log().log(
        "licence_create", licence.key, f"type: {licence.licence_type}", user=current_actor()
    )
    return jsonify({
        "success": True,
        "message": "Licence created successfully",
        "license": licence.to_dict(),
    }), 201


@bp.route("/licenses")
def list_licences():
    licences = get_lifecycle().list_all()
    return jsonify({"success": True, "licenses": [lic.to_dict() for lic in licences]})


@bp.route("/licenses/<key>")
def get_licence(key):
    licence = get_lifecycle().get(key)
    if licence is None:
        return _error("Licence not found", 404)
    return jsonify({"success": True, "license": licence.to_dict()})


@bp.route("/deactivate", methods=["POST"])
def deactivate():
    data = _payload()
    result = get_lifecycle().deactivate(str(data.get("key") or "").strip())
    if result.success:
        get_audit_log().log("licence_deactivate", result.licence_key, user=current_actor())
    return _result_response(result)


@bp.route("/renew-subscription", methods=["POST"])
def renew_subscription():
    data = _payload()
    key = str(data.get("key") or "").strip()
    try:
        months = _int_value(data.get("months"), 1)
    except (TypeError, ValueError):
        months = 0
    result = get_lifecycle().renew(key, months, data.get("payment_reference") or "")
    if result.success:
        get_audit_log().log(
            "licence_renew", key,
            f"+{months} month(s) until {result.new_expiration.isoformat()}",
            user=current_actor(),
        )
    return _result_response(result)


@bp.route("/notify-expiration", methods=["POST"])
def notify_expiration():
    data = _payload()
    key = str(data.get("key") or "").strip()
    notification_type = data.get("notification_type") or "email"
    lifecycle = get_lifecycle()
    result = lifecycle.record_notification(key, notification_type)
    if not result.success:
        return _result_response(result)

    licence = lifecycle.get(key)
    get_audit_log().log("licence_notify", key, notification_type, user=current_actor())
    return _result_response(
        result,
        customer_email=licence.customer_email,
        customer_phone=licence.customer_phone,
        notification_count=len(licence.notifications),
    )


# ── Reports ──────────────────────────────────────────────────────────

@bp.route("/status")
def status():
    report = get_report_generator().status_report()
    return jsonify({"success": True, **report})


@bp.route("/customers")
def customers():
    rows = get_report_generator().customers()
    return jsonify({"success": True, "total_customers": len(rows), "customers": rows})


@bp.route("/expiring-subscriptions")
def expiring_subscriptions():
    try:
        days = _int_value(request.args.get("days"), 7)
    except ValueError:
        return _error(f"Invalid days: {request.args.get('days')}")
    rows = get_report_generator().expiring_subscriptions(days)
    return jsonify({
        "success": True,
        "expiring_in_days": days,
        "total_expiring": len(rows),
        "subscriptions": rows,
    })


@bp.route("/expired-subscriptions")
def expired_subscriptions():
    rows = get_report_generator().expired_subscriptions()
    return jsonify({"success": True, "total_expired": len(rows), "subscriptions": rows})


@bp.route("/search-customer")
def search_customer():
    query = request.args.get("query", "").strip()
    if not query:
        return _error("query is required")
    rows = get_report_generator().search_customers(query)
    return jsonify({
        "success": True,
        "query": query,
        "results_count": len(rows),
        "results": rows,
    })


@bp.route("/export-customers")
def export_customers():
    content = get_report_generator().export_customers_csv()
    get_audit_log().log("customer_export", "customers.csv", user=current_actor())
    return Response(
        content,
        mimetype="text/csv",
        headers={"Content-Disposition": 'attachment; filename="customers.csv"'},
    )


@bp.route("/audit")
def audit():
    """Newest audit entries, optionally narrowed by ``action`` and ``target``."""
    try:
        limit = _int_value(request.args.get("limit"), 100)
    except ValueError:
        return _error(f"Invalid limit: {request.args.get('limit')}")
    action = request.args.get("action") or None
    try:
        entries = get_audit_log().filter(
            action=action, target=request.args.get("target") or None, limit=limit
        )
    except ValueError:
        return _error(f"Unknown audit action: {action}")
    return jsonify({"success": True, "entries": [e.to_dict() for e in entries]})


@bp.route("/config")
def config_summary():
    """Non-secret settings useful when diagnosing a deployment."""
    cfg = current_app.config
    return jsonify({
        "success": True,
        "database": str(cfg["LICENCE_DB_PATH"]),
        "backup_dir": str(cfg["BACKUP_DIR"]),
        "backup_interval_hours": cfg["BACKUP_INTERVAL_HOURS"],
        "backup_retain": cfg["BACKUP_RETAIN"],
        "admin_auth_enabled": bool(cfg.get("ADMIN_API_KEYS")),
    })
