"""Admin API: backup, restore and integrity of the licence database."""

import json

from flask import Blueprint, Response, current_app, jsonify, request

from licence.models import utcnow
from web.auth import current_actor, require_admin_key
from web.scheduler import auto_backup_status, stop_auto_backup
from web.services import get_audit_log, get_licence_store

bp = Blueprint("backup", __name__)
bp.before_request(require_admin_key)

SEED_VARIABLE = "LICENCE_DB_SEED"


@bp.route("/backup-database")
def backup_database():
    """Download the whole store wrapped with backup metadata."""
    snapshot = get_licence_store().snapshot()
    snapshot["metadata"]["server_url"] = request.host

    filename = f"licenses-backup-{utcnow().strftime('%Y-%m-%d')}.json"
    get_audit_log().log(
        "database_backup", filename,
        f"{snapshot['metadata']['record_count']} licence(s)",
        user=current_actor(),
    )
    return Response(
        json.dumps(snapshot, indent=2),
        mimetype="application/json",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@bp.route("/restore-database", methods=["POST"])
def restore_database():
    """Replace the store with an uploaded backup.

    Expects ``{"confirm": "RESTORE_CONFIRMED", "backup_data": {...}}``.
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        data = {}
    result = get_licence_store().restore(data.get("backup_data"), data.get("confirm"))
    if not result.success:
        return jsonify(result.to_dict()), 400

    get_audit_log().log(
        "database_restore", "licenses",
        f"{result.restored_licences} licence(s) restored",
        user=current_actor(),
    )
    return jsonify(result.to_dict())


@bp.route("/verify-database")
def verify_database():
    report = get_licence_store().verify_integrity()
    return jsonify(report.to_dict())


@bp.route("/save-to-env", methods=["GET", "POST"])
def save_to_env():
    """Export the store as a base64 value for the seed environment variable.

    Useful on hosts with an ephemeral filesystem: set the variable and the
    next cold start restores from it.
    """
    value = get_licence_store().export_seed()
    get_audit_log().log("database_export_seed", SEED_VARIABLE, user=current_actor())
    return jsonify({
        "success": True,
        "message": "Database encoded for environment storage",
        "env_variable_name": SEED_VARIABLE,
        "env_variable_value": value,
        "size_mb": round(len(value) / 1024 / 1024, 2),
        "instructions": [
            f"Set {SEED_VARIABLE} to env_variable_value in the hosting environment",
            "Restart the server",
            "A missing or unreadable licence file is recreated from the variable",
        ],
    })


@bp.route("/auto-backup")
def auto_backup():
    status = auto_backup_status()
    return jsonify({
        "success": True,
        "enabled": current_app.config["AUTO_BACKUP_ENABLED"],
        "interval_hours": current_app.config["BACKUP_INTERVAL_HOURS"],
        **status,
    })


@bp.route("/stop-auto-backup", methods=["POST"])
def stop_backup():
    stopped = stop_auto_backup()
    return jsonify({
        "success": True,
        "message": "Auto-backup stopped" if stopped else "Auto-backup was not running",
        "stopped": stopped,
    })
