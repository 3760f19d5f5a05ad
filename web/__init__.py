"""Flask application factory for the POS licence server."""

import logging
from pathlib import Path

from dotenv import load_dotenv
load_dotenv()  # Load .env file if present

from flask import Flask, jsonify, request

from licence.exceptions import StorageError

logger = logging.getLogger(__name__)

# Config keys holding paths that default to files inside DATA_DIR
_DATA_FILES = {
    "LICENCE_DB_PATH": "licenses.json",
    "EMERGENCY_BACKUP_PATH": "emergency_backup.json",
    "AUDIT_LOG_PATH": "audit_log.json",
    "BACKUP_DIR": "backups",
}


def _default_config() -> dict:
    from config import settings

    return {
        "SECRET_KEY": settings.FLASK_SECRET_KEY,
        "APP_VERSION": settings.APP_VERSION,
        "LICENCE_DB_PATH": settings.LICENCE_DB_PATH,
        "EMERGENCY_BACKUP_PATH": settings.EMERGENCY_BACKUP_PATH,
        "LICENCE_DB_SEED": settings.LICENCE_DB_SEED,
        "AUDIT_LOG_PATH": settings.AUDIT_LOG_PATH,
        "AUTO_BACKUP_ENABLED": settings.AUTO_BACKUP_ENABLED,
        "BACKUP_DIR": settings.BACKUP_DIR,
        "BACKUP_INTERVAL_HOURS": settings.BACKUP_INTERVAL_HOURS,
        "BACKUP_RETAIN": settings.BACKUP_RETAIN,
        "ADMIN_API_KEYS": settings.ADMIN_API_KEYS,
        "DEFAULT_SUBSCRIPTION_MONTHS": settings.DEFAULT_SUBSCRIPTION_MONTHS,
    }


def create_app(test_config=None):
    """Create and configure the Flask application.

    Args:
        test_config: Optional config overrides. A ``DATA_DIR`` entry moves
            every data file not explicitly overridden into that folder.
    """
    from config import settings

    logging.basicConfig(level=settings.LOG_LEVEL, format=settings.LOG_FORMAT)

    app = Flask(__name__)
    app.config.from_mapping(_default_config())
    if test_config:
        data_dir = test_config.get("DATA_DIR")
        if data_dir:
            for key, name in _DATA_FILES.items():
                app.config[key] = Path(data_dir) / name
        app.config.update(test_config)

    from web.services import init_services
    init_services(app)

    from web.routes.validation import bp as validation_bp
    from web.routes.admin import bp as admin_bp
    from web.routes.backup import bp as backup_bp

    app.register_blueprint(validation_bp)
    app.register_blueprint(admin_bp, url_prefix="/admin")
    app.register_blueprint(backup_bp, url_prefix="/admin")

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"success": False, "error": "Not found"}), 404

    @app.errorhandler(500)
    def server_error(e):
        return jsonify({"success": False, "error": "Internal server error"}), 500

    @app.errorhandler(StorageError)
    def storage_error(e):
        logger.error("Storage failure on %s %s: %s", request.method, request.path, e)
        return jsonify({
            "success": False,
            "error": "Licence database could not be written",
        }), 500

    @app.route("/health")
    def health_check():
        return jsonify({"status": "healthy", "version": app.config["APP_VERSION"]}), 200

    @app.route("/")
    def index():
        from licence.reports import compute_stats
        from web.services import get_licence_store

        return jsonify({
            "message": "POS licence server running",
            "version": app.config["APP_VERSION"],
            "stats": compute_stats(get_licence_store().load()),
            "endpoints": {
                "validate": "/validate?key=XXXX-XXXX-XXXX-XXXX&hardware=abc123",
                "create": "/admin/create-license",
                "status": "/admin/status",
                "customers": "/admin/customers",
            },
        })

    # Start scheduler (only in non-testing mode)
    if not app.config.get("TESTING") and app.config.get("AUTO_BACKUP_ENABLED"):
        from web.scheduler import init_scheduler
        init_scheduler(app)

    return app
