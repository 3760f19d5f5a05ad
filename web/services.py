"""Backend service wiring for the web layer."""

from flask import current_app


def init_services(app):
    """Create the shared licence store and audit log for an app.

    One store instance per app means every request goes through the same
    lock, which serialises all load-mutate-save cycles.
    """
    from licence.audit import AuditLog
    from licence.store import JsonFileLicenceStore

    store = JsonFileLicenceStore(
        app.config["LICENCE_DB_PATH"],
        emergency_backup_path=app.config["EMERGENCY_BACKUP_PATH"],
        seed=app.config.get("LICENCE_DB_SEED", ""),
    )
    # Creates (or seeds) the document on first start
    store.load()

    app.extensions["licence_store"] = store
    app.extensions["audit_log"] = AuditLog(app.config["AUDIT_LOG_PATH"])


def get_licence_store():
    return current_app.extensions["licence_store"]


def get_audit_log():
    return current_app.extensions["audit_log"]


def get_lifecycle():
    from licence.lifecycle import LicenceLifecycle
    return LicenceLifecycle(get_licence_store())


def get_report_generator():
    from licence.reports import ReportGenerator
    return ReportGenerator(get_licence_store())
