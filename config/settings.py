"""Project-wide settings and defaults."""

import os
from pathlib import Path

# Base paths
PROJECT_ROOT = Path(__file__).resolve().parent.parent
DATA_DIR = Path(os.environ.get("LICENCE_DATA_DIR", str(PROJECT_ROOT / "data")))

# Licence store
LICENCE_DB_PATH = Path(os.environ.get("LICENCE_DB_PATH", str(DATA_DIR / "licenses.json")))
EMERGENCY_BACKUP_PATH = Path(
    os.environ.get("EMERGENCY_BACKUP_PATH", str(DATA_DIR / "emergency_backup.json"))
)
# Base64 encoded store document used to seed an empty store on startup
LICENCE_DB_SEED = os.environ.get("LICENCE_DB_SEED", "")
DEFAULT_SUBSCRIPTION_MONTHS = 1

# Periodic backups
AUTO_BACKUP_ENABLED = os.environ.get("AUTO_BACKUP_ENABLED", "true").lower() == "true"
BACKUP_DIR = Path(os.environ.get("BACKUP_DIR", str(DATA_DIR / "backups")))
BACKUP_INTERVAL_HOURS = int(os.environ.get("BACKUP_INTERVAL_HOURS", "24"))
BACKUP_RETAIN = int(os.environ.get("BACKUP_RETAIN", "14"))

# Audit
AUDIT_LOG_PATH = Path(os.environ.get("AUDIT_LOG_PATH", str(DATA_DIR / "audit_log.json")))

# Admin API keys (comma separated). Empty disables admin authentication.
ADMIN_API_KEYS = [
    k.strip() for k in os.environ.get("ADMIN_API_KEYS", "").split(",") if k.strip()
]

# Web server
FLASK_SECRET_KEY = os.environ.get("FLASK_SECRET_KEY", "dev-licence-server-key")
PORT = int(os.environ.get("PORT", "3000"))
APP_VERSION = "1.0.0"

# Logging
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
