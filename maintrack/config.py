import os

# Current app version
__version__ = "1.0.0"
APP_NAME = "Factory Maintenance Tracker"

# Default database path (can be changed to a network share)
DB_PATH = os.path.abspath(os.environ.get("MAINTRACK_DB_PATH", "maintrack.db"))

# Flask API
HOST = os.environ.get("MAINTRACK_HOST", "127.0.0.1")
PORT = int(os.environ.get("MAINTRACK_PORT", "5000"))

# Backup interval in hours (0 disables periodic backups)
BACKUP_INTERVAL_HOURS = float(os.environ.get("MAINTRACK_BACKUP_INTERVAL_HOURS", "6"))

# How often pending reminders are checked
REMINDER_POLL_SECONDS = float(os.environ.get("MAINTRACK_REMINDER_POLL_SECONDS", "30"))

# "en" or "ar"
LANGUAGE = os.environ.get("MAINTRACK_LANGUAGE", "en")

LOG_LEVEL = os.environ.get("MAINTRACK_LOG_LEVEL", "INFO")

def lock_path_for(db_path: str) -> str:
    """Return a path for the lock file based on the DB file location"""
    return db_path + ".lock"
