import datetime
import logging

AUDIT_LOG_PATH = "audit.log"


def audit_log(message: str):
    """Append a timestamped message to the audit log file."""
    timestamp = datetime.datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    try:
        with open(AUDIT_LOG_PATH, "a", encoding="utf-8") as f:
            f.write(f"[{timestamp}] {message}\n")
    except OSError as e:
        logging.error(f"Failed to write to {AUDIT_LOG_PATH}: {e}")
