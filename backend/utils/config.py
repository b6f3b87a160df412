"""Configuration from environment."""
import os

PORT = int(os.environ.get("PORT", "8001"))

TESTING = os.environ.get("TESTING") == "true"

# When TESTING=true, use test DB URL so tests never touch production.
if TESTING:
    DATABASE_URL = os.environ.get("TESTING_DATABASE_URL", "sqlite:///:memory:")
else:
    DATABASE_URL = os.environ.get(
        "DATABASE_URL",
        "sqlite:///./fleet.db",
    )

# Background reconciliation. Off by default under tests; passes are then triggered explicitly.
RECONCILE_ENABLED = os.environ.get(
    "RECONCILE_ENABLED", "false" if TESTING else "true"
).lower() in ("1", "true", "yes")
RECONCILE_INTERVAL_S = float(os.environ.get("RECONCILE_INTERVAL_S", "60"))
RECONCILE_INITIAL_DELAY_S = float(os.environ.get("RECONCILE_INITIAL_DELAY_S", "1"))

# Default age for DELETE /api/alerts/dismissed.
DISMISSED_ALERT_RETENTION_MIN = int(os.environ.get("DISMISSED_ALERT_RETENTION_MIN", "60"))
