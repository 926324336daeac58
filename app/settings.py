import os

db_url = os.environ.get("DB_URL", "sqlite://:memory:")
generate_schemas = os.environ.get("GENERATE_SCHEMAS", "false").lower() == "true"
users_ms_url = os.environ.get("USERS_MS_URL", "http://localhost:8000")
resources_ms_url = os.environ.get("RESOURCES_MS_URL", "http://localhost:8001")
notifications_ms_url = os.environ.get(
    "NOTIFICATIONS_MS_URL", "http://localhost:8004"
)
REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")

sweep_enabled = os.environ.get("SWEEP_ENABLED", "true").lower() == "true"
sweep_interval_seconds = float(os.environ.get("SWEEP_INTERVAL_SECONDS", "900"))
reminder_lead_hours = float(os.environ.get("REMINDER_LEAD_HOURS", "24"))

log_level = os.environ.get("LOG_LEVEL", "INFO")
