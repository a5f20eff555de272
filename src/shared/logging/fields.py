"""Canonical logging field names shared by every component."""

TIMESTAMP = "timestamp"
LEVEL = "level"
LOGGER = "logger"
MESSAGE = "message"

# Correlation fields.
USER_ID = "user_id"
AUTOFILL_ID = "autofill_id"
LOG_ID = "log_id"
OUTBOX_KIND = "outbox_kind"
WORKER = "worker"
STAGE = "stage"

# Process-level fields.
SERVICE = "service"
