"""Default values shared across nexflow modules."""

SCHEDULER_INTERVAL_SECONDS = 15.0
HISTORY_LIMIT = 50
DEFAULT_HTTP_TIMEOUT_SECONDS = 30.0
# Reference offset used when a flow has never run.
NEW_FLOW_LOOKBACK_SECONDS = 60
