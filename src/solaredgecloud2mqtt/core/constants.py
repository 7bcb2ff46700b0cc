"""Central constants for solaredgecloud2mqtt (Python 3.12)."""

# SolarEdge Monitoring API
API_BASE_DEFAULT = "https://monitoringapi.solaredge.com"
SITES_LIST_PATH = "/sites/list"
INVENTORY_PATH = "/site/{site_id}/inventory.json"
POWER_FLOW_PATH = "/site/{site_id}/currentPowerFlow.json"

# HTTP
HTTP_RETRY_BASE_DELAY_MS = 500
SITE_FETCH_TIMEOUT_MS = 30_000
SITE_FETCH_RETRIES = 1
AUTH_FETCH_RETRIES = 1

# Authorization backoff (milliseconds)
AUTH_RETRY_INITIAL_MS = 15_000
AUTH_RETRY_MAX_MS = 60_000

# Polling
DEFAULT_POLL_INTERVAL = 600
DEFAULT_HEALTH_CHECK_INTERVAL = 0

# Power flow unit multipliers, anything unrecognised is treated as kW
UNIT_MULTIPLIERS = {
    "W": 1,
    "KW": 1000,
    "MW": 1_000_000,
}
DEFAULT_UNIT_MULTIPLIER = 1000

# Identity namespace for tracked devices
DEVICE_NAMESPACE = "solaredgecloud2mqtt"
