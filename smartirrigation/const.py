DOMAIN = "smartirrigation"

DEFAULT_DEVICE_ID = "esp32s3-1"
DEFAULT_BACKEND_PORT = 8080
DEFAULT_API_PREFIX = "/api"

LOOPBACK_HOSTS = frozenset({"localhost", "127.0.0.1", "::1"})

# Polling cadences, seconds
DEFAULT_STATUS_INTERVAL = 10
DEFAULT_LOGS_INTERVAL = 30
DEFAULT_FORECAST_SETTLE_DELAY = 0.5

LOGS_PAGE_SIZE = 20
HISTORY_HOURS = 24
HISTORY_LIMIT = 48
FORECAST_DAYS = 5

# Persisted key/value entries
KEY_AUTH_TOKEN = "auth_token"
KEY_AUTH_USER = "auth_user"
KEY_DEVICE_ID = "device_id"
KEY_SAVED_LATITUDE = "saved_latitude"
KEY_SAVED_LONGITUDE = "saved_longitude"
KEY_HAS_SAVED_LOCATION = "has_saved_location"

SESSION_KEYS = (KEY_AUTH_TOKEN, KEY_AUTH_USER, KEY_DEVICE_ID)

# Roles
ROLE_ADMIN = "admin"
ROLE_USER = "user"

# Placeholder location shown before anything is saved (Beijing)
DEFAULT_LATITUDE = 39.92
DEFAULT_LONGITUDE = 116.41

# Synthetic status snapshot used when the device cannot be reached
FALLBACK_TEMPERATURE_C = 28.5
FALLBACK_HUMIDITY_PCT = 65.2
FALLBACK_SOIL_STATUS = "optimal"
FALLBACK_SOIL_RAW = 2150
FALLBACK_RAIN_STATUS = "no_rain"
FALLBACK_PUMP_STATE = "off"
FALLBACK_SHADE_STATE = "closed"
FALLBACK_PLANNED_VOLUME_L = 2.5
FALLBACK_EXECUTED_VOLUME_L = 1.2

# Placeholder forecast
PLACEHOLDER_TEMP_MAX = 28.0
PLACEHOLDER_TEMP_MIN = 20.0
DEFAULT_CONDITION = "clear"

MANUAL_IRRIGATION_REASON = "manual_trigger"
