"""Internal constants shared across the library."""

DEFAULT_MARKER_COLOR = "#1776BF"
DEFAULT_ZOOM_LEVEL = 0.0
DEFAULT_EVENT_POLL_INTERVAL = 5.0

BUILDING_TYPE = "c8y_Building"
INDOOR_POSITION_FRAGMENT = "c8y_IndoorPosition"

DEFAULT_MEASUREMENT_TOPIC = "measurements/{device_id}"

# Epoch lower bound used for "latest measurement" queries.
MEASUREMENTS_DATE_FROM = "1970-01-01"

POPUP_LOADING_TEXT = "Loading measurements..."

USER_AGENT = "pyindoormap"
