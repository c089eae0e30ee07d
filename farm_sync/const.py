from __future__ import annotations

DOMAIN = "farm_sync"

# Backend endpoints, relative to the configured base url.
FARMS_PATH = "/farms"
FARMS_ALL_PATH = "/farms/all"
FARM_PATH = "/farms/{farm_id}"
FARM_BOUNDARY_PATH = "/farms/{farm_id}/boundary"
ASSIGNED_FARMERS_PATH = "/farmers/assigned"

RETRYABLE = (429, 500, 502, 503, 504)

DEFAULT_PAGE_SIZE = 100
DEFAULT_FALLBACK_PAGE_SIZE = 500
DEFAULT_REQUEST_TIMEOUT = 15.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_MAX_UPLOAD_BYTES = 1024 * 1024
DEFAULT_ALLOWED_EXTENSIONS = (".kml", ".kmz")
DEFAULT_PLACEHOLDER_PREFIXES = ("temp", "tmp", "local-", "placeholder", "new-")

# Option keys accepted by FieldSyncConfig.from_options
CONF_BASE_URL = "base_url"
CONF_ACCESS_TOKEN = "access_token"
CONF_PAGE_SIZE = "page_size"
CONF_FALLBACK_PAGE_SIZE = "fallback_page_size"
CONF_REQUEST_TIMEOUT = "request_timeout"
CONF_MAX_RETRIES = "max_retries"
CONF_MAX_UPLOAD_BYTES = "max_upload_bytes"
CONF_ALLOWED_EXTENSIONS = "allowed_extensions"
CONF_PLACEHOLDER_PREFIXES = "placeholder_prefixes"
CONF_REFRESH_AFTER_UPLOAD = "refresh_after_upload"

# Ordered list-envelope keys tried when a page response is not the
# ``{success, data: {items}}`` shape.
LIST_ENVELOPE_KEYS = ("data", "items", "results", "farms")
# Keys probed inside ``data`` by the last-resort catalog strategy.
ALTERNATE_DATA_KEYS = ("farms", "results", "content", "data")
# Single-farm responses may be wrapped in either of these.
SINGLE_ENVELOPE_KEYS = ("data", "farm")

# Backend status vocabulary. Only these literals are trusted; anything
# else is treated as incomplete.
PROCESSED_STATUSES = frozenset({"PROCESSED", "Processed"})
PENDING_STATUSES = frozenset({"PENDING", "Processing Needed", ""})

GEOJSON_BOUNDARY_TYPES = frozenset({"Feature", "FeatureCollection", "Polygon"})

# Candidate paths for identifiers in raw payloads, tried in order.
ID_KEYS = ("_id", "id")
FIELD_ID_PATHS = (("_id",), ("id",), ("farmId",))
FARMER_ID_PATHS = (("_id",), ("id",), ("farmerId",), ("user", "_id"), ("user", "id"))
OWNER_ID_PATHS = (
    ("farmerId",),
    ("farmer",),
    ("owner",),
    ("farm", "farmerId"),
    ("farm", "farmer"),
)

EMBEDDED_FIELD_KEYS = ("farms", "fields")
EXTERNAL_FILE_KEYS = ("kmlUrl", "kmlFileUrl", "boundaryFileUrl", "fileUrl", "shapefileUrl")
EXTERNAL_WARNING_KEYS = ("eosdaWarning", "warning")

UNKNOWN_NAME = "Unknown"
UNKNOWN_LOCATION = "Unknown"
