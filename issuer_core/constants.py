# issuer_core/constants.py

CONDITION_READY = "Ready"

CONDITION_TRUE = "True"
CONDITION_FALSE = "False"
CONDITION_UNKNOWN = "Unknown"

# Ready condition reasons
REASON_INITIALIZING = "Initializing"
REASON_CHECKED = "Checked"
REASON_PENDING = "Pending"
REASON_FAILED = "Failed"
REASON_ISSUED = "Issued"
REASON_DENIED = "Denied"

# Event reasons
EVENT_CHECKED = "Checked"
EVENT_ISSUED = "Issued"
EVENT_DENIED = "Denied"
EVENT_RETRYABLE_ERROR = "RetryableError"
EVENT_PERMANENT_ERROR = "PermanentError"

EVENT_TYPE_NORMAL = "Normal"
EVENT_TYPE_WARNING = "Warning"

API_GROUP = "issuer.example.io"
API_VERSION = "v1alpha1"

DEFAULT_FIELD_OWNER = "issuer-core"
DEFAULT_MAX_RETRY_DURATION_SECONDS = 3600.0
DEFAULT_BACKOFF_MIN_SECONDS = 0.2
DEFAULT_BACKOFF_MAX_SECONDS = 5.0
DEFAULT_WORKERS = 2

APPLY_PATCH_CONTENT_TYPE = "application/apply-patch+yaml"
