# =============================================================================
# Service
# =============================================================================

SERVICE_NAME = "doc2x"
API_VERSION = "v2"
DEFAULT_BASE_URL = "https://v2.doc2x.noedgeai.com"

# Response code reported by the API on success
CODE_SUCCESS = "success"
CODE_FAILED = "failed"

# Response header carrying the server-side trace id
TRACE_ID_HEADER = "trace-id"
UNKNOWN_TRACE_ID = "unknown"


# =============================================================================
# API Endpoints
# =============================================================================

ENDPOINT_PARSE_PDF = f"/api/{API_VERSION}/parse/pdf"
ENDPOINT_PREUPLOAD = f"/api/{API_VERSION}/parse/preupload"
ENDPOINT_PARSE_STATUS = f"/api/{API_VERSION}/parse/status"
ENDPOINT_CONVERT_PARSE = f"/api/{API_VERSION}/convert/parse"
ENDPOINT_CONVERT_RESULT = f"/api/{API_VERSION}/convert/parse/result"
ENDPOINT_PARSE_IMAGE_LAYOUT = f"/api/{API_VERSION}/parse/img/layout"
ENDPOINT_ASYNC_PARSE_IMAGE_LAYOUT = f"/api/{API_VERSION}/async/parse/img/layout"
ENDPOINT_PARSE_IMAGE_LAYOUT_STATUS = f"/api/{API_VERSION}/parse/img/layout/status"


# =============================================================================
# Timeouts (seconds)
# =============================================================================

DEFAULT_TIMEOUT_SECONDS = 30.0  # HTTP timeout for a single API request
PROCESSING_TIMEOUT_SECONDS = 300.0  # Total wait for a long running task (5 min)
DEFAULT_POLL_INTERVAL_SECONDS = 2.0  # Used when a non-positive interval is given


# =============================================================================
# Polling / Retry
# =============================================================================

TRANSIENT_FETCH_RETRY_BUDGET = 3  # Transient status-fetch failures tolerated per wait


# =============================================================================
# CLI Defaults
# =============================================================================

CLI_POLL_INTERVAL_SECONDS = 3.0
CLI_CONCURRENCY = 3
CLI_FAIL_LOG = "fail.log"
DEFAULT_DOWNLOAD_EXT = ".zip"


# =============================================================================
# Transfers
# =============================================================================

TRANSFER_CHUNK_SIZE = 64 * 1024  # Read size for streamed uploads and downloads


# =============================================================================
# Error Handling
# =============================================================================

ERROR_BODY_MAX_CHARS = 200  # Maximum chars from error response bodies
