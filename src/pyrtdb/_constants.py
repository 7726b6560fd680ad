"""Internal constants shared across the library."""

JSON_SUFFIX = ".json"
AUTH_QUERY_PARAM = "auth"
EVENT_STREAM_MEDIA_TYPE = "text/event-stream"
JSON_MEDIA_TYPE = "application/json; charset=UTF-8"

DEFAULT_REQUEST_TIMEOUT: float = 30.0
#: The server sends a keep-alive roughly every 30 seconds.
DEFAULT_STREAM_READ_TIMEOUT: float = 60.0

ROOT_PATH = "/"
ERROR_KEY = "error"

# ------------------------------------------------------------------
# Server-sent event stream protocol
# ------------------------------------------------------------------

SSE_EVENT_PREFIX = "event: "
SSE_DATA_PREFIX = "data: "

SSE_PUT = "put"
SSE_PATCH = "patch"
SSE_KEEP_ALIVE = "keep-alive"
SSE_CANCEL = "cancel"
SSE_AUTH_REVOKED = "auth_revoked"


def project_database_url(project_id: str) -> str:
    """Default root URL of a project's database.

    Raises :class:`ValueError` if *project_id* is blank.
    """
    value = project_id.strip()
    if not value:
        raise ValueError("project_id must be non-empty")
    return f"https://{value}-default-rtdb.firebaseio.com/"
