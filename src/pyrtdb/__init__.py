"""pyrtdb - Async Python client for realtime hierarchical JSON stores."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pyrtdb")
except PackageNotFoundError:
    __version__ = "0+local"
from pyrtdb.client import EventHandler, RtdbClient, TokenProvider
from pyrtdb.config import RtdbConfig
from pyrtdb.endpoint import DatabaseEndpoint
from pyrtdb.exceptions import (
    RtdbApiError,
    RtdbAuthRevokedError,
    RtdbCancelledError,
    RtdbConfigError,
    RtdbEndpointError,
    RtdbError,
    RtdbStreamError,
    RtdbTransportError,
)
from pyrtdb.models import EventType, StreamedSnapshot
from pyrtdb.serializer import PydanticSerializer, Serializer, SerializerOptions, default_path

__all__ = [
    "__version__",
    "DatabaseEndpoint",
    "EventHandler",
    "EventType",
    "PydanticSerializer",
    "RtdbApiError",
    "RtdbAuthRevokedError",
    "RtdbCancelledError",
    "RtdbClient",
    "RtdbConfig",
    "RtdbConfigError",
    "RtdbEndpointError",
    "RtdbError",
    "RtdbStreamError",
    "RtdbTransportError",
    "Serializer",
    "SerializerOptions",
    "StreamedSnapshot",
    "TokenProvider",
    "default_path",
]
