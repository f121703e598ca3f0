"""miniolite - a signing client for S3-compatible object storage."""

from miniolite.client import (
    ObjectStoreClient,
    close_default,
    get_default,
    init_default,
    normalize_uri,
)
from miniolite.errors import (
    CompositeOperationError,
    ConfigurationError,
    MinioLiteError,
    ProtocolError,
    TransportError,
)
from miniolite.models import Result

__version__ = "0.1.0"

__all__ = [
    "CompositeOperationError",
    "ConfigurationError",
    "MinioLiteError",
    "ObjectStoreClient",
    "ProtocolError",
    "Result",
    "TransportError",
    "close_default",
    "get_default",
    "init_default",
    "normalize_uri",
]
