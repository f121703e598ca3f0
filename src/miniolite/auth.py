"""AWS Signature Version 2 request signing for miniolite.

Builds the canonical string-to-sign for a request and signs it with
HMAC-SHA1, producing the ``Authorization: AWS <access_key>:<signature>``
header expected by S3-compatible services.

String-to-sign layout::

    METHOD\\n
    Content-MD5\\n
    Content-Type\\n
    Date\\n
    x-amz-name:value\\n        (zero or more, sorted by name)
    /bucket/key[?subresource]

References:
    - https://docs.aws.amazon.com/AmazonS3/latest/userguide/RESTAuthentication.html
"""

import base64
import email.utils
import hashlib
import hmac
import logging
import re
import urllib.parse
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone

from miniolite.errors import ConfigurationError
from miniolite.models import Credentials, RequestDescriptor, SignedRequest

logger = logging.getLogger(__name__)

# Constants
AUTH_SCHEME = "AWS"
AMZ_HEADER_PREFIX = "x-amz-"

# Query parameters that are part of the signed resource. Everything else in
# the query string is left out of the canonical resource.
SUB_RESOURCES = frozenset(
    {
        "acl",
        "cors",
        "delete",
        "lifecycle",
        "location",
        "logging",
        "notification",
        "partNumber",
        "policy",
        "requestPayment",
        "response-cache-control",
        "response-content-disposition",
        "response-content-encoding",
        "response-content-language",
        "response-content-type",
        "response-expires",
        "tagging",
        "torrent",
        "uploadId",
        "uploads",
        "versionId",
        "versioning",
        "versions",
        "website",
    }
)

# Path segments that URL normalization would remove.
_DOT_SEGMENTS = {".": "%2E", "..": "%2E%2E"}

HeaderSource =Mapping[str, str] | Iterable[tuple[str, str]]


# -- Canonical string construction ---------------------------------------------


def build_string_to_sign(
    method: str,
    resource_path: str,
    headers: HeaderSource,
    timestamp: str,
) -> str:
    """Build the canonical string-to-sign for a request.

    Pure function: identical inputs always produce the identical string.

    Args:
        method: HTTP method (any case; upper-cased here).
        resource_path: The request path, optionally with a query string.
        headers: Request headers as a mapping or ``(name, value)`` pairs.
            Duplicate names are allowed when passed as pairs.
        timestamp: The RFC-1123 date sent in the ``Date`` header.

    Returns:
        The newline-separated canonical string.
    """
    lower_headers: dict[str, list[str]] = {}
    for name, value in _iter_headers(headers):
        lower_headers.setdefault(name.lower(), []).append(_trim_header_value(value))

    content_md5 = ",".join(lower_headers.get("content-md5", []))
    content_type = ",".join(lower_headers.get("content-type", []))

    parts = [method.upper(), content_md5, content_type, timestamp]
    parts.extend(canonical_amz_headers(lower_headers))
    parts.append(canonical_resource(resource_path))
    return "\n".join(parts)


def canonical_amz_headers(lower_headers: Mapping[str, list[str]]) -> list[str]:
    """Render the ``x-amz-*`` headers as sorted ``name:value`` lines.

    Args:
        lower_headers: Lower-cased header names mapped to their values.

    Returns:
        One ``name:value`` string per distinct header, values of repeated
        headers joined with commas.
    """
    lines = []
    for name in sorted(lower_headers):
        if name.startswith(AMZ_HEADER_PREFIX):
            lines.append(f"{name}:{','.join(lower_headers[name])}")
    return lines


def canonical_resource(resource_path: str) -> str:
    """Build the canonical resource: the path plus any signed sub-resources.

    Args:
        resource_path: Path with an optional ``?query`` suffix.

    Returns:
        The path (always beginning with ``/``) followed by the sorted
        sub-resources, e.g. ``/bucket?acl`` or ``/bucket/key?versionId=3``.
    """
    path, _, query = resource_path.partition("?")
    if not path.startswith("/"):
        path = "/" + path

    params: list[tuple[str, str | None]] = []
    for pair in query.split("&") if query else []:
        if not pair:
            continue
        if "=" in pair:
            name, value = pair.split("=", 1)
            params.append((name, urllib.parse.unquote(value)))
        else:
            params.append((pair, None))

    signed = sorted(p for p in params if p[0] in SUB_RESOURCES)
    if not signed:
        return path

    rendered = [name if value is None else f"{name}={value}" for name, value in signed]
    return f"{path}?{'&'.join(rendered)}"


def uri_encode_path(path: str) -> str:
    """URI-encode each path segment, preserving forward slashes.

    Segments made only of dots are percent-encoded so that HTTP clients do
    not collapse them and the path on the wire is the path that was signed.

    Args:
        path: The raw ``bucket/key`` path.

    Returns:
        The encoded path, always beginning with ``/``.
    """
    encoded = urllib.parse.quote(path, safe="/-_.~")
    encoded = "/".join(_DOT_SEGMENTS.get(s, s) for s in encoded.split("/"))
    if not encoded.startswith("/"):
        encoded = "/" + encoded
    return encoded


def format_rfc1123(dt: datetime | None = None) -> str:
    """Format a UTC datetime as an RFC-1123 date (``Mon, 01 Jan 2024 00:00:00 GMT``).

    Day and month names come from the email module's fixed tables, not the
    process locale. Naive datetimes are taken to be UTC.

    Args:
        dt: The moment to format. Defaults to now.

    Returns:
        The formatted date string.
    """
    if dt is None:
        dt = datetime.now(timezone.utc)
    elif dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    else:
        dt = dt.astimezone(timezone.utc)
    return email.utils.format_datetime(dt, usegmt=True)


# -- Signature computation -------------------------------------------------------


def compute_signature(secret_key: str, string_to_sign: str) -> str:
    """Compute ``base64(HMAC-SHA1(secret_key, string_to_sign))``.

    Args:
        secret_key: The secret access key.
        string_to_sign: The canonical string.

    Returns:
        The base64-encoded signature.
    """
    digest = hmac.new(
        secret_key.encode("utf-8"), string_to_sign.encode("utf-8"), hashlib.sha1
    ).digest()
    return base64.b64encode(digest).decode("ascii")


class SigV2Signer:
    """Signs request descriptors with a fixed credential pair.

    Attributes:
        credentials: The access key pair used for every signature.
    """

    def __init__(self, credentials: Credentials) -> None:
        """Initialize the signer.

        Args:
            credentials: Access and secret key.

        Raises:
            ConfigurationError: If either key is empty.
        """
        if not credentials.access_key or not credentials.secret_key:
            raise ConfigurationError("Both access_key and secret_key are required to sign requests.")
        self.credentials = credentials

    def sign(self, descriptor: RequestDescriptor) -> SignedRequest:
        """Sign a descriptor, injecting ``Date`` and ``Authorization``.

        Args:
            descriptor: A descriptor that has not been signed before.

        Returns:
            The signed, read-only request.

        Raises:
            ValueError: If the descriptor was already signed.
        """
        descriptor.consume()

        headers = {
            name: value
            for name, value in descriptor.header_items()
            if name.lower() not in ("date", "authorization")
        }
        string_to_sign = build_string_to_sign(
            descriptor.method, descriptor.resource_path, headers, descriptor.timestamp
        )
        signature = compute_signature(self.credentials.secret_key, string_to_sign)
        logger.debug("String to sign: %r", string_to_sign)

        headers["Date"] = descriptor.timestamp
        headers["Authorization"] = f"{AUTH_SCHEME} {self.credentials.access_key}:{signature}"
        return SignedRequest(
            method=descriptor.method,
            resource_path=descriptor.resource_path,
            headers=headers,
            body=descriptor.body,
        )


# ---------------------------------------------------------------------------
# Module-level helpers
# ---------------------------------------------------------------------------


def _iter_headers(headers: HeaderSource) -> Iterable[tuple[str, str]]:
    if isinstance(headers, Mapping):
        return headers.items()
    return headers


def _trim_header_value(value: str) -> str:
    """Strip surrounding whitespace and collapse runs of spaces.

    Args:
        value: The raw header value.

    Returns:
        The normalized value.
    """
    value = value.strip()
    return re.sub(r" +", " ", value)
