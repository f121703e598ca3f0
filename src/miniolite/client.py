"""Bucket and object operations for S3-compatible services.

:class:`ObjectStoreClient` builds a fresh request descriptor for every
call, signs it, executes it over the client's transport, and returns a
:class:`~miniolite.models.Result` envelope (or a bool for simple
yes/no operations). Transport failures are reported in the envelope; only
configuration errors raise.
"""

import logging
import mimetypes
import urllib.parse
from collections.abc import Callable
from datetime import datetime, timezone
from os import PathLike
from typing import Any

import httpx

from miniolite import metrics
from miniolite.auth import SigV2Signer, format_rfc1123, uri_encode_path
from miniolite.config import (
    DEFAULT_BUCKET,
    ClientConfig,
    MiniliteConfig,
    TransportConfig,
    validate_client_config,
)
from miniolite.errors import ConfigurationError, TransportError
from miniolite.models import Credentials, RawResponse, RequestDescriptor, Result
from miniolite.normalizer import CODE_DEL_SUCCESS, CODE_SUCCESS, ResponseNormalizer
from miniolite.pipeline import OperationPipeline
from miniolite.transport import Transport

logger = logging.getLogger(__name__)

COPY_SOURCE_HEADER = "x-amz-copy-source"
SEPARATOR = "/"


def normalize_uri(*segments: str) -> str:
    """Join path segments with exactly one separator.

    Leading and trailing separators are trimmed from each segment
    independently and empty segments are dropped, so
    ``normalize_uri("/a/", "/b/c/") == normalize_uri("a", "b/c") == "a/b/c"``.
    """
    parts = [segment.strip(SEPARATOR) for segment in segments]
    return SEPARATOR.join(part for part in parts if part)


class ObjectStoreClient:
    """Client for one S3-compatible endpoint and a selected bucket.

    Owns one :class:`~miniolite.transport.Transport`, opened at construction
    and released by :meth:`close` (or on leaving a ``with`` block). Drives
    one request at a time.

    Attributes:
        endpoint: Base URL of the service.
        domain: Public base URL used by :meth:`get_object_url`.
    """

    def __init__(
        self,
        access_key: str,
        secret_key: str,
        endpoint: str,
        bucket: str = DEFAULT_BUCKET,
        domain: str = "",
        *,
        transport_config: TransportConfig | None = None,
        http_transport: httpx.BaseTransport | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Validate configuration and open the transport.

        Args:
            access_key: Access key identifier.
            secret_key: Secret key used for signing.
            endpoint: Base URL of the service.
            bucket: Initially selected bucket.
            domain: Public base URL for object links.
            transport_config: Timeouts and pool size.
            http_transport: Optional httpx transport, for tests.
            clock: Source of request timestamps; defaults to UTC now.

        Raises:
            ConfigurationError: If credentials or endpoint are missing or
                invalid. Nothing is sent and no transport is opened.
        """
        config = validate_client_config(
            ClientConfig(
                access_key=access_key or "",
                secret_key=secret_key or "",
                endpoint=endpoint or "",
                bucket=bucket or DEFAULT_BUCKET,
                domain=domain or "",
            )
        )
        self.endpoint = config.endpoint
        self.domain = config.domain
        self._bucket = config.bucket
        self._signer = SigV2Signer(Credentials(config.access_key, config.secret_key))
        self._normalizer = ResponseNormalizer()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        tc = transport_config or TransportConfig()
        self._transport = Transport(
            self.endpoint,
            connect_timeout=tc.connect_timeout,
            low_speed_time=tc.low_speed_time,
            max_connections=tc.max_connections,
            http_transport=http_transport,
            low_speed_limit=tc.low_speed_limit,
        )

    @classmethod
    def from_config(
        cls,
        config: ClientConfig | MiniliteConfig,
        http_transport: httpx.BaseTransport | None = None,
    ) -> "ObjectStoreClient":
        """Build a client from a ClientConfig or a full MiniliteConfig."""
        transport_config = None
        if isinstance(config, MiniliteConfig):
            transport_config = config.transport
            config = config.client
        return cls(
            config.access_key,
            config.secret_key,
            config.endpoint,
            bucket=config.bucket,
            domain=config.domain,
            transport_config=transport_config,
            http_transport=http_transport,
        )

    # -- Lifecycle -------------------------------------------------------------

    def close(self) -> None:
        """Release the transport. Safe to call more than once."""
        self._transport.close()

    @property
    def closed(self) -> bool:
        return self._transport.closed

    def __enter__(self) -> "ObjectStoreClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # -- Bucket selection ------------------------------------------------------

    @property
    def bucket(self) -> str:
        return self._bucket

    def set_bucket(self, bucket: str) -> "ObjectStoreClient":
        """Select the bucket used by object operations.

        Must not be called while a request built from the previous bucket
        is in flight.
        """
        self._bucket = bucket
        return self

    # -- Buckets ---------------------------------------------------------------

    def list_buckets(self, with_headers: bool = False) -> Result:
        """List bucket names.

        Both the single-bucket response shape (``Bucket`` is one mapping)
        and the multi-bucket shape (``Bucket`` is a list) yield
        ``{"Buckets": [name, ...]}``.

        Args:
            with_headers: Return code, headers and data instead of data only.
        """
        result = self._call("list_buckets", "GET", "", with_headers=with_headers)
        if not result.ok:
            return result

        buckets = {"Buckets": _bucket_names(_payload(result, with_headers))}
        return _replace_payload(result, buckets, with_headers, "Buckets listed.")

    def get_bucket(self, bucket: str, with_headers: bool = False) -> Result:
        """List the objects in a bucket.

        A single ``Contents`` entry is wrapped in a list so ``Contents`` is
        always a sequence when present.
        """
        result = self._call("get_bucket", "GET", normalize_uri(bucket), with_headers=with_headers)
        if not result.ok:
            return result

        listing = dict(_payload(result, with_headers) or {})
        if isinstance(listing.get("Contents"), dict):
            listing["Contents"] = [listing["Contents"]]
        return _replace_payload(result, listing, with_headers, "Bucket listed.")

    def create_bucket(self, bucket: str) -> bool:
        return self._create_bucket(bucket).ok

    def delete_bucket(self, bucket: str) -> bool:
        result = self._call(
            "delete_bucket", "DELETE", normalize_uri(bucket), success_code=CODE_DEL_SUCCESS
        )
        return result.ok

    # -- Objects ---------------------------------------------------------------

    def put_object(
        self, file: str | PathLike, uri: str, with_headers: bool = False
    ) -> Result:
        """Upload a local file, creating the selected bucket if it is missing.

        Runs check (list buckets) → create-if-absent → upload. A failed
        bucket listing is returned unchanged; a failed creation stops the
        upload and its envelope is returned unchanged.

        Args:
            file: Path of the local file to upload.
            uri: Object key inside the selected bucket.
            with_headers: Return code, headers and data instead of data only.
        """
        bucket = self._bucket

        def check(_: Result | None) -> Result:
            return self.list_buckets()

        def create_if_absent(listed: Result | None) -> Result:
            names = listed.data.get("Buckets", []) if listed is not None else []
            if bucket in names:
                return Result.success("Bucket exists.")
            logger.info("Bucket %s does not exist, creating it", bucket, extra={"operation": "put_object"})
            return self._create_bucket(bucket)

        def upload(_: Result | None) -> Result:
            return self._upload(file, uri, with_headers)

        outcome = (
            OperationPipeline("put_object")
            .then("check", check)
            .then("create_if_absent", create_if_absent)
            .then("upload", upload)
            .run()
        )
        return outcome.result

    def get_object(self, uri: str, with_headers: bool = False) -> Result:
        """Download an object; on success ``data`` is the raw bytes."""
        return self._call(
            "get_object",
            "GET",
            self.get_object_uri(uri),
            with_headers=with_headers,
            parse_body=False,
            message="Object downloaded.",
        )

    def get_object_info(self, uri: str) -> Result:
        """HEAD an object; on success ``data`` is the response headers."""
        result = self._call("get_object_info", "HEAD", self.get_object_uri(uri), with_headers=True)
        if not result.ok:
            result.headers = None
            return result
        return Result.success("Object info retrieved.", result.headers, code=result.code)

    def delete_object(self, uri: str) -> bool:
        return self._delete_object(uri).ok

    def copy_object(self, from_object: str, to_object: str) -> bool:
        return self._copy_object(from_object, to_object).ok

    def move_object(self, from_object: str, to_object: str) -> bool:
        """Copy then delete the source.

        The delete runs only if the copy succeeded; when it does not run it
        counts as failed. True only when both steps succeeded.
        """
        return self.move_object_result(from_object, to_object).ok

    def move_object_result(self, from_object: str, to_object: str) -> Result:
        """Like :meth:`move_object` but returns the envelope.

        On failure this is the failing step's envelope, unchanged.
        """
        outcome = (
            OperationPipeline("move_object")
            .then("copy", lambda _: self._copy_object(from_object, to_object))
            .then("delete", lambda _: self._delete_object(from_object))
            .run()
        )
        if not outcome.ok:
            return outcome.result
        return Result.success("Object moved.", code=outcome.result.code)

    # -- URIs ------------------------------------------------------------------

    def get_object_uri(self, uri: str) -> str:
        """``bucket/key`` for a key in the selected bucket."""
        return normalize_uri(self._bucket, uri)

    def get_object_url(self, uri: str) -> str:
        """Public URL: ``domain/bucket/key``.

        Raises:
            ConfigurationError: If no domain is configured.
        """
        if not self.domain:
            raise ConfigurationError("A domain is required to build public object URLs.")
        return normalize_uri(self.domain, self.get_object_uri(uri))

    # -- Internals -------------------------------------------------------------

    def _create_bucket(self, bucket: str) -> Result:
        return self._call("create_bucket", "PUT", normalize_uri(bucket), message="Bucket created.")

    def _delete_object(self, uri: str) -> Result:
        return self._call(
            "delete_object",
            "DELETE",
            self.get_object_uri(uri),
            success_code=CODE_DEL_SUCCESS,
            message="Object deleted.",
        )

    def _copy_object(self, from_object: str, to_object: str) -> Result:
        source = urllib.parse.quote(self.get_object_uri(from_object), safe="/-_.~")
        return self._call(
            "copy_object",
            "PUT",
            self.get_object_uri(to_object),
            headers={COPY_SOURCE_HEADER: source},
            message="Object copied.",
        )

    def _upload(self, file: str | PathLike, uri: str, with_headers: bool) -> Result:
        content_type = mimetypes.guess_type(str(file))[0] or "application/octet-stream"
        try:
            fh = open(file, "rb")
        except OSError as exc:
            logger.warning("Cannot open %s for upload: %s", file, exc, extra={"operation": "put_object"})
            return Result.error(f"Cannot open {file}: {exc.strerror or exc}")
        with fh:
            return self._call(
                "put_object",
                "PUT",
                self.get_object_uri(uri),
                headers={"Content-Type": content_type},
                body=fh,
                with_headers=with_headers,
                message="Object uploaded.",
            )

    def _call(
        self,
        operation: str,
        method: str,
        path: str,
        *,
        success_code: int = CODE_SUCCESS,
        headers: dict[str, str] | None = None,
        body: Any = None,
        with_headers: bool = False,
        parse_body: bool = True,
        message: str = "OK",
    ) -> Result:
        """Run one request through sign → execute → normalize."""
        try:
            raw = self._request(method, path, headers=headers, body=body)
        except TransportError as exc:
            result = Result.error(exc.message)
        else:
            result = self._normalizer.classify(
                raw,
                success_code=success_code,
                message=message,
                with_headers=with_headers,
                parse_body=parse_body,
            )
        metrics.record_operation(operation, result.ok)
        return result

    def _request(
        self,
        method: str,
        path: str,
        headers: dict[str, str] | None = None,
        body: Any = None,
    ) -> RawResponse:
        descriptor = RequestDescriptor(
            method=method,
            resource_path=uri_encode_path(path),
            timestamp=format_rfc1123(self._clock()),
            body=body,
        )
        for name, value in (headers or {}).items():
            descriptor.set_header(name, value)
        return self._transport.execute(self._signer.sign(descriptor))


# ---------------------------------------------------------------------------
# Default instance registry
# ---------------------------------------------------------------------------

_default_client: ObjectStoreClient | None = None


def init_default(
    client_or_config: ObjectStoreClient | ClientConfig | MiniliteConfig,
) -> ObjectStoreClient:
    """Install the process-wide default client.

    A previously installed default is closed first. Pair with
    :func:`close_default` at shutdown.

    Raises:
        ConfigurationError: If a config is given and it is invalid.
    """
    global _default_client
    if isinstance(client_or_config, ObjectStoreClient):
        client = client_or_config
    else:
        client = ObjectStoreClient.from_config(client_or_config)
    if _default_client is not None and _default_client is not client:
        _default_client.close()
    _default_client = client
    return client


def get_default() -> ObjectStoreClient:
    """Return the default client installed by :func:`init_default`.

    Raises:
        ConfigurationError: If no default client has been installed.
    """
    if _default_client is None:
        raise ConfigurationError("No default client; call init_default() first.")
    return _default_client


def close_default() -> None:
    """Close and forget the default client. Safe to call more than once."""
    global _default_client
    if _default_client is not None:
        _default_client.close()
        _default_client = None


# ---------------------------------------------------------------------------
# Module-level helpers
# ---------------------------------------------------------------------------


def _payload(result: Result, with_headers: bool) -> Any:
    return result.data["data"] if with_headers else result.data


def _replace_payload(result: Result, data: Any, with_headers: bool, message: str) -> Result:
    payload = {**result.data, "data": data} if with_headers else data
    return Result.success(message, payload, code=result.code, headers=result.headers)


def _bucket_names(data: Any) -> list[str]:
    buckets = data.get("Buckets") if isinstance(data, dict) else None
    if not isinstance(buckets, dict):
        return []
    entries = buckets.get("Bucket", [])
    if isinstance(entries, dict):
        entries = [entries]
    return [entry.get("Name", "") for entry in entries if isinstance(entry, dict)]
