"""Data model types for the miniolite request pipeline.

These dataclasses describe one request on its way through the pipeline
(descriptor, signed request, raw response) and the uniform result envelope
returned by every public client operation.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import IO, Any, Union

from miniolite.errors import ProtocolError, TransportError

METHODS = frozenset({"GET", "PUT", "HEAD", "DELETE"})

Body = Union[bytes, IO[bytes], None]


@dataclass(frozen=True)
class Credentials:
    """Access key pair used to sign requests.

    Attributes:
        access_key: The access key identifier sent in the Authorization header.
        secret_key: The secret used for HMAC signing. Never logged.
    """

    access_key: str
    secret_key: str = field(repr=False)

    def __repr__(self) -> str:
        return f"Credentials(access_key={self.access_key!r}, secret_key='***')"


@dataclass
class RequestDescriptor:
    """A single request to be signed and executed exactly once.

    Header names are case-insensitive: the last write for a name wins and
    its spelling is the one sent on the wire.

    Attributes:
        method: HTTP method (GET, PUT, HEAD or DELETE).
        resource_path: ``/bucket[/key]`` path, always starting with ``/``.
        timestamp: RFC-1123 date string, part of the signed material.
        body: Optional request body (bytes or a readable binary file).
    """

    method: str
    resource_path: str
    timestamp: str
    body: Body = None
    _headers: dict[str, tuple[str, str]] = field(default_factory=dict, repr=False)
    _consumed: bool = field(default=False, repr=False)

    def __post_init__(self) -> None:
        self.method = self.method.upper()
        if self.method not in METHODS:
            raise ValueError(f"Unsupported method: {self.method}")
        if not self.resource_path.startswith("/"):
            self.resource_path = "/" + self.resource_path

    def set_header(self, name: str, value: str) -> RequestDescriptor:
        self._headers[name.lower()] = (name, str(value))
        return self

    def get_header(self, name: str, default: str = "") -> str:
        entry = self._headers.get(name.lower())
        return entry[1] if entry is not None else default

    def header_items(self) -> Iterator[tuple[str, str]]:
        """Yield ``(name, value)`` pairs with the caller's spelling."""
        yield from self._headers.values()

    @property
    def consumed(self) -> bool:
        return self._consumed

    def consume(self) -> None:
        """Mark the descriptor as used by a signer.

        Raises:
            ValueError: If the descriptor was already signed.
        """
        if self._consumed:
            raise ValueError("RequestDescriptor has already been signed; build a new one")
        self._consumed = True


@dataclass(frozen=True)
class SignedRequest:
    """A descriptor plus the ``Date`` and ``Authorization`` headers.

    The header mapping is read-only; the signature is only valid for the
    exact method, path, headers and timestamp it was computed from.
    """

    method: str
    resource_path: str
    headers: Mapping[str, str]
    body: Body = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "headers", MappingProxyType(dict(self.headers)))

    @property
    def authorization(self) -> str:
        return self.headers.get("Authorization", "")


@dataclass
class RawResponse:
    """Status, headers and body exactly as the transport received them."""

    status_code: int
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""


@dataclass
class NormalizedResponse:
    """A raw response with its body parsed into plain mappings."""

    code: int
    headers: dict[str, str]
    data: Any

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "headers": dict(self.headers), "data": self.data}


@dataclass
class Result:
    """Uniform success/error envelope returned by client operations.

    Attributes:
        status: 0 on success, 1 on error.
        message: Human-readable outcome, or the service's error message.
        data: Operation payload, or the parsed error body on failure.
        code: HTTP status code of the final request, None if none was received.
        headers: Response headers, only set when the caller asked for them.
    """

    status: int
    message: str
    data: Any = field(default_factory=dict)
    code: int | None = None
    headers: dict[str, str] | None = None

    SUCCESS = 0
    ERROR = 1

    @classmethod
    def success(cls, message: str, data: Any = None, **kwargs: Any) -> Result:
        return cls(cls.SUCCESS, message, {} if data is None else data, **kwargs)

    @classmethod
    def error(cls, message: str, data: Any = None, **kwargs: Any) -> Result:
        return cls(cls.ERROR, message, {} if data is None else data, **kwargs)

    @property
    def ok(self) -> bool:
        return self.status == self.SUCCESS

    def raise_for_status(self) -> Result:
        """Raise the error this envelope carries, or return it unchanged.

        Raises:
            ProtocolError: If a response arrived with an unexpected status.
            TransportError: If the request never produced a response.
        """
        if self.ok:
            return self
        if self.code is None:
            raise TransportError(self.message)
        body = self.data if isinstance(self.data, dict) else {}
        raise ProtocolError(self.code, self.message, body)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"status": self.status, "message": self.message, "data": self.data}
        if self.code is not None:
            out["code"] = self.code
        if self.headers is not None:
            out["headers"] = dict(self.headers)
        return out
