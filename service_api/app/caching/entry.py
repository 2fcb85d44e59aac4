"""
Serialized form of a cached HTTP response.
"""

import base64
import binascii
import json
from dataclasses import dataclass, field
from typing import Iterable, List, Tuple

from starlette.responses import Response

# Headers that describe the delivery rather than the payload
EXCLUDED_HEADERS = frozenset({
    "content-length",
    "cache-control",
    "x-cache",
    "x-cache-key",
    "x-cache-category",
    "date",
    "server",
})


class UncacheableResponse(ValueError):
    """The response must not be stored."""


class MalformedCacheEntry(ValueError):
    """Stored bytes could not be decoded into a CacheEntry."""


@dataclass(frozen=True)
class CacheEntry:
    """Status, payload headers and body of a response, as stored."""

    status_code: int
    body: bytes
    headers: List[Tuple[str, str]] = field(default_factory=list)

    @classmethod
    def from_raw(cls, status_code: int, raw_headers: Iterable[Tuple[bytes, bytes]], body: bytes) -> "CacheEntry":
        """Build an entry from ASGI-style raw headers."""
        headers = []
        for name, value in raw_headers:
            decoded = name.decode("latin-1").lower()
            if decoded == "set-cookie":
                raise UncacheableResponse("responses that set cookies are not cached")
            if decoded not in EXCLUDED_HEADERS:
                headers.append((decoded, value.decode("latin-1")))
        return cls(status_code=status_code, body=body, headers=headers)

    @classmethod
    def from_response(cls, response: Response) -> "CacheEntry":
        """Build an entry from a fully rendered (non-streaming) response."""
        body = getattr(response, "body", None)
        if body is None:
            raise UncacheableResponse(f"{type(response).__name__} has no rendered body to cache")
        return cls.from_raw(response.status_code, response.raw_headers, body)

    def to_bytes(self) -> bytes:
        return json.dumps({
            "status_code": self.status_code,
            "headers": self.headers,
            "body": base64.b64encode(self.body).decode("ascii"),
        }, separators=(",", ":")).encode("utf-8")

    @classmethod
    def from_bytes(cls, data: bytes) -> "CacheEntry":
        try:
            payload = json.loads(data)
            return cls(
                status_code=int(payload["status_code"]),
                body=base64.b64decode(payload["body"], validate=True),
                headers=[(str(name), str(value)) for name, value in payload.get("headers", [])],
            )
        except (ValueError, TypeError, KeyError, binascii.Error) as exc:
            raise MalformedCacheEntry(str(exc)) from exc

    def to_response(self) -> Response:
        return Response(content=self.body, status_code=self.status_code, headers=dict(self.headers))

    @property
    def cacheable(self) -> bool:
        """Only successful responses are stored."""
        return 200 <= self.status_code < 300
