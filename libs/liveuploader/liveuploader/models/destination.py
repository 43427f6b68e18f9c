"""Destination URI model."""

from __future__ import annotations

import posixpath
from dataclasses import dataclass
from enum import Enum
from urllib.parse import SplitResult, unquote, urlsplit, urlunsplit

from liveuploader.error_codes import ErrorCode
from liveuploader.exceptions import ConfigurationError

SEGMENT_EXTENSIONS = (".ts", ".mp4")


class ArtifactClass(Enum):
    SEGMENT = "segment"
    MANIFEST = "manifest"


@dataclass(frozen=True)
class Destination:
    """A parsed destination URI.

    `uri` keeps the exact serialized form the caller supplied; prefix matching
    for failover and rewrite rules operates on it.
    """

    uri: str
    scheme: str
    username: str | None
    password: str | None
    host: str
    path: str
    query: str = ""

    @classmethod
    def parse(cls, uri: str) -> "Destination":
        raw = str(uri or "").strip()
        if not raw:
            raise ConfigurationError("destination URI is empty", error_code=ErrorCode.INVALID_URI)
        try:
            parts = urlsplit(raw)
            # Accessing port validates it.
            _ = parts.port
        except ValueError as exc:
            raise ConfigurationError(
                f"failed to parse URI: {exc}", error_code=ErrorCode.INVALID_URI
            ) from exc
        return cls(
            uri=raw,
            scheme=parts.scheme.lower(),
            username=unquote(parts.username) if parts.username is not None else None,
            password=unquote(parts.password) if parts.password is not None else None,
            host=parts.netloc.rsplit("@", 1)[-1],
            path=parts.path,
            query=parts.query,
        )

    @property
    def artifact_class(self) -> ArtifactClass:
        if self.path.endswith(SEGMENT_EXTENSIONS):
            return ArtifactClass.SEGMENT
        return ArtifactClass.MANIFEST

    @property
    def filename(self) -> str:
        return posixpath.basename(self.path)

    def redacted(self) -> str:
        """Serialized URI with the password masked."""
        if self.password is None:
            return self.uri
        parts = urlsplit(self.uri)
        netloc = f"{parts.username}:xxxxx@{self.host}"
        return urlunsplit(SplitResult(parts.scheme, netloc, parts.path, parts.query, parts.fragment))

    def join(self, relative: str) -> "Destination":
        """Resolve `relative` (e.g. ``../latest.jpg``) against this object's path."""
        joined = posixpath.normpath(posixpath.join(self.path or "/", relative))
        if self.path.startswith("/") and not joined.startswith("/"):
            joined = "/" + joined
        parts = urlsplit(self.uri)
        return Destination.parse(
            urlunsplit(SplitResult(parts.scheme, parts.netloc, joined, parts.query, parts.fragment))
        )

    def with_prefix_replaced(self, prefix: str, replacement: str) -> "Destination":
        return Destination.parse(self.uri.replace(prefix, replacement, 1))

    def __str__(self) -> str:
        return self.redacted()
