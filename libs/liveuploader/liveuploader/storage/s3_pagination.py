"""Pagination over S3 `list_objects_v2`."""

from __future__ import annotations

from collections.abc import Iterator
from typing import Any


def iter_list_objects_v2(
    client: Any,
    *,
    bucket: str,
    max_pages: int | None = None,
    **kwargs: Any,
) -> Iterator[dict[str, Any]]:
    """Yield `list_objects_v2` pages, following continuation tokens.

    Stops after `max_pages` pages when given, or when the listing is no
    longer truncated.
    """

    token: str | None = None
    pages = 0
    while max_pages is None or pages < max_pages:
        call_kwargs: dict[str, Any] = {"Bucket": bucket, **kwargs}
        if token:
            call_kwargs["ContinuationToken"] = token

        resp: dict[str, Any] = dict(client.list_objects_v2(**call_kwargs))
        pages += 1
        yield resp

        token = str(resp.get("NextContinuationToken") or "") if resp.get("IsTruncated") else None
        if not token:
            return
