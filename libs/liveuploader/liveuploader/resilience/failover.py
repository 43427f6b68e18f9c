"""Primary -> backup destination substitution."""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence

from liveuploader.error_codes import ErrorCode
from liveuploader.exceptions import ConfigurationError
from liveuploader.models.destination import Destination

FailoverMap = Sequence[tuple[str, str]]


def as_failover_map(value: Mapping[str, str] | Iterable[tuple[str, str]] | None) -> list[tuple[str, str]]:
    if not value:
        return []
    if isinstance(value, Mapping):
        return [(str(k), str(v)) for k, v in value.items()]
    return [(str(k), str(v)) for k, v in value]


def build_backup_uri(destination: Destination, failover_map: FailoverMap | None) -> Destination:
    """Substitute the first primary prefix that literally prefixes the destination URI."""
    for primary, backup in failover_map or ():
        if primary and destination.uri.startswith(primary):
            return destination.with_prefix_replaced(primary, backup)
    raise ConfigurationError(
        f"no backup URL found for {destination.redacted()}", error_code=ErrorCode.NO_BACKUP_URL
    )
