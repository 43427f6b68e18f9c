"""Storage writes with retries and primary -> backup failover.

Each outer attempt walks a small state machine:

    TRY_PRIMARY --fail--> TRY_BACKUP --fail--> EXHAUSTED
         |                    |
      success              success

TRY_BACKUP is only entered when a failover mapping matches. The outer retry
profile schedules the next attempt after EXHAUSTED; the backup write runs
under its own short profile.
"""

from __future__ import annotations

import logging
from enum import Enum

from liveuploader.exceptions import (
    ConfigurationError,
    FailoverError,
    TransientStorageError,
    UploadError,
)
from liveuploader.models.destination import Destination
from liveuploader.models.payload import CountingReader, PayloadSource
from liveuploader.models.result import UploadResult
from liveuploader.resilience.failover import FailoverMap, build_backup_uri
from liveuploader.resilience.retry import RetryProfile, RetryProfiles
from liveuploader.storage import DriverResolver
from liveuploader.storage.base import FileProperties

logger = logging.getLogger(__name__)


class WriteState(Enum):
    TRY_PRIMARY = "try_primary"
    TRY_BACKUP = "try_backup"
    EXHAUSTED = "exhausted"


class _WriteAttempt:
    """Tracks one outer attempt through the state machine."""

    def __init__(self) -> None:
        self.state = WriteState.TRY_PRIMARY
        self.bytes_written = 0

    def move(self, state: WriteState) -> None:
        self.state = state
        logger.debug("write state -> %s", state.value)


class ResilientWriter:
    def __init__(self, resolver: DriverResolver, profiles: RetryProfiles) -> None:
        self.resolver = resolver
        self.profiles = profiles

    async def write(
        self,
        destination: Destination,
        payload: PayloadSource,
        *,
        properties: FileProperties | None = None,
        timeout: float | None = None,
        profile: RetryProfile | None = None,
        failover_map: FailoverMap | None = None,
    ) -> UploadResult:
        """Write `payload` to `destination`, retrying per `profile`.

        Raises `UploadError` (chained to the last failure) once the profile
        gives up; `bytes_written` is taken from the last attempted write.
        `ConfigurationError` propagates immediately.
        """
        profile = profile or self.profiles.persistent
        bytes_written = 0
        result: UploadResult | None = None
        try:
            async for retry_state in profile.retrying(logger, label=destination.redacted()):
                with retry_state:
                    attempt = _WriteAttempt()
                    try:
                        result = await self._attempt(
                            attempt, destination, payload, properties, timeout, failover_map
                        )
                    finally:
                        bytes_written = attempt.bytes_written
        except TransientStorageError as exc:
            raise UploadError(
                destination.redacted(), "failed to upload", bytes_written=bytes_written
            ) from exc
        assert result is not None
        return result

    async def _attempt(
        self,
        attempt: _WriteAttempt,
        destination: Destination,
        payload: PayloadSource,
        properties: FileProperties | None,
        timeout: float | None,
        failover_map: FailoverMap | None,
    ) -> UploadResult:
        try:
            return await self._save(attempt, destination, payload, properties, timeout)
        except TransientStorageError as primary_err:
            try:
                backup = build_backup_uri(destination, failover_map)
            except ConfigurationError as exc:
                if failover_map:
                    logger.error("failed to build backup URL (uri=%s): %s", destination.redacted(), exc)
                attempt.move(WriteState.EXHAUSTED)
                raise primary_err

            logger.warning(
                "primary upload failed, uploading to backup (uri=%s, backup=%s, error=%s)",
                destination.redacted(),
                backup.redacted(),
                primary_err,
            )
            attempt.move(WriteState.TRY_BACKUP)
            try:
                result = await self._save_backup(attempt, backup, payload, properties, timeout)
            except (TransientStorageError, ConfigurationError) as backup_err:
                attempt.move(WriteState.EXHAUSTED)
                raise FailoverError(destination.redacted(), primary_err, backup_err) from backup_err
            return result

    async def _save_backup(
        self,
        attempt: _WriteAttempt,
        backup: Destination,
        payload: PayloadSource,
        properties: FileProperties | None,
        timeout: float | None,
    ) -> UploadResult:
        result: UploadResult | None = None
        async for retry_state in self.profiles.short.retrying(logger, label=backup.redacted()):
            with retry_state:
                result = await self._save(attempt, backup, payload, properties, timeout)
        assert result is not None
        return result

    async def _save(
        self,
        attempt: _WriteAttempt,
        destination: Destination,
        payload: PayloadSource,
        properties: FileProperties | None,
        timeout: float | None,
    ) -> UploadResult:
        session = self.resolver.session_for(destination)
        reader = CountingReader(payload.open())
        try:
            saved = await session.save("", reader, properties, timeout)
        finally:
            attempt.bytes_written = reader.count
            reader.close()
        logger.debug(
            "wrote object (uri=%s, bytes=%d)", destination.redacted(), reader.count
        )
        return UploadResult(
            final_uri=saved.url,
            response_metadata=dict(saved.headers),
            bytes_written=reader.count,
        )
