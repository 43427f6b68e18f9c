"""Canonical error codes surfaced in logs and CLI output."""

from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    UNKNOWN = "UNKNOWN"
    INVALID_CONFIG = "INVALID_CONFIG"
    INVALID_URI = "INVALID_URI"
    NO_BACKUP_URL = "NO_BACKUP_URL"

    INPUT_READ_FAILED = "INPUT_READ_FAILED"
    STORAGE_WRITE_FAILED = "STORAGE_WRITE_FAILED"
    STORAGE_READ_FAILED = "STORAGE_READ_FAILED"
    STORAGE_TIMEOUT = "STORAGE_TIMEOUT"
    FAILOVER_FAILED = "FAILOVER_FAILED"
    UPLOAD_FAILED = "UPLOAD_FAILED"

    THUMBNAIL_FAILED = "THUMBNAIL_FAILED"
