"""Retry profiles, failover resolution and the resilient writer."""

from liveuploader.resilience.failover import FailoverMap, as_failover_map, build_backup_uri
from liveuploader.resilience.retry import RetryProfile, RetryProfiles
from liveuploader.resilience.writer import ResilientWriter, WriteState

__all__ = [
    "FailoverMap",
    "ResilientWriter",
    "RetryProfile",
    "RetryProfiles",
    "WriteState",
    "as_failover_map",
    "build_backup_uri",
]
