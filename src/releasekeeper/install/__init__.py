"""
Installation subsystem: content cache, extraction, removal and the
background worker that serializes them.
"""

from .index import InstalledIndex
from .manager import (
    DownloadOutcome,
    DownloadResult,
    InstallationManager,
    InstallOutcome,
    InstallResult,
)
from .tasks import CancelToken, InstallationWorker, ProgressListener, WorkUnit

__all__ = [
    "CancelToken",
    "DownloadOutcome",
    "DownloadResult",
    "InstallOutcome",
    "InstallResult",
    "InstallationManager",
    "InstallationWorker",
    "InstalledIndex",
    "ProgressListener",
    "WorkUnit",
]
