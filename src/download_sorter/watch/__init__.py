"""Watch services for the download sorter."""

from .service import SortCallback, WatchService
from .settle import FileSettledEvent, SettleTracker, TrackedFileState

__all__ = [
    "FileSettledEvent",
    "SettleTracker",
    "SortCallback",
    "TrackedFileState",
    "WatchService",
]
