"""
Rewatch File Watcher Package.

Recursive file system monitoring that feeds run requests.
Requires Python 3.11+.
"""

from watcher.file_watcher import PendingChange, TreeChange, TreeEventHandler, TreeWatcher, WatchSet

__all__ = ["PendingChange", "TreeChange", "TreeEventHandler", "TreeWatcher", "WatchSet"]
