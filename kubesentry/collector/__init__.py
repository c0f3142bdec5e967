"""Collector package for kubesentry.

Provides the resumable watch over cluster Events that feeds the pipeline.

Submodules
----------
errors  -- WatchError, TransientWatchError, StaleTokenError.
source  -- KubernetesEventSource: one watch request via kubernetes-asyncio.
watcher -- WatchSession: token bookkeeping, reconnect state machine, back-off.
"""

from kubesentry.collector.errors import StaleTokenError, TransientWatchError, WatchError
from kubesentry.collector.watcher import WatchSession, WatchState

__all__ = [
    "StaleTokenError",
    "TransientWatchError",
    "WatchError",
    "WatchSession",
    "WatchState",
]
