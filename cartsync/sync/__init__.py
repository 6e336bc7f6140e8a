"""
Sync — push/pull reconciliation with a remote versioned cart document.

    from cartsync import sync as Y

    coordinator = Y.SyncCoordinator(store, api, channel, client_id=cid)
    await coordinator.merge_on_sign_in(user_id)
    coordinator.attach(user_id)
"""

from __future__ import annotations

from cartsync.sync._merge import (
    MergeKind,
    MergeOutcome,
    adopt_presentation,
    adopt_remote_lines,
    resolve_merge,
)
from cartsync.sync._coordinator import (
    SyncRequest,
    CartApi,
    SnapshotCallback,
    DocumentChannel,
    SyncState,
    SyncCoordinator,
)

__all__ = (
    "MergeKind",
    "MergeOutcome",
    "adopt_presentation",
    "adopt_remote_lines",
    "resolve_merge",
    "SyncRequest",
    "CartApi",
    "SnapshotCallback",
    "DocumentChannel",
    "SyncState",
    "SyncCoordinator",
)
