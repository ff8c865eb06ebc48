"""
Sync Broadcaster
Best-effort realtime fan-out of reconciliation progress and order updates.
A failed delivery is logged and dropped; it never affects sync results.
"""

import logging
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class SyncProgress:
    total: int
    processed: int
    synced: int
    current_order_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["currentOrderId"] = data.pop("current_order_id")
        return data


class SyncBroadcaster:
    """Interface for realtime channels"""

    async def broadcast_sync_progress(self, progress: SyncProgress):
        raise NotImplementedError

    async def broadcast_order_update(self, order_id: int, payload: Dict[str, Any]):
        raise NotImplementedError


class InMemorySyncBroadcaster(SyncBroadcaster):
    """Dispatches events to in-process subscribers, e.g. a websocket hub"""

    def __init__(self):
        self._subscribers: List[Callable] = []

    def subscribe(self, callback: Callable):
        """callback(event_type, payload) - sync or async"""
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable):
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    async def _dispatch(self, event_type: str, payload: Dict[str, Any]):
        for callback in list(self._subscribers):
            try:
                result = callback(event_type, payload)
                if hasattr(result, "__await__"):
                    await result
            except Exception as e:
                logger.warning(f"⚠️ BROADCAST_DELIVERY_FAILED: {event_type} - {e}")

    async def broadcast_sync_progress(self, progress: SyncProgress):
        await self._dispatch("provider_sync_progress", progress.to_dict())

    async def broadcast_order_update(self, order_id: int, payload: Dict[str, Any]):
        await self._dispatch("order_updated", {"orderId": order_id, "order": payload})


class LoggingSyncBroadcaster(SyncBroadcaster):
    """Fallback channel that only writes events to the log"""

    async def broadcast_sync_progress(self, progress: SyncProgress):
        logger.info(
            f"SYNC_PROGRESS: {progress.processed}/{progress.total} synced={progress.synced} "
            f"current={progress.current_order_id}"
        )

    async def broadcast_order_update(self, order_id: int, payload: Dict[str, Any]):
        logger.info(f"ORDER_UPDATED: order={order_id} status={payload.get('status')}")
