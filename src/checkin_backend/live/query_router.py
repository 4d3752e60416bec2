"""
Live Query Router for the Check-in Backend
===========================================
Named, parameterized subscriptions over the attendance store.

Each subscription holds a filter predicate and a snapshot of the records it
currently matches. The router listens to the store's change events and turns
each one into at most one delta per subscription:

- enter (was not in the set, now matches): added
- exit (was in the set, no longer matches): removed
- continued match: changed

No subscription ever re-scans the store after its initial snapshot.
"""

import logging
import threading
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional

from ..database.attendance_store import AttendanceStore, ChangeEvent, Record, COMMUNITIES, PEOPLE
from ..errors import InvalidArgument

logger = logging.getLogger(__name__)

PUBLICATIONS = (COMMUNITIES, PEOPLE)


class DeltaKind(str, Enum):
    """Kind of message delivered to a subscription listener."""
    ADDED = "added"
    CHANGED = "changed"
    REMOVED = "removed"
    READY = "ready"


@dataclass(frozen=True)
class Delta:
    kind: DeltaKind
    collection: str
    id: Optional[str] = None
    record: Optional[Record] = None


Listener = Callable[[Delta], None]


def is_valid_filter(community_id) -> bool:
    return isinstance(community_id, str) and bool(community_id.strip())


class Subscription:
    """
    One live query.

    The initial snapshot is delivered to the listener as one ADDED delta per
    record followed by READY; afterwards the listener receives incremental
    deltas until cancel() is called.
    """

    def __init__(
        self,
        router: "LiveQueryRouter",
        name: str,
        collection: str,
        predicate: Optional[Callable[[Record], bool]],
        listener: Optional[Listener] = None,
        params: tuple = ()
    ):
        self.id = uuid.uuid4().hex
        self.name = name
        self.collection = collection
        self.params = params
        self.ready = False
        self.active = True
        self._router = router
        self._predicate = predicate
        self._listener = listener
        self._snapshot: Dict[str, Record] = {}

    def __repr__(self):
        return f"<Subscription(id={self.id}, name={self.name}, params={self.params}, size={len(self._snapshot)})>"

    def records(self) -> List[Record]:
        """Current result set."""
        with self._router._lock:
            return list(self._snapshot.values())

    def cancel(self):
        """Stop delivering deltas and release the snapshot."""
        self._router._cancel(self)

    def _deliver(self, delta: Delta):
        if self._listener is not None:
            self._listener(delta)

    def _load(self, records: List[Record]):
        for record in records:
            self._snapshot[record.id] = record
            self._deliver(Delta(DeltaKind.ADDED, self.collection, record.id, record))
        self.ready = True
        self._deliver(Delta(DeltaKind.READY, self.collection))

    def _apply(self, change: ChangeEvent) -> Optional[Delta]:
        """Update the snapshot for one change event and return the delta to emit."""
        matches_now = change.after is not None and self._predicate(change.after)
        # Snapshot membership is "matched before"; it also absorbs writes that raced the initial scan
        known = change.id in self._snapshot

        if matches_now:
            if known and self._snapshot[change.id] == change.after:
                return None
            kind = DeltaKind.CHANGED if known else DeltaKind.ADDED
            self._snapshot[change.id] = change.after
            return Delta(kind, self.collection, change.id, change.after)

        if known:
            del self._snapshot[change.id]
            return Delta(DeltaKind.REMOVED, self.collection, change.id)

        return None


class LiveQueryRouter:
    """
    Subscription registry fed by AttendanceStore change events.

    Listeners run on the writer's thread while the router lock is held, so
    they must hand work off quickly (the WebSocket bridge enqueues onto the
    event loop).

    Usage:
        router = LiveQueryRouter(store)
        sub = router.subscribe_people("C1", listener=print)
        ...
        sub.cancel()
        router.close()
    """

    def __init__(self, store: AttendanceStore):
        self.store = store
        self._lock = threading.RLock()
        self._subscriptions: Dict[str, Subscription] = {}
        self._closed = False
        store.add_listener(self._on_change)

    @property
    def active_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def subscribe(self, name: str, *params, listener: Optional[Listener] = None) -> Subscription:
        """Open a subscription by publication name."""
        if name == COMMUNITIES:
            return self.subscribe_communities(listener=listener)
        if name == PEOPLE:
            return self.subscribe_people(params[0] if params else None, listener=listener)
        raise InvalidArgument(f"Unknown publication: {name}")

    def subscribe_communities(self, listener: Optional[Listener] = None) -> Subscription:
        """All communities, ready immediately with the current snapshot."""
        sub = Subscription(self, COMMUNITIES, COMMUNITIES, lambda record: True, listener)
        return self._start(sub, self.store.list_communities)

    def subscribe_people(self, community_id=None, listener: Optional[Listener] = None) -> Subscription:
        """
        People of one community.

        A missing, non-string or blank community id yields an empty, ready
        subscription that never scans the store and never receives deltas.
        """
        if not is_valid_filter(community_id):
            logger.info(f"[LIVE] people: invalid community filter {community_id!r}, returning empty set")
            sub = Subscription(self, PEOPLE, PEOPLE, None, listener, (community_id,))
            sub._load([])
            return sub

        sub = Subscription(
            self, PEOPLE, PEOPLE,
            lambda record: record.community_id == community_id,
            listener, (community_id,)
        )
        return self._start(sub, lambda: self.store.find_by_community(community_id))

    def _start(self, sub: Subscription, scan: Callable[[], List[Record]]) -> Subscription:
        with self._lock:
            if self._closed:
                raise RuntimeError("LiveQueryRouter is closed")
            self._subscriptions[sub.id] = sub
            try:
                sub._load(scan())
            except Exception:
                self._drop(sub)
                raise

        logger.info(f"[LIVE] Subscribed {sub.name}{sub.params or ''}: {len(sub._snapshot)} records ({sub.id})")
        return sub

    def _on_change(self, change: ChangeEvent):
        with self._lock:
            for sub in list(self._subscriptions.values()):
                if sub.collection != change.collection:
                    continue
                delta = sub._apply(change)
                if delta is None:
                    continue
                try:
                    sub._deliver(delta)
                except Exception:
                    logger.exception(f"[LIVE] Listener failed, dropping subscription {sub.id}")
                    self._drop(sub)

    def _drop(self, sub: Subscription):
        self._subscriptions.pop(sub.id, None)
        sub.active = False
        sub._listener = None
        sub._snapshot.clear()

    def _cancel(self, sub: Subscription):
        with self._lock:
            if not sub.active:
                return
            self._drop(sub)
        logger.info(f"[LIVE] Unsubscribed {sub.name} ({sub.id})")

    def close(self):
        """Cancel every subscription and detach from the store."""
        self.store.remove_listener(self._on_change)
        with self._lock:
            self._closed = True
            for sub in list(self._subscriptions.values()):
                self._drop(sub)
        logger.info("[LIVE] Router closed")
