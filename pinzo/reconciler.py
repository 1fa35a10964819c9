"""
Per-session bookmark state, kept in step with the change relay.

``Reconciler`` is the pure merge: an ordered, newest-first list of one user's
bookmarks that change events are folded into by id. Applying the same event
twice is a no-op, and inserts/updates for another user are ignored.

``LiveView`` ties a Reconciler to a relay subscription and a snapshot loader
for the lifetime of one open dashboard.
"""

import logging
from contextlib import contextmanager
from typing import Callable, Iterable, Iterator, List, Optional

from starlette.concurrency import run_in_threadpool
from tenacity import retry, stop_after_attempt, wait_exponential

from .events import BookmarkRecord, DeleteEvent, InsertEvent, SnapshotMessage, UpdateEvent
from .relay import ChangeRelay, Subscription, SubscriptionLost

logger = logging.getLogger(__name__)


class Reconciler:
    def __init__(self, user_id: int, snapshot: Iterable[BookmarkRecord] = ()):
        self.user_id = user_id
        self._records: List[BookmarkRecord] = []
        self.reset(snapshot)

    def reset(self, snapshot: Iterable[BookmarkRecord]) -> None:
        seen = set()
        records = []
        for record in snapshot:
            if record.user_id != self.user_id or record.id in seen:
                continue
            seen.add(record.id)
            records.append(record)
        self._records = records

    @property
    def records(self) -> List[BookmarkRecord]:
        return list(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, record_id: str) -> bool:
        return self._index(record_id) is not None

    def get(self, record_id: str) -> Optional[BookmarkRecord]:
        i = self._index(record_id)
        return None if i is None else self._records[i]

    def _index(self, record_id: str) -> Optional[int]:
        for i, record in enumerate(self._records):
            if record.id == record_id:
                return i
        return None

    def apply(self, event) -> bool:
        """Fold one change event into the list. Returns True if the list changed."""
        if isinstance(event, InsertEvent):
            return self._insert(event.record)
        if isinstance(event, UpdateEvent):
            return self._update(event.record)
        if isinstance(event, DeleteEvent):
            return self._delete(event.old_record.id)
        raise TypeError(f"not a change event: {event!r}")

    def _insert(self, record: BookmarkRecord) -> bool:
        if record.user_id != self.user_id or record.id in self:
            return False
        self._records.insert(0, record)
        return True

    def _update(self, record: BookmarkRecord) -> bool:
        if record.user_id != self.user_id:
            return False
        i = self._index(record.id)
        if i is None or self._records[i] == record:
            return False
        self._records[i] = record
        return True

    def _delete(self, record_id: str) -> bool:
        i = self._index(record_id)
        if i is None:
            return False
        del self._records[i]
        return True

    @contextmanager
    def optimistic(self, event) -> Iterator[bool]:
        """
        Apply ``event`` ahead of the store round trip. If the block raises, the
        change is undone (only the part of it still in effect) and the error
        propagates.
        """
        undo = self._undo_for(event)
        changed = self.apply(event)
        try:
            yield changed
        except Exception:
            if changed:
                undo()
                logger.info("[view] user=%s rolled back optimistic %s", self.user_id, event.type)
            raise

    def _undo_for(self, event) -> Callable[[], None]:
        if isinstance(event, InsertEvent):
            record_id = event.record.id
            return lambda: self._delete(record_id)

        if isinstance(event, UpdateEvent):
            previous = self.get(event.record.id)

            def undo_update():
                i = self._index(event.record.id)
                if previous is not None and i is not None and self._records[i] == event.record:
                    self._records[i] = previous
            return undo_update

        if isinstance(event, DeleteEvent):
            record_id = event.old_record.id
            position = self._index(record_id)
            if position is None:
                return lambda: None
            previous = self._records[position]
            before = self._records[position - 1].id if position > 0 else None
            after = self._records[position + 1].id if position + 1 < len(self._records) else None

            def undo_delete():
                if record_id in self:
                    return
                # put it back next to a neighbour it had, if one is still here
                i = self._index(before) if before else None
                if i is not None:
                    self._records.insert(i + 1, previous)
                    return
                i = self._index(after) if after else None
                if i is None:
                    i = min(position, len(self._records))
                self._records.insert(i, previous)
            return undo_delete

        raise TypeError(f"not a change event: {event!r}")


SnapshotLoader = Callable[[int], List[BookmarkRecord]]


class LiveView:
    """
    One open view of a user's bookmarks.

    Subscribes before loading the snapshot, so events raised while the
    snapshot is in flight are queued and then folded in idempotently.
    """

    def __init__(self, relay: ChangeRelay, user_id: int, loader: SnapshotLoader):
        self.relay = relay
        self.user_id = user_id
        self.reconciler = Reconciler(user_id)
        self._loader = loader
        self._subscription: Optional[Subscription] = None
        self._released = False

    @property
    def records(self) -> List[BookmarkRecord]:
        return self.reconciler.records

    @property
    def released(self) -> bool:
        return self._released

    def optimistic(self, event):
        return self.reconciler.optimistic(event)

    async def open(self) -> "LiveView":
        self._subscription = self.relay.subscribe(self.user_id)
        try:
            self.reconciler.reset(await self._load_snapshot())
        except Exception:
            self.close()
            raise
        return self

    def close(self) -> bool:
        if self._released:
            return False
        self._released = True
        if self._subscription is not None:
            self._subscription.close()
        logger.info("[view] user=%s closed", self.user_id)
        return True

    async def __aenter__(self) -> "LiveView":
        return await self.open()

    async def __aexit__(self, *exc):
        self.close()
        return False

    @retry(stop=stop_after_attempt(3), wait=wait_exponential(multiplier=0.1, max=2), reraise=True)
    async def _load_snapshot(self) -> List[BookmarkRecord]:
        return await run_in_threadpool(self._loader, self.user_id)

    async def reload(self) -> List[BookmarkRecord]:
        """Replace local state with a fresh snapshot from the store."""
        self.reconciler.reset(await self._load_snapshot())
        return self.reconciler.records

    async def _resync(self) -> None:
        if self._released:
            return
        self._subscription.close()
        self._subscription = self.relay.subscribe(self.user_id)
        await self.reload()
        logger.info("[view] user=%s resynced (%d records)", self.user_id, len(self.reconciler))

    async def changes(self):
        """
        Yield each relay event that changed local state, and a SnapshotMessage
        whenever state had to be reloaded. Ends when the view is closed.
        If a reload fails the view is released and the error propagates.
        """
        if self._subscription is None:
            raise RuntimeError("LiveView.changes() before open()")
        while not self._released:
            try:
                async for event in self._subscription:
                    if self.reconciler.apply(event):
                        yield event
                return
            except SubscriptionLost:
                logger.warning("[view] user=%s lost relay subscription; resyncing", self.user_id)
                try:
                    await self._resync()
                except Exception:
                    logger.exception("[view] user=%s resync failed", self.user_id)
                    self.close()
                    raise
                if not self._released:
                    yield SnapshotMessage(records=self.reconciler.records)
