"""De-duplicating work queue for reconciliation keys.

Semantics follow the controller work queues used by Kubernetes operators:
a key is held by at most one worker at a time, adding a key that is already
queued is a no-op, and adding a key that is being processed defers it until
the worker calls done().
"""

import asyncio

from tablewright.resources.protocol import ObjectRef


class WorkQueue:
    def __init__(self, backoff_base_seconds: float = 1.0, backoff_max_seconds: float = 300.0):
        self._queue: asyncio.Queue[ObjectRef] = asyncio.Queue()
        self._dirty: set[ObjectRef] = set()
        self._processing: set[ObjectRef] = set()
        self._failures: dict[ObjectRef, int] = {}
        self._timers: dict[ObjectRef, asyncio.TimerHandle] = {}
        self._backoff_base = backoff_base_seconds
        self._backoff_max = backoff_max_seconds
        self._shutting_down = False

    def __len__(self) -> int:
        return self._queue.qsize()

    def add(self, key: ObjectRef) -> None:
        if self._shutting_down or key in self._dirty:
            return
        self._dirty.add(key)
        if key in self._processing:
            return
        self._queue.put_nowait(key)

    async def get(self) -> ObjectRef:
        key = await self._queue.get()
        self._dirty.discard(key)
        self._processing.add(key)
        return key

    def done(self, key: ObjectRef) -> None:
        self._processing.discard(key)
        if key in self._dirty:
            self._queue.put_nowait(key)

    def add_after(self, key: ObjectRef, delay: float) -> None:
        """Add key once delay seconds have passed; the earliest pending delay wins."""
        if self._shutting_down:
            return
        if delay <= 0:
            self.add(key)
            return

        loop = asyncio.get_event_loop()
        when = loop.time() + delay
        existing = self._timers.get(key)
        if existing is not None:
            if existing.when() <= when:
                return
            existing.cancel()
        self._timers[key] = loop.call_at(when, self._fire, key)

    def _fire(self, key: ObjectRef) -> None:
        self._timers.pop(key, None)
        self.add(key)

    def add_rate_limited(self, key: ObjectRef) -> float:
        """Re-add a failed key after an exponential per-key backoff. Returns the delay."""
        failures = self._failures.get(key, 0)
        self._failures[key] = failures + 1
        delay = min(self._backoff_base * (2**failures), self._backoff_max)
        self.add_after(key, delay)
        return delay

    def forget(self, key: ObjectRef) -> None:
        """Reset the failure count of a key."""
        self._failures.pop(key, None)

    def discard(self, key: ObjectRef) -> None:
        """Drop all delayed and retry state for a key whose object is gone."""
        self._failures.pop(key, None)
        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()

    def is_scheduled(self, key: ObjectRef) -> bool:
        return key in self._timers

    def failures(self, key: ObjectRef) -> int:
        return self._failures.get(key, 0)

    def shutdown(self) -> None:
        self._shutting_down = True
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
