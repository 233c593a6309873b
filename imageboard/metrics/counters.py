"""Monotonic activity counters incremented on the request hot path.

Each thread increments its own shard, so ``increment`` never takes a shared
lock. Shards are summed when a snapshot is taken. When a thread finishes, its
shard is folded into a single retired total, so per-request threads leave no
state behind.
"""

import threading
import time
import weakref
from collections import Counter
from contextlib import contextmanager
from typing import Dict, List, Tuple

CounterKey = Tuple[str, Tuple[Tuple[str, str], ...]]


class _ShardHolder:
    """Kept in the thread-local; it is released when its thread exits."""

    __slots__ = ("shard", "__weakref__")

    def __init__(self):
        self.shard = Counter()


class ActivityCounters:
    """Per-process counters sharded by thread."""

    def __init__(self):
        self._local = threading.local()
        self._shards: List[Counter] = []
        self._retired: Counter = Counter()
        # Reentrant: a retirement may run from a finalizer while the lock is held.
        self._shards_lock = threading.RLock()

    def _shard(self) -> Counter:
        holder = getattr(self._local, "holder", None)
        if holder is None:
            holder = _ShardHolder()
            with self._shards_lock:
                self._shards.append(holder.shard)
            weakref.finalize(holder, self._retire, holder.shard)
            self._local.holder = holder
        return holder.shard

    def _retire(self, shard: Counter) -> None:
        with self._shards_lock:
            self._retired.update(dict.copy(shard))
            self._shards = [live for live in self._shards if live is not shard]

    def increment(self, name: str, amount=1, **labels) -> None:
        key = (name, tuple(sorted((k, str(v)) for k, v in labels.items())))
        self._shard()[key] += amount

    def totals(self) -> Dict[CounterKey, float]:
        """Sum the retired totals and every live thread's shard."""
        with self._shards_lock:
            combined = Counter(self._retired)
            for shard in self._shards:
                combined.update(dict.copy(shard))
        return dict(combined)

    def total(self, name: str, **labels) -> float:
        key = (name, tuple(sorted((k, str(v)) for k, v in labels.items())))
        return self.totals().get(key, 0)

    def reset(self) -> None:
        """Forget all recorded activity. Intended for test isolation."""
        with self._shards_lock:
            self._retired.clear()
            for shard in self._shards:
                shard.clear()

    @contextmanager
    def track_job(self):
        """Count one background job attempt, its outcome, and the time spent working it."""
        self.increment("jobs_attempts_total")
        started = time.perf_counter()
        try:
            yield
        except Exception:
            self.increment("jobs_exceptions_total")
            raise
        else:
            self.increment("jobs_worked_total")
        finally:
            self.increment("jobs_duration_seconds_total", time.perf_counter() - started)
