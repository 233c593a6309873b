"""Combines the snapshots of every worker process into one instance-wide metric set."""

import logging
from concurrent.futures import ThreadPoolExecutor, wait
from typing import List

from .exceptions import PeerUnreachable, SchemaConflict
from .peers import PeerHandle, PeerRegistry
from .process import SnapshotProvider
from .registry import MetricSet

logger = logging.getLogger(__name__)


class Aggregator:
    """Fetches every live peer's snapshot concurrently and folds them with ``MetricSet.merge``.

    Unreachable peers are logged and left out; a scrape never fails because a
    worker is restarting.
    """

    def __init__(
        self,
        peers: PeerRegistry,
        provider: SnapshotProvider,
        fetch_timeout: float = 1.0,
        deadline: float = 3.0,
        max_workers: int = 16,
    ):
        self.peers = peers
        self.provider = provider
        self.fetch_timeout = fetch_timeout
        self.deadline = deadline
        self.max_workers = max_workers

    def _fetch(self, peer: PeerHandle) -> MetricSet:
        if peer.is_self:
            return self.provider.snapshot()
        return self.peers.fetch(peer, timeout=self.fetch_timeout)

    def collect_instance_wide(self) -> MetricSet:
        handles = self.peers.discover()
        if not handles:
            logger.debug("No metrics peers discovered")
            return MetricSet()

        snapshots: List[MetricSet] = []
        executor = ThreadPoolExecutor(
            max_workers=min(len(handles), self.max_workers),
            thread_name_prefix="MetricsPeerFetch",
        )
        try:
            futures = {executor.submit(self._fetch, peer): peer for peer in handles}
            done, _ = wait(futures, timeout=self.deadline)
        finally:
            # Stragglers are abandoned; each closes its socket when its own timeout fires.
            executor.shutdown(wait=False, cancel_futures=True)

        for future, peer in futures.items():
            if future not in done:
                peer.alive = False
                logger.warning(
                    f"Dropping metrics from worker {peer.worker_id}: no reply within {self.deadline}s"
                )
                continue
            try:
                snapshots.append(future.result())
            except PeerUnreachable as exc:
                logger.warning(f"Dropping metrics from worker {peer.worker_id}: {exc.reason}")

        combined = MetricSet()
        for worker_snapshot in snapshots:
            try:
                combined = combined.merge(worker_snapshot)
            except SchemaConflict as exc:
                logger.error(f"Dropping metrics snapshot with an incompatible schema: {exc}")

        logger.debug(f"Aggregated metrics from {len(snapshots)} of {len(handles)} workers")
        return combined
