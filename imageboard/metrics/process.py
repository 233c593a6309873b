"""Per-process runtime snapshot: interpreter, GC, memory, sockets, and request activity."""

from __future__ import annotations

import gc
import logging
import os
import platform
import socket
import threading
from abc import ABC, abstractmethod
from collections import Counter
from importlib import metadata
from typing import Callable, Optional

import psutil

from .counters import ActivityCounters
from .exceptions import InvalidLabels
from .registry import MetricKind, MetricSet

logger = logging.getLogger(__name__)

COUNTER = MetricKind.COUNTER
GAUGE = MetricKind.GAUGE

# Introspection failures that replace a single series with zero.
_PROBE_ERRORS = (psutil.Error, OSError, AttributeError, NotImplementedError, RuntimeError, ValueError, TypeError)

PROCESS_SCHEMA = {
    "target_info": (GAUGE, "Information about the current application process.", {
        "labels": ("hostname", "python_version", "flask_version", "sqlalchemy_version"),
    }),
    "python_pid": (GAUGE, "Current process ID.", {"labels": ()}),
    "python_thread_count": (GAUGE, "Current number of threads.", {"labels": ()}),
    "python_gc_collections_total": (COUNTER, "Number of times each GC generation was collected.", {"labels": ("generation",)}),
    "python_gc_objects_collected_total": (COUNTER, "Objects collected during GC, by generation.", {"labels": ("generation",)}),
    "python_gc_uncollectable_total": (COUNTER, "Uncollectable objects found during GC, by generation.", {"labels": ("generation",)}),
    "python_gc_objects_count": (GAUGE, "Current number of tracked objects awaiting collection, by generation.", {"labels": ("generation",)}),
    "process_resident_memory_bytes": (GAUGE, "Resident memory size in bytes.", {"labels": ()}),
    "process_virtual_memory_bytes": (GAUGE, "Virtual memory size in bytes.", {"labels": ()}),
    "process_cpu_seconds_total": (COUNTER, "CPU time spent by the process, by mode.", {"labels": ("mode",)}),
    "process_open_fds": (GAUGE, "Number of open file descriptors.", {"labels": ()}),
    "process_start_time_seconds": (GAUGE, "Start time of the process since the Unix epoch in seconds.", {"labels": ()}),
    "process_connections": (GAUGE, "Current number of internet sockets held by the process, by state.", {"labels": ("state",)}),
    "db_connection_pool_size": (GAUGE, "Maximum number of persistent database connections in the pool.", {"labels": ()}),
    "db_connection_pool_connections": (GAUGE, "Current number of database connections by state.", {"labels": ("state",)}),
    "db_connection_pool_overflow": (GAUGE, "Current number of overflow database connections.", {"labels": ()}),
}

ACTIVITY_SCHEMA = {
    "http_requests_total": (COUNTER, "Total number of HTTP requests served.", {"labels": ("method", "status")}),
    "http_exceptions_total": (COUNTER, "Total number of exceptions raised while handling requests.", {"labels": ()}),
    "jobs_attempts_total": (COUNTER, "Total number of background jobs attempted, including failures.", {"labels": ()}),
    "jobs_worked_total": (COUNTER, "Total number of background jobs worked successfully.", {"labels": ()}),
    "jobs_exceptions_total": (COUNTER, "Total number of background jobs failed due to an exception.", {"labels": ()}),
    "jobs_duration_seconds_total": (COUNTER, "Time spent working background jobs.", {"labels": ()}),
}


def package_version(name: str) -> str:
    try:
        return metadata.version(name)
    except metadata.PackageNotFoundError:
        return "unknown"


class SnapshotProvider(ABC):
    """Produces a MetricSet describing the calling process at the moment of the call."""

    @abstractmethod
    def snapshot(self) -> MetricSet:  # pragma: no cover
        """Return a fresh MetricSet. Must not mutate the metrics it reads."""
        pass


class ProcessMetrics(SnapshotProvider):
    """Snapshot provider for the current worker process.

    The schema is built once and cached for the lifetime of the process;
    values are re-read on every call to :meth:`snapshot`.
    """

    def __init__(
        self,
        worker_id=None,
        counters: Optional[ActivityCounters] = None,
        engine_getter: Optional[Callable[[], object]] = None,
    ):
        """
        Args:
            worker_id: Stable worker slot identity stamped on every series.
            counters: Monotonic activity counters copied into the snapshot.
            engine_getter: Returns the SQLAlchemy engine whose pool is reported, or None.
        """
        self.worker_id = worker_id
        self.counters = counters or ActivityCounters()
        self._engine_getter = engine_getter
        self._schema: Optional[MetricSet] = None
        self._schema_lock = threading.Lock()
        self._process: Optional[psutil.Process] = None

    @property
    def worker_label(self) -> str:
        return "main" if self.worker_id is None else str(self.worker_id)

    @property
    def schema(self) -> MetricSet:
        with self._schema_lock:
            if self._schema is None:
                schema = MetricSet(PROCESS_SCHEMA, default_labels={"worker": self.worker_label})
                schema.register_many(ACTIVITY_SCHEMA, default_labels={"worker": self.worker_label})
                self._schema = schema
            return self._schema

    def reset(self) -> "ProcessMetrics":
        """Drop the cached schema so the next snapshot rebuilds it."""
        with self._schema_lock:
            self._schema = None
            self._process = None
        return self

    def snapshot(self) -> MetricSet:
        metrics = self.schema.copy()
        self._collect_interpreter(metrics)
        self._collect_process(metrics)
        self._collect_connection_pool(metrics)
        self._collect_activity(metrics)
        return metrics

    def _probe(self, name: str, read: Callable[[], object], default=0):
        try:
            return read()
        except _PROBE_ERRORS as exc:
            logger.debug(f"Probe for {name} failed, reporting {default}: {exc!r}")
            return default

    def _psutil_process(self) -> psutil.Process:
        # The handle is re-created after a fork so each worker reports itself.
        if self._process is None or self._process.pid != os.getpid():
            self._process = psutil.Process()
        return self._process

    def _collect_interpreter(self, metrics: MetricSet) -> None:
        metrics.set("target_info", {
            "hostname": self._probe("hostname", socket.gethostname, default=""),
            "python_version": platform.python_version(),
            "flask_version": package_version("flask"),
            "sqlalchemy_version": package_version("sqlalchemy"),
        }, 1)
        metrics.set_many({
            "python_pid": os.getpid(),
            "python_thread_count": threading.active_count(),
        })

        stats = self._probe("python_gc_stats", gc.get_stats, default=[])
        for generation, generation_stats in enumerate(stats):
            labels = {"generation": generation}
            metrics.set_many({
                "python_gc_collections_total": generation_stats.get("collections", 0),
                "python_gc_objects_collected_total": generation_stats.get("collected", 0),
                "python_gc_uncollectable_total": generation_stats.get("uncollectable", 0),
            }, labels)

        counts = self._probe("python_gc_objects_count", gc.get_count, default=())
        for generation, count in enumerate(counts):
            metrics.set("python_gc_objects_count", {"generation": generation}, count)

    def _collect_process(self, metrics: MetricSet) -> None:
        process = self._probe("process", self._psutil_process, default=None)
        if process is None:
            metrics.set_many({
                "process_resident_memory_bytes": 0,
                "process_virtual_memory_bytes": 0,
                "process_open_fds": 0,
                "process_start_time_seconds": 0,
            })
            return

        memory = self._probe("process_memory", process.memory_info, default=None)
        cpu = self._probe("process_cpu", process.cpu_times, default=None)
        metrics.set_many({
            "process_resident_memory_bytes": memory.rss if memory else 0,
            "process_virtual_memory_bytes": memory.vms if memory else 0,
            # num_fds is POSIX only
            "process_open_fds": self._probe("process_open_fds", lambda: process.num_fds()),
            "process_start_time_seconds": self._probe("process_start_time_seconds", process.create_time),
        })
        metrics.set("process_cpu_seconds_total", {"mode": "user"}, cpu.user if cpu else 0)
        metrics.set("process_cpu_seconds_total", {"mode": "system"}, cpu.system if cpu else 0)

        list_connections = getattr(process, "net_connections", None) or process.connections
        connections = self._probe("process_connections", lambda: list_connections(kind="inet"), default=[])
        by_state = Counter(str(conn.status).lower() for conn in connections)
        for state, count in sorted(by_state.items()):
            metrics.set("process_connections", {"state": state}, count)

    def _collect_connection_pool(self, metrics: MetricSet) -> None:
        engine = self._probe("db_engine", self._engine_getter, default=None) if self._engine_getter else None
        if engine is None:
            return
        pool = engine.pool
        # Only QueuePool tracks sizes; static and single-thread pools report zero.
        metrics.set_many({
            "db_connection_pool_size": self._probe("db_connection_pool_size", lambda: pool.size()),
            "db_connection_pool_overflow": self._probe("db_connection_pool_overflow", lambda: pool.overflow()),
        })
        metrics.set("db_connection_pool_connections", {"state": "busy"},
                    self._probe("db_connection_pool_busy", lambda: pool.checkedout()))
        metrics.set("db_connection_pool_connections", {"state": "idle"},
                    self._probe("db_connection_pool_idle", lambda: pool.checkedin()))

    def _collect_activity(self, metrics: MetricSet) -> None:
        for (name, labels), total in self.counters.totals().items():
            if name not in metrics:
                logger.error(f"Activity counter {name} has no registered metric; dropping it")
                continue
            try:
                metrics.set(name, dict(labels), total, kind=COUNTER)
            except InvalidLabels as exc:
                logger.error(f"Activity counter {name} dropped: {exc}")
