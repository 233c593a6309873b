"""Discovery of sibling worker processes and the local-socket snapshot transport.

Every worker serves its own snapshot on a Unix domain socket named after its
worker slot. A peer asks with a single ``SNAPSHOT`` line and receives a 4-byte
big-endian length prefix followed by the JSON-encoded metric set.
"""

from __future__ import annotations

import glob
import json
import logging
import os
import socket
import socketserver
import struct
import threading
import time
from dataclasses import dataclass
from typing import Dict, List, Optional

from .exceptions import MetricsError, PeerUnreachable
from .process import SnapshotProvider
from .registry import MetricSet

logger = logging.getLogger(__name__)

REQUEST = b"SNAPSHOT\n"
SOCKET_SUFFIX = ".sock"
DEFAULT_PREFIX = "process-metrics-"
MAX_PAYLOAD_BYTES = 64 * 1024 * 1024

_LENGTH = struct.Struct(">I")


@dataclass
class PeerHandle:
    """One discovered sibling process, addressed by its socket path."""

    worker_id: str
    path: str
    alive: bool = True
    is_self: bool = False


def _worker_sort_key(worker_id: str):
    return (0, int(worker_id), "") if worker_id.isdigit() else (1, 0, worker_id)


def _recv_exactly(sock: socket.socket, size: int, deadline: float) -> bytes:
    chunks = []
    remaining = size
    while remaining > 0:
        budget = deadline - time.monotonic()
        if budget <= 0:
            raise socket.timeout("deadline exceeded while reading reply")
        sock.settimeout(budget)
        chunk = sock.recv(min(remaining, 65536))
        if not chunk:
            raise ConnectionError(f"connection closed after {size - remaining} of {size} bytes")
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def encode_snapshot(metric_set: MetricSet) -> bytes:
    payload = json.dumps(metric_set.to_dict(), separators=(",", ":")).encode("utf-8")
    return _LENGTH.pack(len(payload)) + payload


class _SnapshotRequestHandler(socketserver.StreamRequestHandler):
    # Bound on how long a silent client can hold a handler thread.
    timeout = 5.0

    def handle(self):
        request = self.rfile.readline(len(REQUEST) + 1)
        if request != REQUEST:
            logger.warning(f"Ignoring unexpected metrics request {request[:32]!r}")
            self.wfile.write(_LENGTH.pack(0))
            return
        self.wfile.write(encode_snapshot(self.server.provider.snapshot()))


class _SnapshotServer(socketserver.ThreadingUnixStreamServer):
    daemon_threads = True

    def __init__(self, path: str, provider: SnapshotProvider):
        self.provider = provider
        super().__init__(path, _SnapshotRequestHandler)

    def handle_error(self, request, client_address):
        logger.exception("Failed to answer metrics snapshot request")


class PeerRegistry:
    """Tracks sibling worker sockets in a shared directory and talks to them.

    There is no coordinator: a worker is a peer for as long as its socket file
    exists. Stale files left by crashed workers surface as PeerUnreachable.
    """

    def __init__(
        self,
        socket_dir: str,
        worker_id=None,
        prefix: str = DEFAULT_PREFIX,
        timeout: float = 1.0,
    ):
        """
        Args:
            socket_dir: Directory holding one socket per worker.
            worker_id: This process's worker slot, or None if it does not serve.
            prefix: File name prefix shared by every worker socket.
            timeout: Default time budget in seconds for a single fetch.
        """
        self.socket_dir = socket_dir
        self.worker_id = None if worker_id is None else str(worker_id)
        self.prefix = prefix
        self.timeout = timeout

        self._lock = threading.Lock()
        self._peers: Dict[str, PeerHandle] = {}
        self._server: Optional[_SnapshotServer] = None
        self._thread: Optional[threading.Thread] = None
        self._inode: Optional[int] = None

    def socket_path(self, worker_id) -> str:
        return os.path.join(self.socket_dir, f"{self.prefix}{worker_id}{SOCKET_SUFFIX}")

    @property
    def is_serving(self) -> bool:
        with self._lock:
            return self._server is not None

    def discover(self) -> List[PeerHandle]:
        """Return a handle for every worker socket currently present in the directory."""
        pattern = os.path.join(glob.escape(self.socket_dir), f"{glob.escape(self.prefix)}*{SOCKET_SUFFIX}")
        paths = glob.glob(pattern)
        serving = self.is_serving

        with self._lock:
            seen = {}
            for path in paths:
                worker_id = os.path.basename(path)[len(self.prefix):-len(SOCKET_SUFFIX)]
                if not worker_id:
                    continue
                handle = self._peers.get(path) or PeerHandle(worker_id=worker_id, path=path)
                handle.is_self = serving and worker_id == self.worker_id
                seen[path] = handle
            self._peers = seen
            peers = list(seen.values())

        peers.sort(key=lambda peer: _worker_sort_key(peer.worker_id))
        logger.debug(f"Discovered {len(peers)} metrics peers in {self.socket_dir}")
        return peers

    def fetch(self, peer: PeerHandle, timeout: Optional[float] = None) -> MetricSet:
        """Pull a peer's current snapshot over its socket.

        Raises:
            PeerUnreachable: If the socket is missing, refuses the connection,
                times out, or answers with an unreadable payload.
        """
        budget = self.timeout if timeout is None else timeout
        deadline = time.monotonic() + budget
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            sock.settimeout(budget)
            sock.connect(peer.path)
            sock.sendall(REQUEST)
            (length,) = _LENGTH.unpack(_recv_exactly(sock, _LENGTH.size, deadline))
            if length == 0:
                raise ValueError("peer sent an empty reply")
            if length > MAX_PAYLOAD_BYTES:
                raise ValueError(f"reply of {length} bytes exceeds limit")
            body = _recv_exactly(sock, length, deadline)
            result = MetricSet.from_dict(json.loads(body.decode("utf-8")))
        except (OSError, ValueError, MetricsError) as exc:
            peer.alive = False
            raise PeerUnreachable(peer.path, exc) from exc
        finally:
            sock.close()

        peer.alive = True
        return result

    def serve(self, provider: SnapshotProvider) -> _SnapshotServer:
        """Answer snapshot requests for this worker on a background thread.

        Calling it again while already serving returns the running server.
        """
        with self._lock:
            if self._server is not None:
                return self._server
            if self.worker_id is None:
                raise ValueError("A worker id is required to serve process metrics")

            os.makedirs(self.socket_dir, exist_ok=True)
            path = self.socket_path(self.worker_id)
            # A previous process in this slot may have died without cleaning up.
            try:
                os.unlink(path)
            except FileNotFoundError:
                pass

            server = _SnapshotServer(path, provider)
            inode = os.stat(path).st_ino
            thread = threading.Thread(
                target=server.serve_forever,
                name=f"MetricsPeerServer-{self.worker_id}",
                daemon=True,
            )
            thread.start()
            self._server = server
            self._thread = thread
            self._inode = inode

        logger.info(f"Serving process metrics for worker {self.worker_id} on {path}")
        return server

    def shutdown(self) -> None:
        """Stop serving and remove this worker's socket file."""
        with self._lock:
            server, thread, inode = self._server, self._thread, self._inode
            self._server = None
            self._thread = None
            self._inode = None
        if server is None:
            return

        server.shutdown()
        server.server_close()
        if thread is not None:
            thread.join(timeout=2.0)
        path = server.server_address
        try:
            # A replacement worker in this slot may already have re-bound the path.
            if os.stat(path).st_ino == inode:
                os.unlink(path)
        except FileNotFoundError:
            pass
        logger.info(f"Stopped serving process metrics for worker {self.worker_id}")
