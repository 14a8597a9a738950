"""Holds a Raft peer's persistent state and the service's snapshot."""

from __future__ import annotations

import threading


class Persister:
    """Thread-safe store for Raft state and a snapshot, saved together."""

    def __init__(self, raftstate: bytes = b"", snapshot: bytes = b"") -> None:
        self._lock = threading.Lock()
        self._raftstate = bytes(raftstate or b"")
        self._snapshot = bytes(snapshot or b"")

    def copy(self) -> Persister:
        """Return a new persister holding the same contents."""
        with self._lock:
            return Persister(self._raftstate, self._snapshot)

    def read_raft_state(self) -> bytes:
        with self._lock:
            return self._raftstate

    def raft_state_size(self) -> int:
        with self._lock:
            return len(self._raftstate)

    def save(self, raftstate: bytes | None, snapshot: bytes | None) -> None:
        """Save Raft state and snapshot as one atomic action."""
        with self._lock:
            self._raftstate = bytes(raftstate or b"")
            self._snapshot = bytes(snapshot or b"")

    def read_snapshot(self) -> bytes:
        with self._lock:
            return self._snapshot

    def snapshot_size(self) -> int:
        with self._lock:
            return len(self._snapshot)