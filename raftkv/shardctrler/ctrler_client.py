"""Client for the replicated shard controller service."""

from __future__ import annotations

import queue
import secrets
import threading
from typing import Any, Sequence

from ..raft.messages import Peer
from .ctrler_common import Config, Err, JoinArgs, LeaveArgs, MoveArgs, QueryArgs, Reply


def _nrand() -> int:
    return secrets.randbelow(1 << 62)


class Clerk:
    """Sends controller requests, finding and remembering the leader.

    Requests are retried until some server answers OK; each request carries
    this clerk's id and a fresh sequence number so servers can drop repeats.
    """

    rpc_timeout = 1.0

    def __init__(self, servers: Sequence[Peer]) -> None:
        self._servers = list(servers)
        self.client_id = _nrand()
        self._seq = 0
        self._leader_id = 0
        self._lock = threading.Lock()

    def _next_seq(self) -> int:
        with self._lock:
            self._seq += 1
            return self._seq

    def query(self, num: int) -> Config:
        """Fetch configuration ``num``, or the latest one if ``num`` is -1."""
        args = QueryArgs(client_id=self.client_id, seq=self._next_seq(), num=num)
        return self._call("ShardCtrler.Query", args).config

    def join(self, servers: dict[int, list[str]]) -> None:
        """Add replica groups, given as gid -> server names."""
        args = JoinArgs(client_id=self.client_id, seq=self._next_seq(), servers=servers)
        self._call("ShardCtrler.Join", args)

    def leave(self, gids: list[int]) -> None:
        """Remove the given replica groups."""
        args = LeaveArgs(client_id=self.client_id, seq=self._next_seq(), gids=list(gids))
        self._call("ShardCtrler.Leave", args)

    def move(self, shard: int, gid: int) -> None:
        """Assign ``shard`` to group ``gid``."""
        args = MoveArgs(client_id=self.client_id, seq=self._next_seq(), shard=shard, gid=gid)
        self._call("ShardCtrler.Move", args)

    def _call(self, method: str, args: Any) -> Reply:
        with self._lock:
            leader = self._leader_id
        while True:
            outcome: queue.Queue = queue.Queue(maxsize=1)
            server = self._servers[leader]
            threading.Thread(
                target=lambda srv=server: outcome.put(srv.call(method, args)),
                daemon=True,
            ).start()
            try:
                reply = outcome.get(timeout=self.rpc_timeout)
            except queue.Empty:
                continue

            if reply is None or reply.err == Err.WRONG_LEADER:
                leader = (leader + 1) % len(self._servers)
                continue
            if reply.err == Err.WRONG_TERM:
                continue

            with self._lock:
                self._leader_id = leader
            return reply