"""Client for the sharded key/value service."""

from __future__ import annotations

import secrets
import threading
import time
from typing import Any, Callable, Sequence

from ..raft.messages import Peer
from ..shardctrler.ctrler_client import Clerk as CtrlerClerk
from ..shardctrler.ctrler_common import Config
from .kv_common import Err, GetArgs, PutAppendArgs, key2shard


def _nrand() -> int:
    return secrets.randbelow(1 << 62)


class Clerk:
    """Looks up which group owns a key's shard and sends the request there.

    Requests are retried until they succeed, re-reading the latest
    configuration from the controller before every round.
    """

    retry_interval = 0.1

    def __init__(self, ctrlers: Sequence[Peer], make_end: Callable[[str], Peer]) -> None:
        self._sm = CtrlerClerk(ctrlers)
        self._make_end = make_end
        self.client_id = _nrand()
        self._seq = 0
        self._lock = threading.Lock()
        self.config = Config()

    def _next_seq(self) -> int:
        with self._lock:
            self._seq += 1
            return self._seq

    def get(self, key: str) -> str:
        """Return the value for ``key``, or "" if it does not exist."""
        args = GetArgs(client_id=self.client_id, seq=self._next_seq(), key=key)
        return self._call(key2shard(key), "ShardKV.Get", args).value

    def put_append(self, key: str, value: str, op: str) -> None:
        """Send a Put or Append of ``value`` to ``key``."""
        args = PutAppendArgs(
            client_id=self.client_id, seq=self._next_seq(), key=key, value=value, op=op
        )
        self._call(key2shard(key), "ShardKV.PutAppend", args)

    def put(self, key: str, value: str) -> None:
        self.put_append(key, value, "Put")

    def append(self, key: str, value: str) -> None:
        self.put_append(key, value, "Append")

    def _call(self, shard: int, method: str, args: Any) -> Any:
        while True:
            self.config = self._sm.query(-1)
            gid = self.config.shards[shard]
            for name in self.config.groups.get(gid, []):
                reply = self._make_end(name).call(method, args)
                if reply is None:
                    continue
                if reply.err in (Err.OK, Err.NO_KEY):
                    return reply
                if reply.err == Err.WRONG_GROUP:
                    break
            time.sleep(self.retry_interval)