"""Replicated shard controller: a Raft-backed history of configurations."""

from __future__ import annotations

import queue
import threading
from dataclasses import dataclass, field
from typing import Any, Sequence

from ..raft import node as raft_node
from ..raft.messages import Peer
from ..raft.node import Raft
from ..raft.persister import Persister
from .ctrler_common import (
    N_SHARDS,
    Config,
    Err,
    JoinArgs,
    JoinReply,
    LeaveArgs,
    LeaveReply,
    MoveArgs,
    MoveReply,
    QueryArgs,
    QueryReply,
)

_POLL_INTERVAL = 0.1


@dataclass
class Result:
    """The outcome of a client's most recently applied request."""

    seq: int = 0
    err: str = ""
    config: Config = field(default_factory=Config)


@dataclass
class Op:
    """A controller operation as it is stored in the Raft log."""

    type: str
    data: Any


class ShardCtrler:
    """One replica of the shard controller service."""

    def __init__(self, servers: Sequence[Peer], me: int, persister: Persister) -> None:
        self.me = me
        self._lock = threading.Lock()
        self._applied = threading.Condition(self._lock)
        self._configs: list[Config] = [Config()]
        self._last_applied = 0
        self._last_result: dict[int, Result] = {}
        self._dead = threading.Event()
        self._apply_queue: queue.Queue = queue.Queue()
        self._rf = raft_node.make(servers, me, persister, self._apply_queue)
        threading.Thread(target=self._apply, daemon=True).start()

    # ----- RPC handlers -----

    def join(self, args: JoinArgs) -> JoinReply:
        last = self._get_last_result(args.client_id)
        if last.seq == args.seq:
            return JoinReply(err=last.err)
        return JoinReply(err=self._wait_for_applied(Op("Join", args)))

    def leave(self, args: LeaveArgs) -> LeaveReply:
        last = self._get_last_result(args.client_id)
        if last.seq == args.seq:
            return LeaveReply(err=last.err)
        return LeaveReply(err=self._wait_for_applied(Op("Leave", args)))

    def move(self, args: MoveArgs) -> MoveReply:
        last = self._get_last_result(args.client_id)
        if last.seq == args.seq:
            return MoveReply(err=last.err)
        return MoveReply(err=self._wait_for_applied(Op("Move", args)))

    def query(self, args: QueryArgs) -> QueryReply:
        last = self._get_last_result(args.client_id)
        if last.seq == args.seq:
            return QueryReply(err=last.err, config=last.config.clone())
        err = self._wait_for_applied(Op("Query", args))
        reply = QueryReply(err=err)
        if err == Err.OK:
            reply.config = self._get_last_result(args.client_id).config.clone()
        return reply

    def kill(self) -> None:
        self._rf.kill()
        self._dead.set()
        with self._applied:
            self._applied.notify_all()

    def raft(self) -> Raft:
        """The Raft peer beneath this replica."""
        return self._rf

    # ----- internals -----

    def _get_last_result(self, client_id: int) -> Result:
        with self._lock:
            return self._last_result.get(client_id, Result())

    def _wait_for_applied(self, op: Op) -> Err:
        index, term, is_leader = self._rf.start(op)
        if not is_leader:
            return Err.WRONG_LEADER
        with self._applied:
            while self._last_applied < index:
                if self._dead.is_set():
                    return Err.WRONG_LEADER
                self._applied.wait(_POLL_INTERVAL)
            if self._rf.get_log_term(index) != term:
                return Err.WRONG_TERM
        return Err.OK

    def _is_duplicate(self, client_id: int, seq: int) -> bool:
        return self._last_result.get(client_id, Result()).seq == seq

    def _record(self, client_id: int, seq: int, config: Config | None = None) -> None:
        self._last_result[client_id] = Result(
            seq=seq, err=Err.OK, config=config if config is not None else Config()
        )

    def _next_config(self) -> Config:
        config = self._configs[-1].clone()
        config.num += 1
        return config

    def _apply_join(self, args: JoinArgs) -> None:
        if self._is_duplicate(args.client_id, args.seq):
            return
        config = self._next_config()
        for gid, names in args.servers.items():
            # A group that is already present keeps its server list.
            if gid not in config.groups:
                config.groups[gid] = list(names)
        config.balance()
        self._configs.append(config)
        self._record(args.client_id, args.seq)

    def _apply_leave(self, args: LeaveArgs) -> None:
        if self._is_duplicate(args.client_id, args.seq):
            return
        config = self._next_config()
        for gid in args.gids:
            config.groups.pop(gid, None)
        config.balance()
        self._configs.append(config)
        self._record(args.client_id, args.seq)

    def _apply_move(self, args: MoveArgs) -> None:
        if self._is_duplicate(args.client_id, args.seq):
            return
        config = self._next_config()
        if 0 <= args.shard < N_SHARDS:
            config.shards[args.shard] = args.gid
        self._configs.append(config)
        self._record(args.client_id, args.seq)

    def _apply_query(self, args: QueryArgs) -> None:
        if self._is_duplicate(args.client_id, args.seq):
            return
        num = args.num
        if num < 0 or num >= len(self._configs):
            num = len(self._configs) - 1
        self._record(args.client_id, args.seq, self._configs[num].clone())

    def _apply(self) -> None:
        handlers = {
            "Join": self._apply_join,
            "Leave": self._apply_leave,
            "Move": self._apply_move,
            "Query": self._apply_query,
        }
        while not self._dead.is_set():
            try:
                msg = self._apply_queue.get(timeout=_POLL_INTERVAL)
            except queue.Empty:
                continue
            if msg.snapshot_valid:
                continue
            op = msg.command
            with self._applied:
                handler = handlers.get(getattr(op, "type", None))
                if handler is not None:
                    handler(op.data)
                self._last_applied = msg.command_index
                self._applied.notify_all()


def start_server(servers: Sequence[Peer], me: int, persister: Persister) -> ShardCtrler:
    """Create and start a controller replica."""
    return ShardCtrler(servers, me, persister)