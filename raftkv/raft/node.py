"""A single Raft peer: leader election, log replication and snapshots."""

from __future__ import annotations

import bisect
import logging
import pickle
import queue
import random
import threading
import time
from typing import Any, Sequence

from .messages import (
    AppendEntriesArgs,
    AppendEntriesReply,
    ApplyMsg,
    InstallSnapshotArgs,
    InstallSnapshotReply,
    LogEntry,
    Peer,
    RequestVoteArgs,
    RequestVoteReply,
    State,
)
from .persister import Persister

_log = logging.getLogger(__name__)

HEARTBEAT_INTERVAL = 0.010
MIN_EMPTY_APPEND_INTERVAL = 0.100
ELECTION_TIMEOUT_BASE_MS = 200
ELECTION_TIMEOUT_SPREAD_MS = 200


def _spawn(target: Any, *args: Any) -> None:
    threading.Thread(target=target, args=args, daemon=True).start()


class Raft:
    """One Raft peer.

    Committed commands and installed snapshots are delivered as ``ApplyMsg``
    objects on ``apply_queue``, which must be unbounded.
    """

    def __init__(
        self,
        peers: Sequence[Peer],
        me: int,
        persister: Persister,
        apply_queue: queue.Queue,
    ) -> None:
        self._lock = threading.Lock()
        self._apply_cond = threading.Condition(self._lock)
        self._peers = list(peers)
        self._persister = persister
        self.me = me
        self._dead = threading.Event()

        self._state = State.FOLLOWER
        now = time.monotonic()
        self._last_heartbeat = now
        self._last_append = [now] * len(self._peers)

        self._current_term = 0
        self._voted_for = -1
        self._log: list[LogEntry] = [LogEntry(0, 0, None)]
        self._snapshot = persister.read_snapshot()
        self._snapshot_term = 0
        self._snapshot_index = 0
        self._read_persist(persister.read_raft_state())

        self._commit_index = self._snapshot_index
        self._last_applied = self._snapshot_index

        next_index = self._last_log().index + 1
        self._next_index = [next_index] * len(self._peers)
        self._match_index = [self._snapshot_index] * len(self._peers)

        self._apply_queue = apply_queue
        _spawn(self._applier)
        _spawn(self._election_ticker)

    # ----- helpers (call with the lock held) -----

    def _last_log(self) -> LogEntry:
        return self._log[-1]

    def _lower_bound(self, term: int) -> int:
        return bisect.bisect_left(self._log, term, key=lambda e: e.term)

    def _upper_bound(self, term: int) -> int:
        return bisect.bisect_right(self._log, term, key=lambda e: e.term)

    def _persist(self) -> None:
        state = pickle.dumps(
            (
                self._current_term,
                self._voted_for,
                self._log,
                self._snapshot_term,
                self._snapshot_index,
            )
        )
        self._persister.save(state, self._snapshot)

    def _read_persist(self, data: bytes) -> None:
        if not data:
            return
        (
            self._current_term,
            self._voted_for,
            self._log,
            self._snapshot_term,
            self._snapshot_index,
        ) = pickle.loads(data)

    def _convert_to_follower(self, term: int, need_persist: bool) -> None:
        self._current_term = term
        self._state = State.FOLLOWER
        if need_persist:
            self._persist()

    # ----- public API -----

    def get_state(self) -> tuple[int, bool]:
        """Return the current term and whether this peer believes it leads."""
        with self._lock:
            return self._current_term, self._state == State.LEADER

    def get_log_term(self, index: int) -> int:
        """Term of the entry at ``index``, or -1 if it is in the snapshot."""
        with self._lock:
            if index <= self._snapshot_index:
                return -1
            return self._log[index - self._snapshot_index].term

    def start(self, command: Any) -> tuple[int, int, bool]:
        """Append ``command`` if leader; return (index, term, is_leader)."""
        with self._lock:
            if self._state != State.LEADER:
                return -1, -1, False
            index = self._last_log().index + 1
            term = self._current_term
            self._log.append(LogEntry(term, index, command))
            self._persist()
            return index, term, True

    def snapshot(self, index: int, snapshot: bytes) -> None:
        """Discard log entries up to and including ``index``."""
        with self._lock:
            if index <= self._snapshot_index or index > self._last_log().index:
                return
            pos = index - self._snapshot_index
            entry = self._log[pos]
            self._log = self._log[pos:]
            self._snapshot = snapshot
            self._snapshot_term = entry.term
            self._snapshot_index = entry.index
            self._persist()

    def kill(self) -> None:
        self._dead.set()
        with self._apply_cond:
            self._apply_cond.notify_all()

    def killed(self) -> bool:
        return self._dead.is_set()

    # ----- RPC handlers -----

    def install_snapshot(self, args: InstallSnapshotArgs) -> InstallSnapshotReply:
        with self._lock:
            self._last_heartbeat = time.monotonic()
            reply = InstallSnapshotReply(term=self._current_term)
            if self._current_term > args.term:
                return reply

            need_persist = False
            if self._current_term < args.term:
                self._convert_to_follower(args.term, False)
                need_persist = True
            self._state = State.FOLLOWER

            if self._last_applied >= args.last_included_index:
                if need_persist:
                    self._persist()
                return reply

            pos = min(args.last_included_index - self._snapshot_index, len(self._log) - 1)
            head = self._log[pos]
            self._log = [
                LogEntry(args.last_included_term, args.last_included_index, head.command)
            ] + self._log[pos + 1 :]

            self._commit_index = args.last_included_index
            self._last_applied = args.last_included_index
            self._snapshot = args.data
            self._snapshot_term = args.last_included_term
            self._snapshot_index = args.last_included_index
            self._persist()

            self._apply_queue.put(
                ApplyMsg(
                    command_valid=False,
                    snapshot_valid=True,
                    snapshot=args.data,
                    snapshot_term=args.last_included_term,
                    snapshot_index=args.last_included_index,
                )
            )
            return reply

    def request_vote(self, args: RequestVoteArgs) -> RequestVoteReply:
        with self._lock:
            reply = RequestVoteReply(term=self._current_term, vote_granted=False)
            if self._current_term > args.term:
                return reply
            if (
                self._current_term == args.term
                and self._voted_for != -1
                and self._voted_for != args.candidate_id
            ):
                return reply

            need_persist = False
            if self._current_term < args.term:
                self._convert_to_follower(args.term, False)
                need_persist = True

            last = self._last_log()
            if last.term > args.last_log_term or (
                last.term == args.last_log_term and last.index > args.last_log_index
            ):
                if need_persist:
                    self._persist()
                return reply

            self._last_heartbeat = time.monotonic()
            self._voted_for = args.candidate_id
            reply.vote_granted = True
            self._persist()
            return reply

    def append_entries(self, args: AppendEntriesArgs) -> AppendEntriesReply:
        with self._lock:
            self._last_heartbeat = time.monotonic()
            reply = AppendEntriesReply(term=self._current_term)
            if self._current_term > args.term:
                return reply

            need_persist = False
            if self._current_term < args.term:
                self._convert_to_follower(args.term, False)
                need_persist = True
            self._state = State.FOLLOWER

            prev = args.prev_log_index - self._snapshot_index
            if prev >= len(self._log):
                reply.x_term = -1
                reply.x_index = -1
                reply.x_len = self._last_log().index + 1
                if need_persist:
                    self._persist()
                return reply

            if prev >= 0 and self._log[prev].term != args.prev_log_term:
                reply.x_term = self._log[prev].term
                reply.x_index = self._lower_bound(reply.x_term) + self._snapshot_index
                reply.x_len = -1
                if need_persist:
                    self._persist()
                return reply

            for entry in args.entries:
                pos = entry.index - self._snapshot_index
                if pos <= 0:
                    continue
                if pos < len(self._log):
                    if self._log[pos].term == entry.term:
                        continue
                    del self._log[pos:]
                if len(self._log) != pos:
                    _log.warning(
                        "[%d] entry index %d does not match position %d",
                        self.me,
                        entry.index,
                        len(self._log) + self._snapshot_index,
                    )
                self._log.append(entry)
                need_persist = True

            if args.leader_commit > self._commit_index:
                self._commit_index = min(args.leader_commit, self._last_log().index)
                self._apply_cond.notify_all()
            reply.success = True
            if need_persist:
                self._persist()
            return reply

    # ----- election -----

    def _election_ticker(self) -> None:
        while not self.killed():
            ms = ELECTION_TIMEOUT_BASE_MS + random.randrange(ELECTION_TIMEOUT_SPREAD_MS)
            time.sleep(ms / 1000)
            with self._lock:
                elapsed = time.monotonic() - self._last_heartbeat
                if self._state != State.LEADER and elapsed > ms / 1000:
                    _spawn(self._start_election)

    def _start_election(self) -> None:
        with self._lock:
            self._state = State.CANDIDATE
            self._last_heartbeat = time.monotonic()
            self._current_term += 1
            self._voted_for = self.me
            term = self._current_term
            last = self._last_log()
            self._persist()

        votes = 1
        done = False

        def ask(server: int) -> None:
            nonlocal votes, done
            args = RequestVoteArgs(term, self.me, last.index, last.term)
            reply = self._peers[server].call("Raft.RequestVote", args)
            if reply is None:
                return
            with self._lock:
                if self._current_term < reply.term:
                    self._convert_to_follower(reply.term, True)
                if self._state != State.CANDIDATE or self._current_term != term:
                    return
                if not reply.vote_granted:
                    return
                votes += 1
                if not done and votes > len(self._peers) // 2:
                    self._state = State.LEADER
                    next_index = self._last_log().index + 1
                    self._next_index = [next_index] * len(self._peers)
                    self._match_index = [self._snapshot_index] * len(self._peers)
                    _spawn(self._heartbeat)
                    done = True

        for server in range(len(self._peers)):
            if server != self.me:
                _spawn(ask, server)

    # ----- replication -----

    def _heartbeat(self) -> None:
        with self._lock:
            term = self._current_term
        while not self.killed():
            with self._lock:
                if self._state != State.LEADER or self._current_term != term:
                    return
            for server in range(len(self._peers)):
                if server != self.me:
                    _spawn(self._replicate, server, term)
            time.sleep(HEARTBEAT_INTERVAL)

    def _replicate(self, server: int, term: int) -> None:
        with self._lock:
            if self._next_index[server] <= self._snapshot_index:
                snap_args = InstallSnapshotArgs(
                    term=term,
                    leader_id=self.me,
                    last_included_index=self._snapshot_index,
                    last_included_term=self._snapshot_term,
                    data=self._snapshot,
                )
                append_args = None
            else:
                snap_args = None
                start = self._next_index[server] - self._snapshot_index
                prev = self._log[start - 1]
                now = time.monotonic()
                if (
                    start == len(self._log)
                    and now - self._last_append[server] < MIN_EMPTY_APPEND_INTERVAL
                ):
                    return
                self._last_append[server] = now
                append_args = AppendEntriesArgs(
                    term=term,
                    leader_id=self.me,
                    prev_log_index=prev.index,
                    prev_log_term=prev.term,
                    entries=list(self._log[start:]),
                    leader_commit=self._commit_index,
                )
        if snap_args is not None:
            self._send_install_snapshot(server, term, snap_args)
        else:
            self._send_append_entries(server, term, append_args)

    def _send_install_snapshot(self, server: int, term: int, args: InstallSnapshotArgs) -> None:
        reply = self._peers[server].call("Raft.InstallSnapshot", args)
        if reply is None:
            return
        with self._lock:
            if self._current_term < reply.term:
                self._convert_to_follower(reply.term, True)
            if self._state != State.LEADER or self._current_term != term:
                return
            self._update_indexes(server, term, args.last_included_index)

    def _send_append_entries(self, server: int, term: int, args: AppendEntriesArgs) -> None:
        reply = self._peers[server].call("Raft.AppendEntries", args)
        if reply is None:
            return
        with self._lock:
            if self._current_term < reply.term:
                self._convert_to_follower(reply.term, True)
            if self._state != State.LEADER or self._current_term != term:
                return
            if not reply.success:
                self._next_index[server] = min(
                    self._next_index[server], self._fast_back_up(reply)
                )
            elif args.entries:
                self._update_indexes(server, term, args.entries[-1].index)

    def _fast_back_up(self, reply: AppendEntriesReply) -> int:
        if reply.x_len != -1:
            return reply.x_len
        pos = self._lower_bound(reply.x_term)
        if pos < len(self._log) and self._log[pos].term == reply.x_term:
            return self._upper_bound(reply.x_term) + self._snapshot_index
        return reply.x_index

    def _update_indexes(self, server: int, term: int, last_matched: int) -> None:
        self._next_index[server] = max(self._next_index[server], last_matched + 1)
        self._match_index[server] = max(self._match_index[server], last_matched)
        for n in range(self._match_index[server], self._commit_index, -1):
            if self._log[n - self._snapshot_index].term != term:
                continue
            count = 1 + sum(
                1 for i, match in enumerate(self._match_index) if i != self.me and match >= n
            )
            if count > len(self._peers) // 2:
                self._commit_index = n
                self._apply_cond.notify_all()
                break

    # ----- applying -----

    def _applier(self) -> None:
        with self._apply_cond:
            while not self.killed():
                if self._commit_index <= self._last_applied:
                    self._apply_cond.wait(0.1)
                    continue
                pos = self._last_applied + 1 - self._snapshot_index
                if pos <= 0:
                    self._last_applied = self._snapshot_index
                    continue
                entry = self._log[pos]
                self._apply_queue.put(
                    ApplyMsg(command_valid=True, command=entry.command, command_index=entry.index)
                )
                self._last_applied += 1


def make(
    peers: Sequence[Peer], me: int, persister: Persister, apply_queue: queue.Queue
) -> Raft:
    """Create and start a Raft peer."""
    return Raft(peers, me, persister, apply_queue)