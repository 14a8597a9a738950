"""Messages exchanged between Raft peers and with the service above them."""

from __future__ import annotations

import copy
import enum
import threading
from dataclasses import dataclass, field
from typing import Any, Callable


def _fmt(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "<nil>"
    return str(value)


class Peer:
    """An in-process RPC endpoint that dispatches calls to bound handlers.

    Arguments and replies are deep-copied, so caller and callee never share
    state. A call to a disconnected peer, or to an unknown method, is lost
    and yields None.
    """

    def __init__(self, handlers: dict[str, Callable[[Any], Any]] | None = None) -> None:
        self._lock = threading.Lock()
        self._handlers: dict[str, Callable[[Any], Any]] = dict(handlers or {})
        self.connected = True

    def bind(self, method: str, handler: Callable[[Any], Any]) -> None:
        with self._lock:
            self._handlers[method] = handler

    def call(self, method: str, args: Any) -> Any | None:
        """Deliver a request; return the reply, or None if it was lost."""
        with self._lock:
            if not self.connected:
                return None
            handler = self._handlers.get(method)
        if handler is None:
            return None
        reply = handler(copy.deepcopy(args))
        if not self.connected:
            return None
        return copy.deepcopy(reply)


@dataclass
class ApplyMsg:
    """A committed command or an installed snapshot, sent to the service."""

    command_valid: bool = False
    command: Any = None
    command_index: int = 0
    snapshot_valid: bool = False
    snapshot: bytes = b""
    snapshot_term: int = 0
    snapshot_index: int = 0

    def __str__(self) -> str:
        if self.command_valid:
            return (
                f"{{CommandValid = {_fmt(self.command_valid)}, "
                f"Command = {_fmt(self.command)}, CommandIndex = {self.command_index}}}"
            )
        return (
            f"{{SnapshotValid = {_fmt(self.snapshot_valid)}, "
            f"len(Snapshot) = {len(self.snapshot or b'')}, "
            f"SnapshotTerm = {self.snapshot_term}, SnapshotIndex = {self.snapshot_index}}}"
        )


class State(str, enum.Enum):
    FOLLOWER = "Follower"
    CANDIDATE = "Candidate"
    LEADER = "Leader"

    def __str__(self) -> str:
        return self.value


@dataclass
class LogEntry:
    term: int = 0
    index: int = 0
    command: Any = None

    def __str__(self) -> str:
        return f"{{Term = {self.term}, Index = {self.index}, Command = {_fmt(self.command)}}}"


@dataclass
class RequestVoteArgs:
    term: int = 0
    candidate_id: int = 0
    last_log_index: int = 0
    last_log_term: int = 0

    def __str__(self) -> str:
        return (
            f"{{Term = {self.term}, CandidateId = {self.candidate_id}, "
            f"LastLogIndex = {self.last_log_index}, LastLogTerm = {self.last_log_term}}}"
        )


@dataclass
class RequestVoteReply:
    term: int = 0
    vote_granted: bool = False


@dataclass
class AppendEntriesArgs:
    term: int = 0
    leader_id: int = 0
    prev_log_index: int = 0
    prev_log_term: int = 0
    entries: list[LogEntry] = field(default_factory=list)
    leader_commit: int = 0

    def __str__(self) -> str:
        return (
            f"{{Term = {self.term}, LeaderId = {self.leader_id}, "
            f"PrevLogIndex = {self.prev_log_index}, PrevLogTerm = {self.prev_log_term}, "
            f"len(entries) = {len(self.entries)}, LeaderCommit = {self.leader_commit}}}"
        )


@dataclass
class AppendEntriesReply:
    """Reply to AppendEntries; x_* fields help the leader back up quickly."""

    term: int = 0
    success: bool = False
    x_term: int = 0
    x_index: int = 0
    x_len: int = 0

    def __str__(self) -> str:
        if self.success:
            return f"{{Term = {self.term}, Success = {_fmt(self.success)}}}"
        return (
            f"{{Term = {self.term}, Success = {_fmt(self.success)}, XTerm = {self.x_term}, "
            f"XIndex = {self.x_index}, XLen = {self.x_len}}}"
        )


@dataclass
class InstallSnapshotArgs:
    term: int = 0
    leader_id: int = 0
    last_included_index: int = 0
    last_included_term: int = 0
    data: bytes = b""

    def __str__(self) -> str:
        return (
            f"{{Term = {self.term}, LeaderId = {self.leader_id}, "
            f"LastIncludedIndex = {self.last_included_index}, "
            f"LastIncludedTerm = {self.last_included_term}}}"
        )


@dataclass
class InstallSnapshotReply:
    term: int = 0