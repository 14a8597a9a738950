"""Shard controller types: configurations, RPC arguments and replies."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any

N_SHARDS = 10
INVALID_GROUP = 0


class Err(str, enum.Enum):
    OK = "OK"
    WRONG_LEADER = "ErrWrongLeader"
    WRONG_TERM = "ErrWrongTerm"

    def __str__(self) -> str:
        return self.value


def _go_value(value: Any) -> str:
    if isinstance(value, dict):
        items = " ".join(f"{_go_value(k)}:{_go_value(value[k])}" for k in sorted(value))
        return f"map[{items}]"
    if isinstance(value, (list, tuple)):
        return "[" + " ".join(_go_value(v) for v in value) + "]"
    return str(value)


@dataclass
class Config:
    """An assignment of shards to replica groups.

    ``shards[i]`` is the gid serving shard ``i``; ``groups`` maps a gid to
    its server names. Configuration 0 has no groups and every shard in the
    invalid group 0.
    """

    num: int = 0
    shards: list[int] = field(default_factory=lambda: [INVALID_GROUP] * N_SHARDS)
    groups: dict[int, list[str]] = field(default_factory=dict)

    def clone(self) -> Config:
        """Return a deep copy that shares no lists or dicts with this one."""
        return Config(
            num=self.num,
            shards=list(self.shards),
            groups={gid: list(names) for gid, names in self.groups.items()},
        )

    def _min_max(self) -> tuple[int, int, int, int]:
        """Count shards per group, clearing shards of unknown groups.

        Returns (min_count, min_gid, max_count, max_gid); ties go to the
        larger gid, and any unassigned shard makes the invalid group the max.
        """
        counts = {gid: 0 for gid in self.groups if gid != INVALID_GROUP}
        unassigned = 0
        for i, gid in enumerate(self.shards):
            if gid in counts:
                counts[gid] += 1
            else:
                self.shards[i] = INVALID_GROUP
                unassigned += 1

        if counts:
            min_gid = max(counts, key=lambda g: (-counts[g], g))
            max_gid = max(counts, key=lambda g: (counts[g], g))
            min_cnt, max_cnt = counts[min_gid], counts[max_gid]
        else:
            min_cnt, min_gid, max_cnt, max_gid = N_SHARDS, INVALID_GROUP, 0, INVALID_GROUP

        if unassigned > 0:
            max_cnt, max_gid = unassigned, INVALID_GROUP
        return min_cnt, min_gid, max_cnt, max_gid

    def balance(self) -> None:
        """Spread shards evenly over the groups, moving as few as possible."""
        while True:
            min_cnt, min_gid, max_cnt, max_gid = self._min_max()
            if min_gid == INVALID_GROUP:
                self.shards = [INVALID_GROUP] * N_SHARDS
                return
            if max_gid != INVALID_GROUP and min_cnt + 1 >= max_cnt:
                return
            self.shards[self.shards.index(max_gid)] = min_gid


@dataclass
class JoinArgs:
    client_id: int = 0
    seq: int = 0
    servers: dict[int, list[str]] = field(default_factory=dict)

    def __str__(self) -> str:
        return (
            f"{{Servers = {_go_value(self.servers)}, ClientId = {self.client_id}, "
            f"Seq = {self.seq}}}"
        )


@dataclass
class LeaveArgs:
    client_id: int = 0
    seq: int = 0
    gids: list[int] = field(default_factory=list)

    def __str__(self) -> str:
        return (
            f"{{GIDs = {_go_value(self.gids)}, ClientId = {self.client_id}, "
            f"Seq = {self.seq}}}"
        )


@dataclass
class MoveArgs:
    client_id: int = 0
    seq: int = 0
    shard: int = 0
    gid: int = 0

    def __str__(self) -> str:
        return (
            f"{{Shard = {self.shard}, GID = {self.gid}, ClientId = {self.client_id}, "
            f"Seq = {self.seq}}}"
        )


@dataclass
class QueryArgs:
    client_id: int = 0
    seq: int = 0
    num: int = -1

    def __str__(self) -> str:
        return f"{{Num = {self.num}, ClientId = {self.client_id}, Seq = {self.seq}}}"


@dataclass
class Reply:
    """Common part of every controller reply."""

    err: str = ""

    def __str__(self) -> str:
        return f"{{Err = {self.err}}}"


@dataclass
class JoinReply(Reply):
    pass


@dataclass
class LeaveReply(Reply):
    pass


@dataclass
class MoveReply(Reply):
    pass


@dataclass
class QueryReply(Reply):
    config: Config = field(default_factory=Config)

    def __str__(self) -> str:
        return f"{{Err = {self.err}, Config = {self.config}}}"


def new_reply(type_name: str) -> Reply:
    """Return an empty reply for the named operation; unknown names get Query."""
    if type_name == "Join":
        return JoinReply()
    if type_name == "Leave":
        return LeaveReply()
    if type_name == "Move":
        return MoveReply()
    return QueryReply()