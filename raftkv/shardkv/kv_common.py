"""Sharded key/value service types: errors, RPC arguments and replies."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any

from ..shardctrler.ctrler_common import N_SHARDS


class Err(str, enum.Enum):
    OK = "OK"
    NO_KEY = "ErrNoKey"
    WRONG_GROUP = "ErrWrongGroup"
    WRONG_LEADER = "ErrWrongLeader"
    WRONG_TERM = "ErrWrongTerm"
    CONFIG_NOT_MATCH = "ErrConfigNotMatch"

    def __str__(self) -> str:
        return self.value


def _go_value(value: Any) -> str:
    if isinstance(value, dict):
        items = " ".join(f"{_go_value(k)}:{_go_value(value[k])}" for k in sorted(value))
        return f"map[{items}]"
    return str(value)


def key2shard(key: str) -> int:
    """The shard a key belongs to, decided by its first byte."""
    data = key.encode("utf-8")
    shard = data[0] if data else 0
    return shard % N_SHARDS


@dataclass
class Result:
    """The outcome of a client's most recently applied request."""

    seq: int = 0
    err: str = ""
    value: str = ""

    def __str__(self) -> str:
        return f"{{{self.seq} {self.err} {self.value}}}"


@dataclass
class PutAppendArgs:
    client_id: int = 0
    seq: int = 0
    key: str = ""
    value: str = ""
    op: str = ""  # "Put" or "Append"

    def __str__(self) -> str:
        return (
            f"{{Key = {self.key}, Value = {self.value}, Op = {self.op}, "
            f"ClientId = {self.client_id}, Seq = {self.seq}}}"
        )


@dataclass
class _BaseReply:
    err: str = ""
    client_id: int = 0
    seq: int = 0


@dataclass
class PutAppendReply(_BaseReply):
    def __str__(self) -> str:
        return f"{{Err = {self.err}}}"


@dataclass
class GetArgs:
    client_id: int = 0
    seq: int = 0
    key: str = ""

    def __str__(self) -> str:
        return f"{{Key = {self.key}, ClientId = {self.client_id}, Seq = {self.seq}}}"


@dataclass
class GetReply(_BaseReply):
    value: str = ""

    def __str__(self) -> str:
        return f"{{Err = {self.err}, Value = {self.value}}}"


@dataclass
class TransferArgs:
    """A shard's key/value pairs and duplicate table, sent to its new owner."""

    config_num: int = 0
    shard: int = 0
    table: dict[str, str] = field(default_factory=dict)
    last_result: dict[int, Result] = field(default_factory=dict)

    def __str__(self) -> str:
        return (
            f"{{ConfigNum = {self.config_num}, Shard = {self.shard}, "
            f"Table = {_go_value(self.table)}, LastResult = {_go_value(self.last_result)}}}"
        )


@dataclass
class TransferReply:
    err: str = ""


def new_reply(type_name: str) -> GetReply | PutAppendReply:
    """Return an empty reply for the named operation; anything but Get is PutAppend."""
    if type_name == "Get":
        return GetReply()
    return PutAppendReply()