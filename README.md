# raftkv

Raft consensus, a replicated shard controller built on it, and the client
side of a sharded key/value service. Everything runs in one process, with
threads and an in-memory RPC endpoint. The package needs nothing beyond the
standard library and supports Python 3.10 and later.

```
pip install .
```

## Layers

- `raftkv.raft`
  - `persister.Persister` holds a peer's Raft state and snapshot. It saves
    both together with `save`, reads them with `read_raft_state` and
    `read_snapshot`, and can be duplicated with `copy`.
  - `node.Raft`, created with `node.make(peers, me, persister, apply_queue)`,
    is one Raft peer. It handles leader election, log replication,
    persistence and log compaction through `snapshot(index, data)`. Commands
    go in with `start(command)`, which returns `(index, term, is_leader)`.
    `get_state()` returns `(term, is_leader)`. Committed entries and
    installed snapshots come out as `messages.ApplyMsg` values on
    `apply_queue`, which must be an unbounded `queue.Queue`. `kill()` stops
    the peer's background threads.
  - `messages` holds the RPC argument and reply dataclasses, plus `State`
    and `LogEntry`.
- `raftkv.shardctrler`
  - `ctrler_server.ShardCtrler`, created with `start_server(peers, me,
    persister)`, is one replica of the shard controller. It keeps a numbered
    history of `Config` values in a Raft log.
  - `ctrler_client.Clerk` talks to the replicas through `join`, `leave`,
    `move` and `query`. It finds the leader and retries until a request
    succeeds.
  - `ctrler_common.Config` gives each of `N_SHARDS` (10) shards a gid.
    `Config.balance()` spreads the shards as evenly as it can across the
    known groups, and moves as few shards as it can.
- `raftkv.shardkv`
  - `kv_common` holds the key/value RPC types and `key2shard(key)`, which
    maps a key to a shard by its first byte.
  - `kv_client.Clerk` offers `get`, `put` and `append`. It asks the
    controller for the latest configuration and sends each request to the
    group that owns the key's shard.

## Peers

`raftkv.raft.messages.Peer` is an in-process endpoint. Handlers are bound to
method names with `peer.bind(name, handler)`. `peer.call(name, args)` passes
a deep copy of `args` to the handler and returns a deep copy of its reply.
It returns `None` when the peer's `connected` flag is false or when the
method is unknown. Setting `connected = False` simulates a partition.

The Raft peers call `Raft.RequestVote`, `Raft.AppendEntries` and
`Raft.InstallSnapshot`. The controller clerk calls `ShardCtrler.Join`,
`ShardCtrler.Leave`, `ShardCtrler.Move` and `ShardCtrler.Query`. A
controller cluster can be wired up like this:

```python
from raftkv.raft.messages import Peer
from raftkv.raft.persister import Persister
from raftkv.shardctrler.ctrler_server import start_server
from raftkv.shardctrler.ctrler_client import Clerk

n = 3
peers = [Peer() for _ in range(n)]
replicas = [start_server(peers, i, Persister()) for i in range(n)]
for peer, sc in zip(peers, replicas):
    rf = sc.raft()
    peer.bind("Raft.RequestVote", rf.request_vote)
    peer.bind("Raft.AppendEntries", rf.append_entries)
    peer.bind("Raft.InstallSnapshot", rf.install_snapshot)
    peer.bind("ShardCtrler.Join", sc.join)
    peer.bind("ShardCtrler.Leave", sc.leave)
    peer.bind("ShardCtrler.Move", sc.move)
    peer.bind("ShardCtrler.Query", sc.query)

ck = Clerk(peers)
ck.join({1: ["x", "y", "z"]})
ck.join({2: ["a", "b", "c"]})
config = ck.query(-1)          # latest configuration
print(config.num, config.shards, config.groups)
ck.move(0, 2)
ck.leave([1])
```

`query(num)` returns configuration `num`. A `num` of -1, or one past the
latest, returns the latest configuration.

## What is not included

The package has no key/value server. `kv_client.Clerk(ctrlers, make_end)`
sends `ShardKV.Get` and `ShardKV.PutAppend` calls to the peers that
`make_end(server_name)` returns. It expects `GetReply` or `PutAppendReply`
values from `kv_common` in answer, and it retries until one reports `OK` or
`ErrNoKey`. Something else has to serve those methods and store the data.
Without such a server, key/value requests never complete.

There is also no network transport and no on-disk storage. `Peer` works only
within one process, and `Persister` keeps its state in memory.

## Tests

```
pip install .[test]
pytest
```