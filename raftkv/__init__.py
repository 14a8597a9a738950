"""Raft consensus, a replicated shard controller and a sharded key/value client."""

__version__ = "0.1.0"