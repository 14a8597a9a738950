"""Sharded key/value RPC types, shard mapping and client."""