"""Raft peers, their messages and persistent state."""