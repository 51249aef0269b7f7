"""Adapters to the local and remote systems of record."""

from entitysync.adapters.base import LocalStore, RemoteAdapter
from entitysync.adapters.http import HTTPRemoteAdapter
from entitysync.adapters.memory import InMemoryLocalStore, InMemoryRemoteAdapter

__all__ = [
    "HTTPRemoteAdapter",
    "InMemoryLocalStore",
    "InMemoryRemoteAdapter",
    "LocalStore",
    "RemoteAdapter",
]
