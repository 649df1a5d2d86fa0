"""Per-key lock registries.

Mutations of one user's state are serialized; different users never contend.
Locks are never removed, so every holder of a key always sees the same lock.
"""

from __future__ import annotations

import asyncio
import threading


class KeyedLock:
    """One re-entrant thread lock per key, created lazily."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.RLock] = {}

    def __call__(self, key: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    def __len__(self) -> int:
        return len(self._locks)


class AsyncKeyedLock:
    """One asyncio lock per key, for coroutines that await between read and write."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def __call__(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock
