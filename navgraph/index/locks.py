"""
Locking primitives for the proximity graph.

ReadWriteLock guards whole-structure operations against searches;
NodeLocks provides the per-node locks of concurrent-writer mode.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager, nullcontext
from typing import ContextManager, Iterator, List


class ReadWriteLock:
    """
    A writer-preferring readers-writer lock.
    
    Any number of readers may hold the lock together; a writer holds it
    alone. Once a writer is waiting, new readers queue behind it.
    
    Example:
        >>> lock = ReadWriteLock()
        >>> with lock.read():
        ...     pass
        >>> with lock.write():
        ...     pass
    """
    
    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0
    
    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._waiting_writers:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()
    
    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._waiting_writers += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._waiting_writers -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class MutationLock:
    """
    Serializes index mutations according to the concurrency mode.
    
    In single-writer mode both shared() and exclusive() take the same
    mutex. In concurrent mode insertions share the lock and run in
    parallel while removals take it exclusively.
    """
    
    def __init__(self, concurrent: bool):
        self.concurrent = concurrent
        if concurrent:
            self._rw = ReadWriteLock()
        else:
            self._mutex = threading.Lock()
    
    def shared(self) -> ContextManager:
        if self.concurrent:
            return self._rw.read()
        return self._mutex
    
    def exclusive(self) -> ContextManager:
        if self.concurrent:
            return self._rw.write()
        return self._mutex
    
    def acquire(self, exclusive: bool) -> ContextManager:
        return self.exclusive() if exclusive else self.shared()


class NodeLocks:
    """
    One lock per node id.
    
    hold() acquires the locks of several nodes in ascending node id
    order, so two threads locking overlapping sets can't deadlock. When
    disabled (single-writer mode) every hold() is a no-op.
    """
    
    def __init__(self, enabled: bool, capacity: int = 0):
        self.enabled = enabled
        self._locks: List[threading.Lock] = []
        self._grow_lock = threading.Lock()
        if enabled:
            self.grow(capacity)
    
    def grow(self, capacity: int) -> None:
        """Make sure locks exist for node ids below capacity."""
        if not self.enabled or capacity <= len(self._locks):
            return
        with self._grow_lock:
            missing = capacity - len(self._locks)
            if missing > 0:
                self._locks.extend(threading.Lock() for _ in range(missing))
    
    def reset(self, capacity: int = 0) -> None:
        """Replace all locks; only valid while no thread holds any."""
        with self._grow_lock:
            self._locks = []
        self.grow(capacity)
    
    @contextmanager
    def _hold(self, nodes: List[int]) -> Iterator[None]:
        acquired = []
        try:
            for node in nodes:
                lock = self._locks[node]
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()
    
    def hold(self, *nodes: int) -> ContextManager:
        if not self.enabled:
            return nullcontext()
        ordered = sorted(set(nodes))
        self.grow(ordered[-1] + 1)
        return self._hold(ordered)
    
    def __len__(self) -> int:
        return len(self._locks)
