from __future__ import annotations

import threading
from collections.abc import Callable, Hashable
from concurrent.futures import Future
from typing import Generic, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class IntroductionCache(Generic[K, V]):
    """Thread-safe memo where each key is computed at most once.

    The first caller for a key runs ``compute``; concurrent callers for the
    same key block on the pending result instead of computing it again. A
    computation that raises is evicted so a later call can retry, and the
    exception is re-raised to every waiter.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[K, Future[V]] = {}

    def get_or_compute(self, key: K, compute: Callable[[], V]) -> V:
        with self._lock:
            future = self._entries.get(key)
            owner = future is None
            if future is None:
                future = Future()
                self._entries[key] = future
        if not owner:
            return future.result()
        try:
            value = compute()
        except BaseException as exc:
            with self._lock:
                self._entries.pop(key, None)
            future.set_exception(exc)
            raise
        future.set_result(value)
        return value

    def get(self, key: K) -> V | None:
        with self._lock:
            future = self._entries.get(key)
        if future is None or not future.done() or future.exception() is not None:
            return None
        return future.result()

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
