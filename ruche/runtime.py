from __future__ import annotations

import time
from contextlib import contextmanager
from threading import Condition, Lock
from typing import Callable, Iterator

from .errors import ConfirmationRequired

CONFIRMATION_WINDOW_S = 30.0


class RWLock:
    """Many readers or one writer.

    Writers are given priority once waiting so a steady stream of reads cannot
    starve an add/delete.
    """

    def __init__(self) -> None:
        self._cond = Condition(Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if not self._readers:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class DeletionGuard:
    """In-memory ledger of pending deletion requests (node id -> request time).

    Lives for the life of the process; a restart simply forgets pending
    requests and the operator has to request again.
    """

    def __init__(self, window_s: float = CONFIRMATION_WINDOW_S, clock: Callable[[], float] = time.monotonic) -> None:
        self.window_s = window_s
        self._clock = clock
        self._lock = RWLock()
        self._requests: dict[int, float] = {}

    def request_deletion(self, node_id: int) -> None:
        """Record (or refresh) a deletion request for `node_id`."""
        with self._lock.write():
            self._requests[node_id] = self._clock()

    def is_confirmable(self, node_id: int) -> bool:
        with self._lock.read():
            requested_at = self._requests.get(node_id)
        if requested_at is None:
            return False
        return (self._clock() - requested_at) < self.window_s

    def check(self, node_id: int) -> None:
        """Raise ConfirmationRequired unless a request younger than the window exists.

        A request that never happened and one that expired raise the same error.
        """
        if not self.is_confirmable(node_id):
            raise ConfirmationRequired(self._refusal(node_id))

    def confirm_and_delete(self, node_id: int, delete: Callable[[int], None]) -> None:
        """Run `delete(node_id)` if a live request exists.

        The request is claimed before `delete` runs, so a concurrent confirm
        for the same id fails instead of deleting whatever holds the id next.
        If `delete` raises, the request is put back with its original time and
        can be confirmed again without a new request while the window lasts.
        """
        requested_at = self._claim(node_id)
        try:
            delete(node_id)
        except Exception:
            with self._lock.write():
                # A fresh request made meanwhile wins over the old one.
                self._requests.setdefault(node_id, requested_at)
            raise

    def _claim(self, node_id: int) -> float:
        with self._lock.write():
            requested_at = self._requests.get(node_id)
            if requested_at is None or (self._clock() - requested_at) >= self.window_s:
                raise ConfirmationRequired(self._refusal(node_id))
            del self._requests[node_id]
        return requested_at

    def _refusal(self, node_id: int) -> str:
        return (
            f"Unable to confirm deletion of node with id {node_id}. "
            f"No request made in last {int(self.window_s)}sec."
        )

    def pending(self) -> dict[int, float]:
        with self._lock.read():
            return dict(self._requests)
