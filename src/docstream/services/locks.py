from __future__ import annotations

"""In-process, per-document update locks.

Try-lock only: a second caller for the same document gets ``False`` back and
is expected to give up. The registry is local to one process; a horizontally
scaled deployment needs a shared lock instead.
"""

import logging
from contextlib import contextmanager
from threading import Lock
from typing import Iterator, Set

logger = logging.getLogger("docstream.locks")


class UpdateLockRegistry:
    def __init__(self) -> None:
        self._held: Set[str] = set()
        self._guard = Lock()

    def try_acquire(self, document_id: str) -> bool:
        with self._guard:
            if document_id in self._held:
                return False
            self._held.add(document_id)
            return True

    def release(self, document_id: str) -> None:
        with self._guard:
            if document_id not in self._held:
                logger.debug("lock_release_unheld", extra={"document_id": document_id})
            self._held.discard(document_id)

    def is_locked(self, document_id: str) -> bool:
        with self._guard:
            return document_id in self._held

    @contextmanager
    def hold(self, document_id: str) -> Iterator[bool]:
        """Yield whether the lock was taken; releases on exit only if it was."""

        acquired = self.try_acquire(document_id)
        try:
            yield acquired
        finally:
            if acquired:
                self.release(document_id)
