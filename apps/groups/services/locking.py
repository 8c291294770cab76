"""
Per-group serializer.

Keyed mutual exclusion for clan and federation mutations. Locks are
always taken in one global order (every federation before any clan,
then by id) so overlapping lock sets cannot deadlock. Waiting is
bounded; an expired wait raises ``LockTimeoutError``.

These are in-process locks. Across processes the same read-modify-write
cycle is additionally guarded by ``select_for_update`` and the store's
version checks.
"""

import logging
import threading
import time
from contextlib import contextmanager
from typing import Dict, Iterable, List, Optional, Tuple

from django.conf import settings

from apps.groups.models import GroupKind

from .exceptions import LockTimeoutError

logger = logging.getLogger(__name__)

LockKey = Tuple[int, str]

_TIER_ORDER = {
    GroupKind.FEDERATION: 0,
    GroupKind.CLAN: 1,
}


def lock_key(kind, group_id) -> LockKey:
    return (_TIER_ORDER[kind], str(group_id))


def default_timeout() -> float:
    return float(getattr(settings, 'GROUP_LOCK_TIMEOUT', 5.0))


class _Entry:
    __slots__ = ('lock', 'users')

    def __init__(self):
        self.lock = threading.Lock()
        self.users = 0


class GroupLockRegistry:
    """
    Registry of per-group locks.

    Entries are reference counted and dropped once nobody holds or waits
    for them, so the registry only grows with the number of groups under
    contention.
    """

    def __init__(self):
        self._mutex = threading.Lock()
        self._entries: Dict[LockKey, _Entry] = {}

    def _checkout(self, key: LockKey) -> _Entry:
        with self._mutex:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _Entry()
            entry.users += 1
            return entry

    def _checkin(self, key: LockKey, entry: _Entry) -> None:
        with self._mutex:
            entry.users -= 1
            if entry.users == 0:
                del self._entries[key]

    def is_locked(self, key: LockKey) -> bool:
        with self._mutex:
            entry = self._entries.get(key)
            return entry is not None and entry.lock.locked()

    @contextmanager
    def hold(self, keys: Iterable[LockKey], timeout: Optional[float] = None):
        """
        Hold every lock in ``keys`` for the duration of the block.

        Args:
            keys: Lock keys, in any order and possibly repeated
            timeout: Total seconds to wait for all locks

        Raises:
            LockTimeoutError: If the locks could not all be acquired in time
        """
        ordered = sorted(set(keys))
        timeout = default_timeout() if timeout is None else timeout
        deadline = time.monotonic() + timeout
        acquired: List[Tuple[LockKey, _Entry]] = []

        try:
            for key in ordered:
                entry = self._checkout(key)
                remaining = max(0.0, deadline - time.monotonic())
                if not entry.lock.acquire(timeout=remaining):
                    self._checkin(key, entry)
                    logger.warning("Timed out after %.2fs waiting for group lock %s", timeout, key)
                    raise LockTimeoutError(
                        f"Could not lock {key[1]} within {timeout:.2f}s, try again"
                    )
                acquired.append((key, entry))
            yield
        finally:
            for key, entry in reversed(acquired):
                entry.lock.release()
                self._checkin(key, entry)


group_locks = GroupLockRegistry()
