"""
Repair of broken membership back-references.

Membership rows on the group side are authoritative. These functions
bring user records back in line with them, each under the group lock,
and are safe to run repeatedly.
"""

import logging
from typing import List
from uuid import UUID

from django.db import transaction

from . import cache
from .locking import group_locks, lock_key
from .store import EntityStore, UserWrite

logger = logging.getLogger(__name__)


def realign_members(*, kind: str, group_id: UUID, store: EntityStore = None) -> List[UUID]:
    """
    Point every listed member's back-reference at the group.

    A user listed by two groups of the same kind is left alone and
    logged; choosing between the two memberships needs a human.

    Returns:
        IDs of the users that were rewritten

    Raises:
        GroupNotFoundError: If the group doesn't exist
        LockTimeoutError: If the group lock could not be acquired
    """
    store = store or EntityStore()
    fixed = []

    with group_locks.hold([lock_key(kind, group_id)]):
        with transaction.atomic():
            group = store.load_group(kind, group_id, for_update=True)
            writes = []
            for user_id, role in group.roles:
                user = group.users.get(user_id)
                if user is None:
                    logger.error("%s %s lists %s, which has no user record", kind, group_id, user_id)
                    continue

                current = user.group_id(kind)
                if current == group.id and user.role(kind) == role:
                    continue
                if current is not None and current != group.id:
                    other = store.find_group(kind, current)
                    if other is not None and other.is_member(user_id):
                        logger.warning(
                            "User %s is listed by %s %s and %s; not repairing",
                            user_id, kind, group.id, current,
                        )
                        continue

                writes.append(UserWrite(
                    user_id=user.id,
                    kind=kind,
                    expected_version=user.version,
                    group_id=group.id,
                    role=role,
                ))
                fixed.append(user.id)

            store.apply(writes)

    if fixed:
        logger.warning("Realigned %d back-references to %s %s", len(fixed), kind, group_id)
        cache.invalidate({cache.user_key(user_id) for user_id in fixed} | {cache.group_key(kind, group_id)})
    return fixed


def clear_dangling_reference(*, kind: str, user_id: UUID, store: EntityStore = None) -> bool:
    """
    Clear a user's back-reference to a group that does not list them.

    Returns:
        True if the reference was cleared, False if there was nothing to
        clear or the group really does list the user

    Raises:
        UserNotFoundError: If the user doesn't exist
        LockTimeoutError: If the group lock could not be acquired
    """
    store = store or EntityStore()
    user = store.load_user(user_id)
    group_id = user.group_id(kind)
    if group_id is None and user.role(kind) is None:
        return False

    keys = [lock_key(kind, group_id)] if group_id is not None else []
    with group_locks.hold(keys):
        with transaction.atomic():
            user = store.load_user(user_id)
            if user.group_id(kind) != group_id:
                # Changed before we got the lock
                return False
            group = store.find_group(kind, group_id) if group_id is not None else None
            if group is not None and group.is_member(user.id):
                return False
            store.apply([UserWrite(
                user_id=user.id,
                kind=kind,
                expected_version=user.version,
                group_id=None,
                role=None,
            )])

    logger.warning("Cleared dangling %s reference %s on user %s", kind, group_id, user_id)
    cache.invalidate({cache.user_key(user_id)})
    return True
