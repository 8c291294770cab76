"""
Unit of work for group mutations.

Every membership mutation runs the same cycle: lock the group (and,
when the change can cascade, its parent federation or child clans),
load a fresh snapshot inside a transaction, check the invariants,
apply the planned batch, then re-check the invariants on what was
written. Any failure before commit rolls the whole batch back.
"""

import logging
from contextlib import contextmanager
from typing import FrozenSet, Iterable, Optional

from django.conf import settings
from django.db import transaction

from apps.groups.models import GroupKind

from .cascade import Plan
from .exceptions import InvariantViolationError, SuccessorMissingError, VersionConflictError
from .invariants import ViolationKind, blocking_violations, validate, validate_user
from .locking import LockKey, group_locks, lock_key
from .store import EntityStore, GroupSnapshot, ParentWrite
from .succession import Outcome, resolve_succession

logger = logging.getLogger(__name__)


def _lock_keys(kind, group_id, parent_id, child_ids, *, cascade, extra=()) -> FrozenSet[LockKey]:
    keys = {lock_key(kind, group_id)}
    keys.update(lock_key(extra_kind, extra_id) for extra_kind, extra_id in extra)
    if cascade:
        if parent_id is not None:
            keys.add(lock_key(GroupKind.FEDERATION, parent_id))
        keys.update(lock_key(GroupKind.CLAN, child_id) for child_id in child_ids)
    return frozenset(keys)


class UnitOfWork:
    """Snapshot of one locked group plus the means to commit a plan."""

    def __init__(self, store: EntityStore, group: GroupSnapshot, parent: Optional[GroupSnapshot]):
        self.store = store
        self.group = group
        self.parent = parent

    @classmethod
    def load(cls, store: EntityStore, kind: str, group_id) -> 'UnitOfWork':
        group = store.load_group(kind, group_id, for_update=True)
        parent = None
        if group.parent_id is not None:
            parent = store.find_group(GroupKind.FEDERATION, group.parent_id)
        return cls(store, group, parent)

    @property
    def kind(self) -> str:
        return self.group.kind

    def lock_keys(self, *, cascade, extra=()) -> FrozenSet[LockKey]:
        return _lock_keys(
            self.group.kind,
            self.group.id,
            self.group.parent_id,
            self.group.child_ids,
            cascade=cascade,
            extra=extra,
        )

    def check_preconditions(self, removing=None, *, resolves_succession=False) -> None:
        """
        Refuse to mutate a group whose stored state is already broken.

        Violations that only concern ``removing`` are tolerated: removing
        that member is what resolves them. When the removal hands
        leadership on, a successor without a user record is reported as
        ``SuccessorMissingError`` rather than as a general inconsistency.
        """
        violations = validate(self.group, self.parent)
        tolerated = len(violations)
        violations = blocking_violations(violations, removing)
        tolerated -= len(violations)
        if tolerated:
            logger.warning(
                "Removing %s from %s %s despite %d broken back-references",
                removing, self.group.kind, self.group.id, tolerated,
            )
        if violations and resolves_succession:
            self._check_successor(removing, violations)
        if violations:
            logger.error(
                "Refusing to mutate inconsistent %s %s: %s",
                self.group.kind, self.group.id, '; '.join(str(v) for v in violations),
            )
            raise InvariantViolationError(
                f"{self.group.kind.capitalize()} {self.group.id} is inconsistent",
                violations=violations,
            )

    def _check_successor(self, removing, violations) -> None:
        if removing is None or not self.group.is_leader(removing):
            return
        succession = resolve_succession(self.group, removing)
        if succession.outcome != Outcome.PROMOTE:
            return
        for violation in violations:
            if violation.kind == ViolationKind.MISSING_USER and violation.user_id == succession.successor_id:
                logger.error(
                    "Successor %s of %s %s has no user record",
                    succession.successor_id, self.group.kind, self.group.id,
                )
                raise SuccessorMissingError(
                    f"User record {succession.successor_id} chosen to lead "
                    f"{self.group.kind} {self.group.id} could not be loaded"
                )

    def commit(self, plan: Plan) -> None:
        """
        Apply the plan's writes and verify the result.

        Raises:
            VersionConflictError: If a written row moved underneath us
            InvariantViolationError: If the written state is inconsistent
        """
        self.store.apply(plan.writes)
        violations = self._postcondition_violations(plan)
        if violations:
            logger.critical(
                "Membership invariants broken after %s on %s %s: %s",
                [event.type for event in plan.events], self.group.kind, self.group.id,
                '; '.join(str(v) for v in violations),
            )
            raise InvariantViolationError(
                f"Mutation of {self.group.kind} {self.group.id} would break membership invariants",
                violations=violations,
            )

    def _postcondition_violations(self, plan: Plan) -> list:
        kind = self.group.kind
        violations = []
        after = None

        if plan.dissolved:
            if self.store.find_group(kind, self.group.id) is not None:
                violations.append(f"{kind} {self.group.id} still exists after dissolution")
        else:
            after = self.store.load_group(kind, self.group.id)
            parent = None
            if after.parent_id is not None:
                parent = self.store.find_group(GroupKind.FEDERATION, after.parent_id)
            violations.extend(validate(after, parent, allow_empty=not self.group.roles))

        for user_id in plan.user_ids:
            user = self.store.load_user(user_id)
            referenced = user.group_id(kind)
            if referenced is None:
                group = None
            elif after is not None and referenced == after.id:
                group = after
            else:
                group = self.store.find_group(kind, referenced)
            violations.extend(validate_user(user, kind, group))

        for write in plan.writes:
            if isinstance(write, ParentWrite):
                clan = self.store.load_group(GroupKind.CLAN, write.clan_id)
                if clan.parent_id != write.federation_id:
                    violations.append(f"clan {clan.id} parent is {clan.parent_id}")
                elif clan.parent_id is not None:
                    federation = self.store.find_group(GroupKind.FEDERATION, clan.parent_id)
                    violations.extend(validate(clan, federation))

        return violations


@contextmanager
def group_mutation(
    kind: str,
    group_id,
    *,
    cascade: bool = False,
    extra: Iterable = (),
    removing=None,
    resolves_succession: bool = False,
    store: Optional[EntityStore] = None,
    timeout: Optional[float] = None,
):
    """
    Lock, load and validate a group for one mutation.

    Yields a ``UnitOfWork`` whose ``commit`` applies a plan. The locks
    and the database transaction are held until the block exits.

    Args:
        kind: GroupKind of the mutated group
        group_id: UUID of the mutated group
        cascade: Also lock the parent federation (clans) or the child
            clans (federations), for changes that may dissolve the group
        extra: Additional (kind, id) pairs to lock
        removing: Member the mutation removes, whose own broken
            back-reference does not block it
        resolves_succession: Whether removing ``removing`` may hand
            leadership to a successor
        store: Entity store to use
        timeout: Seconds to wait for the locks

    Raises:
        GroupNotFoundError: If the group doesn't exist
        LockTimeoutError: If the locks could not be acquired in time
        VersionConflictError: If the group's parent or children kept
            changing while locks were being acquired
        InvariantViolationError: If the stored group is already inconsistent
        SuccessorMissingError: If the successor chosen for a departing
            leader has no user record
    """
    store = store or EntityStore()
    extra = tuple(extra)
    parent_id, child_ids = store.related_group_ids(kind, group_id)
    keys = _lock_keys(kind, group_id, parent_id, child_ids, cascade=cascade, extra=extra)
    attempts = int(getattr(settings, 'GROUP_LOCK_ATTEMPTS', 3))

    for _ in range(attempts):
        with group_locks.hold(keys, timeout=timeout):
            with transaction.atomic():
                work = UnitOfWork.load(store, kind, group_id)
                required = work.lock_keys(cascade=cascade, extra=extra)
                if required <= keys:
                    work.check_preconditions(removing=removing, resolves_succession=resolves_succession)
                    yield work
                    return
        logger.info("Related groups of %s %s changed while locking, retrying", kind, group_id)
        keys = required

    raise VersionConflictError(
        f"Related groups of {kind} {group_id} kept changing, try again"
    )
