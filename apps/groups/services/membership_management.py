"""
Membership management service.

Join, leave, kick, promote, demote and leadership transfer for clans and
federations. Authorization is decided by the caller; these functions
only enforce membership rules. Each call is one unit of work under the
group's lock.
"""

import functools
import logging
from dataclasses import dataclass
from typing import Optional, Tuple
from uuid import UUID

from django.core.exceptions import ValidationError
from django.db.models import QuerySet

from apps.groups.models import GroupRole

from . import cache
from .cascade import (
    Plan,
    plan_join,
    plan_removal,
    plan_role_change,
    plan_transfer,
)
from .events import EventType, MembershipEvent, publish
from .exceptions import (
    AlreadyInAnotherGroupError,
    AlreadyMemberError,
    AlreadyOfficerError,
    CannotKickLeaderError,
    CannotKickSelfError,
    CannotModifyLeaderTierError,
    GroupFullError,
    GroupNotFoundError,
    GroupsServiceError,
    InvariantViolationError,
    NotAnOfficerError,
    NotMemberError,
    SuccessorMissingError,
    TargetNotMemberError,
)
from .store import EntityStore, UserSnapshot, get_tier
from .succession import Succession, resolve_succession
from .unit_of_work import UnitOfWork, group_mutation

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MutationResult:
    """Outcome of a successful membership mutation."""

    kind: str
    group_id: UUID
    events: Tuple[MembershipEvent, ...]
    leader_id: Optional[UUID] = None
    succession: Optional[Succession] = None
    dissolved: bool = False


def finish(plan: Plan) -> MutationResult:
    """Notify collaborators about a committed plan and summarize it."""
    publish(plan.events)
    cache.invalidate(plan.stale_keys)
    return MutationResult(
        kind=plan.kind,
        group_id=plan.group_id,
        events=tuple(plan.events),
        leader_id=plan.new_leader_id,
        succession=plan.succession,
        dissolved=plan.dissolved,
    )


def logged_mutation(func):
    """
    Log failures of a mutation at a level matching their severity.

    Integrity faults need an operator, transient failures may be retried
    by the caller, everything else is ordinary user input.
    """

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except (SuccessorMissingError, InvariantViolationError) as e:
            logger.error(
                "%s failed with integrity fault %s: %s (args=%r)",
                func.__name__, e.code, e, kwargs,
            )
            raise
        except GroupsServiceError as e:
            if e.retryable:
                logger.warning("%s failed transiently (%s): %s", func.__name__, e.code, e)
            else:
                logger.debug("%s rejected (%s): %s", func.__name__, e.code, e)
            raise

    return wrapper


def _check_room(work: UnitOfWork, user_id: UUID) -> UserSnapshot:
    """Load a user about to be added, checking the member cap and the one-group-per-tier rule."""
    tier = get_tier(work.kind)
    if len(work.group.member_ids) >= tier.max_members:
        raise GroupFullError(
            f"This {tier.label.lower()} has reached the limit of {tier.max_members} members"
        )

    user = work.store.load_user(user_id)
    if user.group_id(work.kind) is not None:
        raise AlreadyInAnotherGroupError(
            f"User already belongs to a {tier.label.lower()}"
        )
    return user


def plan_checked_join(work: UnitOfWork, user_id: UUID) -> Plan:
    """
    Plan adding a user to the locked group after checking the join rules.

    Raises:
        UserNotFoundError: If the user doesn't exist
        AlreadyMemberError: If the user already belongs to this group
        GroupFullError: If the group reached its member cap
        AlreadyInAnotherGroupError: If the user belongs to another group
            of the same tier
    """
    if work.group.is_member(user_id):
        raise AlreadyMemberError(
            f"User is already a member of this {get_tier(work.kind).label.lower()}"
        )
    return plan_join(work.group, _check_room(work, user_id))


@logged_mutation
def join_group(
    *,
    kind: str,
    group_id: UUID,
    user_id: UUID,
    as_admin: bool = False,
) -> MutationResult:
    """
    Add a user to a clan or federation.

    A platform administrator who already belongs to another group of the
    same tier leaves that group first (with normal succession). That
    departure is its own unit of work.

    Args:
        kind: GroupKind of the group
        group_id: UUID of the group
        user_id: UUID of the joining user
        as_admin: Whether the acting user is a platform administrator

    Returns:
        MutationResult of the join

    Raises:
        GroupNotFoundError: If the group doesn't exist
        UserNotFoundError: If the user doesn't exist
        AlreadyMemberError: If the user already belongs to this group
        GroupFullError: If the group reached its member cap
        AlreadyInAnotherGroupError: If the user belongs to another group
            of the same tier
    """
    store = EntityStore()

    current = store.load_user(user_id).group_id(kind)
    if as_admin and current is not None and str(current) != str(group_id):
        logger.info("Admin %s leaves %s %s before joining %s", user_id, kind, current, group_id)
        leave_group(kind=kind, group_id=current, user_id=user_id)

    with group_mutation(kind, group_id, store=store) as work:
        plan = plan_checked_join(work, user_id)
        work.commit(plan)

    logger.info("User %s joined %s %s", user_id, kind, group_id)
    return finish(plan)


@logged_mutation
def leave_group(*, kind: str, group_id: UUID, user_id: UUID) -> MutationResult:
    """
    Remove a user from a group of their own accord.

    A departing leader is succeeded by the earliest-joined officer, or
    the earliest-joined member when there are no officers. A group left
    with nobody to lead is dissolved.

    Raises:
        GroupNotFoundError: If the group doesn't exist
        NotMemberError: If the user is not a member
        SuccessorMissingError: If the chosen successor's record is missing
    """
    with group_mutation(
        kind, group_id, cascade=True, removing=user_id, resolves_succession=True,
    ) as work:
        group = work.group
        if not group.is_member(user_id):
            raise NotMemberError(f"User is not a member of this {kind}")

        succession = resolve_succession(group, user_id)
        plan = plan_removal(group, user_id, succession, event_type=EventType.MEMBER_LEFT)
        work.commit(plan)

    logger.info(
        "User %s left %s %s (succession: %s)",
        user_id, kind, group_id, succession.outcome.value,
    )
    return finish(plan)


@logged_mutation
def kick_member(
    *,
    kind: str,
    group_id: UUID,
    actor_id: UUID,
    target_id: UUID,
) -> MutationResult:
    """
    Remove another member from a group.

    The leader cannot be kicked; leadership changes hands only through
    transfer_leadership or the leader leaving.

    Raises:
        GroupNotFoundError: If the group doesn't exist
        CannotKickSelfError: If actor and target are the same user
        NotMemberError: If the target is not (or no longer) a member
        CannotKickLeaderError: If the target is the leader
    """
    if str(actor_id) == str(target_id):
        raise CannotKickSelfError("Use leave instead of kicking yourself")

    with group_mutation(kind, group_id, removing=target_id) as work:
        group = work.group
        if not group.is_member(target_id):
            raise NotMemberError(f"User is not a member of this {kind}")
        if group.is_leader(target_id):
            raise CannotKickLeaderError(f"Cannot kick the {kind} leader")

        succession = resolve_succession(group, target_id)
        plan = plan_removal(group, target_id, succession, event_type=EventType.MEMBER_KICKED)
        work.commit(plan)

    logger.info("User %s kicked %s from %s %s", actor_id, target_id, kind, group_id)
    return finish(plan)


@logged_mutation
def promote_member(*, kind: str, group_id: UUID, user_id: UUID) -> MutationResult:
    """
    Promote a plain member to officer.

    Raises:
        NotMemberError: If the user is not a member
        CannotModifyLeaderTierError: If the user is the leader
        AlreadyOfficerError: If the user is already an officer
    """
    with group_mutation(kind, group_id) as work:
        group = work.group
        role = group.role_of(user_id)
        if role is None:
            raise NotMemberError(f"User is not a member of this {kind}")
        if group.is_leader(user_id):
            raise CannotModifyLeaderTierError("Cannot change the leader's tier")
        if role == GroupRole.OFFICER:
            raise AlreadyOfficerError(f"User is already an officer of this {kind}")

        plan = plan_role_change(group, user_id, GroupRole.OFFICER)
        work.commit(plan)

    logger.info("User %s promoted to officer in %s %s", user_id, kind, group_id)
    return finish(plan)


@logged_mutation
def demote_member(*, kind: str, group_id: UUID, user_id: UUID) -> MutationResult:
    """
    Demote an officer to plain member.

    Raises:
        NotMemberError: If the user is not a member
        CannotModifyLeaderTierError: If the user is the leader
        NotAnOfficerError: If the user is not an officer
    """
    with group_mutation(kind, group_id) as work:
        group = work.group
        role = group.role_of(user_id)
        if role is None:
            raise NotMemberError(f"User is not a member of this {kind}")
        if group.is_leader(user_id):
            raise CannotModifyLeaderTierError("Cannot change the leader's tier")
        if role != GroupRole.OFFICER:
            raise NotAnOfficerError(f"User is not an officer of this {kind}")

        plan = plan_role_change(group, user_id, GroupRole.MEMBER)
        work.commit(plan)

    logger.info("User %s demoted to member in %s %s", user_id, kind, group_id)
    return finish(plan)


@logged_mutation
def transfer_leadership(*, kind: str, group_id: UUID, new_leader_id: UUID) -> MutationResult:
    """
    Make another member the leader.

    The previous leader stays as a plain member. A leaderless
    (bootstrapped) group is simply handed to the new leader, who joins
    it if they are not a member yet.

    Raises:
        GroupNotFoundError: If the group doesn't exist
        UserNotFoundError: If a newcomer to a leaderless group doesn't exist
        TargetNotMemberError: If the new leader is not a member of a led group
        AlreadyInAnotherGroupError: If a newcomer to a leaderless group
            belongs to another group of the same tier
        GroupFullError: If a newcomer would exceed the member cap
        CannotModifyLeaderTierError: If the target already leads the group
    """
    with group_mutation(kind, group_id) as work:
        group = work.group
        if group.is_leader(new_leader_id):
            raise CannotModifyLeaderTierError(f"User already leads this {kind}")

        newcomer = None
        if not group.is_member(new_leader_id):
            if group.leader_id is not None:
                raise TargetNotMemberError(
                    f"The user must be a member of the {kind} to become its leader"
                )
            newcomer = _check_room(work, new_leader_id)

        plan = plan_transfer(group, new_leader_id, newcomer=newcomer)
        work.commit(plan)

    logger.info(
        "Leadership of %s %s transferred from %s to %s",
        kind, group_id, group.leader_id, new_leader_id,
    )
    return finish(plan)


def get_group_members(*, kind: str, group_id: UUID) -> QuerySet:
    """
    Get all memberships of a group in join order.

    Raises:
        GroupNotFoundError: If the group doesn't exist
    """
    tier = get_tier(kind)
    try:
        exists = tier.model.objects.filter(id=group_id).exists()
    except (ValidationError, ValueError):
        exists = False
    if not exists:
        raise GroupNotFoundError(f"{tier.label} with ID {group_id} not found")

    return (
        tier.membership_model.objects
        .filter(**{f'{tier.group_field}_id': group_id})
        .select_related('user')
        .order_by('joined_at', 'id')
    )
