"""
Join request service.

Users ask to join a clan or federation; its leader, its officers or a
platform administrator answer. Accepting adds the requester with the
same checks as a direct join, under the group lock, and closes the
request in the same transaction. Rejecting and withdrawing take the
same lock, so a request is answered exactly once.
"""

import logging
from uuid import UUID

from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from django.db.models import QuerySet
from django.utils import timezone

from apps.groups.models import JoinRequest, JoinRequestStatus

from .exceptions import (
    AlreadyInAnotherGroupError,
    AlreadyMemberError,
    JoinRequestClosedError,
    JoinRequestExistsError,
    JoinRequestNotFoundError,
)
from .group_management import get_group_by_id
from .locking import group_locks, lock_key
from .membership_management import MutationResult, finish, logged_mutation, plan_checked_join
from .store import EntityStore, get_tier
from .unit_of_work import group_mutation

logger = logging.getLogger(__name__)


def create_join_request(
    *,
    kind: str,
    group_id: UUID,
    user_id: UUID,
    message: str = '',
) -> JoinRequest:
    """
    Ask to join a clan or federation.

    Args:
        kind: GroupKind of the group
        group_id: UUID of the group
        user_id: UUID of the requesting user
        message: Optional note for the group's leadership

    Returns:
        The pending JoinRequest

    Raises:
        GroupNotFoundError: If the group doesn't exist
        UserNotFoundError: If the user doesn't exist
        AlreadyMemberError: If the user already belongs to this group
        AlreadyInAnotherGroupError: If the user belongs to another group
            of the same tier
        JoinRequestExistsError: If a request is already pending
    """
    tier = get_tier(kind)
    group = get_group_by_id(kind=kind, group_id=group_id)
    user = EntityStore().load_user(user_id)

    current = user.group_id(kind)
    if current == group.id:
        raise AlreadyMemberError(f"User is already a member of this {tier.label.lower()}")
    if current is not None:
        raise AlreadyInAnotherGroupError(
            f"User already belongs to a {tier.label.lower()}; leave it before asking to join another"
        )

    pending = JoinRequest.objects.filter(
        requester_id=user.id,
        status=JoinRequestStatus.PENDING,
        **{tier.group_field: group},
    )
    if pending.exists():
        raise JoinRequestExistsError(f"A request to join this {tier.label.lower()} is already pending")

    try:
        with transaction.atomic():
            join_request = JoinRequest.objects.create(
                kind=kind,
                requester_id=user.id,
                message=message,
                **{tier.group_field: group},
            )
    except IntegrityError:
        # Concurrent request by the same user
        raise JoinRequestExistsError(f"A request to join this {tier.label.lower()} is already pending")

    logger.info("User %s asked to join %s %s", user.id, kind, group.id)
    return join_request


def get_join_requests(
    *,
    kind: str,
    group_id: UUID,
    status: str = JoinRequestStatus.PENDING,
) -> QuerySet:
    """
    Get a group's join requests with the given status, oldest first.

    Raises:
        GroupNotFoundError: If the group doesn't exist
    """
    tier = get_tier(kind)
    group = get_group_by_id(kind=kind, group_id=group_id)
    return (
        JoinRequest.objects
        .filter(status=status, **{tier.group_field: group})
        .select_related('requester')
        .order_by('created_at')
    )


def get_user_join_requests(*, user_id: UUID) -> QuerySet:
    """Get every join request a user has made, newest first."""
    return (
        JoinRequest.objects
        .filter(requester_id=user_id)
        .select_related('clan', 'federation')
        .order_by('-created_at')
    )


def _get_request(request_id, *, for_update=False, **filters) -> JoinRequest:
    queryset = JoinRequest.objects.all()
    if for_update:
        queryset = queryset.select_for_update()
    try:
        return queryset.get(id=request_id, **filters)
    except (JoinRequest.DoesNotExist, ValidationError, ValueError):
        raise JoinRequestNotFoundError(f"Join request {request_id} not found")


def _group_filter(kind, group_id) -> dict:
    return {'kind': kind, f'{get_tier(kind).group_field}_id': group_id}


def _get_pending(request_id, **filters) -> JoinRequest:
    join_request = _get_request(request_id, for_update=True, **filters)
    if join_request.status != JoinRequestStatus.PENDING:
        raise JoinRequestClosedError(f"Join request was already {join_request.status}")
    return join_request


def _close(join_request: JoinRequest, status: str, actor_id: UUID) -> None:
    join_request.status = status
    join_request.responded_by_id = actor_id
    join_request.responded_at = timezone.now()
    join_request.save(update_fields=['status', 'responded_by', 'responded_at'])


@logged_mutation
def accept_join_request(
    *,
    kind: str,
    group_id: UUID,
    request_id: UUID,
    actor_id: UUID,
) -> MutationResult:
    """
    Accept a pending request and add the requester to the group.

    A request that can no longer be honoured (the requester joined
    another group meanwhile, or the group is full) stays pending until
    it is rejected or withdrawn.

    Raises:
        GroupNotFoundError: If the group doesn't exist
        JoinRequestNotFoundError: If the request doesn't belong to the group
        JoinRequestClosedError: If the request was already answered
        AlreadyMemberError: If the requester already belongs to the group
        AlreadyInAnotherGroupError: If the requester joined another group
        GroupFullError: If the group reached its member cap
    """
    with group_mutation(kind, group_id) as work:
        join_request = _get_pending(request_id, **_group_filter(kind, work.group.id))
        plan = plan_checked_join(work, join_request.requester_id)
        work.commit(plan)
        _close(join_request, JoinRequestStatus.ACCEPTED, actor_id)

    logger.info(
        "User %s accepted %s into %s %s",
        actor_id, join_request.requester_id, kind, group_id,
    )
    return finish(plan)


def _answer(join_request: JoinRequest, status: str, actor_id: UUID, **filters) -> JoinRequest:
    with group_locks.hold([lock_key(join_request.kind, join_request.group_id)]):
        with transaction.atomic():
            join_request = _get_pending(join_request.id, **filters)
            _close(join_request, status, actor_id)
    return join_request


@logged_mutation
def reject_join_request(
    *,
    kind: str,
    group_id: UUID,
    request_id: UUID,
    actor_id: UUID,
) -> JoinRequest:
    """
    Reject a pending request.

    Raises:
        JoinRequestNotFoundError: If the request doesn't belong to the group
        JoinRequestClosedError: If the request was already answered
        LockTimeoutError: If the group lock could not be acquired
    """
    filters = _group_filter(kind, group_id)
    join_request = _answer(_get_request(request_id, **filters), JoinRequestStatus.REJECTED, actor_id, **filters)
    logger.info("User %s rejected join request %s for %s %s", actor_id, request_id, kind, group_id)
    return join_request


@logged_mutation
def withdraw_join_request(*, request_id: UUID, user_id: UUID) -> JoinRequest:
    """
    Withdraw one's own pending request.

    Raises:
        JoinRequestNotFoundError: If the user has no such request
        JoinRequestClosedError: If the request was already answered
        LockTimeoutError: If the group lock could not be acquired
    """
    join_request = _answer(
        _get_request(request_id, requester_id=user_id),
        JoinRequestStatus.WITHDRAWN,
        user_id,
        requester_id=user_id,
    )
    logger.info("User %s withdrew join request %s", user_id, request_id)
    return join_request
