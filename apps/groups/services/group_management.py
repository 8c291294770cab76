"""
Group management service.

Creates and dissolves clans and federations, links clans under
federations and serves cached group details.
"""

import logging
from typing import Optional
from uuid import UUID

from django.conf import settings
from django.core.cache import cache as django_cache
from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from django.db.models import Prefetch

from apps.groups.models import GroupKind

from . import cache
from .cascade import plan_dissolution, plan_join, plan_parent_link
from .events import EventType, MembershipEvent, publish
from .exceptions import (
    AlreadyInAnotherGroupError,
    ClanAlreadyInFederationError,
    ClanNotInFederationError,
    DuplicateTagError,
    GroupNotFoundError,
)
from .membership_management import MutationResult, finish, logged_mutation
from .store import EntityStore, get_tier
from .unit_of_work import group_mutation

logger = logging.getLogger(__name__)


def normalize_tag(tag: str) -> str:
    return tag.strip().upper()


@logged_mutation
def create_group(
    *,
    kind: str,
    name: str,
    tag: str,
    description: str = '',
    leader_id: Optional[UUID] = None,
):
    """
    Create a new clan or federation.

    With a leader, the leader is seated as the first member in the same
    transaction. Without one (administrator bootstrap) the group starts
    empty and its first joiner becomes the leader.

    Args:
        kind: GroupKind to create
        name: Display name
        tag: Short tag, upper-cased and unique per kind
        description: Optional description
        leader_id: UUID of the founding leader (optional)

    Returns:
        Created Clan or Federation instance

    Raises:
        DuplicateTagError: If the tag is already taken
        UserNotFoundError: If the leader doesn't exist
        AlreadyInAnotherGroupError: If the leader already belongs to a
            group of this kind
    """
    tier = get_tier(kind)
    tag = normalize_tag(tag)
    store = EntityStore()
    plan = None

    if tier.model.objects.filter(tag=tag).exists():
        raise DuplicateTagError(f"{tier.label} tag '{tag}' is already taken")

    try:
        with transaction.atomic():
            group = tier.model.objects.create(name=name, tag=tag, description=description)

            if leader_id is not None:
                with group_mutation(kind, group.id, store=store) as work:
                    leader = store.load_user(leader_id)
                    if leader.group_id(kind) is not None:
                        raise AlreadyInAnotherGroupError(
                            f"User already belongs to a {tier.label.lower()}"
                        )
                    plan = plan_join(work.group, leader)
                    work.commit(plan)
    except IntegrityError:
        raise DuplicateTagError(f"{tier.label} tag '{tag}' is already taken")

    events = [MembershipEvent(
        type=EventType.GROUP_CREATED,
        kind=kind,
        group_id=group.id,
        new_leader_id=leader_id,
    )]
    stale_keys = {cache.list_key(kind)}
    if plan is not None:
        events.extend(plan.events)
        stale_keys |= plan.stale_keys

    publish(events)
    cache.invalidate(stale_keys)
    logger.info("Created %s %s [%s] led by %s", kind, group.id, tag, leader_id)

    group.refresh_from_db()
    return group


@logged_mutation
def dissolve_group(*, kind: str, group_id: UUID) -> MutationResult:
    """
    Destroy a group explicitly.

    Runs the same cascade as a dissolution triggered by the last member
    leaving: every member's back-reference is cleared and, for a
    federation, every child clan is detached. Child clans keep their own
    members.

    Raises:
        GroupNotFoundError: If the group doesn't exist
    """
    with group_mutation(kind, group_id, cascade=True) as work:
        plan = plan_dissolution(work.group)
        work.commit(plan)

    logger.info(
        "Dissolved %s %s (%d members, %d clans detached)",
        kind, group_id, len(work.group.member_ids), len(work.group.child_ids),
    )
    return finish(plan)


@logged_mutation
def attach_clan(*, federation_id: UUID, clan_id: UUID) -> MutationResult:
    """
    Link a clan under a federation.

    Raises:
        GroupNotFoundError: If the federation or the clan doesn't exist
        ClanAlreadyInFederationError: If the clan already has a federation
    """
    store = EntityStore()
    with group_mutation(
        GroupKind.FEDERATION,
        federation_id,
        extra=[(GroupKind.CLAN, clan_id)],
        store=store,
    ) as work:
        clan = store.load_group(GroupKind.CLAN, clan_id, for_update=True)
        if clan.parent_id is not None:
            if clan.parent_id == work.group.id:
                raise ClanAlreadyInFederationError("Clan is already in this federation")
            raise ClanAlreadyInFederationError("Clan already belongs to another federation")

        plan = plan_parent_link(work.group, clan, attach=True)
        work.commit(plan)

    logger.info("Attached clan %s to federation %s", clan_id, federation_id)
    return finish(plan)


@logged_mutation
def detach_clan(*, federation_id: UUID, clan_id: UUID) -> MutationResult:
    """
    Unlink a clan from its federation.

    Raises:
        GroupNotFoundError: If the federation or the clan doesn't exist
        ClanNotInFederationError: If the clan is not in this federation
    """
    store = EntityStore()
    with group_mutation(
        GroupKind.FEDERATION,
        federation_id,
        extra=[(GroupKind.CLAN, clan_id)],
        store=store,
    ) as work:
        clan = store.load_group(GroupKind.CLAN, clan_id, for_update=True)
        if clan.parent_id != work.group.id:
            raise ClanNotInFederationError("Clan is not in this federation")

        plan = plan_parent_link(work.group, clan, attach=False)
        work.commit(plan)

    logger.info("Detached clan %s from federation %s", clan_id, federation_id)
    return finish(plan)


def get_group_by_id(*, kind: str, group_id: UUID):
    """
    Get a clan or federation by ID with optimized queries.

    Raises:
        GroupNotFoundError: If the group doesn't exist
    """
    tier = get_tier(kind)
    queryset = (
        tier.model.objects
        .select_related('leader')
        .prefetch_related(
            Prefetch(
                'memberships',
                queryset=tier.membership_model.objects.select_related('user'),
            )
        )
    )
    if kind == GroupKind.CLAN:
        queryset = queryset.select_related('federation')
    else:
        queryset = queryset.prefetch_related('clans')

    try:
        return queryset.get(id=group_id)
    except (tier.model.DoesNotExist, ValidationError, ValueError):
        raise GroupNotFoundError(f"{tier.label} with ID {group_id} not found")


def describe_group(group) -> dict:
    """Plain representation of a group, safe to cache."""
    memberships = list(group.memberships.all())
    data = {
        'id': str(group.id),
        'kind': group.kind,
        'name': group.name,
        'tag': group.tag,
        'description': group.description,
        'leader_id': str(group.leader_id) if group.leader_id is not None else None,
        'member_count': len(memberships),
        'members': [
            {
                'user_id': str(membership.user_id),
                'display_name': membership.user.get_display_name(),
                'role': membership.role,
                'joined_at': membership.joined_at.isoformat(),
            }
            for membership in memberships
        ],
        'version': group.version,
        'created_at': group.created_at.isoformat(),
    }
    if group.kind == GroupKind.CLAN:
        data['federation_id'] = str(group.federation_id) if group.federation_id is not None else None
    else:
        data['clan_ids'] = [str(clan.id) for clan in group.clans.all()]
    return data


def get_group(*, kind: str, group_id: UUID) -> dict:
    """
    Cached detail representation of a group.

    Every mutation touching the group drops this entry.

    Raises:
        GroupNotFoundError: If the group doesn't exist
    """
    key = cache.group_key(kind, group_id)
    data = django_cache.get(key)
    if data is None:
        data = describe_group(get_group_by_id(kind=kind, group_id=group_id))
        django_cache.set(key, data, getattr(settings, 'GROUP_CACHE_TIMEOUT', 300))
    return data
