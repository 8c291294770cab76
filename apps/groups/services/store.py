"""
Entity store adapter.

Loads clans, federations and users as immutable snapshots and applies
ordered write batches with optimistic version checks. This module is the
only code path that writes membership fields on users, leaders on groups
and membership rows.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Tuple
from uuid import UUID

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db.models import F, ProtectedError
from django.utils import timezone

from apps.accounts.models import User
from apps.groups.models import (
    Clan,
    ClanMembership,
    Federation,
    FederationMembership,
    GroupKind,
    GroupRole,
)

from .exceptions import (
    GroupNotFoundError,
    InvariantViolationError,
    UserNotFoundError,
    VersionConflictError,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Tiers
# =============================================================================

@dataclass(frozen=True)
class Tier:
    """How one group kind maps onto models and user fields."""

    kind: str
    label: str
    model: type
    membership_model: type
    # Name of the FK on both the membership model and User
    group_field: str
    role_field: str
    max_members_setting: str
    max_members_default: int

    @property
    def max_members(self) -> int:
        return getattr(settings, self.max_members_setting, self.max_members_default)


TIERS = {
    GroupKind.CLAN: Tier(
        kind=GroupKind.CLAN,
        label='Clan',
        model=Clan,
        membership_model=ClanMembership,
        group_field='clan',
        role_field='clan_role',
        max_members_setting='MAX_CLAN_MEMBERS',
        max_members_default=50,
    ),
    GroupKind.FEDERATION: Tier(
        kind=GroupKind.FEDERATION,
        label='Federation',
        model=Federation,
        membership_model=FederationMembership,
        group_field='federation',
        role_field='federation_role',
        max_members_setting='MAX_FEDERATION_MEMBERS',
        max_members_default=500,
    ),
}


def get_tier(kind: str) -> Tier:
    try:
        return TIERS[kind]
    except KeyError:
        raise ValueError(f"Unknown group kind: {kind!r}")


# =============================================================================
# Snapshots
# =============================================================================

@dataclass(frozen=True)
class UserSnapshot:
    id: UUID
    version: int
    clan_id: Optional[UUID] = None
    clan_role: Optional[str] = None
    federation_id: Optional[UUID] = None
    federation_role: Optional[str] = None
    is_platform_admin: bool = False

    def group_id(self, kind: str) -> Optional[UUID]:
        return self.clan_id if kind == GroupKind.CLAN else self.federation_id

    def role(self, kind: str) -> Optional[str]:
        return self.clan_role if kind == GroupKind.CLAN else self.federation_role


@dataclass(frozen=True)
class GroupSnapshot:
    """
    Read-only view of a group and every user it references.

    ``roles`` lists (user_id, role) pairs in join order; it is the
    group side of every membership edge.
    """

    kind: str
    id: UUID
    version: int
    leader_id: Optional[UUID]
    roles: Tuple[Tuple[UUID, str], ...] = ()
    users: Mapping[UUID, UserSnapshot] = field(default_factory=dict)
    parent_id: Optional[UUID] = None
    # Child clan id -> clan version (federations only)
    children: Mapping[UUID, int] = field(default_factory=dict)

    @property
    def member_ids(self) -> Tuple[UUID, ...]:
        return tuple(user_id for user_id, _ in self.roles)

    @property
    def officer_ids(self) -> Tuple[UUID, ...]:
        return tuple(user_id for user_id, role in self.roles if role == GroupRole.OFFICER)

    @property
    def child_ids(self) -> Tuple[UUID, ...]:
        return tuple(sorted(self.children, key=str))

    def role_of(self, user_id: UUID) -> Optional[str]:
        for member_id, role in self.roles:
            if member_id == user_id:
                return role
        return None

    def is_member(self, user_id: UUID) -> bool:
        return self.role_of(user_id) is not None

    def is_leader(self, user_id: UUID) -> bool:
        return self.leader_id is not None and self.leader_id == user_id


# =============================================================================
# Writes
# =============================================================================

@dataclass(frozen=True)
class GroupWrite:
    """Version guard for a group row; optionally replaces the leader."""

    kind: str
    group_id: UUID
    expected_version: int
    set_leader: bool = False
    leader_id: Optional[UUID] = None


@dataclass(frozen=True)
class MembershipAdd:
    kind: str
    group_id: UUID
    user_id: UUID
    role: str


@dataclass(frozen=True)
class MembershipRoleChange:
    kind: str
    group_id: UUID
    user_id: UUID
    role: str


@dataclass(frozen=True)
class MembershipRemove:
    kind: str
    group_id: UUID
    user_id: UUID


@dataclass(frozen=True)
class UserWrite:
    """Sets one tier's back-reference on a user (both None clears it)."""

    user_id: UUID
    kind: str
    expected_version: int
    group_id: Optional[UUID]
    role: Optional[str]


@dataclass(frozen=True)
class ParentWrite:
    """Links a clan under a federation, or unlinks it (federation_id None)."""

    clan_id: UUID
    expected_version: int
    federation_id: Optional[UUID]


@dataclass(frozen=True)
class GroupDelete:
    kind: str
    group_id: UUID


# =============================================================================
# Store
# =============================================================================

def _as_snapshot(user: User) -> UserSnapshot:
    return UserSnapshot(
        id=user.id,
        version=user.version,
        clan_id=user.clan_id,
        clan_role=user.clan_role,
        federation_id=user.federation_id,
        federation_role=user.federation_role,
        is_platform_admin=user.is_platform_admin,
    )


class EntityStore:
    """
    ORM-backed entity store.

    Callers are expected to run ``apply`` inside ``transaction.atomic``;
    a failed write raises and the surrounding transaction rolls back the
    whole batch.
    """

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def load_group(self, kind: str, group_id, *, for_update: bool = False) -> GroupSnapshot:
        """
        Load a clan or federation with its memberships and referenced users.

        Raises:
            GroupNotFoundError: If the group doesn't exist
        """
        tier = get_tier(kind)
        queryset = tier.model.objects.all()
        if for_update:
            queryset = queryset.select_for_update()

        try:
            group = queryset.get(id=group_id)
        except (tier.model.DoesNotExist, ValidationError, ValueError):
            raise GroupNotFoundError(f"{tier.label} with ID {group_id} not found")

        roles = tuple(
            tier.membership_model.objects
            .filter(**{tier.group_field: group})
            .order_by('joined_at', 'id')
            .values_list('user_id', 'role')
        )

        user_ids = {user_id for user_id, _ in roles}
        if group.leader_id is not None:
            user_ids.add(group.leader_id)

        children = {}
        if kind == GroupKind.FEDERATION:
            children = dict(Clan.objects.filter(federation_id=group.id).values_list('id', 'version'))

        return GroupSnapshot(
            kind=kind,
            id=group.id,
            version=group.version,
            leader_id=group.leader_id,
            roles=roles,
            users=self.load_users(user_ids),
            parent_id=getattr(group, 'federation_id', None),
            children=children,
        )

    def find_group(self, kind: str, group_id) -> Optional[GroupSnapshot]:
        try:
            return self.load_group(kind, group_id)
        except GroupNotFoundError:
            return None

    def load_user(self, user_id) -> UserSnapshot:
        """
        Raises:
            UserNotFoundError: If the user doesn't exist
        """
        try:
            return _as_snapshot(User.objects.get(id=user_id))
        except (User.DoesNotExist, ValidationError, ValueError):
            raise UserNotFoundError(f"User with ID {user_id} not found")

    def load_users(self, user_ids: Iterable[UUID]) -> Dict[UUID, UserSnapshot]:
        user_ids = list(user_ids)
        if not user_ids:
            return {}
        return {user.id: _as_snapshot(user) for user in User.objects.filter(id__in=user_ids)}

    def related_group_ids(self, kind: str, group_id) -> Tuple[Optional[UUID], Tuple[UUID, ...]]:
        """Return (parent federation id, child clan ids) without loading members."""
        tier = get_tier(kind)
        try:
            group = tier.model.objects.get(id=group_id)
        except (tier.model.DoesNotExist, ValidationError, ValueError):
            raise GroupNotFoundError(f"{tier.label} with ID {group_id} not found")

        if kind == GroupKind.CLAN:
            return group.federation_id, ()
        child_ids = Clan.objects.filter(federation_id=group.id).values_list('id', flat=True)
        return None, tuple(child_ids)

    def led_group_ids(self, kind: str, user_id) -> List[UUID]:
        """Groups led by the user, oldest first."""
        tier = get_tier(kind)
        return list(
            tier.model.objects
            .filter(leader_id=user_id)
            .order_by('created_at', 'id')
            .values_list('id', flat=True)
        )

    def joined_group_ids(self, kind: str, user_id) -> List[UUID]:
        """Groups where the user is an officer or plain member, in join order."""
        tier = get_tier(kind)
        group_id_field = f'{tier.group_field}_id'
        return list(
            tier.membership_model.objects
            .filter(user_id=user_id)
            .exclude(role=GroupRole.LEADER)
            .exclude(**{f'{tier.group_field}__leader': user_id})
            .order_by('joined_at', 'id')
            .values_list(group_id_field, flat=True)
        )

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def apply(self, writes: Iterable) -> None:
        """
        Apply an ordered write batch.

        Raises:
            VersionConflictError: If a guarded row changed since it was read
            InvariantViolationError: If a delete is refused because the
                group is still referenced
        """
        writes = list(writes)
        for write in writes:
            handler = self._handlers[type(write)]
            handler(self, write)
        logger.debug("Applied %d membership writes", len(writes))

    def _apply_group_write(self, write: GroupWrite) -> None:
        tier = get_tier(write.kind)
        changes = {'version': F('version') + 1, 'updated_at': timezone.now()}
        if write.set_leader:
            changes['leader_id'] = write.leader_id

        updated = (
            tier.model.objects
            .filter(id=write.group_id, version=write.expected_version)
            .update(**changes)
        )
        if not updated:
            raise VersionConflictError(
                f"{tier.label} {write.group_id} changed since version {write.expected_version}"
            )

    def _apply_membership_add(self, write: MembershipAdd) -> None:
        tier = get_tier(write.kind)
        tier.membership_model.objects.create(
            user_id=write.user_id,
            role=write.role,
            **{f'{tier.group_field}_id': write.group_id},
        )

    def _apply_membership_role_change(self, write: MembershipRoleChange) -> None:
        tier = get_tier(write.kind)
        updated = (
            tier.membership_model.objects
            .filter(user_id=write.user_id, **{f'{tier.group_field}_id': write.group_id})
            .update(role=write.role)
        )
        if not updated:
            raise VersionConflictError(
                f"Membership of {write.user_id} in {tier.label} {write.group_id} disappeared"
            )

    def _apply_membership_remove(self, write: MembershipRemove) -> None:
        tier = get_tier(write.kind)
        deleted, _ = (
            tier.membership_model.objects
            .filter(user_id=write.user_id, **{f'{tier.group_field}_id': write.group_id})
            .delete()
        )
        if not deleted:
            raise VersionConflictError(
                f"Membership of {write.user_id} in {tier.label} {write.group_id} disappeared"
            )

    def _apply_user_write(self, write: UserWrite) -> None:
        tier = get_tier(write.kind)
        updated = (
            User.objects
            .filter(id=write.user_id, version=write.expected_version)
            .update(**{
                f'{tier.group_field}_id': write.group_id,
                tier.role_field: write.role,
                'version': F('version') + 1,
            })
        )
        if not updated:
            raise VersionConflictError(
                f"User {write.user_id} changed since version {write.expected_version}"
            )

    def _apply_parent_write(self, write: ParentWrite) -> None:
        updated = (
            Clan.objects
            .filter(id=write.clan_id, version=write.expected_version)
            .update(
                federation_id=write.federation_id,
                version=F('version') + 1,
                updated_at=timezone.now(),
            )
        )
        if not updated:
            raise VersionConflictError(
                f"Clan {write.clan_id} changed since version {write.expected_version}"
            )

    def _apply_group_delete(self, write: GroupDelete) -> None:
        tier = get_tier(write.kind)
        try:
            tier.model.objects.filter(id=write.group_id).delete()
        except ProtectedError as e:
            raise InvariantViolationError(
                f"{tier.label} {write.group_id} is still referenced and cannot be deleted",
                violations=[str(obj) for obj in e.protected_objects],
            )

    _handlers = {
        GroupWrite: _apply_group_write,
        MembershipAdd: _apply_membership_add,
        MembershipRoleChange: _apply_membership_role_change,
        MembershipRemove: _apply_membership_remove,
        UserWrite: _apply_user_write,
        ParentWrite: _apply_parent_write,
        GroupDelete: _apply_group_delete,
    }
