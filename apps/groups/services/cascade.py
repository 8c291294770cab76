"""
Cascade propagator.

Turns a membership decision into the complete, ordered batch of writes
that keeps groups, users and parent federations consistent, plus the
domain events and cache keys the change produces. Nothing here touches
the database; ``EntityStore.apply`` does.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Set
from uuid import UUID

from apps.groups.models import GroupKind, GroupRole

from . import cache
from .events import EventType, MembershipEvent
from .exceptions import SuccessorMissingError
from .store import (
    GroupDelete,
    GroupSnapshot,
    GroupWrite,
    MembershipAdd,
    MembershipRemove,
    MembershipRoleChange,
    ParentWrite,
    UserSnapshot,
    UserWrite,
)
from .succession import Outcome, Succession


@dataclass
class Plan:
    """Writes, events and stale cache keys of one logical mutation."""

    kind: str
    group_id: UUID
    writes: list = field(default_factory=list)
    events: List[MembershipEvent] = field(default_factory=list)
    stale_keys: Set[str] = field(default_factory=set)
    succession: Optional[Succession] = None
    dissolved: bool = False
    new_leader_id: Optional[UUID] = None

    @property
    def user_ids(self) -> List[UUID]:
        return [write.user_id for write in self.writes if isinstance(write, UserWrite)]


def _new_plan(group: GroupSnapshot) -> Plan:
    plan = Plan(kind=group.kind, group_id=group.id, new_leader_id=group.leader_id)
    plan.stale_keys.add(cache.group_key(group.kind, group.id))
    plan.stale_keys.add(cache.list_key(group.kind))
    if group.parent_id is not None:
        plan.stale_keys.add(cache.group_key(GroupKind.FEDERATION, group.parent_id))
    return plan


def _set_user(plan: Plan, user: UserSnapshot, kind: str, group_id, role) -> None:
    plan.writes.append(UserWrite(
        user_id=user.id,
        kind=kind,
        expected_version=user.version,
        group_id=group_id,
        role=role,
    ))
    plan.stale_keys.add(cache.user_key(user.id))


def _require_user(group: GroupSnapshot, user_id: UUID) -> UserSnapshot:
    user = group.users.get(user_id)
    if user is None:
        raise SuccessorMissingError(
            f"User record {user_id} for {group.kind} {group.id} could not be loaded"
        )
    return user


def plan_join(group: GroupSnapshot, user: UserSnapshot) -> Plan:
    """
    Add ``user`` to ``group``.

    A leaderless (bootstrapped) group seats its first joiner as leader.
    """
    plan = _new_plan(group)
    seats_leader = group.leader_id is None
    role = GroupRole.LEADER if seats_leader else GroupRole.MEMBER

    plan.writes.append(GroupWrite(
        kind=group.kind,
        group_id=group.id,
        expected_version=group.version,
        set_leader=seats_leader,
        leader_id=user.id if seats_leader else None,
    ))
    plan.writes.append(MembershipAdd(group.kind, group.id, user.id, role))
    _set_user(plan, user, group.kind, group.id, role)

    plan.events.append(MembershipEvent(
        type=EventType.MEMBER_JOINED,
        kind=group.kind,
        group_id=group.id,
        user_ids=(user.id,),
        old_leader_id=group.leader_id,
        new_leader_id=user.id if seats_leader else group.leader_id,
    ))
    if seats_leader:
        plan.new_leader_id = user.id
    return plan


def plan_removal(
    group: GroupSnapshot,
    user_id: UUID,
    succession: Succession,
    *,
    event_type: str = EventType.MEMBER_LEFT,
) -> Plan:
    """
    Remove ``user_id`` from ``group`` and apply the succession decision.

    Raises:
        SuccessorMissingError: If the successor's user record is missing
    """
    if succession.outcome == Outcome.DISSOLVE:
        plan = plan_dissolution(group)
        plan.events.insert(0, MembershipEvent(
            type=event_type,
            kind=group.kind,
            group_id=group.id,
            user_ids=(user_id,),
            old_leader_id=group.leader_id,
        ))
        plan.succession = succession
        return plan

    plan = _new_plan(group)
    plan.succession = succession
    promoting = succession.outcome == Outcome.PROMOTE
    successor = _require_user(group, succession.successor_id) if promoting else None

    plan.writes.append(GroupWrite(
        kind=group.kind,
        group_id=group.id,
        expected_version=group.version,
        set_leader=promoting,
        leader_id=successor.id if promoting else None,
    ))
    plan.writes.append(MembershipRemove(group.kind, group.id, user_id))

    departing = group.users.get(user_id)
    if departing is not None and departing.group_id(group.kind) == group.id:
        _set_user(plan, departing, group.kind, None, None)

    plan.events.append(MembershipEvent(
        type=event_type,
        kind=group.kind,
        group_id=group.id,
        user_ids=(user_id,),
        old_leader_id=group.leader_id,
        new_leader_id=successor.id if promoting else group.leader_id,
    ))

    if promoting:
        plan.writes.append(MembershipRoleChange(group.kind, group.id, successor.id, GroupRole.LEADER))
        _set_user(plan, successor, group.kind, group.id, GroupRole.LEADER)
        plan.new_leader_id = successor.id
        plan.events.append(MembershipEvent(
            type=EventType.LEADERSHIP_TRANSFERRED,
            kind=group.kind,
            group_id=group.id,
            user_ids=(user_id, successor.id),
            old_leader_id=user_id,
            new_leader_id=successor.id,
        ))

    return plan


def plan_role_change(group: GroupSnapshot, user_id: UUID, role: str) -> Plan:
    """Move a non-leader member between the officer and member tiers."""
    plan = _new_plan(group)
    user = _require_user(group, user_id)

    plan.writes.append(GroupWrite(
        kind=group.kind,
        group_id=group.id,
        expected_version=group.version,
    ))
    plan.writes.append(MembershipRoleChange(group.kind, group.id, user_id, role))
    _set_user(plan, user, group.kind, group.id, role)

    plan.events.append(MembershipEvent(
        type=EventType.MEMBER_PROMOTED if role == GroupRole.OFFICER else EventType.MEMBER_DEMOTED,
        kind=group.kind,
        group_id=group.id,
        user_ids=(user_id,),
        old_leader_id=group.leader_id,
        new_leader_id=group.leader_id,
    ))
    return plan


def plan_transfer(
    group: GroupSnapshot,
    new_leader_id: UUID,
    newcomer: Optional[UserSnapshot] = None,
) -> Plan:
    """
    Hand leadership to ``new_leader_id``.

    The previous leader stays on as a plain member; the new leader
    leaves the officer tier if they were in it. A leaderless group may
    be handed to a ``newcomer`` who is not yet a member: they are seated
    as its leader in the same batch.
    """
    plan = _new_plan(group)
    new_leader = newcomer if newcomer is not None else _require_user(group, new_leader_id)

    plan.writes.append(GroupWrite(
        kind=group.kind,
        group_id=group.id,
        expected_version=group.version,
        set_leader=True,
        leader_id=new_leader_id,
    ))

    old_leader_id = group.leader_id
    if old_leader_id is not None:
        old_leader = _require_user(group, old_leader_id)
        plan.writes.append(MembershipRoleChange(group.kind, group.id, old_leader_id, GroupRole.MEMBER))
        _set_user(plan, old_leader, group.kind, group.id, GroupRole.MEMBER)

    if newcomer is not None:
        plan.writes.append(MembershipAdd(group.kind, group.id, new_leader_id, GroupRole.LEADER))
        plan.events.append(MembershipEvent(
            type=EventType.MEMBER_JOINED,
            kind=group.kind,
            group_id=group.id,
            user_ids=(new_leader_id,),
            old_leader_id=old_leader_id,
            new_leader_id=new_leader_id,
        ))
    else:
        plan.writes.append(MembershipRoleChange(group.kind, group.id, new_leader_id, GroupRole.LEADER))
    _set_user(plan, new_leader, group.kind, group.id, GroupRole.LEADER)
    plan.new_leader_id = new_leader_id

    user_ids = (old_leader_id, new_leader_id) if old_leader_id is not None else (new_leader_id,)
    plan.events.append(MembershipEvent(
        type=EventType.LEADERSHIP_TRANSFERRED,
        kind=group.kind,
        group_id=group.id,
        user_ids=user_ids,
        old_leader_id=old_leader_id,
        new_leader_id=new_leader_id,
    ))
    return plan


def plan_dissolution(group: GroupSnapshot) -> Plan:
    """
    Destroy ``group`` and every reference to it.

    Clears each member's back-reference, unlinks child clans of a
    federation, then deletes the group row. A dissolved clan drops out
    of its parent federation's clan list with the row itself.
    """
    plan = _new_plan(group)
    plan.dissolved = True
    plan.new_leader_id = None

    plan.writes.append(GroupWrite(
        kind=group.kind,
        group_id=group.id,
        expected_version=group.version,
        set_leader=True,
        leader_id=None,
    ))

    for user_id in group.member_ids:
        plan.writes.append(MembershipRemove(group.kind, group.id, user_id))
        user = group.users.get(user_id)
        if user is not None and user.group_id(group.kind) == group.id:
            _set_user(plan, user, group.kind, None, None)

    for clan_id in group.child_ids:
        plan.writes.append(ParentWrite(
            clan_id=clan_id,
            expected_version=group.children[clan_id],
            federation_id=None,
        ))
        plan.stale_keys.add(cache.group_key(GroupKind.CLAN, clan_id))

    plan.writes.append(GroupDelete(group.kind, group.id))

    plan.events.append(MembershipEvent(
        type=EventType.GROUP_DISSOLVED,
        kind=group.kind,
        group_id=group.id,
        user_ids=group.member_ids,
        old_leader_id=group.leader_id,
        related_group_ids=group.child_ids,
    ))
    return plan


def plan_parent_link(federation: GroupSnapshot, clan: GroupSnapshot, *, attach: bool) -> Plan:
    """Link ``clan`` under ``federation`` or unlink it."""
    plan = _new_plan(federation)
    plan.writes.append(GroupWrite(
        kind=federation.kind,
        group_id=federation.id,
        expected_version=federation.version,
    ))
    plan.writes.append(ParentWrite(
        clan_id=clan.id,
        expected_version=clan.version,
        federation_id=federation.id if attach else None,
    ))
    plan.stale_keys.add(cache.group_key(GroupKind.CLAN, clan.id))
    plan.stale_keys.add(cache.list_key(GroupKind.CLAN))

    plan.events.append(MembershipEvent(
        type=EventType.CLAN_ATTACHED if attach else EventType.CLAN_DETACHED,
        kind=federation.kind,
        group_id=federation.id,
        old_leader_id=federation.leader_id,
        new_leader_id=federation.leader_id,
        related_group_ids=(clan.id,),
    ))
    return plan
