"""
Succession resolver.

Decides what happens to a group's leadership when a member departs.
Pure: it reads a snapshot and returns a decision, nothing more.
"""

import enum
from dataclasses import dataclass
from typing import List, Optional
from uuid import UUID

from apps.groups.models import GroupRole

from .store import GroupSnapshot


class Outcome(enum.Enum):
    NOOP = 'noop'
    PROMOTE = 'promote'
    DISSOLVE = 'dissolve'


@dataclass(frozen=True)
class Succession:
    outcome: Outcome
    successor_id: Optional[UUID] = None

    @classmethod
    def noop(cls):
        return cls(Outcome.NOOP)

    @classmethod
    def promote(cls, user_id):
        return cls(Outcome.PROMOTE, user_id)

    @classmethod
    def dissolve(cls):
        return cls(Outcome.DISSOLVE)


def succession_candidates(group: GroupSnapshot, removed_id: UUID) -> List[UUID]:
    """
    Remaining members eligible to lead, best first.

    Officers come before plain members; within a tier the earliest
    joiner wins.
    """
    officers = []
    members = []
    for user_id, role in group.roles:
        if user_id == removed_id or user_id == group.leader_id:
            continue
        if role == GroupRole.OFFICER:
            officers.append(user_id)
        else:
            members.append(user_id)
    return officers + members


def resolve_succession(group: GroupSnapshot, removed_id: UUID) -> Succession:
    """
    Resolve leadership after ``removed_id`` leaves ``group``.

    Returns:
        NOOP when the departing member is not the leader and others
        remain, PROMOTE with the successor when the leader leaves and a
        candidate exists, DISSOLVE when nobody would remain to lead.
    """
    remaining = [user_id for user_id in group.member_ids if user_id != removed_id]
    if not remaining:
        return Succession.dissolve()

    if not group.is_leader(removed_id):
        return Succession.noop()

    candidates = succession_candidates(group, removed_id)
    if not candidates:
        return Succession.dissolve()
    return Succession.promote(candidates[0])
