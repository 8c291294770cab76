"""
Membership invariant checker.

Pure functions over snapshots. Used as a precondition before a mutation
is planned, as a postcondition after its batch is applied, and by the
``check_memberships`` audit command.
"""

import enum
from dataclasses import dataclass
from typing import List, Optional
from uuid import UUID

from apps.groups.models import GroupKind, GroupRole

from .store import GroupSnapshot, UserSnapshot


class ViolationKind(enum.Enum):
    LEADER_NOT_MEMBER = 'leader_not_member'
    LEADER_IS_OFFICER = 'leader_is_officer'
    LEADER_ROLE_MISMATCH = 'leader_role_mismatch'
    MISSING_USER = 'missing_user'
    BACK_REFERENCE_MISMATCH = 'back_reference_mismatch'
    ROLE_MISMATCH = 'role_mismatch'
    PARENT_MISSING = 'parent_missing'
    PARENT_LINK_MISMATCH = 'parent_link_mismatch'
    EMPTY_GROUP = 'empty_group'
    USER_ROLE_INCONSISTENT = 'user_role_inconsistent'
    DANGLING_REFERENCE = 'dangling_reference'


@dataclass(frozen=True)
class Violation:
    kind: ViolationKind
    detail: str
    # Member the violation is about, when it concerns a single member
    user_id: Optional[UUID] = None

    def __str__(self):
        return f"{self.kind.value}: {self.detail}"


def validate(
    group: GroupSnapshot,
    parent: Optional[GroupSnapshot] = None,
    *,
    allow_empty: bool = True,
) -> List[Violation]:
    """
    Check a group snapshot against the membership invariants.

    Args:
        group: Snapshot of the clan or federation
        parent: Snapshot of the clan's parent federation, if it has one
        allow_empty: Whether a group without members is acceptable
            (only a freshly bootstrapped group may be empty)

    Returns:
        List of violations, empty when the group is consistent
    """
    violations = []
    label = f"{group.kind} {group.id}"

    # Leader is a member, holding the leader tier and nothing else
    if group.leader_id is not None:
        leader_role = group.role_of(group.leader_id)
        if leader_role is None:
            violations.append(Violation(
                ViolationKind.LEADER_NOT_MEMBER,
                f"{label}: leader {group.leader_id} is not a member",
            ))
        elif leader_role == GroupRole.OFFICER:
            violations.append(Violation(
                ViolationKind.LEADER_IS_OFFICER,
                f"{label}: leader {group.leader_id} is listed as officer",
            ))
        elif leader_role != GroupRole.LEADER:
            violations.append(Violation(
                ViolationKind.LEADER_ROLE_MISMATCH,
                f"{label}: leader {group.leader_id} has role {leader_role}",
            ))

    for user_id, role in group.roles:
        if role == GroupRole.LEADER and user_id != group.leader_id:
            violations.append(Violation(
                ViolationKind.LEADER_ROLE_MISMATCH,
                f"{label}: {user_id} holds the leader role but is not the leader",
            ))

        # Back-references on the user side
        user = group.users.get(user_id)
        if user is None:
            violations.append(Violation(
                ViolationKind.MISSING_USER,
                f"{label}: member {user_id} has no user record",
                user_id,
            ))
            continue
        if user.group_id(group.kind) != group.id:
            violations.append(Violation(
                ViolationKind.BACK_REFERENCE_MISMATCH,
                f"{label}: member {user_id} references {user.group_id(group.kind)}",
                user_id,
            ))
        elif user.role(group.kind) != role:
            violations.append(Violation(
                ViolationKind.ROLE_MISMATCH,
                f"{label}: member {user_id} has role {user.role(group.kind)}, expected {role}",
                user_id,
            ))

    # Parent federation link
    if group.kind == GroupKind.CLAN and group.parent_id is not None:
        if parent is None:
            violations.append(Violation(
                ViolationKind.PARENT_MISSING,
                f"{label}: parent federation {group.parent_id} not found",
            ))
        elif parent.id != group.parent_id or group.id not in parent.children:
            violations.append(Violation(
                ViolationKind.PARENT_LINK_MISMATCH,
                f"{label}: federation {parent.id} does not list this clan",
            ))

    if not group.roles:
        if group.leader_id is not None or not allow_empty:
            violations.append(Violation(
                ViolationKind.EMPTY_GROUP,
                f"{label}: group has no members",
            ))

    return violations


# Violations a mutation resolves by removing the member they concern
MEMBER_SIDE_KINDS = frozenset({
    ViolationKind.MISSING_USER,
    ViolationKind.BACK_REFERENCE_MISMATCH,
    ViolationKind.ROLE_MISMATCH,
})


def blocking_violations(violations: List[Violation], removing: Optional[UUID] = None) -> List[Violation]:
    """Violations that still stand once ``removing`` is no longer a member."""
    if removing is None:
        return list(violations)
    return [
        violation for violation in violations
        if not (violation.user_id == removing and violation.kind in MEMBER_SIDE_KINDS)
    ]


def validate_user(
    user: UserSnapshot,
    kind: str,
    group: Optional[GroupSnapshot] = None,
) -> List[Violation]:
    """
    Check one tier of a user's back-reference.

    Args:
        user: Snapshot of the user
        kind: Which tier to check
        group: Snapshot of the group the user references, or None if the
            user references nothing or the group could not be loaded
    """
    violations = []
    group_id = user.group_id(kind)
    role = user.role(kind)
    label = f"user {user.id}"

    if (group_id is None) != (role is None):
        violations.append(Violation(
            ViolationKind.USER_ROLE_INCONSISTENT,
            f"{label}: {kind} is {group_id} but role is {role}",
        ))

    if group_id is None:
        return violations

    if group is None or group.id != group_id:
        violations.append(Violation(
            ViolationKind.DANGLING_REFERENCE,
            f"{label}: references missing {kind} {group_id}",
        ))
        return violations

    group_role = group.role_of(user.id)
    if group_role is None:
        violations.append(Violation(
            ViolationKind.DANGLING_REFERENCE,
            f"{label}: {kind} {group_id} does not list this user",
        ))
    elif role is not None and group_role != role:
        violations.append(Violation(
            ViolationKind.ROLE_MISMATCH,
            f"{label}: role {role} but {kind} {group_id} lists {group_role}",
        ))

    return violations
