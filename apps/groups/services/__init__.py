"""
Groups app services layer.

Services contain business logic and orchestrate operations across models.
All state-changing operations run under the per-group lock inside a
transaction, and re-check the membership invariants before committing.
"""

from .exceptions import (
    GroupsServiceError,
    GroupNotFoundError,
    UserNotFoundError,
    AlreadyMemberError,
    NotMemberError,
    GroupFullError,
    AlreadyInAnotherGroupError,
    CannotKickLeaderError,
    CannotKickSelfError,
    CannotModifyLeaderTierError,
    AlreadyOfficerError,
    NotAnOfficerError,
    TargetNotMemberError,
    DuplicateTagError,
    ClanAlreadyInFederationError,
    ClanNotInFederationError,
    JoinRequestNotFoundError,
    JoinRequestExistsError,
    JoinRequestClosedError,
    InsufficientPermissionsError,
    SuccessorMissingError,
    LockTimeoutError,
    VersionConflictError,
    InvariantViolationError,
)

from .events import (
    EventType,
    MembershipEvent,
    membership_event,
)

from .cache import cache_invalidated

from .group_management import (
    create_group,
    dissolve_group,
    attach_clan,
    detach_clan,
    get_group_by_id,
    get_group,
)

from .membership_management import (
    MutationResult,
    join_group,
    leave_group,
    kick_member,
    promote_member,
    demote_member,
    transfer_leadership,
    get_group_members,
)

from .join_requests import (
    create_join_request,
    get_join_requests,
    get_user_join_requests,
    accept_join_request,
    reject_join_request,
    withdraw_join_request,
)

from .purge import (
    PurgeReport,
    purge_user_affiliations,
)


__all__ = [
    # Exceptions
    'GroupsServiceError',
    'GroupNotFoundError',
    'UserNotFoundError',
    'AlreadyMemberError',
    'NotMemberError',
    'GroupFullError',
    'AlreadyInAnotherGroupError',
    'CannotKickLeaderError',
    'CannotKickSelfError',
    'CannotModifyLeaderTierError',
    'AlreadyOfficerError',
    'NotAnOfficerError',
    'TargetNotMemberError',
    'DuplicateTagError',
    'ClanAlreadyInFederationError',
    'ClanNotInFederationError',
    'JoinRequestNotFoundError',
    'JoinRequestExistsError',
    'JoinRequestClosedError',
    'InsufficientPermissionsError',
    'SuccessorMissingError',
    'LockTimeoutError',
    'VersionConflictError',
    'InvariantViolationError',

    # Signals
    'EventType',
    'MembershipEvent',
    'membership_event',
    'cache_invalidated',

    # Group Management
    'create_group',
    'dissolve_group',
    'attach_clan',
    'detach_clan',
    'get_group_by_id',
    'get_group',

    # Membership Management
    'MutationResult',
    'join_group',
    'leave_group',
    'kick_member',
    'promote_member',
    'demote_member',
    'transfer_leadership',
    'get_group_members',

    # Join Requests
    'create_join_request',
    'get_join_requests',
    'get_user_join_requests',
    'accept_join_request',
    'reject_join_request',
    'withdraw_join_request',

    # Purge
    'PurgeReport',
    'purge_user_affiliations',
]
