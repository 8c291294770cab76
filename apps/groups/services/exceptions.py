"""
Domain-specific exceptions for groups app.

These exceptions represent business rule violations and engine faults.
Views convert them to HTTP responses; the purge orchestrator records them
per group. Every exception carries a stable ``code`` and a ``retryable``
flag: only transient failures may be retried, and always from scratch
(re-read, re-validate, re-apply).
"""


class GroupsServiceError(Exception):
    """Base exception for all groups service errors."""

    code = 'groups_error'
    retryable = False


class GroupNotFoundError(GroupsServiceError):
    """Raised when a clan or federation does not exist."""

    code = 'not_found'


class UserNotFoundError(GroupsServiceError):
    """Raised when a user does not exist."""

    code = 'not_found'


class AlreadyMemberError(GroupsServiceError):
    """Raised when a user tries to join a group they're already in."""

    code = 'already_member'


class NotMemberError(GroupsServiceError):
    """Raised when the user is not a member of the group."""

    code = 'not_a_member'


class GroupFullError(GroupsServiceError):
    """Raised when a join would exceed the configured member cap."""

    code = 'group_full'


class AlreadyInAnotherGroupError(GroupsServiceError):
    """Raised when the user already holds a membership of the same tier."""

    code = 'already_in_another_group'


class CannotKickLeaderError(GroupsServiceError):
    """Raised when kicking the current leader."""

    code = 'cannot_kick_leader'


class CannotKickSelfError(GroupsServiceError):
    """Raised when the kick target is the acting user."""

    code = 'cannot_kick_self'


class CannotModifyLeaderTierError(GroupsServiceError):
    """Raised when promoting or demoting the leader."""

    code = 'cannot_modify_leader_tier'


class AlreadyOfficerError(GroupsServiceError):
    code = 'already_officer'


class NotAnOfficerError(GroupsServiceError):
    code = 'not_an_officer'


class TargetNotMemberError(GroupsServiceError):
    """Raised when leadership is transferred to a non-member."""

    code = 'target_not_member'


class DuplicateTagError(GroupsServiceError):
    code = 'duplicate_tag'


class ClanAlreadyInFederationError(GroupsServiceError):
    code = 'clan_already_in_federation'


class ClanNotInFederationError(GroupsServiceError):
    code = 'clan_not_in_federation'


class JoinRequestNotFoundError(GroupsServiceError):
    """Raised when a join request does not exist for the given group."""

    code = 'not_found'


class JoinRequestExistsError(GroupsServiceError):
    """Raised when the user already has a pending request for the group."""

    code = 'join_request_exists'


class JoinRequestClosedError(GroupsServiceError):
    """Raised when answering a request that is no longer pending."""

    code = 'join_request_closed'


class InsufficientPermissionsError(GroupsServiceError):
    """Raised when a user lacks required permissions for an action."""

    code = 'insufficient_permissions'


class SuccessorMissingError(GroupsServiceError):
    """
    Raised when the chosen successor's user record cannot be loaded.

    This is a data-integrity fault, distinct from an ordinary dissolution.
    """

    code = 'successor_missing'


class LockTimeoutError(GroupsServiceError):
    """Raised when a group lock could not be acquired in time."""

    code = 'lock_timeout'
    retryable = True


class VersionConflictError(GroupsServiceError):
    """Raised when a stored entity changed since it was read."""

    code = 'version_conflict'
    retryable = True


class InvariantViolationError(GroupsServiceError):
    """
    Raised when group state breaks a membership invariant.

    Always a bug or a corrupted record. Never retried automatically.
    """

    code = 'invariant_violation'

    def __init__(self, message, violations=()):
        super().__init__(message)
        self.violations = list(violations)
