"""
Purge orchestrator.

Removes one user from every clan and federation they belong to. Each
group is its own unit of work: a failure in one group is recorded in
the report and processing continues with the next.
"""

import logging
from dataclasses import asdict, dataclass, field
from typing import List
from uuid import UUID

from apps.groups.models import GroupKind

from .exceptions import GroupNotFoundError, GroupsServiceError, NotMemberError
from .membership_management import leave_group
from .repair import clear_dangling_reference
from .store import EntityStore
from .succession import Outcome

logger = logging.getLogger(__name__)


@dataclass
class PurgeReport:
    """Tally of one purge run."""

    user_id: UUID
    clans_transferred: int = 0
    clans_dissolved: int = 0
    clans_left: int = 0
    federations_transferred: int = 0
    federations_dissolved: int = 0
    federations_left: int = 0
    # One dict per group that could not be processed
    errors: List[dict] = field(default_factory=list)
    # Groups that were already gone or no longer listed the user
    skipped: List[dict] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def count(self, kind: str, outcome: str) -> None:
        prefix = 'clans' if kind == GroupKind.CLAN else 'federations'
        name = f'{prefix}_{outcome}'
        setattr(self, name, getattr(self, name) + 1)

    def as_dict(self) -> dict:
        data = asdict(self)
        data['user_id'] = str(self.user_id)
        return data


def _entry(kind, group_id, error: GroupsServiceError) -> dict:
    return {
        'kind': str(kind),
        'group_id': str(group_id) if group_id is not None else None,
        'code': error.code,
        'message': str(error),
        'retryable': error.retryable,
    }


def _leave(report: PurgeReport, kind: str, group_id: UUID, *, as_leader: bool) -> None:
    try:
        result = leave_group(kind=kind, group_id=group_id, user_id=report.user_id)
    except (GroupNotFoundError, NotMemberError) as e:
        # Dissolved or left concurrently
        logger.info("Purge of %s skipped %s %s: %s", report.user_id, kind, group_id, e)
        report.skipped.append(_entry(kind, group_id, e))
        return
    except GroupsServiceError as e:
        logger.warning("Purge of %s failed on %s %s: %s", report.user_id, kind, group_id, e)
        report.errors.append(_entry(kind, group_id, e))
        return

    outcome = result.succession.outcome if result.succession else Outcome.NOOP
    if outcome == Outcome.DISSOLVE:
        report.count(kind, 'dissolved')
    elif as_leader and outcome == Outcome.PROMOTE:
        report.count(kind, 'transferred')
    else:
        report.count(kind, 'left')


def purge_user_affiliations(*, user_id: UUID) -> PurgeReport:
    """
    Remove a user from all clans and federations.

    Groups the user leads go through succession (promote or dissolve);
    groups the user merely belongs to are left. Clans are processed
    before federations, led groups before joined ones, each list oldest
    first. Finally any back-reference still pointing at a group that
    no longer lists the user is cleared.

    Args:
        user_id: UUID of the user to purge

    Returns:
        PurgeReport with per-kind tallies and per-group errors

    Raises:
        UserNotFoundError: If the user doesn't exist
    """
    store = EntityStore()
    store.load_user(user_id)
    report = PurgeReport(user_id=user_id)

    for kind in (GroupKind.CLAN, GroupKind.FEDERATION):
        for group_id in store.led_group_ids(kind, user_id):
            _leave(report, kind, group_id, as_leader=True)
        for group_id in store.joined_group_ids(kind, user_id):
            _leave(report, kind, group_id, as_leader=False)

    for kind in (GroupKind.CLAN, GroupKind.FEDERATION):
        try:
            clear_dangling_reference(kind=kind, user_id=user_id, store=store)
        except GroupsServiceError as e:
            logger.warning("Purge of %s could not clear its %s reference: %s", user_id, kind, e)
            report.errors.append(_entry(kind, store.load_user(user_id).group_id(kind), e))

    log = logger.info if report.ok else logger.warning
    log("Purged affiliations of user %s: %s", user_id, report.as_dict())
    return report
