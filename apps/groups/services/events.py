"""
Domain events for membership changes.

Events are delivered through the ``membership_event`` Django signal once
the mutation's transaction has finished. Delivery (sockets, push,
logs) is entirely up to the receivers.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple
from uuid import UUID

from django.db import models
from django.dispatch import Signal

logger = logging.getLogger(__name__)


class EventType(models.TextChoices):
    GROUP_CREATED = 'group_created', 'Group created'
    MEMBER_JOINED = 'member_joined', 'Member joined'
    MEMBER_LEFT = 'member_left', 'Member left'
    MEMBER_KICKED = 'member_kicked', 'Member kicked'
    MEMBER_PROMOTED = 'member_promoted', 'Member promoted'
    MEMBER_DEMOTED = 'member_demoted', 'Member demoted'
    LEADERSHIP_TRANSFERRED = 'leadership_transferred', 'Leadership transferred'
    GROUP_DISSOLVED = 'group_dissolved', 'Group dissolved'
    CLAN_ATTACHED = 'clan_attached', 'Clan attached'
    CLAN_DETACHED = 'clan_detached', 'Clan detached'


@dataclass(frozen=True)
class MembershipEvent:
    type: str
    kind: str
    group_id: UUID
    user_ids: Tuple[UUID, ...] = ()
    old_leader_id: Optional[UUID] = None
    new_leader_id: Optional[UUID] = None
    related_group_ids: Tuple[UUID, ...] = ()


# Sent with ``event=MembershipEvent``
membership_event = Signal()


def publish(events: Iterable[MembershipEvent], sender=None) -> None:
    """
    Send events to every receiver.

    A failing receiver is logged and does not stop delivery of the
    remaining events; the mutation itself has already been committed.
    """
    for event in events:
        responses = membership_event.send_robust(sender=sender, event=event)
        for receiver, response in responses:
            if isinstance(response, Exception):
                logger.error(
                    "Receiver %r failed for %s on %s %s: %s",
                    receiver, event.type, event.kind, event.group_id, response,
                )
