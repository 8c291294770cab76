# ==========================================
# apps/groups/models.py
# ==========================================

import uuid

from django.conf import settings
from django.db import models
from django.utils import timezone


class GroupRole(models.TextChoices):
    LEADER = 'leader', 'Leader'
    OFFICER = 'officer', 'Officer'
    MEMBER = 'member', 'Member'


class GroupKind(models.TextChoices):
    CLAN = 'clan', 'Clan'
    FEDERATION = 'federation', 'Federation'


class BaseGroup(models.Model):
    """Fields shared by clans and federations."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=100)
    tag = models.CharField(max_length=10)
    description = models.TextField(blank=True)
    leader = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        editable=False,
        related_name='led_%(class)ss',
    )
    version = models.PositiveIntegerField(default=1, editable=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    kind = None

    class Meta:
        abstract = True
        ordering = ['created_at']

    def __str__(self):
        return f"[{self.tag}] {self.name}"

    def get_user_role(self, user):
        membership = self.memberships.filter(user=user).first()
        return membership.role if membership else None

    def is_leader(self, user):
        return self.leader_id is not None and self.leader_id == user.id

    def is_staff_member(self, user):
        """Leader or officer."""
        return self.get_user_role(user) in [GroupRole.LEADER, GroupRole.OFFICER]


class Federation(BaseGroup):
    """Top-level group of users and clans."""

    kind = GroupKind.FEDERATION

    class Meta(BaseGroup.Meta):
        db_table = 'federations'
        constraints = [
            models.UniqueConstraint(fields=['tag'], name='unique_federation_tag'),
        ]
        indexes = [
            models.Index(fields=['leader'], name='federations_leader_idx'),
        ]


class Clan(BaseGroup):
    """Group of users, optionally belonging to a federation."""

    federation = models.ForeignKey(
        Federation,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        editable=False,
        related_name='clans',
    )

    kind = GroupKind.CLAN

    class Meta(BaseGroup.Meta):
        db_table = 'clans'
        constraints = [
            models.UniqueConstraint(fields=['tag'], name='unique_clan_tag'),
        ]
        indexes = [
            models.Index(fields=['leader'], name='clans_leader_idx'),
            models.Index(fields=['federation'], name='clans_federation_idx'),
        ]


class BaseMembership(models.Model):
    """Group side of a membership edge. Ordering is the join order."""

    role = models.CharField(max_length=10, choices=GroupRole.choices, default=GroupRole.MEMBER)
    joined_at = models.DateTimeField(default=timezone.now)

    class Meta:
        abstract = True
        ordering = ['joined_at', 'id']


class ClanMembership(BaseMembership):
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name='clan_memberships',
    )
    clan = models.ForeignKey(Clan, on_delete=models.CASCADE, related_name='memberships')

    class Meta(BaseMembership.Meta):
        db_table = 'clan_memberships'
        unique_together = [['user', 'clan']]
        indexes = [
            models.Index(fields=['clan', 'role'], name='clan_memberships_role_idx'),
        ]

    def __str__(self):
        return f"{self.user} in {self.clan} ({self.role})"


class FederationMembership(BaseMembership):
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name='federation_memberships',
    )
    federation = models.ForeignKey(Federation, on_delete=models.CASCADE, related_name='memberships')

    class Meta(BaseMembership.Meta):
        db_table = 'federation_memberships'
        unique_together = [['user', 'federation']]
        indexes = [
            models.Index(fields=['federation', 'role'], name='fed_memberships_role_idx'),
        ]

    def __str__(self):
        return f"{self.user} in {self.federation} ({self.role})"


class JoinRequestStatus(models.TextChoices):
    PENDING = 'pending', 'Pending'
    ACCEPTED = 'accepted', 'Accepted'
    REJECTED = 'rejected', 'Rejected'
    WITHDRAWN = 'withdrawn', 'Withdrawn'


class JoinRequest(models.Model):
    """
    A user's request to join a clan or federation.

    Exactly one of ``clan`` and ``federation`` is set, matching ``kind``.
    Requests go away with the group they target.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    kind = models.CharField(max_length=10, choices=GroupKind.choices)
    clan = models.ForeignKey(
        Clan,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='join_requests',
    )
    federation = models.ForeignKey(
        Federation,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='join_requests',
    )
    requester = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='join_requests',
    )
    message = models.CharField(max_length=500, blank=True)
    status = models.CharField(
        max_length=10,
        choices=JoinRequestStatus.choices,
        default=JoinRequestStatus.PENDING,
    )
    responded_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+',
    )
    created_at = models.DateTimeField(auto_now_add=True)
    responded_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = 'join_requests'
        ordering = ['created_at']
        constraints = [
            models.UniqueConstraint(
                fields=['requester', 'clan'],
                condition=models.Q(status='pending'),
                name='unique_pending_clan_request',
            ),
            models.UniqueConstraint(
                fields=['requester', 'federation'],
                condition=models.Q(status='pending'),
                name='unique_pending_federation_request',
            ),
        ]
        indexes = [
            models.Index(fields=['status', 'created_at'], name='join_requests_status_idx'),
        ]

    def __str__(self):
        return f"{self.requester} -> {self.group} ({self.status})"

    @property
    def group(self):
        return self.clan if self.kind == GroupKind.CLAN else self.federation

    @property
    def group_id(self):
        return self.clan_id if self.kind == GroupKind.CLAN else self.federation_id
