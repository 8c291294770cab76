from django.contrib.auth.models import AbstractBaseUser, BaseUserManager, PermissionsMixin
from django.db import models
import uuid

from apps.groups.models import GroupKind, GroupRole


class UserManager(BaseUserManager):
    """Custom user manager for email-based authentication."""

    def create_user(self, email, password=None, **extra_fields):
        if not email:
            raise ValueError('Email is required')

        email = self.normalize_email(email)
        user = self.model(email=email, **extra_fields)
        user.set_password(password)
        user.save(using=self._db)
        return user

    def create_superuser(self, email, password=None, **extra_fields):
        extra_fields.setdefault('is_staff', True)
        extra_fields.setdefault('is_superuser', True)

        if extra_fields.get('is_staff') is not True:
            raise ValueError('Superuser must have is_staff=True')
        if extra_fields.get('is_superuser') is not True:
            raise ValueError('Superuser must have is_superuser=True')

        return self.create_user(email, password, **extra_fields)


class User(AbstractBaseUser, PermissionsMixin):
    """
    Custom user model with email authentication.

    Clan and federation back-references are written only by the
    membership engine (apps.groups.services.store), never through forms
    or serializers, hence editable=False.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    email = models.EmailField(unique=True, max_length=255, db_index=True)
    display_name = models.CharField(max_length=100, blank=True)

    # Permissions
    is_active = models.BooleanField(default=True)
    is_staff = models.BooleanField(default=False)

    # Group memberships
    clan = models.ForeignKey(
        'groups.Clan',
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        editable=False,
        related_name='users',
    )
    clan_role = models.CharField(
        max_length=10, choices=GroupRole.choices, null=True, blank=True, editable=False
    )
    federation = models.ForeignKey(
        'groups.Federation',
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        editable=False,
        related_name='users',
    )
    federation_role = models.CharField(
        max_length=10, choices=GroupRole.choices, null=True, blank=True, editable=False
    )
    version = models.PositiveIntegerField(default=1, editable=False)

    # Timestamps
    created_at = models.DateTimeField(auto_now_add=True)
    last_login = models.DateTimeField(null=True, blank=True)

    objects = UserManager()

    USERNAME_FIELD = 'email'
    REQUIRED_FIELDS = []

    class Meta:
        db_table = 'users'
        indexes = [
            models.Index(fields=['email'], name='users_email_idx'),
            models.Index(fields=['clan'], name='users_clan_idx'),
            models.Index(fields=['federation'], name='users_federation_idx'),
        ]

    def __str__(self):
        return self.email

    def get_display_name(self):
        """Return display name or email prefix."""
        return self.display_name or self.email.split('@')[0]

    @property
    def is_platform_admin(self):
        return self.is_staff or self.is_superuser

    def group_id_for(self, kind):
        if kind == GroupKind.CLAN:
            return self.clan_id
        return self.federation_id

    def group_role_for(self, kind):
        if kind == GroupKind.CLAN:
            return self.clan_role
        return self.federation_role
