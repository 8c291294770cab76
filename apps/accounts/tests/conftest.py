import pytest

from apps.accounts.models import User
from apps.groups.models import GroupKind
from apps.groups.services import create_group, join_group


@pytest.fixture
def user(db):
    """Create and return a test user."""
    return User.objects.create_user(
        email='testuser@example.com',
        password='TestPass123!',
        display_name='Test User',
    )


@pytest.fixture
def clan_leader(db):
    return User.objects.create_user(email='leader@example.com', password='TestPass123!')


@pytest.fixture
def clan(clan_leader, user):
    """Clan led by ``clan_leader`` with ``user`` as a plain member."""
    clan = create_group(kind=GroupKind.CLAN, name='Night Owls', tag='owl', leader_id=clan_leader.id)
    join_group(kind=GroupKind.CLAN, group_id=clan.id, user_id=user.id)
    return clan
