import pytest
from django.core.cache import cache
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken

from apps.accounts.models import User
from apps.groups.models import GroupKind
from apps.groups.services import (
    create_group,
    join_group,
    membership_event,
    promote_member,
)


@pytest.fixture(autouse=True)
def clear_cache():
    """Cached group details must not leak between tests."""
    cache.clear()
    yield
    cache.clear()


def make_client(user=None):
    """Return an API client, authenticated as ``user`` when given."""
    client = APIClient()
    if user is not None:
        refresh = RefreshToken.for_user(user)
        client.credentials(HTTP_AUTHORIZATION=f'Bearer {refresh.access_token}')
    return client


@pytest.fixture
def api_client():
    """Return an unauthenticated API client."""
    return APIClient()


@pytest.fixture
def user_factory(db):
    """Create users with unique emails."""
    counter = {'n': 0}

    def create(name=None, **extra):
        counter['n'] += 1
        name = name or f'user{counter["n"]}'
        return User.objects.create_user(
            email=f'{name}@example.com',
            password='TestPass123!',
            display_name=name.title(),
            **extra,
        )

    return create


@pytest.fixture
def leader(user_factory):
    return user_factory('leader')


@pytest.fixture
def officer(user_factory):
    return user_factory('officer')


@pytest.fixture
def member(user_factory):
    return user_factory('member')


@pytest.fixture
def outsider(user_factory):
    """User not in any group."""
    return user_factory('outsider')


@pytest.fixture
def platform_admin(user_factory):
    return user_factory('admin', is_staff=True)


@pytest.fixture
def clan(leader):
    """Clan led by ``leader`` with no other members."""
    return create_group(kind=GroupKind.CLAN, name='Night Owls', tag='owl', leader_id=leader.id)


@pytest.fixture
def full_clan(clan, officer, member):
    """Clan with leader, then officer, then plain member, in join order."""
    join_group(kind=GroupKind.CLAN, group_id=clan.id, user_id=officer.id)
    join_group(kind=GroupKind.CLAN, group_id=clan.id, user_id=member.id)
    promote_member(kind=GroupKind.CLAN, group_id=clan.id, user_id=officer.id)
    return clan


@pytest.fixture
def federation(leader):
    """Federation led by ``leader`` with no other members."""
    return create_group(kind=GroupKind.FEDERATION, name='Northern Alliance', tag='north', leader_id=leader.id)


@pytest.fixture
def leader_client(leader):
    return make_client(leader)


@pytest.fixture
def officer_client(officer):
    return make_client(officer)


@pytest.fixture
def member_client(member):
    return make_client(member)


@pytest.fixture
def outsider_client(outsider):
    return make_client(outsider)


@pytest.fixture
def staff_client(platform_admin):
    return make_client(platform_admin)


@pytest.fixture
def client_for(db):
    """Return a factory of API clients authenticated as a given user."""
    return make_client


@pytest.fixture
def captured_events():
    """Collect membership events published during the test."""
    events = []

    def receiver(sender, event, **kwargs):
        events.append(event)

    membership_event.connect(receiver)
    yield events
    membership_event.disconnect(receiver)
