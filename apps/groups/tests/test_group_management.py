"""
Service layer tests for creating, dissolving and linking groups.
"""

from uuid import uuid4

import pytest

from apps.groups.models import Clan, ClanMembership, Federation, FederationMembership, GroupKind, GroupRole
from apps.groups.services import (
    AlreadyInAnotherGroupError,
    ClanAlreadyInFederationError,
    ClanNotInFederationError,
    DuplicateTagError,
    EventType,
    GroupNotFoundError,
    attach_clan,
    cache_invalidated,
    create_group,
    detach_clan,
    dissolve_group,
    get_group,
    join_group,
)
from apps.groups.services.cache import group_key

CLAN = GroupKind.CLAN
FEDERATION = GroupKind.FEDERATION


@pytest.mark.django_db
class TestCreateGroup:
    """Tests for create_group()."""

    def test_create_seats_leader(self, leader):
        clan = create_group(kind=CLAN, name='Night Owls', tag=' owl ', description='Nocturnal', leader_id=leader.id)

        leader.refresh_from_db()
        assert clan.tag == 'OWL'
        assert clan.leader_id == leader.id
        assert clan.description == 'Nocturnal'
        assert ClanMembership.objects.get(clan=clan, user=leader).role == GroupRole.LEADER
        assert leader.clan_id == clan.id
        assert leader.clan_role == GroupRole.LEADER

    def test_create_federation(self, leader):
        federation = create_group(kind=FEDERATION, name='Alliance', tag='all', leader_id=leader.id)

        assert isinstance(federation, Federation)
        assert FederationMembership.objects.get(federation=federation).user_id == leader.id

    def test_duplicate_tag_is_case_insensitive(self, clan, outsider):
        with pytest.raises(DuplicateTagError):
            create_group(kind=CLAN, name='Copy', tag='OWL', leader_id=outsider.id)

        outsider.refresh_from_db()
        assert outsider.clan_id is None

    def test_same_tag_allowed_across_kinds(self, clan, outsider):
        federation = create_group(kind=FEDERATION, name='Owls United', tag='owl', leader_id=outsider.id)

        assert federation.tag == clan.tag

    def test_leader_already_in_clan(self, clan, leader):
        with pytest.raises(AlreadyInAnotherGroupError):
            create_group(kind=CLAN, name='Second', tag='two', leader_id=leader.id)

        assert not Clan.objects.filter(tag='TWO').exists()

    def test_bootstrap_without_leader(self, db):
        clan = create_group(kind=CLAN, name='Bootstrap', tag='boot')

        assert clan.leader_id is None
        assert not clan.memberships.exists()

    def test_events(self, leader, captured_events):
        clan = create_group(kind=CLAN, name='Night Owls', tag='owl', leader_id=leader.id)

        assert [event.type for event in captured_events] == [
            EventType.GROUP_CREATED,
            EventType.MEMBER_JOINED,
        ]
        assert all(event.group_id == clan.id for event in captured_events)


@pytest.mark.django_db
class TestDissolveGroup:
    """Tests for dissolve_group()."""

    def test_dissolve_clan_clears_all_members(self, full_clan, leader, officer, member):
        result = dissolve_group(kind=CLAN, group_id=full_clan.id)

        assert result.dissolved is True
        assert not Clan.objects.filter(id=full_clan.id).exists()
        assert not ClanMembership.objects.exists()
        for user in (leader, officer, member):
            user.refresh_from_db()
            assert user.clan_id is None
            assert user.clan_role is None

    def test_dissolve_federation_detaches_clans(self, clan, federation, leader, officer):
        second = create_group(kind=CLAN, name='Larks', tag='lark', leader_id=officer.id)
        attach_clan(federation_id=federation.id, clan_id=clan.id)
        attach_clan(federation_id=federation.id, clan_id=second.id)

        result = dissolve_group(kind=FEDERATION, group_id=federation.id)

        clan.refresh_from_db()
        second.refresh_from_db()
        leader.refresh_from_db()
        assert clan.federation_id is None
        assert second.federation_id is None
        assert leader.federation_id is None
        # Clan memberships are untouched
        assert leader.clan_id == clan.id
        assert second.leader_id == officer.id
        assert set(result.events[-1].related_group_ids) == {clan.id, second.id}

    def test_dissolve_missing(self, db):
        with pytest.raises(GroupNotFoundError):
            dissolve_group(kind=CLAN, group_id=uuid4())


@pytest.mark.django_db
class TestClanLinks:
    """Tests for attach_clan() and detach_clan()."""

    def test_attach(self, clan, federation, captured_events):
        attach_clan(federation_id=federation.id, clan_id=clan.id)

        clan.refresh_from_db()
        assert clan.federation_id == federation.id
        assert captured_events[0].type == EventType.CLAN_ATTACHED

    def test_attach_twice(self, clan, federation):
        attach_clan(federation_id=federation.id, clan_id=clan.id)

        with pytest.raises(ClanAlreadyInFederationError, match='already in this federation'):
            attach_clan(federation_id=federation.id, clan_id=clan.id)

    def test_attach_to_second_federation(self, clan, federation, outsider):
        other = create_group(kind=FEDERATION, name='Southern', tag='south', leader_id=outsider.id)
        attach_clan(federation_id=federation.id, clan_id=clan.id)

        with pytest.raises(ClanAlreadyInFederationError, match='another federation'):
            attach_clan(federation_id=other.id, clan_id=clan.id)

        clan.refresh_from_db()
        assert clan.federation_id == federation.id

    def test_attach_missing_clan(self, federation):
        with pytest.raises(GroupNotFoundError):
            attach_clan(federation_id=federation.id, clan_id=uuid4())

    def test_detach(self, clan, federation):
        attach_clan(federation_id=federation.id, clan_id=clan.id)

        detach_clan(federation_id=federation.id, clan_id=clan.id)

        clan.refresh_from_db()
        assert clan.federation_id is None

    def test_detach_unlinked_clan(self, clan, federation):
        with pytest.raises(ClanNotInFederationError):
            detach_clan(federation_id=federation.id, clan_id=clan.id)


@pytest.mark.django_db
class TestGetGroup:
    """Tests for the cached get_group()."""

    def test_describes_clan(self, full_clan, leader):
        data = get_group(kind=CLAN, group_id=full_clan.id)

        assert data['tag'] == 'OWL'
        assert data['leader_id'] == str(leader.id)
        assert data['member_count'] == 3
        assert [m['role'] for m in data['members']] == [
            GroupRole.LEADER, GroupRole.OFFICER, GroupRole.MEMBER,
        ]
        assert data['federation_id'] is None

    def test_describes_federation_clans(self, clan, federation):
        attach_clan(federation_id=federation.id, clan_id=clan.id)

        data = get_group(kind=FEDERATION, group_id=federation.id)

        assert data['clan_ids'] == [str(clan.id)]

    def test_served_from_cache(self, clan):
        get_group(kind=CLAN, group_id=clan.id)
        Clan.objects.filter(id=clan.id).update(name='Renamed')

        assert get_group(kind=CLAN, group_id=clan.id)['name'] == 'Night Owls'

    def test_mutation_invalidates_cache(self, clan, outsider):
        get_group(kind=CLAN, group_id=clan.id)
        Clan.objects.filter(id=clan.id).update(name='Renamed')

        join_group(kind=CLAN, group_id=clan.id, user_id=outsider.id)

        data = get_group(kind=CLAN, group_id=clan.id)
        assert data['name'] == 'Renamed'
        assert data['member_count'] == 2

    def test_attach_invalidates_clan_entry(self, clan, federation):
        get_group(kind=CLAN, group_id=clan.id)

        attach_clan(federation_id=federation.id, clan_id=clan.id)

        assert get_group(kind=CLAN, group_id=clan.id)['federation_id'] == str(federation.id)

    def test_invalidation_signal(self, clan, outsider):
        received = []

        def receiver(sender, keys, **kwargs):
            received.append(keys)

        cache_invalidated.connect(receiver)
        try:
            join_group(kind=CLAN, group_id=clan.id, user_id=outsider.id)
        finally:
            cache_invalidated.disconnect(receiver)

        assert received
        assert group_key(CLAN, clan.id) in received[-1]

    def test_missing_group(self, db):
        with pytest.raises(GroupNotFoundError):
            get_group(kind=CLAN, group_id=uuid4())
