"""
Tests for purging a user's clan and federation affiliations.
"""

from unittest.mock import patch
from uuid import uuid4

import pytest

from apps.accounts.models import User
from apps.groups.models import Clan, ClanMembership, Federation, GroupKind, GroupRole
from apps.groups.services import (
    UserNotFoundError,
    create_group,
    join_group,
    promote_member,
    purge_user_affiliations,
)
from apps.groups.services.store import EntityStore

CLAN = GroupKind.CLAN
FEDERATION = GroupKind.FEDERATION


@pytest.mark.django_db
class TestPurgeUserAffiliations:

    def test_user_without_groups(self, outsider):
        report = purge_user_affiliations(user_id=outsider.id)

        assert report.ok
        assert report.as_dict() == {
            'user_id': str(outsider.id),
            'clans_transferred': 0,
            'clans_dissolved': 0,
            'clans_left': 0,
            'federations_transferred': 0,
            'federations_dissolved': 0,
            'federations_left': 0,
            'errors': [],
            'skipped': [],
        }

    def test_missing_user(self, db):
        with pytest.raises(UserNotFoundError):
            purge_user_affiliations(user_id=uuid4())

    def test_plain_member_leaves(self, full_clan, member):
        report = purge_user_affiliations(user_id=member.id)

        member.refresh_from_db()
        assert report.clans_left == 1
        assert report.clans_transferred == 0
        assert member.clan_id is None

    def test_leader_hands_over_and_sole_leader_dissolves(self, full_clan, federation, leader, officer):
        report = purge_user_affiliations(user_id=leader.id)

        full_clan.refresh_from_db()
        leader.refresh_from_db()
        assert report.clans_transferred == 1
        assert report.federations_dissolved == 1
        assert full_clan.leader_id == officer.id
        assert not Federation.objects.filter(id=federation.id).exists()
        assert leader.clan_id is None
        assert leader.federation_id is None

    def test_federation_member_leaves(self, federation, outsider):
        join_group(kind=FEDERATION, group_id=federation.id, user_id=outsider.id)

        report = purge_user_affiliations(user_id=outsider.id)

        assert report.federations_left == 1
        assert Federation.objects.filter(id=federation.id).exists()

    def test_admin_with_legacy_second_clan(self, platform_admin, officer, member, outsider):
        """
        An administrator leading one clan and still listed by another
        (from before the one-clan rule), and leading a federation alone,
        ends up with no affiliation at all.
        """
        clan_a = create_group(kind=CLAN, name='Alpha', tag='a', leader_id=platform_admin.id)
        join_group(kind=CLAN, group_id=clan_a.id, user_id=officer.id)
        join_group(kind=CLAN, group_id=clan_a.id, user_id=member.id)
        promote_member(kind=CLAN, group_id=clan_a.id, user_id=officer.id)

        clan_b = create_group(kind=CLAN, name='Beta', tag='b', leader_id=outsider.id)
        ClanMembership.objects.create(clan=clan_b, user=platform_admin, role=GroupRole.MEMBER)

        federation = create_group(kind=FEDERATION, name='Fed', tag='f', leader_id=platform_admin.id)

        report = purge_user_affiliations(user_id=platform_admin.id)

        assert report.ok, report.errors
        assert report.clans_transferred == 1
        assert report.clans_left == 1
        assert report.clans_dissolved == 0
        assert report.federations_dissolved == 1

        platform_admin.refresh_from_db()
        clan_a.refresh_from_db()
        assert platform_admin.clan_id is None
        assert platform_admin.federation_id is None
        assert clan_a.leader_id == officer.id
        assert not ClanMembership.objects.filter(user=platform_admin).exists()
        assert Clan.objects.filter(id=clan_b.id).exists()
        assert not Federation.objects.filter(id=federation.id).exists()

    def test_dangling_reference_cleared(self, clan, outsider):
        User.objects.filter(id=outsider.id).update(clan=clan, clan_role=GroupRole.MEMBER)

        report = purge_user_affiliations(user_id=outsider.id)

        outsider.refresh_from_db()
        assert report.ok
        assert outsider.clan_id is None
        assert outsider.clan_role is None

    def test_failure_in_one_group_is_recorded(self, full_clan, federation, officer, member):
        join_group(kind=FEDERATION, group_id=federation.id, user_id=member.id)
        # Another member's broken record blocks changes to the clan
        User.objects.filter(id=officer.id).update(clan=None, clan_role=None)

        report = purge_user_affiliations(user_id=member.id)

        member.refresh_from_db()
        assert not report.ok
        assert len(report.errors) == 1
        assert report.errors[0]['code'] == 'invariant_violation'
        assert report.errors[0]['group_id'] == str(full_clan.id)
        assert report.errors[0]['retryable'] is False
        # Processing continued with the federation
        assert report.federations_left == 1
        assert member.federation_id is None
        assert member.clan_id == full_clan.id

    def test_missing_successor_record_is_recorded(self, full_clan, leader, officer):
        load_users = EntityStore.load_users

        def without_officer(store, user_ids):
            users = load_users(store, user_ids)
            users.pop(officer.id, None)
            return users

        with patch.object(EntityStore, 'load_users', autospec=True, side_effect=without_officer):
            report = purge_user_affiliations(user_id=leader.id)

        full_clan.refresh_from_db()
        assert not report.ok
        assert report.errors[0]['code'] == 'successor_missing'
        assert report.errors[0]['group_id'] == str(full_clan.id)
        assert full_clan.leader_id == leader.id
