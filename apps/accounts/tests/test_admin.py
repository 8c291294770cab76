import pytest
from django.urls import reverse

from apps.groups.models import Clan


@pytest.mark.django_db
class TestUserAdmin:

    def test_changelist_shows_affiliations(self, admin_client, clan):
        response = admin_client.get(reverse('admin:accounts_user_changelist'))

        assert response.status_code == 200
        assert b'Night Owls' in response.content

    def test_purge_action(self, admin_client, clan, clan_leader, user):
        response = admin_client.post(
            reverse('admin:accounts_user_changelist'),
            {'action': 'purge_affiliations', '_selected_action': [str(clan_leader.id)]},
        )

        assert response.status_code == 302
        clan.refresh_from_db()
        clan_leader.refresh_from_db()
        assert clan_leader.clan_id is None
        assert clan.leader_id == user.id

    def test_purge_action_dissolves_sole_led_clan(self, admin_client, clan, clan_leader, user):
        admin_client.post(
            reverse('admin:accounts_user_changelist'),
            {'action': 'purge_affiliations', '_selected_action': [str(user.id), str(clan_leader.id)]},
        )

        assert not Clan.objects.filter(id=clan.id).exists()
