"""
Join request tests.

Tests cover:
- Asking to join and the checks made up front
- Accepting, rejecting and withdrawing requests
- The HTTP endpoints and their permissions
"""

from uuid import uuid4

import pytest
from django.urls import reverse
from rest_framework import status

from apps.groups.models import ClanMembership, GroupKind, GroupRole, JoinRequest, JoinRequestStatus
from apps.groups.services import (
    AlreadyInAnotherGroupError,
    AlreadyMemberError,
    EventType,
    GroupFullError,
    GroupNotFoundError,
    JoinRequestClosedError,
    JoinRequestExistsError,
    JoinRequestNotFoundError,
    accept_join_request,
    create_group,
    create_join_request,
    get_join_requests,
    get_user_join_requests,
    join_group,
    leave_group,
    reject_join_request,
    withdraw_join_request,
)

CLAN = GroupKind.CLAN
FEDERATION = GroupKind.FEDERATION


def clan_url(name, clan):
    return reverse(f'groups:clan-{name}', kwargs={'pk': clan.id})


# =============================================================================
# Services
# =============================================================================

@pytest.mark.django_db
class TestCreateJoinRequest:
    """Tests for create_join_request()."""

    def test_create_pending_request(self, clan, outsider):
        join_request = create_join_request(
            kind=CLAN, group_id=clan.id, user_id=outsider.id, message='Let me in',
        )

        assert join_request.status == JoinRequestStatus.PENDING
        assert join_request.group_id == clan.id
        assert join_request.message == 'Let me in'
        assert join_request.responded_at is None
        # Asking does not join
        outsider.refresh_from_db()
        assert outsider.clan_id is None

    def test_duplicate_pending_request(self, clan, outsider):
        create_join_request(kind=CLAN, group_id=clan.id, user_id=outsider.id)

        with pytest.raises(JoinRequestExistsError):
            create_join_request(kind=CLAN, group_id=clan.id, user_id=outsider.id)

        assert JoinRequest.objects.filter(requester=outsider).count() == 1

    def test_ask_again_after_rejection(self, clan, leader, outsider):
        first = create_join_request(kind=CLAN, group_id=clan.id, user_id=outsider.id)
        reject_join_request(kind=CLAN, group_id=clan.id, request_id=first.id, actor_id=leader.id)

        second = create_join_request(kind=CLAN, group_id=clan.id, user_id=outsider.id)

        assert second.id != first.id
        assert second.status == JoinRequestStatus.PENDING

    def test_already_member(self, full_clan, member):
        with pytest.raises(AlreadyMemberError):
            create_join_request(kind=CLAN, group_id=full_clan.id, user_id=member.id)

    def test_member_of_another_clan(self, clan, user_factory):
        other = create_group(kind=CLAN, name='Larks', tag='lrk', leader_id=user_factory('lark').id)

        with pytest.raises(AlreadyInAnotherGroupError):
            create_join_request(kind=CLAN, group_id=other.id, user_id=clan.leader_id)

    def test_clan_membership_does_not_block_federation_request(self, full_clan, federation, member):
        join_request = create_join_request(kind=FEDERATION, group_id=federation.id, user_id=member.id)

        assert join_request.kind == FEDERATION
        assert join_request.group_id == federation.id

    def test_missing_group(self, outsider):
        with pytest.raises(GroupNotFoundError):
            create_join_request(kind=CLAN, group_id=uuid4(), user_id=outsider.id)


@pytest.mark.django_db
class TestAcceptJoinRequest:
    """Tests for accept_join_request()."""

    def test_accept_joins_and_closes(self, full_clan, officer, outsider, captured_events):
        join_request = create_join_request(kind=CLAN, group_id=full_clan.id, user_id=outsider.id)

        result = accept_join_request(
            kind=CLAN, group_id=full_clan.id, request_id=join_request.id, actor_id=officer.id,
        )

        join_request.refresh_from_db()
        outsider.refresh_from_db()
        assert join_request.status == JoinRequestStatus.ACCEPTED
        assert join_request.responded_by_id == officer.id
        assert join_request.responded_at is not None
        assert outsider.clan_id == full_clan.id
        assert outsider.clan_role == GroupRole.MEMBER
        assert ClanMembership.objects.get(clan=full_clan, user=outsider).role == GroupRole.MEMBER
        assert [event.type for event in result.events] == [EventType.MEMBER_JOINED]
        assert [event.type for event in captured_events] == [EventType.MEMBER_JOINED]

    def test_accept_answered_request(self, clan, leader, outsider):
        join_request = create_join_request(kind=CLAN, group_id=clan.id, user_id=outsider.id)
        reject_join_request(kind=CLAN, group_id=clan.id, request_id=join_request.id, actor_id=leader.id)

        with pytest.raises(JoinRequestClosedError):
            accept_join_request(kind=CLAN, group_id=clan.id, request_id=join_request.id, actor_id=leader.id)

        outsider.refresh_from_db()
        assert outsider.clan_id is None

    def test_accept_twice(self, clan, leader, outsider):
        join_request = create_join_request(kind=CLAN, group_id=clan.id, user_id=outsider.id)
        accept_join_request(kind=CLAN, group_id=clan.id, request_id=join_request.id, actor_id=leader.id)

        with pytest.raises(JoinRequestClosedError):
            accept_join_request(kind=CLAN, group_id=clan.id, request_id=join_request.id, actor_id=leader.id)

        assert ClanMembership.objects.filter(user=outsider).count() == 1

    def test_requester_joined_elsewhere(self, clan, leader, outsider, user_factory):
        join_request = create_join_request(kind=CLAN, group_id=clan.id, user_id=outsider.id)
        other = create_group(kind=CLAN, name='Larks', tag='lrk', leader_id=user_factory('lark').id)
        join_group(kind=CLAN, group_id=other.id, user_id=outsider.id)

        with pytest.raises(AlreadyInAnotherGroupError):
            accept_join_request(kind=CLAN, group_id=clan.id, request_id=join_request.id, actor_id=leader.id)

        join_request.refresh_from_db()
        outsider.refresh_from_db()
        assert join_request.status == JoinRequestStatus.PENDING
        assert outsider.clan_id == other.id

    def test_group_full(self, clan, leader, outsider, settings):
        join_request = create_join_request(kind=CLAN, group_id=clan.id, user_id=outsider.id)
        settings.MAX_CLAN_MEMBERS = 1

        with pytest.raises(GroupFullError):
            accept_join_request(kind=CLAN, group_id=clan.id, request_id=join_request.id, actor_id=leader.id)

        join_request.refresh_from_db()
        assert join_request.status == JoinRequestStatus.PENDING

    def test_request_for_other_group(self, clan, federation, leader, outsider):
        join_request = create_join_request(kind=FEDERATION, group_id=federation.id, user_id=outsider.id)

        with pytest.raises(JoinRequestNotFoundError):
            accept_join_request(kind=CLAN, group_id=clan.id, request_id=join_request.id, actor_id=leader.id)

    def test_unknown_request(self, clan, leader):
        with pytest.raises(JoinRequestNotFoundError):
            accept_join_request(kind=CLAN, group_id=clan.id, request_id=uuid4(), actor_id=leader.id)


@pytest.mark.django_db
class TestRejectAndWithdraw:
    """Tests for reject_join_request() and withdraw_join_request()."""

    def test_reject(self, clan, leader, outsider):
        join_request = create_join_request(kind=CLAN, group_id=clan.id, user_id=outsider.id)

        rejected = reject_join_request(
            kind=CLAN, group_id=clan.id, request_id=join_request.id, actor_id=leader.id,
        )

        assert rejected.status == JoinRequestStatus.REJECTED
        assert rejected.responded_by_id == leader.id
        outsider.refresh_from_db()
        assert outsider.clan_id is None

    def test_withdraw(self, clan, outsider):
        join_request = create_join_request(kind=CLAN, group_id=clan.id, user_id=outsider.id)

        withdrawn = withdraw_join_request(request_id=join_request.id, user_id=outsider.id)

        assert withdrawn.status == JoinRequestStatus.WITHDRAWN
        assert not get_join_requests(kind=CLAN, group_id=clan.id).exists()

    def test_withdraw_someone_elses_request(self, clan, member, outsider):
        join_request = create_join_request(kind=CLAN, group_id=clan.id, user_id=outsider.id)

        with pytest.raises(JoinRequestNotFoundError):
            withdraw_join_request(request_id=join_request.id, user_id=member.id)

        join_request.refresh_from_db()
        assert join_request.status == JoinRequestStatus.PENDING

    def test_withdraw_accepted_request(self, clan, leader, outsider):
        join_request = create_join_request(kind=CLAN, group_id=clan.id, user_id=outsider.id)
        accept_join_request(kind=CLAN, group_id=clan.id, request_id=join_request.id, actor_id=leader.id)

        with pytest.raises(JoinRequestClosedError):
            withdraw_join_request(request_id=join_request.id, user_id=outsider.id)

    def test_dissolution_removes_requests(self, clan, leader, outsider):
        create_join_request(kind=CLAN, group_id=clan.id, user_id=outsider.id)

        leave_group(kind=CLAN, group_id=clan.id, user_id=leader.id)

        assert not JoinRequest.objects.filter(requester=outsider).exists()


@pytest.mark.django_db
class TestListJoinRequests:

    def test_pending_oldest_first(self, clan, leader, outsider, user_factory):
        first = create_join_request(kind=CLAN, group_id=clan.id, user_id=outsider.id)
        second = create_join_request(kind=CLAN, group_id=clan.id, user_id=user_factory('late').id)
        closed = create_join_request(kind=CLAN, group_id=clan.id, user_id=user_factory('gone').id)
        reject_join_request(kind=CLAN, group_id=clan.id, request_id=closed.id, actor_id=leader.id)

        pending = list(get_join_requests(kind=CLAN, group_id=clan.id))
        rejected = list(get_join_requests(kind=CLAN, group_id=clan.id, status=JoinRequestStatus.REJECTED))

        assert pending == [first, second]
        assert rejected == [closed]

    def test_user_requests_across_tiers(self, clan, federation, outsider):
        create_join_request(kind=CLAN, group_id=clan.id, user_id=outsider.id)
        create_join_request(kind=FEDERATION, group_id=federation.id, user_id=outsider.id)

        kinds = {join_request.kind for join_request in get_user_join_requests(user_id=outsider.id)}

        assert kinds == {CLAN, FEDERATION}


# =============================================================================
# API
# =============================================================================

@pytest.mark.django_db
class TestJoinRequestEndpoints:
    """Tests for the clan join request actions."""

    def test_request_join(self, outsider_client, clan, outsider):
        response = outsider_client.post(clan_url('request-join', clan), {'message': 'Hi'}, format='json')

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data['status'] == JoinRequestStatus.PENDING
        assert response.data['group_id'] == str(clan.id)
        assert response.data['requester']['id'] == str(outsider.id)

    def test_request_join_twice(self, outsider_client, clan):
        outsider_client.post(clan_url('request-join', clan), {}, format='json')
        response = outsider_client.post(clan_url('request-join', clan), {}, format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['code'] == 'join_request_exists'

    def test_member_cannot_list(self, member_client, full_clan, outsider):
        create_join_request(kind=CLAN, group_id=full_clan.id, user_id=outsider.id)

        response = member_client.get(clan_url('join-requests', full_clan))

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_officer_lists(self, officer_client, full_clan, outsider):
        create_join_request(kind=CLAN, group_id=full_clan.id, user_id=outsider.id)

        response = officer_client.get(clan_url('join-requests', full_clan))

        assert response.status_code == status.HTTP_200_OK
        assert [item['requester']['id'] for item in response.data] == [str(outsider.id)]

    def test_leader_accepts(self, leader_client, clan, outsider):
        join_request = create_join_request(kind=CLAN, group_id=clan.id, user_id=outsider.id)

        response = leader_client.post(
            clan_url('accept-request', clan), {'request_id': str(join_request.id)}, format='json',
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data['events'] == ['member_joined']
        outsider.refresh_from_db()
        assert outsider.clan_id == clan.id

    def test_member_cannot_accept(self, member_client, full_clan, outsider):
        join_request = create_join_request(kind=CLAN, group_id=full_clan.id, user_id=outsider.id)

        response = member_client.post(
            clan_url('accept-request', full_clan), {'request_id': str(join_request.id)}, format='json',
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN
        join_request.refresh_from_db()
        assert join_request.status == JoinRequestStatus.PENDING

    def test_accept_unknown_request(self, leader_client, clan):
        response = leader_client.post(
            clan_url('accept-request', clan), {'request_id': str(uuid4())}, format='json',
        )

        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_officer_rejects(self, officer_client, full_clan, outsider):
        join_request = create_join_request(kind=CLAN, group_id=full_clan.id, user_id=outsider.id)

        response = officer_client.post(
            clan_url('reject-request', full_clan), {'request_id': str(join_request.id)}, format='json',
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data['status'] == JoinRequestStatus.REJECTED

    def test_my_join_requests(self, outsider_client, clan, outsider):
        join_request = create_join_request(kind=CLAN, group_id=clan.id, user_id=outsider.id)

        response = outsider_client.get(reverse('groups:my-join-requests'))

        assert response.status_code == status.HTTP_200_OK
        assert [item['id'] for item in response.data] == [str(join_request.id)]

    def test_withdraw(self, outsider_client, clan, outsider):
        join_request = create_join_request(kind=CLAN, group_id=clan.id, user_id=outsider.id)

        response = outsider_client.post(
            reverse('groups:withdraw-join-request', kwargs={'request_id': join_request.id}),
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data['status'] == JoinRequestStatus.WITHDRAWN
