import logging

from rest_framework import viewsets, status
from rest_framework.decorators import action, api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.pagination import PageNumberPagination
from drf_spectacular.utils import extend_schema

from .models import Clan, Federation, GroupKind
from .serializers import (
    ClanListSerializer,
    ClanLinkSerializer,
    ClanMemberSerializer,
    FederationListSerializer,
    FederationMemberSerializer,
    GroupCreateSerializer,
    GroupResultSerializer,
    JoinGroupSerializer,
    JoinRequestAnswerSerializer,
    JoinRequestCreateSerializer,
    JoinRequestSerializer,
    PurgeReportSerializer,
    PurgeRequestSerializer,
    UserTargetSerializer,
)
from .permissions import IsGroupLeader, IsGroupLeaderOrOfficer, is_platform_admin

from apps.groups.services import (
    create_group,
    dissolve_group,
    attach_clan,
    detach_clan,
    get_group,
    join_group,
    leave_group,
    kick_member,
    promote_member,
    demote_member,
    transfer_leadership,
    get_group_members,
    purge_user_affiliations,
    create_join_request,
    get_join_requests,
    get_user_join_requests,
    accept_join_request,
    reject_join_request,
    withdraw_join_request,
    # Exceptions
    GroupsServiceError,
    GroupNotFoundError,
    UserNotFoundError,
    JoinRequestNotFoundError,
    InsufficientPermissionsError,
    SuccessorMissingError,
    InvariantViolationError,
)

logger = logging.getLogger(__name__)


def service_error_response(error: GroupsServiceError) -> Response:
    """
    Convert a service exception into an HTTP response.

    User-input errors map to 400, missing entities to 404, transient
    failures to 409 (the client may retry) and integrity faults to 500.
    """
    if isinstance(error, (GroupNotFoundError, UserNotFoundError, JoinRequestNotFoundError)):
        status_code = status.HTTP_404_NOT_FOUND
    elif isinstance(error, InsufficientPermissionsError):
        status_code = status.HTTP_403_FORBIDDEN
    elif isinstance(error, (SuccessorMissingError, InvariantViolationError)):
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    elif error.retryable:
        status_code = status.HTTP_409_CONFLICT
    else:
        status_code = status.HTTP_400_BAD_REQUEST

    body = {'error': str(error), 'code': error.code}
    if error.retryable:
        body['retryable'] = True
    return Response(body, status=status_code)


def mutation_response(result, status_code=status.HTTP_200_OK) -> Response:
    return Response(GroupResultSerializer(result).data, status=status_code)


class GroupPagination(PageNumberPagination):
    """Custom pagination for groups."""
    page_size = 20
    page_size_query_param = 'page_size'
    max_page_size = 100


class BaseGroupViewSet(viewsets.ModelViewSet):
    """
    Shared HTTP handlers for clans and federations.

    All business logic is handled by services.
    Views are thin HTTP handlers only; they resolve authorization and
    hand the decision to the services.

    list: Get all groups of this kind
    create: Create a group (creator leads it; administrators may pick
        the leader or create a leaderless group)
    retrieve: Get group details
    destroy: Dissolve the group (leader or administrator)
    """

    kind = None
    model = None
    list_serializer_class = None
    member_serializer_class = None

    permission_classes = [IsAuthenticated]
    pagination_class = GroupPagination
    http_method_names = ['get', 'post', 'delete', 'head', 'options']

    def get_queryset(self):
        return (
            self.model.objects
            .select_related('leader')
            .prefetch_related('memberships')
            .order_by('created_at')
        )

    def get_serializer_class(self):
        """Use different serializers for different actions."""
        if self.action == 'create':
            return GroupCreateSerializer
        return self.list_serializer_class

    def get_permissions(self):
        """Set permissions based on action."""
        if self.action == 'destroy':
            return [IsAuthenticated(), IsGroupLeader()]
        return [IsAuthenticated()]

    def retrieve(self, request, *args, **kwargs):
        """Get group details (cached)."""
        try:
            return Response(get_group(kind=self.kind, group_id=self.kwargs['pk']))
        except GroupsServiceError as e:
            return service_error_response(e)

    def create(self, request, *args, **kwargs):
        """Create a new group."""
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        leader_id = request.user.id
        if data.get('leader') or data.get('bootstrap'):
            if not is_platform_admin(request.user):
                return service_error_response(
                    InsufficientPermissionsError('Only administrators can choose the leader')
                )
            leader_id = None if data.get('bootstrap') else data['leader']

        try:
            group = create_group(
                kind=self.kind,
                name=data['name'],
                tag=data['tag'],
                description=data.get('description', ''),
                leader_id=leader_id,
            )
            return Response(
                get_group(kind=self.kind, group_id=group.id),
                status=status.HTTP_201_CREATED
            )
        except GroupsServiceError as e:
            return service_error_response(e)

    def destroy(self, request, *args, **kwargs):
        """Dissolve a group."""
        group = self.get_object()
        try:
            dissolve_group(kind=self.kind, group_id=group.id)
            return Response(status=status.HTTP_204_NO_CONTENT)
        except GroupsServiceError as e:
            return service_error_response(e)

    @action(detail=True, methods=['get'])
    def members(self, request, pk=None):
        """Get all members of the group in join order."""
        try:
            memberships = get_group_members(kind=self.kind, group_id=pk)
        except GroupsServiceError as e:
            return service_error_response(e)
        serializer = self.member_serializer_class(memberships, many=True)
        return Response(serializer.data)

    @action(detail=True, methods=['post'])
    def join(self, request, pk=None):
        """Join the group (administrators may add another user)."""
        serializer = JoinGroupSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        as_admin = is_platform_admin(request.user)
        user_id = serializer.validated_data.get('user_id', request.user.id)
        if user_id != request.user.id and not as_admin:
            return service_error_response(
                InsufficientPermissionsError('Only administrators can add other users')
            )

        try:
            result = join_group(kind=self.kind, group_id=pk, user_id=user_id, as_admin=as_admin)
        except GroupsServiceError as e:
            return service_error_response(e)
        return mutation_response(result, status.HTTP_201_CREATED)

    @action(detail=True, methods=['post'])
    def leave(self, request, pk=None):
        """Leave the group. A departing leader is succeeded automatically."""
        try:
            result = leave_group(kind=self.kind, group_id=pk, user_id=request.user.id)
        except GroupsServiceError as e:
            return service_error_response(e)
        return mutation_response(result)

    @action(detail=True, methods=['post'], permission_classes=[IsAuthenticated, IsGroupLeaderOrOfficer])
    def kick(self, request, pk=None):
        """Remove a member (leader, officer or administrator)."""
        self.get_object()
        serializer = UserTargetSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            result = kick_member(
                kind=self.kind,
                group_id=pk,
                actor_id=request.user.id,
                target_id=serializer.validated_data['user_id'],
            )
        except GroupsServiceError as e:
            return service_error_response(e)
        return mutation_response(result)

    @action(detail=True, methods=['post'], permission_classes=[IsAuthenticated, IsGroupLeaderOrOfficer])
    def promote(self, request, pk=None):
        """Promote a member to officer."""
        self.get_object()
        serializer = UserTargetSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            result = promote_member(
                kind=self.kind,
                group_id=pk,
                user_id=serializer.validated_data['user_id'],
            )
        except GroupsServiceError as e:
            return service_error_response(e)
        return mutation_response(result)

    @action(detail=True, methods=['post'], permission_classes=[IsAuthenticated, IsGroupLeaderOrOfficer])
    def demote(self, request, pk=None):
        """Demote an officer to member."""
        self.get_object()
        serializer = UserTargetSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            result = demote_member(
                kind=self.kind,
                group_id=pk,
                user_id=serializer.validated_data['user_id'],
            )
        except GroupsServiceError as e:
            return service_error_response(e)
        return mutation_response(result)

    @action(detail=True, methods=['post'])
    def request_join(self, request, pk=None):
        """Ask the group's leadership to let the current user in."""
        serializer = JoinRequestCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            join_request = create_join_request(
                kind=self.kind,
                group_id=pk,
                user_id=request.user.id,
                message=serializer.validated_data['message'],
            )
        except GroupsServiceError as e:
            return service_error_response(e)
        return Response(JoinRequestSerializer(join_request).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=['get'], permission_classes=[IsAuthenticated, IsGroupLeaderOrOfficer])
    def join_requests(self, request, pk=None):
        """List pending join requests (leader, officer or administrator)."""
        self.get_object()
        try:
            join_requests = get_join_requests(kind=self.kind, group_id=pk)
        except GroupsServiceError as e:
            return service_error_response(e)
        return Response(JoinRequestSerializer(join_requests, many=True).data)

    @action(detail=True, methods=['post'], permission_classes=[IsAuthenticated, IsGroupLeaderOrOfficer])
    def accept_request(self, request, pk=None):
        """Accept a join request; the requester joins the group."""
        self.get_object()
        serializer = JoinRequestAnswerSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            result = accept_join_request(
                kind=self.kind,
                group_id=pk,
                request_id=serializer.validated_data['request_id'],
                actor_id=request.user.id,
            )
        except GroupsServiceError as e:
            return service_error_response(e)
        return mutation_response(result)

    @action(detail=True, methods=['post'], permission_classes=[IsAuthenticated, IsGroupLeaderOrOfficer])
    def reject_request(self, request, pk=None):
        """Reject a join request."""
        self.get_object()
        serializer = JoinRequestAnswerSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            join_request = reject_join_request(
                kind=self.kind,
                group_id=pk,
                request_id=serializer.validated_data['request_id'],
                actor_id=request.user.id,
            )
        except GroupsServiceError as e:
            return service_error_response(e)
        return Response(JoinRequestSerializer(join_request).data)

    @action(detail=True, methods=['post'], permission_classes=[IsAuthenticated, IsGroupLeader])
    def transfer_leadership(self, request, pk=None):
        """Hand leadership to another member (leader or administrator)."""
        self.get_object()
        serializer = UserTargetSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            result = transfer_leadership(
                kind=self.kind,
                group_id=pk,
                new_leader_id=serializer.validated_data['user_id'],
            )
        except GroupsServiceError as e:
            return service_error_response(e)
        return mutation_response(result)


class ClanViewSet(BaseGroupViewSet):
    """Clan endpoints."""

    kind = GroupKind.CLAN
    model = Clan
    list_serializer_class = ClanListSerializer
    member_serializer_class = ClanMemberSerializer


class FederationViewSet(BaseGroupViewSet):
    """
    Federation endpoints.

    attach_clan / detach_clan: link or unlink a clan (federation leader,
    officer or administrator)
    """

    kind = GroupKind.FEDERATION
    model = Federation
    list_serializer_class = FederationListSerializer
    member_serializer_class = FederationMemberSerializer

    def get_queryset(self):
        return super().get_queryset().prefetch_related('clans')

    @action(detail=True, methods=['post'], permission_classes=[IsAuthenticated, IsGroupLeaderOrOfficer])
    def attach_clan(self, request, pk=None):
        """Link a clan under this federation."""
        self.get_object()
        serializer = ClanLinkSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            result = attach_clan(federation_id=pk, clan_id=serializer.validated_data['clan_id'])
        except GroupsServiceError as e:
            return service_error_response(e)
        return mutation_response(result)

    @action(detail=True, methods=['post'], permission_classes=[IsAuthenticated, IsGroupLeaderOrOfficer])
    def detach_clan(self, request, pk=None):
        """Unlink a clan from this federation."""
        self.get_object()
        serializer = ClanLinkSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            result = detach_clan(federation_id=pk, clan_id=serializer.validated_data['clan_id'])
        except GroupsServiceError as e:
            return service_error_response(e)
        return mutation_response(result)


@extend_schema(
    description="Get the current user's clan and federation.",
    tags=['groups'],
)
@api_view(['GET'])
@permission_classes([IsAuthenticated])
def my_groups(request):
    """Get the clan and federation of the current user."""
    data = {}
    for kind in (GroupKind.CLAN, GroupKind.FEDERATION):
        group_id = request.user.group_id_for(kind)
        try:
            data[kind.value] = get_group(kind=kind, group_id=group_id) if group_id is not None else None
        except GroupNotFoundError:
            logger.warning("User %s references missing %s %s", request.user.id, kind, group_id)
            data[kind.value] = None
    return Response(data)


@extend_schema(
    request=PurgeRequestSerializer,
    responses={200: PurgeReportSerializer},
    description="Remove a user from every clan and federation.",
    tags=['groups'],
)
@api_view(['POST'])
@permission_classes([IsAuthenticated])
def purge_affiliations(request):
    """
    Purge the current user's affiliations.

    Administrators may purge another user by passing ``user_id``.
    """
    serializer = PurgeRequestSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)

    user_id = serializer.validated_data.get('user_id', request.user.id)
    if user_id != request.user.id and not is_platform_admin(request.user):
        return service_error_response(
            InsufficientPermissionsError('Only administrators can purge other users')
        )

    try:
        report = purge_user_affiliations(user_id=user_id)
    except GroupsServiceError as e:
        return service_error_response(e)
    return Response(PurgeReportSerializer(report).data)


@extend_schema(
    responses={200: JoinRequestSerializer(many=True)},
    description="Get the join requests made by the current user.",
    tags=['groups'],
)
@api_view(['GET'])
@permission_classes([IsAuthenticated])
def my_join_requests(request):
    """Get the current user's join requests, newest first."""
    join_requests = get_user_join_requests(user_id=request.user.id)
    return Response(JoinRequestSerializer(join_requests, many=True).data)


@extend_schema(
    request=None,
    responses={200: JoinRequestSerializer},
    description="Withdraw one of the current user's pending join requests.",
    tags=['groups'],
)
@api_view(['POST'])
@permission_classes([IsAuthenticated])
def withdraw_request(request, request_id):
    """Withdraw a pending join request."""
    try:
        join_request = withdraw_join_request(request_id=request_id, user_id=request.user.id)
    except GroupsServiceError as e:
        return service_error_response(e)
    return Response(JoinRequestSerializer(join_request).data)
