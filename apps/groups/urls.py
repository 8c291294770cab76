from django.urls import path, include
from rest_framework.routers import DefaultRouter
from . import views

app_name = 'groups'

# Router for ViewSets
router = DefaultRouter()
router.register(r'clans', views.ClanViewSet, basename='clan')
router.register(r'federations', views.FederationViewSet, basename='federation')

urlpatterns = [
    # Clan / Federation ViewSet routes
    # GET    /api/groups/clans/                         - List clans
    # POST   /api/groups/clans/                         - Create clan
    # GET    /api/groups/clans/{id}/                    - Get clan details (cached)
    # DELETE /api/groups/clans/{id}/                    - Dissolve clan (leader)

    # Custom group actions (same for federations)
    # GET    /api/groups/clans/{id}/members/             - List members in join order
    # POST   /api/groups/clans/{id}/join/                - Join
    # POST   /api/groups/clans/{id}/leave/               - Leave (with succession)
    # POST   /api/groups/clans/{id}/kick/                - Kick member (leader/officer)
    # POST   /api/groups/clans/{id}/promote/             - Promote to officer (leader/officer)
    # POST   /api/groups/clans/{id}/demote/              - Demote to member (leader/officer)
    # POST   /api/groups/clans/{id}/transfer_leadership/ - Transfer leadership (leader)
    # POST   /api/groups/clans/{id}/request_join/        - Ask to join
    # GET    /api/groups/clans/{id}/join_requests/       - Pending requests (leader/officer)
    # POST   /api/groups/clans/{id}/accept_request/      - Accept a request (leader/officer)
    # POST   /api/groups/clans/{id}/reject_request/      - Reject a request (leader/officer)
    # POST   /api/groups/federations/{id}/attach_clan/   - Link a clan
    # POST   /api/groups/federations/{id}/detach_clan/   - Unlink a clan

    # Additional endpoints
    path('my/', views.my_groups, name='my-groups'),
    path('purge/', views.purge_affiliations, name='purge-affiliations'),
    path('my/join-requests/', views.my_join_requests, name='my-join-requests'),
    path(
        'join-requests/<uuid:request_id>/withdraw/',
        views.withdraw_request,
        name='withdraw-join-request',
    ),

    # Include router URLs
    path('', include(router.urls)),
]
