from django.urls import path
from . import views

urlpatterns = [
    # Direct chats
    path('chats/', views.ChatPartnersView.as_view(), name='chat-partners'),
    path('messages/<int:user_id>/', views.DirectMessagesView.as_view(), name='direct-messages'),
    path('message/<uuid:message_id>/', views.MessageDetailView.as_view(), name='message-detail'),
    path('read/<int:user_id>/', views.MarkDirectReadView.as_view(), name='mark-direct-read'),
    # Groups
    path('groups/', views.GroupCreateView.as_view(), name='group-create'),
    path('groups/mine/', views.MyGroupsView.as_view(), name='my-groups'),
    path('groups/read/<uuid:group_id>/', views.MarkGroupReadView.as_view(), name='mark-group-read'),
    path('groups/<uuid:group_id>/messages/', views.GroupMessagesView.as_view(), name='group-messages'),
    path('groups/<uuid:group_id>/members/', views.GroupMembersView.as_view(), name='group-members'),
    path('groups/<uuid:group_id>/members/<int:user_id>/', views.GroupMemberDetailView.as_view(), name='group-member-detail'),
    path('groups/<uuid:group_id>/privacy/', views.GroupPrivacyView.as_view(), name='group-privacy'),
]
