import logging

from django.db.models import Q
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated

from chat.attachments import store_picture
from chat.exceptions import ValidationFailed
from chat.storage import ObjectStore
from .models import User
from .serializers import ProfileUpdateSerializer, UserPublicSerializer

logger = logging.getLogger(__name__)


class ContactListView(APIView):
    """GET /api/auth/contacts/: every other active user, optionally filtered by ?search="""
    permission_classes = [IsAuthenticated]

    def get(self, request):
        users = User.objects.filter(is_active=True).exclude(id=request.user.id).order_by('first_name', 'email')
        search = (request.query_params.get('search') or '').strip()
        if search:
            users = users.filter(
                Q(email__icontains=search) | Q(first_name__icontains=search) | Q(last_name__icontains=search)
            )
        return Response(UserPublicSerializer(users, many=True).data)


class ProfileView(APIView):
    """
    GET   /api/auth/profile/: own public profile
    PATCH /api/auth/profile/: update name, bio and picture
    """
    permission_classes = [IsAuthenticated]

    def get(self, request):
        return Response(UserPublicSerializer(request.user).data)

    def patch(self, request):
        serializer = ProfileUpdateSerializer(data=request.data)
        if not serializer.is_valid():
            raise ValidationFailed('Invalid request.', code='INVALID_REQUEST', details=serializer.errors)
        data = dict(serializer.validated_data)
        if not data:
            raise ValidationFailed('Nothing to update.', code='EMPTY_UPDATE')

        if data.get('profile_pic'):
            data['profile_pic'] = store_picture(data['profile_pic'], ObjectStore(), folder='profile-pics')

        user = request.user
        for field, value in data.items():
            setattr(user, field, value)
        user.save(update_fields=[*data, 'updated_at'])
        logger.info(f'Profile updated for {user.email}: {", ".join(sorted(data))}')
        return Response(UserPublicSerializer(user).data)
