from rest_framework import serializers
from .models import User


class UserPublicSerializer(serializers.ModelSerializer):
    """Public profile of a user, embedded in messages, groups and contact lists"""
    full_name = serializers.CharField(read_only=True)

    class Meta:
        model = User
        fields = ['id', 'email', 'full_name', 'profile_pic', 'bio', 'last_seen']


class ProfileUpdateSerializer(serializers.Serializer):
    """PATCH body of /api/auth/profile/. `profile_pic` is a data:image/ URL, or "" to clear it."""
    first_name = serializers.CharField(max_length=150, required=False, allow_blank=True)
    last_name = serializers.CharField(max_length=150, required=False, allow_blank=True)
    bio = serializers.CharField(max_length=500, required=False, allow_blank=True)
    profile_pic = serializers.CharField(required=False, allow_blank=True)
