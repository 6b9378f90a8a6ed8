from django.conf import settings
from django.db.models import Q
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated

from chat.serializers import MessageSerializer
from chat.services import visible_messages


class CallLogView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        """
        Call records of the current user's direct chats, newest first.
        Filters: ?type=audio|video, ?status=answered|missed|rejected
        """
        calls = visible_messages(request.user).filter(
            Q(sender=request.user) | Q(receiver=request.user),
            group__isnull=True,
        ).exclude(call_type='').order_by('-created_at')

        call_type = request.query_params.get('type')
        if call_type in ('audio', 'video'):
            calls = calls.filter(call_type=call_type)

        call_status = request.query_params.get('status')
        if call_status in ('answered', 'missed', 'rejected'):
            calls = calls.filter(call_status=call_status)

        return Response(MessageSerializer(calls[:100], many=True).data)


class ICEServersView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        """Get STUN/TURN server configuration for WebRTC"""
        return Response({'ice_servers': settings.ICE_SERVERS})
