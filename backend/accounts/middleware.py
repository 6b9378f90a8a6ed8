from datetime import timedelta

from django.utils import timezone

from .models import User

LAST_SEEN_RESOLUTION = timedelta(minutes=5)


class LastSeenMiddleware:
    """
    Records REST activity in `last_seen`. The chat socket touches it on
    connect and disconnect, this covers clients that only poll the API.
    """

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        response = self.get_response(request)
        user = getattr(request, 'user', None)
        if user is not None and user.is_authenticated:
            now = timezone.now()
            if user.last_seen is None or now - user.last_seen > LAST_SEEN_RESOLUTION:
                User.objects.filter(id=user.id).update(last_seen=now)
        return response
