from django.contrib import admin
from django.urls import path, include
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from django.db import connection, DatabaseError
from django.core.cache import cache


@api_view(['GET'])
@permission_classes([AllowAny])
def health_check(request):
    db_ok = False
    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
        db_ok = True
    except DatabaseError:
        pass

    cache_ok = False
    try:
        cache.set('health_check', 'ok', 10)
        cache_ok = cache.get('health_check') == 'ok'
    except Exception:
        # django-redis raises its own ConnectionInterrupted family here
        pass

    status_code = 200 if (db_ok and cache_ok) else 503
    return Response({
        'status': 'ok' if (db_ok and cache_ok) else 'degraded',
        'db': 'connected' if db_ok else 'disconnected',
        'cache': 'connected' if cache_ok else 'disconnected',
        'version': '1.0.0',
    }, status=status_code)


urlpatterns = [
    path('admin/', admin.site.urls),
    path('api/health/', health_check, name='health-check'),
    path('api/auth/', include('accounts.urls')),
    path('api/chat/', include('chat.urls')),
    path('api/calls/', include('calls.urls')),
]
