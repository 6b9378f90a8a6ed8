from django.urls import path
from . import views

urlpatterns = [
    path('log/', views.CallLogView.as_view(), name='call-log'),
    path('ice-servers/', views.ICEServersView.as_view(), name='ice-servers'),
]
