from django.urls import path
from . import views

urlpatterns = [
    path('contacts/', views.ContactListView.as_view(), name='contact-list'),
    path('profile/', views.ProfileView.as_view(), name='profile'),
]
