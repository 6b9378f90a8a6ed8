from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from .models import User


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    list_display = ['email', 'username', 'first_name', 'last_name', 'last_seen', 'created_at']
    list_filter = ['is_staff', 'is_active']
    search_fields = ['email', 'username', 'first_name', 'last_name']
    ordering = ['-created_at']

    fieldsets = BaseUserAdmin.fieldsets + (
        ('Chat Profile', {
            'fields': ('profile_pic', 'bio', 'last_seen')
        }),
    )

    add_fieldsets = BaseUserAdmin.add_fieldsets + (
        ('Chat Profile', {
            'fields': ('email', 'first_name', 'last_name')
        }),
    )
