from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from .models import Clinic, User


@admin.register(Clinic)
class ClinicAdmin(admin.ModelAdmin):
    list_display = ['name', 'cnpj', 'email', 'is_active', 'created_at']
    list_filter = ['is_active']
    search_fields = ['name', 'cnpj', 'email']
    readonly_fields = ['id', 'created_at', 'updated_at']


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    list_display = ['email', 'name', 'clinic', 'role', 'platform_role', 'is_active']
    list_filter = ['role', 'platform_role', 'is_active', 'is_staff']
    search_fields = ['email', 'name', 'clinic__name']
    ordering = ['email']
    readonly_fields = ['id', 'created_at', 'updated_at', 'last_login']

    fieldsets = (
        (None, {'fields': ('email', 'password')}),
        ('Profile', {'fields': ('name', 'clinic', 'role')}),
        ('Platform', {'fields': ('platform_role', 'is_active', 'is_staff', 'is_superuser')}),
        ('Metadata', {'fields': ('id', 'last_login', 'created_at', 'updated_at')}),
    )
    add_fieldsets = (
        (None, {
            'classes': ('wide',),
            'fields': ('email', 'name', 'password1', 'password2'),
        }),
    )
