from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as DjangoUserAdmin
from .models import User


@admin.register(User)
class UserAdmin(DjangoUserAdmin):
    fieldsets = DjangoUserAdmin.fieldsets + (
        ("Marketplace", {"fields": ("name", "phone", "is_artist", "payout_method", "payout_account")}),
    )
    list_display = ("username", "email", "is_artist", "payout_method", "is_staff", "is_active")
    list_filter = ("is_artist", "payout_method", "is_staff", "is_active")
    search_fields = ("username", "email", "name", "payout_account")

    @admin.action(description="Mark as artist")
    def make_artist(self, request, queryset):
        updated = queryset.update(is_artist=True)
        self.message_user(request, f"Marked as artists: {updated}")

    @admin.action(description="Remove artist flag")
    def remove_artist(self, request, queryset):
        updated = queryset.update(is_artist=False)
        self.message_user(request, f"Artist flag removed for: {updated}")

    actions = ["make_artist", "remove_artist"]
