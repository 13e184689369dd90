from django.contrib import admin
from .models import Artwork


@admin.register(Artwork)
class ArtworkAdmin(admin.ModelAdmin):
    list_display = ('title', 'artist', 'owner', 'desired_price', 'status', 'created_at')
    list_filter = ('status', 'created_at')
    search_fields = ('title', 'artist', 'owner__username', 'owner__email')
    actions = ['approve', 'reject']

    @admin.action(description="Approve selected artworks")
    def approve(self, request, queryset):
        updated = queryset.filter(status=Artwork.Status.PENDING).update(status=Artwork.Status.APPROVED)
        self.message_user(request, f"Approved: {updated}")

    @admin.action(description="Reject selected artworks")
    def reject(self, request, queryset):
        updated = queryset.filter(status=Artwork.Status.PENDING).update(status=Artwork.Status.REJECTED)
        self.message_user(request, f"Rejected: {updated}")
