import uuid

from django.conf import settings
from django.db import models


class Artwork(models.Model):
    class Status(models.TextChoices):
        PENDING = 'PENDING', 'Awaiting review'
        APPROVED = 'APPROVED', 'Approved'
        REJECTED = 'REJECTED', 'Rejected'
        SOLD = 'SOLD', 'Sold'

    # statuses an artwork may be bought in
    PURCHASABLE = (Status.APPROVED, Status.PENDING)

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    owner = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='artworks')
    title = models.CharField("Title", max_length=255)
    artist = models.CharField("Artist name", max_length=255, blank=True)
    description = models.TextField("Description", blank=True)
    desired_price = models.DecimalField("Price", max_digits=12, decimal_places=2)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING, db_index=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return self.title

    @property
    def is_purchasable(self):
        return self.status in self.PURCHASABLE

    @property
    def artist_name(self):
        return self.artist or self.owner.display_name
