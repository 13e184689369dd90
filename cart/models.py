from django.conf import settings
from django.db import models
from artworks.models import Artwork

class CartItem(models.Model):
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='cart_items')
    artwork = models.ForeignKey(Artwork, on_delete=models.CASCADE, related_name='cart_items')
    added_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        unique_together = [('user', 'artwork')]
        ordering = ['-added_at']

    def __str__(self):
        return f'{self.user} -> {self.artwork}'

    @property
    def unit_price(self):
        return self.artwork.desired_price
