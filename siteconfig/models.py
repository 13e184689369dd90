from django.core.serializers.json import DjangoJSONEncoder
from django.db import models


class Setting(models.Model):
    class Key(models.TextChoices):
        PLATFORM = 'platform', 'Platform'
        PAYMENT = 'payment', 'Payment'
        ORDER = 'order', 'Order'

    key = models.CharField(max_length=64, unique=True)
    category = models.CharField(max_length=64, blank=True)
    value = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['key']

    def __str__(self):
        return self.key
