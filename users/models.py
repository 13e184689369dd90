from django.contrib.auth.models import AbstractUser
from django.db import models


class User(AbstractUser):
    class PayoutMethod(models.TextChoices):
        PAYPAL = 'paypal', 'PayPal'
        CHAPA = 'chapa', 'Chapa (bank transfer)'

    email = models.EmailField("Email", unique=True)
    name = models.CharField("Display name", max_length=150, blank=True)
    phone = models.CharField("Phone", max_length=20, blank=True)
    is_artist = models.BooleanField("Artist", default=False)

    # where earnings are sent: a PayPal email, or "bank_code:account_number" for Chapa transfers
    payout_method = models.CharField(
        "Payout method", max_length=16, choices=PayoutMethod.choices, default=PayoutMethod.PAYPAL
    )
    payout_account = models.CharField("Payout account", max_length=255, blank=True)

    def __str__(self):
        return self.username

    @property
    def display_name(self):
        return self.name or self.get_full_name() or self.username
