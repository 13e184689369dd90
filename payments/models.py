from django.conf import settings
from django.db import models

from core.models import MetadataModel


class Withdrawal(MetadataModel):
    class Status(models.TextChoices):
        INITIATED = 'INITIATED', 'Initiated'
        PROCESSING = 'PROCESSING', 'Processing'
        COMPLETED = 'COMPLETED', 'Completed'
        FAILED = 'FAILED', 'Failed'
        REFUNDED = 'REFUNDED', 'Refunded'

    TERMINAL = (Status.COMPLETED, Status.FAILED, Status.REFUNDED)

    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='withdrawals')
    # earnings for one sold item; empty for manual requests
    order_item = models.OneToOneField(
        'orders.OrderItem', on_delete=models.SET_NULL, null=True, blank=True, related_name='withdrawal'
    )
    payout_account = models.CharField(max_length=255, blank=True)
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.INITIATED, db_index=True)
    payout_batch_id = models.CharField(max_length=128, blank=True, db_index=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f'Withdrawal #{self.pk} {self.amount} -> {self.status}'

    @property
    def is_terminal(self):
        return self.status in self.TERMINAL


class PayoutTransaction(models.Model):
    """Durable record backing a completed payout; one per withdrawal."""
    withdrawal = models.OneToOneField(Withdrawal, on_delete=models.CASCADE, related_name='payout_transaction')
    seller = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='payout_transactions')
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    payout_account = models.CharField(max_length=255, blank=True)
    payout_batch_id = models.CharField(max_length=128, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f'{self.seller}: {self.amount} ({self.payout_batch_id or "manual"})'
