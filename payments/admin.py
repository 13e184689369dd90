from django.contrib import admin, messages

from .models import PayoutTransaction, Withdrawal
from .providers import PaymentProviderError
from .withdrawals import WithdrawalError, dispatch_payout, update_withdrawal_status


@admin.register(Withdrawal)
class WithdrawalAdmin(admin.ModelAdmin):
    list_display = ('id', 'user', 'amount', 'status', 'payout_account', 'payout_batch_id', 'created_at')
    list_filter = ('status', 'created_at')
    search_fields = ('user__username', 'user__email', 'payout_account', 'payout_batch_id')
    readonly_fields = ('order_item', 'amount', 'payout_batch_id', 'metadata', 'created_at', 'updated_at')
    actions = ['dispatch', 'mark_completed', 'mark_failed']

    def _run(self, request, queryset, action, done_message, failed_is_error=True):
        done, errors = 0, []
        for withdrawal in queryset:
            try:
                result = action(withdrawal)
            except (WithdrawalError, PaymentProviderError) as e:
                errors.append(f"#{withdrawal.pk}: {e}")
                continue
            if failed_is_error and result.status == Withdrawal.Status.FAILED:
                errors.append(f"#{withdrawal.pk}: {result.meta('failureReason', 'failed')}")
                continue
            done += 1
        if done:
            self.message_user(request, f"{done_message}: {done}")
        for error in errors:
            self.message_user(request, error, level=messages.ERROR)

    def _fail(self, withdrawal):
        return update_withdrawal_status(withdrawal.pk, Withdrawal.Status.FAILED, reason="Marked failed by admin")

    @admin.action(description="Dispatch payout")
    def dispatch(self, request, queryset):
        self._run(request, queryset, lambda w: dispatch_payout(w.pk), "Payouts dispatched")

    @admin.action(description="Mark as completed")
    def mark_completed(self, request, queryset):
        self._run(request, queryset,
                  lambda w: update_withdrawal_status(w.pk, Withdrawal.Status.COMPLETED, reason="Marked completed by admin"),
                  "Marked completed")

    @admin.action(description="Mark as failed")
    def mark_failed(self, request, queryset):
        self._run(request, queryset, self._fail, "Marked failed", failed_is_error=False)


@admin.register(PayoutTransaction)
class PayoutTransactionAdmin(admin.ModelAdmin):
    list_display = ('withdrawal', 'seller', 'amount', 'payout_account', 'payout_batch_id', 'created_at')
    search_fields = ('payout_batch_id', 'seller__username', 'seller__email')
    list_filter = ('created_at',)
