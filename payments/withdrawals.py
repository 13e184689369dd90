import logging
from decimal import Decimal

from django.db import IntegrityError, transaction
from django.db.models import Count, Sum
from django.utils import timezone

from siteconfig.services import get_payment_settings_values
from .models import PayoutTransaction, Withdrawal
from .providers import PayoutError, get_provider

logger = logging.getLogger('payments')

S = Withdrawal.Status

# allowed manual moves; COMPLETED and REFUNDED are final
TRANSITIONS = {
    S.INITIATED: {S.PROCESSING, S.COMPLETED, S.FAILED},
    S.PROCESSING: {S.COMPLETED, S.FAILED},
    S.FAILED: {S.INITIATED, S.PROCESSING},
    S.COMPLETED: set(),
    S.REFUNDED: set(),
}


class WithdrawalError(Exception):
    status_code = 400


class WithdrawalNotFound(WithdrawalError):
    status_code = 404


class InvalidWithdrawalTransition(WithdrawalError):
    pass


def _get_locked(withdrawal_id):
    try:
        return Withdrawal.objects.select_for_update().select_related('user').get(pk=withdrawal_id)
    except (Withdrawal.DoesNotExist, ValueError):
        raise WithdrawalNotFound(f"Withdrawal {withdrawal_id} not found")


def create_payout_transaction(withdrawal):
    """
    Durable record of a completed payout. Returns (record, created); a second call only
    brings the batch id and amount of the existing record up to date.
    """
    existing = PayoutTransaction.objects.filter(withdrawal=withdrawal).first()
    if existing is not None:
        _refresh_payout_transaction(existing, withdrawal)
        return existing, False
    try:
        with transaction.atomic():
            record = PayoutTransaction.objects.create(
                withdrawal=withdrawal,
                seller_id=withdrawal.user_id,
                amount=withdrawal.amount,
                payout_account=withdrawal.payout_account,
                payout_batch_id=withdrawal.payout_batch_id,
            )
    except IntegrityError:
        # a concurrent delivery created it first
        return PayoutTransaction.objects.get(withdrawal=withdrawal), False
    logger.info("Payout transaction recorded: withdrawal=%s amount=%s batch=%s",
                withdrawal.pk, withdrawal.amount, withdrawal.payout_batch_id)
    return record, True


def _refresh_payout_transaction(record, withdrawal):
    changed = []
    if record.payout_batch_id != withdrawal.payout_batch_id:
        record.payout_batch_id = withdrawal.payout_batch_id
        changed.append('payout_batch_id')
    if record.amount != withdrawal.amount:
        record.amount = withdrawal.amount
        changed.append('amount')
    if changed:
        record.save(update_fields=changed)
        logger.info("Payout transaction of withdrawal %s updated: %s", withdrawal.pk, ', '.join(changed))


def void_payout_transaction(withdrawal):
    """Drops the payout record of a withdrawal whose completion was overturned."""
    deleted, _ = PayoutTransaction.objects.filter(withdrawal=withdrawal).delete()
    if deleted:
        logger.warning("Payout transaction of withdrawal %s removed, payout reported as %s",
                       withdrawal.pk, withdrawal.status)
    return bool(deleted)


def _payout_destination(withdrawal, provider_name):
    account = withdrawal.payout_account
    if provider_name == 'paypal' and not account:
        account = withdrawal.user.email
    return account


def dispatch_payout(withdrawal_id, provider=None):
    """
    Sends the withdrawal amount to the artist. INITIATED or FAILED -> PROCESSING with the
    batch id recorded; payout errors leave it FAILED with the reason in metadata.
    """
    with transaction.atomic():
        withdrawal = _get_locked(withdrawal_id)
        if withdrawal.status not in (S.INITIATED, S.FAILED):
            raise InvalidWithdrawalTransition(
                f"Withdrawal {withdrawal.pk} is {withdrawal.status}, only INITIATED or FAILED can be dispatched"
            )
        if withdrawal.order_item_id and available_balance(withdrawal.user) < withdrawal.amount:
            raise InvalidWithdrawalTransition(
                f"Earnings of withdrawal {withdrawal.pk} are reserved by a manual withdrawal request"
            )
        provider_name = provider or withdrawal.user.payout_method or 'paypal'
        adapter = get_provider(provider_name)
        currency = get_payment_settings_values()['payoutCurrency']
        destination = _payout_destination(withdrawal, adapter.name)
        now = timezone.now()

        try:
            result = adapter.process_payout(destination, withdrawal.amount, currency,
                                            note=f"Earnings payout #{withdrawal.pk}")
        except PayoutError as e:
            withdrawal.status = S.FAILED
            withdrawal.merge_metadata(
                failureReason=str(e),
                failureCode=e.code,
                failedAt=now.isoformat(),
                payoutProvider=adapter.name,
            )
            withdrawal.save(update_fields=['status', 'metadata', 'updated_at'])
            logger.error("Payout failed: withdrawal=%s provider=%s code=%s: %s",
                         withdrawal.pk, adapter.name, e.code, e)
            return withdrawal

        withdrawal.status = S.PROCESSING
        withdrawal.payout_batch_id = result.payout_batch_id
        withdrawal.merge_metadata(
            payoutBatchId=result.payout_batch_id,
            payoutBatchStatus=result.batch_status,
            payoutProvider=adapter.name,
            payoutCurrency=currency,
            dispatchedAt=now.isoformat(),
            statusSource='dispatch',
        )
        withdrawal.save(update_fields=['status', 'payout_batch_id', 'metadata', 'updated_at'])

    logger.info("Payout dispatched: withdrawal=%s provider=%s batch=%s",
                withdrawal.pk, adapter.name, withdrawal.payout_batch_id)
    return withdrawal


def update_withdrawal_status(withdrawal_id, status, reason=None):
    """Admin transition along TRANSITIONS; setting the current status again is a no-op."""
    if status not in S.values:
        raise InvalidWithdrawalTransition(f"Unknown withdrawal status: {status}")
    with transaction.atomic():
        withdrawal = _get_locked(withdrawal_id)
        if withdrawal.status == status:
            return withdrawal
        if status not in TRANSITIONS[withdrawal.status]:
            raise InvalidWithdrawalTransition(f"Cannot move withdrawal from {withdrawal.status} to {status}")
        previous = withdrawal.status
        now = timezone.now().isoformat()
        withdrawal.status = status
        withdrawal.merge_metadata(
            statusSource='admin',
            adminUpdatedAt=now,
            adminReason=reason,
            failureReason=reason if status == S.FAILED else None,
        )
        withdrawal.save(update_fields=['status', 'metadata', 'updated_at'])
        if status == S.COMPLETED:
            create_payout_transaction(withdrawal)

    logger.info("Withdrawal %s: %s -> %s by admin (%s)", withdrawal.pk, previous, status, reason or '-')
    return withdrawal


def available_balance(user) -> Decimal:
    """
    Earnings minus what is already paid out or reserved. Per-item earnings count once
    dispatched; manual requests reserve their amount from the moment they are made.
    """
    def total(qs):
        return qs.aggregate(s=Sum('amount'))['s'] or Decimal('0.00')

    earnings = Withdrawal.objects.filter(user=user, order_item__isnull=False)
    manual = Withdrawal.objects.filter(user=user, order_item__isnull=True)
    earned = total(earnings.exclude(status=S.REFUNDED))
    spent = (total(earnings.filter(status__in=[S.PROCESSING, S.COMPLETED]))
             + total(manual.filter(status__in=[S.INITIATED, S.PROCESSING, S.COMPLETED])))
    return earned - spent


def request_withdrawal(user, amount, payout_account=None):
    """Manual withdrawal request by an artist, bounded by the configured limits and the available balance."""
    amount = Decimal(str(amount))
    limits = get_payment_settings_values()
    if amount < limits['minWithdrawalAmount']:
        raise WithdrawalError(f"Minimum withdrawal amount is {limits['minWithdrawalAmount']}")
    if limits['maxWithdrawalAmount'] and amount > limits['maxWithdrawalAmount']:
        raise WithdrawalError(f"Maximum withdrawal amount is {limits['maxWithdrawalAmount']}")
    account = payout_account or user.payout_account
    if not account:
        raise WithdrawalError("Set a payout account before requesting a withdrawal")

    with transaction.atomic():
        # serialize requests of the same artist
        type(user).objects.select_for_update().filter(pk=user.pk).first()
        balance = available_balance(user)
        if amount > balance:
            raise WithdrawalError(f"Insufficient balance: available {balance}")
        withdrawal = Withdrawal.objects.create(
            user=user,
            amount=amount,
            payout_account=account,
            status=S.INITIATED,
            metadata={'requestedAt': timezone.now().isoformat(), 'source': 'manual'},
        )
    logger.info("Withdrawal requested: id=%s user=%s amount=%s", withdrawal.pk, user.pk, amount)
    return withdrawal


def get_withdrawal_statistics() -> dict:
    rows = Withdrawal.objects.values('status').annotate(count=Count('id'), total=Sum('amount'))
    by_status = {status: {'count': 0, 'total': Decimal('0.00')} for status in S.values}
    for row in rows:
        by_status[row['status']] = {'count': row['count'], 'total': row['total'] or Decimal('0.00')}
    return {
        'byStatus': by_status,
        'totalCount': sum(v['count'] for v in by_status.values()),
        'totalPaidOut': by_status[S.COMPLETED]['total'],
        'pendingAmount': by_status[S.INITIATED]['total'] + by_status[S.PROCESSING]['total'],
        'payoutTransactions': PayoutTransaction.objects.count(),
    }
