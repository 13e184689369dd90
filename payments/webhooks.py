"""
Payout settlement from provider webhooks.

Batch and item events are both keyed by the payout batch id. A withdrawal that
already reached a final status only moves again when an item event overrides a
batch result, or when the payout comes back as REFUNDED. Metadata is merged on
every delivery, so duplicates leave a trace without changing state.
"""
import json
import logging

from django.db import transaction
from django.utils import timezone

from .models import Withdrawal
from .providers import PaymentProviderError, get_provider
from .providers.base import PAYMENT, PAYOUT_BATCH, PAYOUT_ITEM
from .services import verify_payment
from .withdrawals import create_payout_transaction, void_payout_transaction

logger = logging.getLogger('payments')

S = Withdrawal.Status

BATCH_STATUS_MAP = {
    'SUCCESS': S.COMPLETED,
    'COMPLETED': S.COMPLETED,
    'DENIED': S.FAILED,
    'FAILED': S.FAILED,
    'PENDING': S.PROCESSING,
}

ITEM_STATUS_MAP = {
    'SUCCESS': S.COMPLETED,
    'FAILED': S.FAILED,
    'DENIED': S.FAILED,
    'BLOCKED': S.FAILED,
    # funds left the platform; the recipient has not claimed them yet
    'UNCLAIMED': S.COMPLETED,
    'RETURNED': S.REFUNDED,
    'REFUNDED': S.REFUNDED,
    'PENDING': S.PROCESSING,
    'ONHOLD': S.PROCESSING,
}

UNCLAIMED_NOTE = "Payout sent successfully. Recipient needs to claim it in their PayPal account."

SOURCE_BATCH = 'batch'
SOURCE_ITEM = 'item'


def map_batch_status(status):
    return BATCH_STATUS_MAP.get(str(status or '').upper())


def map_item_status(status):
    return ITEM_STATUS_MAP.get(str(status or '').upper())


def find_withdrawal_for_batch(batch_id):
    if not batch_id:
        return None
    withdrawal = Withdrawal.objects.filter(payout_batch_id=batch_id).order_by('created_at').first()
    if withdrawal is not None:
        return withdrawal
    # rows dispatched before the batch id had its own column
    return (Withdrawal.objects
            .filter(status__in=[S.PROCESSING, S.INITIATED], metadata__payoutBatchId=batch_id)
            .order_by('created_at')
            .first())


def _may_change(withdrawal, new_status, source):
    if new_status == withdrawal.status:
        return False
    if not withdrawal.is_terminal:
        return True
    if withdrawal.status == S.REFUNDED:
        return False
    if new_status == S.REFUNDED:
        return True
    # item results are authoritative over the batch summary
    return (source == SOURCE_ITEM
            and withdrawal.meta('statusSource') == SOURCE_BATCH
            and new_status in Withdrawal.TERMINAL)


def _apply(withdrawal_id, batch_id, new_status, source, **metadata):
    with transaction.atomic():
        withdrawal = Withdrawal.objects.select_for_update().get(pk=withdrawal_id)
        previous = withdrawal.status
        changed = new_status is not None and _may_change(withdrawal, new_status, source)
        withdrawal.merge_metadata(payoutBatchId=batch_id, **metadata)
        fields = ['metadata', 'updated_at']
        if not withdrawal.payout_batch_id and batch_id:
            withdrawal.payout_batch_id = batch_id
            fields.append('payout_batch_id')
        if changed:
            withdrawal.status = new_status
            withdrawal.merge_metadata(statusSource=source)
            fields.append('status')
        elif new_status is not None and new_status != previous:
            logger.info("Withdrawal %s stays %s, %s event reported %s", withdrawal.pk, previous, source, new_status)
        withdrawal.save(update_fields=fields)

        if withdrawal.status == S.COMPLETED:
            create_payout_transaction(withdrawal)
        elif changed and previous == S.COMPLETED and new_status == S.FAILED:
            void_payout_transaction(withdrawal)

    if changed:
        logger.info("Withdrawal %s: %s -> %s (%s webhook, batch %s)",
                    withdrawal.pk, previous, withdrawal.status, source, batch_id)
    return {'withdrawalId': withdrawal.pk, 'status': withdrawal.status, 'changed': changed}


def process_payout_batch(event):
    withdrawal = find_withdrawal_for_batch(event.payout_batch_id)
    if withdrawal is None:
        logger.warning("No withdrawal for payout batch %s (status %s)", event.payout_batch_id, event.batch_status)
        return None
    new_status = map_batch_status(event.batch_status)
    if new_status is None:
        logger.warning("Unmapped payout batch status %s for batch %s", event.batch_status, event.payout_batch_id)
    return _apply(
        withdrawal.pk, event.payout_batch_id, new_status, SOURCE_BATCH,
        batchWebhookStatus=event.batch_status,
        batchWebhookProcessedAt=timezone.now().isoformat(),
    )


def process_payout_item(event):
    withdrawal = find_withdrawal_for_batch(event.payout_batch_id)
    if withdrawal is None:
        logger.warning("No withdrawal for payout item of batch %s (status %s)",
                       event.payout_batch_id, event.transaction_status)
        return None
    status = str(event.transaction_status or '').upper()
    new_status = map_item_status(status)
    if new_status is None:
        logger.warning("Unmapped payout item status %s for batch %s", event.transaction_status, event.payout_batch_id)
    return _apply(
        withdrawal.pk, event.payout_batch_id, new_status, SOURCE_ITEM,
        webhookTransactionId=event.transaction_id,
        webhookTransactionStatus=event.transaction_status,
        webhookProcessedAt=timezone.now().isoformat(),
        paypalNote=UNCLAIMED_NOTE if status == 'UNCLAIMED' else None,
    )


def _process_payment_event(provider_name, event):
    # settle through verification so the provider is asked, not the webhook body
    if not event.reference or str(event.transaction_status or '').upper() not in ('SUCCESS', 'COMPLETED'):
        return None
    try:
        result = verify_payment({'provider': provider_name, 'txRef': event.reference})
    except PaymentProviderError as e:
        logger.warning("Payment webhook for %s could not be verified: %s", event.reference, e)
        return {'status': 'failed'}
    return {'status': result['status'], 'orderId': result.get('orderId')}


def handle_provider_webhook(provider_name, raw_body, headers) -> dict:
    """
    Verifies and dispatches one webhook delivery. Never raises: the provider always
    gets an acknowledgement and failures stay in the log.
    """
    event_type = None
    try:
        adapter = get_provider(provider_name)
        if not adapter.verify_webhook_signature(raw_body, headers):
            logger.warning("Rejected %s webhook with invalid signature", provider_name)
            return {'success': False, 'eventType': None, 'message': 'Invalid webhook signature'}

        payload = json.loads(raw_body or b'{}')
        if not isinstance(payload, dict):
            raise ValueError("webhook payload must be a JSON object")
        event = adapter.handle_webhook(payload, headers)
        event_type = event.event_type
        logger.info("Processing %s webhook: %s (%s)", adapter.name, event.provider_event, event_type)

        if event_type == PAYOUT_BATCH:
            outcome = process_payout_batch(event)
        elif event_type == PAYOUT_ITEM:
            outcome = process_payout_item(event)
        elif event_type == PAYMENT:
            outcome = _process_payment_event(adapter.name, event)
        else:
            logger.warning("Unhandled %s webhook event: %s", adapter.name, event.provider_event)
            outcome = None

        response = {'success': True, 'eventType': event_type, 'payoutBatchId': event.payout_batch_id}
        if outcome:
            response.update(outcome)
        return response
    except Exception:
        logger.exception("%s webhook processing failed", provider_name)
        return {'success': False, 'eventType': event_type, 'message': 'Webhook processing failed'}
