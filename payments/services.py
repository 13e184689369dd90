import logging
import uuid
from decimal import Decimal

from django.db import DatabaseError, transaction
from django.utils import timezone

from cart.services import CartItemNotFound, remove_from_cart
from orders.exceptions import OrderError, OrderNotFound
from orders.models import Order, Transaction
from orders.services import cancel_order, complete_order
from . import txref
from .providers import PaymentInitializationError, PaymentProviderError, PaymentVerificationError, get_provider
from .providers.base import FAILED

logger = logging.getLogger('payments')

# where each provider's own identifier is kept in transaction metadata
ALIAS_KEYS = {
    'chapa': 'chapaTxRef',
    'paypal': 'paypalOrderId',
}


def _merge_transaction_metadata(order_id, **changes):
    with transaction.atomic():
        txn = Transaction.objects.select_for_update().filter(order_id=order_id).first()
        if txn is None:
            return False
        txn.merge_metadata(**changes)
        txn.save(update_fields=['metadata', 'updated_at'])
    return True


def _find_order(order_id):
    try:
        pk = uuid.UUID(str(order_id))
    except ValueError:
        return None
    return Order.objects.select_related('transaction', 'user').filter(pk=pk).first()


def initialize_payment(data: dict) -> dict:
    """
    Starts a hosted checkout with the named provider.
    Provider-minted identifiers are recorded on the order's transaction so later
    verification and webhooks can be mapped back; failing to record them is logged only.
    """
    adapter = get_provider(data['provider'])
    ref = data['txRef']
    order_id = data.get('orderId') or txref.decode(ref)
    order = _find_order(order_id) if order_id else None

    if order is not None:
        if order.status != Order.Status.PENDING:
            raise PaymentInitializationError(f"Order {order.pk} is {order.status}, not awaiting payment", adapter.name)
        if Decimal(str(data['amount'])) != order.total_amount:
            logger.warning("Initialize amount %s differs from order %s total %s",
                           data['amount'], order.pk, order.total_amount)

    customer = {
        'email': data.get('email') or (order.buyer_email if order else ''),
        'first_name': data.get('firstName') or '',
        'last_name': data.get('lastName') or '',
        'order_id': str(order.pk) if order else order_id,
    }
    result = adapter.initialize_payment(
        amount=data['amount'],
        currency=data.get('currency') or 'USD',
        reference=ref,
        return_url=data.get('returnUrl'),
        cancel_url=data.get('callbackUrl'),
        customer=customer,
    )

    alias_key = ALIAS_KEYS.get(adapter.name)
    alias = result.reference_alias or result.provider_order_id
    if alias and alias_key:
        try:
            stored = order is not None and _merge_transaction_metadata(
                order.pk, **{alias_key: alias, 'originalTxRef': ref}
            )
            if not stored:
                logger.warning("No transaction to record %s=%s for ref %s", alias_key, alias, ref)
        except DatabaseError:
            logger.exception("Failed to record %s=%s for ref %s", alias_key, alias, ref)

    logger.info("Payment initialized: provider=%s ref=%s alias=%s", adapter.name, ref, alias)
    return {
        'checkoutUrl': result.checkout_url,
        # PayPal checkouts are verified by PayPal order id
        'txRef': result.provider_order_id or ref,
        'originalTxRef': ref,
        'provider': adapter.name,
    }


def _cancel_for_reference(ref, original_ref, reason):
    order_id = txref.resolve_order_id(ref, original_ref)
    if order_id is None:
        logger.warning("Payment failed for unmapped reference %s, nothing cancelled", ref)
        return None
    try:
        return cancel_order(order_id, reason)
    except OrderNotFound:
        logger.warning("Payment failed for ref %s but order %s does not exist", ref, order_id)
    except (OrderError, DatabaseError):
        logger.exception("Could not cancel order %s after failed payment (ref %s)", order_id, ref)
    return None


def _cleanup_cart(user_id, order):
    for item in order.items.all():
        try:
            remove_from_cart(user_id, item.artwork_id)
        except CartItemNotFound:
            continue
        except Exception:
            logger.exception("Cart cleanup failed: user=%s artwork=%s", user_id, item.artwork_id)
    logger.info("Cart cleaned after order %s for user %s", order.pk, user_id)


def _customer_from_order(order):
    shipping = (order.transaction.meta('shippingAddress') if hasattr(order, 'transaction') else None) or {}
    name = shipping.get('fullName') if isinstance(shipping, dict) else None
    if not name and order.user_id:
        name = order.user.display_name
    return order.buyer_email, name


def verify_payment(data: dict) -> dict:
    """
    Verifies a checkout with the provider and settles the order.

    success -> complete the order and clear purchased artworks from the buyer's cart;
    failed or a provider error -> cancel the order when the reference maps to one;
    pending -> nothing changes.
    """
    adapter = get_provider(data['provider'])
    ref = data['txRef']
    known_order_id = txref.decode(ref)
    alias = txref.stored_alias(known_order_id, ALIAS_KEYS.get(adapter.name)) if known_order_id else None

    try:
        result = adapter.verify_payment(ref, alias=alias)
    except Exception as e:
        logger.error("Payment verification error: provider=%s ref=%s: %s", adapter.name, ref, e)
        _cancel_for_reference(ref, None, f"Payment verification failed: {e}")
        if isinstance(e, PaymentProviderError):
            raise
        # malformed provider output, e.g. a non-JSON body
        raise PaymentVerificationError(str(e) or type(e).__name__, adapter.name) from e

    response = {
        'status': result.status,
        'amount': result.amount,
        'currency': result.currency,
        'txRef': result.reference or ref,
        'provider': adapter.name,
        'customerEmail': result.customer_email,
        'customerName': result.customer_name,
    }

    if result.status == FAILED:
        _cancel_for_reference(result.reference or ref, result.original_reference or ref, "Payment failed")
        return response
    if not result.is_success:
        logger.info("Payment %s still %s at %s", ref, result.status, adapter.name)
        return response

    original_ref = result.original_reference or ref
    order_id = txref.resolve_order_id(result.reference or ref, original_ref)
    if order_id is None:
        return response
    order = _find_order(order_id)
    if order is None:
        logger.warning("Verified payment for unknown order %s (ref %s)", order_id, ref)
        return response

    response['orderId'] = str(order.pk)
    response['customerEmail'], response['customerName'] = _customer_from_order(order)
    if order.status == Order.Status.PAID:
        logger.info("Order %s already paid, verification is a no-op", order.pk)
        return response

    extra = {
        'verifiedAt': timezone.now().isoformat(),
        'originalTxRef': original_ref if original_ref != (result.reference or ref) else None,
        'customerEmail': response['customerEmail'],
        'customerName': response['customerName'],
    }
    if adapter.name == 'paypal':
        extra['paypalOrderId'] = result.provider_transaction_id
    elif result.provider_transaction_id:
        extra['providerTransactionId'] = result.provider_transaction_id

    try:
        completed = complete_order(order.pk, result.reference or ref, adapter.name,
                                   resolved_user_id=order.user_id, **extra)
    except Exception:
        # money has moved; the ledger has to be repaired by an operator
        logger.exception("Payment verified but order completion failed: order=%s ref=%s provider=%s",
                         order.pk, ref, adapter.name)
        return response

    buyer_id = completed.user_id or completed.transaction.meta('userId')
    if buyer_id and completed.status == Order.Status.PAID:
        _cleanup_cart(buyer_id, completed)
    return response
