# orders/services.py
import logging
import uuid
from datetime import timedelta
from decimal import Decimal, ROUND_HALF_UP

from django.conf import settings
from django.core.mail import EmailMultiAlternatives
from django.db import transaction
from django.template.loader import render_to_string
from django.utils import timezone

from artworks.models import Artwork
from payments import txref
from payments.models import Withdrawal
from siteconfig.services import get_order_settings_values, get_platform_commission_rate
from .exceptions import (
    ArtworkUnavailable, InvalidOrderItems, OrderNotFound, OrderPermissionError, SelfPurchaseNotAllowed,
)
from .models import Order, OrderItem, Transaction

logger = logging.getLogger('orders')
mail_logger = logging.getLogger('mail')

CENT = Decimal('0.01')
DEFAULT_CANCELLATION_REASON = "Payment failed"


def money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def _parse_order_id(order_id):
    try:
        return uuid.UUID(str(order_id))
    except (TypeError, ValueError):
        raise OrderNotFound(f"Order {order_id} not found")


def _normalize_items(items):
    if not items:
        raise InvalidOrderItems("Order must contain at least one item")
    normalized = []
    seen = set()
    for raw in items:
        if not isinstance(raw, dict) or not raw.get('artworkId'):
            raise InvalidOrderItems("Each item needs an artworkId")
        try:
            quantity = int(raw.get('quantity', 1))
        except (TypeError, ValueError):
            raise InvalidOrderItems(f"Invalid quantity for artwork {raw['artworkId']}")
        if quantity < 1:
            raise InvalidOrderItems(f"Quantity must be at least 1 for artwork {raw['artworkId']}")
        artwork_id = str(raw['artworkId'])
        if artwork_id in seen:
            raise InvalidOrderItems(f"Artwork {artwork_id} is listed twice")
        seen.add(artwork_id)
        normalized.append((artwork_id, quantity))
    return normalized


def _load_artworks(artwork_ids):
    valid = {}
    for artwork_id in artwork_ids:
        try:
            valid[artwork_id] = uuid.UUID(artwork_id)
        except ValueError:
            pass
    found = Artwork.objects.select_related('owner').filter(pk__in=valid.values())
    by_id = {str(a.pk): a for a in found}
    # ids may come in any case/format, map them back through the parsed uuid
    return {artwork_id: by_id.get(str(parsed)) for artwork_id, parsed in valid.items()}


def create_order(buyer_user_id, items, shipping_address, payment_method, buyer_email, commission_rate=None):
    """
    Validates the requested artworks, freezes prices and commission, and stores
    Order + OrderItems + Transaction in one atomic unit.
    The unit price always comes from the artwork; a client-sent price is ignored.
    """
    normalized = _normalize_items(items)
    artworks = _load_artworks([artwork_id for artwork_id, _ in normalized])

    unavailable = [
        artwork_id for artwork_id, _ in normalized
        if artworks.get(artwork_id) is None or not artworks[artwork_id].is_purchasable
    ]
    if unavailable:
        raise ArtworkUnavailable(unavailable)

    if buyer_user_id is not None:
        own = [artworks[a].title for a, _ in normalized if artworks[a].owner_id == buyer_user_id]
        if own:
            raise SelfPurchaseNotAllowed(own)

    lines = []
    subtotal = Decimal('0.00')
    for artwork_id, quantity in normalized:
        artwork = artworks[artwork_id]
        price = money(artwork.desired_price)
        subtotal += price * quantity
        lines.append((artwork, quantity, price))
    subtotal = money(subtotal)

    rate = Decimal(str(commission_rate)) if commission_rate is not None else get_platform_commission_rate()
    platform_fee = money(subtotal * rate)
    total_amount = money(subtotal + platform_fee)

    with transaction.atomic():
        order = Order.objects.create(
            buyer_email=buyer_email,
            user_id=buyer_user_id,
            total_amount=total_amount,
            status=Order.Status.PENDING,
        )
        order_items = [
            OrderItem.objects.create(order=order, artwork=artwork, quantity=quantity, price=price)
            for artwork, quantity, price in lines
        ]
        Transaction.objects.create(
            order=order,
            amount=total_amount,
            status=Transaction.Status.INITIATED,
            metadata={
                'subtotal': str(subtotal),
                'platformFee': str(platform_fee),
                'platformCommissionRate': str(rate),
                'shippingAddress': shipping_address,
                'paymentMethod': payment_method,
                'userId': buyer_user_id,
            },
        )

    ref = txref.encode(order.pk)
    logger.info("Order created: order=%s buyer=%s total=%s fee=%s ref=%s",
                order.pk, buyer_user_id, total_amount, platform_fee, ref)
    return {
        'orderId': str(order.pk),
        'txRef': ref,
        'totalAmount': total_amount,
        'subtotal': subtotal,
        'platformFee': platform_fee,
        'items': [
            {
                'artworkId': str(item.artwork_id),
                'artworkTitle': item.artwork.title,
                'artistName': item.artwork.artist_name,
                'quantity': item.quantity,
                'price': item.price,
            }
            for item in order_items
        ],
    }


def _frozen_rate(txn: Transaction) -> Decimal:
    stored = txn.meta('platformCommissionRate')
    if stored is not None:
        return Decimal(str(stored))
    subtotal, fee = txn.meta('subtotal'), txn.meta('platformFee')
    if subtotal and fee is not None and Decimal(str(subtotal)) > 0:
        return Decimal(str(fee)) / Decimal(str(subtotal))
    # orders created before the rate was recorded
    rate = get_platform_commission_rate()
    logger.warning("Order %s has no frozen commission rate, using current %s", txn.order_id, rate)
    return rate


def complete_order(order_id, tx_ref, provider, resolved_user_id=None, **extra_metadata):
    """
    Marks an order PAID, its artworks SOLD, and creates one INITIATED withdrawal per item.

    Safe to call twice: the PENDING -> PAID move is a conditional update, and a call that
    finds the order already handled returns it without touching anything.
    """
    pk = _parse_order_id(order_id)
    order = Order.objects.filter(pk=pk).first()
    if order is None:
        raise OrderNotFound(f"Order {order_id} not found")
    if order.status == Order.Status.PAID:
        logger.info("Order %s already paid, skipping completion", pk)
        return get_order(pk)
    if resolved_user_id is not None and order.user_id is not None and order.user_id != resolved_user_id:
        raise OrderPermissionError()

    now = timezone.now()
    with transaction.atomic():
        changes = {'status': Order.Status.PAID, 'paid_at': now, 'updated_at': now}
        if order.user_id is None and resolved_user_id is not None:
            changes['user_id'] = resolved_user_id
        claimed = Order.objects.filter(pk=pk, status=Order.Status.PENDING).update(**changes)
        if not claimed:
            current = Order.objects.get(pk=pk)
            if current.status == Order.Status.CANCELLED:
                logger.error("Payment confirmed for cancelled order %s (ref=%s, provider=%s); "
                             "needs manual reconciliation", pk, tx_ref, provider)
            else:
                logger.warning("Order %s was completed concurrently (status=%s)", pk, current.status)
            return get_order(pk)

        items = list(OrderItem.objects.select_related('artwork__owner').filter(order_id=pk))
        Artwork.objects.filter(pk__in=[i.artwork_id for i in items]).update(
            status=Artwork.Status.SOLD, updated_at=now
        )

        txn = Transaction.objects.select_for_update().get(order_id=pk)
        rate = _frozen_rate(txn)
        txn.merge_metadata(
            txRef=tx_ref,
            paymentProvider=provider,
            completedAt=now.isoformat(),
            **extra_metadata,
        )
        txn.status = Transaction.Status.COMPLETED
        txn.save(update_fields=['status', 'metadata', 'updated_at'])

        for item in items:
            gross = item.line_total
            artist_amount = money(gross * (Decimal('1') - rate))
            owner = item.artwork.owner
            Withdrawal.objects.get_or_create(
                order_item=item,
                defaults={
                    'user': owner,
                    'amount': artist_amount,
                    'payout_account': owner.payout_account or owner.email,
                    'status': Withdrawal.Status.INITIATED,
                    'metadata': {
                        'orderId': str(pk),
                        'artworkId': str(item.artwork_id),
                        'grossAmount': str(money(gross)),
                        'platformCommissionRate': str(rate),
                        'commissionAmount': str(money(gross) - artist_amount),
                        'payoutMethod': owner.payout_method,
                    },
                },
            )

        transaction.on_commit(lambda: send_order_confirmation_email(pk))

    logger.info("Order completed: order=%s provider=%s ref=%s withdrawals=%s", pk, provider, tx_ref, len(items))
    return get_order(pk)


def cancel_order(order_id, reason=None):
    """No-op unless the order is still PENDING."""
    reason = reason or DEFAULT_CANCELLATION_REASON
    pk = _parse_order_id(order_id)
    order = Order.objects.filter(pk=pk).first()
    if order is None:
        raise OrderNotFound(f"Order {order_id} not found")
    if order.is_final:
        logger.info("Order %s is %s, cancellation skipped", pk, order.status)
        return order

    now = timezone.now()
    with transaction.atomic():
        claimed = Order.objects.filter(pk=pk, status=Order.Status.PENDING).update(
            status=Order.Status.CANCELLED, cancelled_at=now, updated_at=now
        )
        if not claimed:
            logger.warning("Order %s changed state before cancellation", pk)
            return Order.objects.get(pk=pk)

        txn = Transaction.objects.select_for_update().filter(order_id=pk).first()
        if txn is not None:
            txn.merge_metadata(cancellationReason=reason, cancelledAt=now.isoformat())
            txn.status = Transaction.Status.FAILED
            txn.save(update_fields=['status', 'metadata', 'updated_at'])

    logger.info("Order cancelled: order=%s reason=%s", pk, reason)
    return Order.objects.get(pk=pk)


def get_order(order_id) -> Order:
    pk = _parse_order_id(order_id)
    order = (Order.objects
             .select_related('user', 'transaction')
             .prefetch_related('items__artwork__owner')
             .filter(pk=pk)
             .first())
    if order is None:
        raise OrderNotFound(f"Order {order_id} not found")
    return order


def get_user_orders(user_id):
    return (Order.objects
            .filter(user_id=user_id)
            .select_related('transaction')
            .prefetch_related('items__artwork__owner'))


def cancel_stale_orders(now=None) -> dict:
    """
    Cancels PENDING orders left unpaid for too long. Two thresholds apply:
    ``autoCancelPendingOrdersDays`` and the shorter ``orderExpirationHours``.
    """
    now = now or timezone.now()
    values = get_order_settings_values()
    sweeps = [
        ('autoCancelled', timedelta(days=values['autoCancelPendingOrdersDays']),
         f"Auto-cancelled after {values['autoCancelPendingOrdersDays']} days pending"),
        ('expired', timedelta(hours=values['orderExpirationHours']),
         f"Order expired after {values['orderExpirationHours']} hours"),
    ]
    result = {}
    for name, age, reason in sweeps:
        result[name] = 0
        if age <= timedelta(0):
            continue
        stale = Order.objects.filter(status=Order.Status.PENDING, created_at__lt=now - age)
        for order_id in stale.values_list('pk', flat=True):
            order = cancel_order(order_id, reason)
            if order.status == Order.Status.CANCELLED:
                result[name] += 1
    logger.info("Stale order sweep: %s", result)
    return result


def send_order_confirmation_email(order_id) -> None:
    """
    Sends the buyer a payment confirmation.
    Errors are logged and never propagate.
    """
    try:
        order = get_order(order_id)
    except OrderNotFound:
        mail_logger.error("send_order_confirmation_email: order %s does not exist", order_id)
        return
    if not order.buyer_email:
        mail_logger.warning("Order %s has no buyer email, confirmation skipped", order.pk)
        return

    subject = f"{settings.SITE_NAME}: payment received for order {order.pk}"
    ctx = {'order': order, 'items': order.items.all(), 'site_name': settings.SITE_NAME, 'site_url': settings.SITE_URL}
    text = render_to_string('email/order_paid.txt', ctx)
    html = render_to_string('email/order_paid.html', ctx)

    msg = EmailMultiAlternatives(
        subject=subject,
        body=text,
        from_email=settings.DEFAULT_FROM_EMAIL,
        to=[order.buyer_email],
    )
    msg.attach_alternative(html, 'text/html')
    try:
        sent_count = msg.send(fail_silently=False)
        mail_logger.info("Order email sent: order=%s to=%s result=%s", order.pk, order.buyer_email, sent_count)
    except Exception as e:
        # the payment is already recorded
        mail_logger.exception("Order email FAILED: order=%s to=%s: %s", order.pk, order.buyer_email, e)


def get_platform_commission_summary(start=None, end=None) -> dict:
    """Totals of the commission frozen into PAID orders, optionally bounded by paid date."""
    qs = Transaction.objects.filter(order__status=Order.Status.PAID)
    if start is not None:
        qs = qs.filter(order__paid_at__gte=start)
    if end is not None:
        qs = qs.filter(order__paid_at__lte=end)

    total_fee = Decimal('0.00')
    total_sales = Decimal('0.00')
    count = 0
    for metadata in qs.values_list('metadata', flat=True):
        metadata = metadata or {}
        total_fee += Decimal(str(metadata.get('platformFee') or '0'))
        total_sales += Decimal(str(metadata.get('subtotal') or '0'))
        count += 1

    average_rate = (total_fee / total_sales) if total_sales else Decimal('0')
    return {
        'totalCommission': money(total_fee),
        'totalSales': money(total_sales),
        'orderCount': count,
        'averageCommissionRate': average_rate.quantize(Decimal('0.0001'), rounding=ROUND_HALF_UP),
    }
