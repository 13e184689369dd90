"""
Transaction references threaded through provider checkouts.

Canonical shape is ``TX-{orderId}-{millis}``. The order id is a UUID and carries
dashes of its own, so decoding splits on the last dash only.
"""
import logging
import time
import uuid

from orders.models import Transaction

logger = logging.getLogger('payments')

PREFIX = 'TX-'

# metadata keys holding identifiers minted by a provider in place of our reference
ALIAS_KEYS = ('paypalOrderId', 'chapaTxRef')


def encode(order_id, now_ms=None) -> str:
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"{PREFIX}{order_id}-{now_ms}"


def decode(ref):
    """Order id embedded in ``ref`` or None. Never raises."""
    if not isinstance(ref, str) or not ref.startswith(PREFIX):
        return None
    rest = ref[len(PREFIX):]
    order_id, sep, _ = rest.rpartition('-')
    if not sep or not order_id:
        return None
    return order_id


def lookup_by_alias(ref):
    if not isinstance(ref, str) or not ref:
        return None
    for key in ALIAS_KEYS:
        order_id = (Transaction.objects
                    .filter(**{f'metadata__{key}': ref})
                    .values_list('order_id', flat=True)
                    .first())
        if order_id:
            return str(order_id)
    return None


def resolve_order_id(ref, original_ref=None):
    """
    Maps a reference reported by a provider back to an order id:
    the original reference first, then the reference itself, then
    a provider alias recorded in transaction metadata.
    """
    order_id = decode(original_ref) or decode(ref) or lookup_by_alias(ref)
    if order_id is None:
        logger.warning("Could not map reference to an order: ref=%s original=%s", ref, original_ref)
    return order_id


def stored_alias(order_id, key):
    try:
        order_id = uuid.UUID(str(order_id))
    except ValueError:
        return None
    metadata = (Transaction.objects
                .filter(order_id=order_id)
                .values_list('metadata', flat=True)
                .first()) or {}
    return metadata.get(key)
