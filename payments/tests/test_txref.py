import uuid

import pytest

from orders.models import Transaction
from payments import txref


def test_decode_recovers_uuid_order_id():
    order_id = str(uuid.uuid4())
    ref = txref.encode(order_id, now_ms=1718000000000)

    assert ref == f"TX-{order_id}-1718000000000"
    assert txref.decode(ref) == order_id


@pytest.mark.parametrize('ref', [None, '', 'TX-', 'TX-nodash', 'PP-ORDER-1', 'ch-abc', 42])
def test_decode_rejects_foreign_references(ref):
    assert txref.decode(ref) is None


@pytest.mark.django_db
def test_resolve_prefers_original_reference(two_artworks, commission_20, place_order):
    order = place_order(two_artworks)

    assert txref.resolve_order_id('ch-whatever', order['txRef']) == order['orderId']
    assert txref.resolve_order_id(order['txRef']) == order['orderId']


@pytest.mark.django_db
def test_resolve_through_stored_alias(two_artworks, commission_20, place_order):
    order = place_order(two_artworks)
    txn = Transaction.objects.get(order_id=order['orderId'])
    txn.merge_metadata(chapaTxRef='ch-123')
    txn.save()

    assert txref.resolve_order_id('ch-123') == order['orderId']
    assert txref.stored_alias(order['orderId'], 'chapaTxRef') == 'ch-123'
    assert txref.stored_alias('not-a-uuid', 'chapaTxRef') is None
    assert txref.resolve_order_id('ch-unknown') is None
