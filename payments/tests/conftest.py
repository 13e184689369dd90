import pytest

from orders.services import complete_order
from payments.models import Withdrawal
from payments.withdrawals import dispatch_payout


@pytest.fixture
def paid_order(two_artworks, commission_20, place_order):
    result = place_order(two_artworks)
    complete_order(result['orderId'], result['txRef'], 'paypal')
    return result


@pytest.fixture
def earning(paid_order, artist):
    """The 80.00 INITIATED withdrawal of the first artist."""
    return Withdrawal.objects.get(user=artist, order_item__isnull=False)


@pytest.fixture
def dispatched(earning, fake_provider):
    return dispatch_payout(earning.pk, provider='fake')
