from decimal import Decimal

import pytest

from artworks.models import Artwork
from orders.services import create_order
from payments import providers
from payments.providers.base import (
    SUCCESS, InitializeResult, PaymentProvider, PayoutResult, VerifyResult, WebhookEvent, UNKNOWN,
)
from siteconfig.services import set_setting
from users.models import User


class FakeProvider(PaymentProvider):
    """In-memory provider; tests set the outcome of the next call."""
    name = 'fake'

    def __init__(self):
        self.verify_status = SUCCESS
        self.verify_error = None
        self.payout_error = None
        self.payout_batch_id = 'BATCH-1'
        self.signature_ok = True
        self.event = None
        self.calls = []

    def initialize_payment(self, amount, currency, reference, return_url, cancel_url=None, customer=None):
        self.calls.append(('initialize', reference))
        return InitializeResult(checkout_url=f'https://pay.test/{reference}', reference=reference)

    def verify_payment(self, reference, alias=None):
        self.calls.append(('verify', reference))
        if self.verify_error is not None:
            raise self.verify_error
        return VerifyResult(
            status=self.verify_status,
            amount=Decimal('360.00'),
            currency='USD',
            reference=reference,
            customer_email='payer@provider.test',
            customer_name='Provider Payer',
        )

    def process_payout(self, destination, amount, currency, note=None):
        self.calls.append(('payout', destination, amount))
        if self.payout_error is not None:
            raise self.payout_error
        return PayoutResult(payout_batch_id=self.payout_batch_id, batch_status='PENDING')

    def verify_webhook_signature(self, raw_body, headers):
        return self.signature_ok

    def handle_webhook(self, payload, headers=None):
        return self.event or WebhookEvent(event_type=UNKNOWN, payload=payload)


@pytest.fixture
def fake_provider(monkeypatch):
    provider = FakeProvider()
    monkeypatch.setitem(providers._registry, FakeProvider.name, lambda: provider)
    return provider


@pytest.fixture
def buyer(db):
    return User.objects.create_user(username='buyer', email='buyer@example.com', password='pass', name='Buyer One')


@pytest.fixture
def artist(db):
    return User.objects.create_user(
        username='artist', email='artist@example.com', password='pass',
        is_artist=True, payout_method='paypal', payout_account='artist-paypal@example.com',
    )


@pytest.fixture
def other_artist(db):
    return User.objects.create_user(
        username='artist2', email='artist2@example.com', password='pass',
        is_artist=True, payout_method='chapa', payout_account='044:1000123456',
    )


@pytest.fixture
def staff(db):
    return User.objects.create_user(username='admin', email='admin@example.com', password='pass', is_staff=True)


@pytest.fixture
def make_artwork(db):
    def make(owner, price, status=Artwork.Status.APPROVED, title=None):
        return Artwork.objects.create(
            owner=owner,
            title=title or f'Artwork {price}',
            artist=owner.name or owner.username,
            desired_price=Decimal(str(price)),
            status=status,
        )
    return make


@pytest.fixture
def commission_20(db):
    set_setting('platform', {'platformCommissionRate': 20}, 'platform')
    return Decimal('0.2')


@pytest.fixture
def two_artworks(make_artwork, artist, other_artist):
    return make_artwork(artist, 100), make_artwork(other_artist, 200)


@pytest.fixture
def shipping_address():
    return {
        'fullName': 'Buyer One',
        'phone': '+251900000000',
        'address': 'Bole Road 1',
        'city': 'Addis Ababa',
        'state': 'AA',
        'zipCode': '1000',
    }


@pytest.fixture
def place_order(buyer, shipping_address):
    def place(artworks, user=None, **kwargs):
        user = user or buyer
        items = [{'artworkId': str(a.pk), 'quantity': 1, 'price': str(a.desired_price)} for a in artworks]
        return create_order(user.id, items, shipping_address, kwargs.pop('payment_method', 'paypal'),
                            user.email, **kwargs)
    return place
