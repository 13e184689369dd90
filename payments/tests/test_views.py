import json

import pytest
from django.urls import reverse

from orders.models import Order
from payments.models import Withdrawal
from payments.providers import PaymentVerificationError

pytestmark = pytest.mark.django_db


def post_json(client, url, data):
    return client.post(url, data=json.dumps(data), content_type='application/json')


@pytest.fixture
def order(two_artworks, commission_20, place_order):
    return place_order(two_artworks)


def test_initialize(client, fake_provider, order):
    response = post_json(client, reverse('payments:initialize'), {
        'provider': 'FAKE', 'amount': '360.00', 'txRef': order['txRef'], 'orderId': order['orderId'],
    })

    assert response.status_code == 200
    data = response.json()['data']
    assert data['checkoutUrl'] == f"https://pay.test/{order['txRef']}"
    assert data['provider'] == 'fake'


def test_initialize_validates_input(client, fake_provider):
    response = post_json(client, reverse('payments:initialize'),
                         {'provider': 'bitcoin', 'amount': '-1', 'txRef': 'TX-1-1', 'currency': 'dollars'})

    assert response.status_code == 400
    errors = response.json()['errors']
    assert set(errors) == {'provider', 'amount', 'currency'}


def test_verify_success(client, fake_provider, order):
    response = post_json(client, reverse('payments:verify'), {'provider': 'fake', 'txRef': order['txRef']})

    assert response.status_code == 200
    body = response.json()
    assert body['success'] is True
    assert body['data']['orderId'] == order['orderId']
    assert Order.objects.get(pk=order['orderId']).status == Order.Status.PAID


def test_verify_provider_error(client, fake_provider, order):
    fake_provider.verify_error = PaymentVerificationError("capture declined", 'fake')

    response = post_json(client, reverse('payments:verify'), {'provider': 'fake', 'txRef': order['txRef']})

    assert response.status_code == 400
    assert response.json() == {'success': False, 'message': 'capture declined', 'provider': 'fake'}
    assert Order.objects.get(pk=order['orderId']).status == Order.Status.CANCELLED


def test_verify_requires_post(client):
    assert client.get(reverse('payments:verify')).status_code == 405


def test_chapa_callback(client):
    response = client.get(reverse('payments:chapa_callback'), {'trx_ref': 'ch-1', 'status': 'success'})
    assert response.json()['data'] == {'trxRef': 'ch-1', 'status': 'success'}


def test_withdrawal_request_by_artist(client, artist, paid_order):
    client.force_login(artist)

    response = post_json(client, reverse('payments:withdrawal_request'), {'amount': '25.00'})

    assert response.status_code == 201
    data = response.json()['data']
    assert data['amount'] == '25.00'
    assert data['status'] == Withdrawal.Status.INITIATED
    assert data['orderItemId'] is None


def test_withdrawal_request_over_balance(client, artist, paid_order):
    client.force_login(artist)
    response = post_json(client, reverse('payments:withdrawal_request'), {'amount': '500.00'})
    assert response.status_code == 400


def test_withdrawal_request_needs_artist(client, buyer):
    client.force_login(buyer)
    response = post_json(client, reverse('payments:withdrawal_request'), {'amount': '25.00'})
    assert response.status_code == 403


def test_dispatch_requires_staff(client, artist, earning):
    client.force_login(artist)
    response = post_json(client, reverse('payments:withdrawal_dispatch', args=[earning.pk]), {})
    assert response.status_code == 403


def test_dispatch_by_staff(client, staff, earning, fake_provider):
    client.force_login(staff)

    response = post_json(client, reverse('payments:withdrawal_dispatch', args=[earning.pk]), {'provider': 'fake'})

    assert response.status_code == 200
    assert response.json()['data']['payoutBatchId'] == 'BATCH-1'


def test_status_update_by_staff(client, staff, earning):
    client.force_login(staff)
    url = reverse('payments:withdrawal_status', args=[earning.pk])

    assert post_json(client, url, {'status': 'COMPLETED'}).status_code == 200
    response = post_json(client, url, {'status': 'FAILED', 'reason': 'typo'})

    assert response.status_code == 400
    assert Withdrawal.objects.get(pk=earning.pk).status == Withdrawal.Status.COMPLETED


def test_statistics_anonymous(client):
    assert client.get(reverse('payments:withdrawal_statistics')).status_code == 401


def test_statistics_for_staff(client, staff, earning):
    client.force_login(staff)
    response = client.get(reverse('payments:withdrawal_statistics'))
    assert response.json()['data']['totalCount'] == 2
