import hashlib
import hmac
import json
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest
from django.test import override_settings

from payments.providers import (
    CaptureFailed, ChapaProvider, InsufficientFunds, InvalidDestination, PayPalProvider,
    PaymentInitializationError, PaymentVerificationError, UnsupportedProvider, get_provider,
)
from payments.providers.base import FAILED, PAYMENT, PAYOUT_BATCH, PAYOUT_ITEM, PENDING, SUCCESS, UNKNOWN

REF = 'TX-3f1c2a9e-8d1b-4c3e-9a7f-2b6d5e4c3a21-1718000000000'


def http_response(payload=None, status=200, text=''):
    response = MagicMock()
    response.status_code = status
    response.ok = 200 <= status < 300
    response.json.return_value = payload if payload is not None else {}
    response.text = text
    return response


TOKEN = http_response({'access_token': 'token-1', 'expires_in': 3600})


def paypal(**kwargs):
    options = dict(client_id='id', client_secret='secret', mode='sandbox', webhook_id='', auto_capture=True)
    options.update(kwargs)
    return PayPalProvider(**options)


def paypal_order(status, reference_id=REF):
    return {
        'id': 'PP-ORDER-1',
        'status': status,
        'purchase_units': [{'reference_id': reference_id, 'amount': {'value': '360.00', 'currency_code': 'USD'}}],
        'payer': {'email_address': 'payer@paypal.test', 'name': {'given_name': 'Pay', 'surname': 'Er'}},
    }


def capture_body(order_status, capture_status, reason=None):
    capture = {'id': 'CAP-1', 'status': capture_status}
    if reason:
        capture['status_details'] = {'reason': reason}
    return {'status': order_status, 'purchase_units': [{'payments': {'captures': [capture]}}]}


def test_get_provider_is_case_insensitive():
    assert isinstance(get_provider('PayPal'), PayPalProvider)
    assert isinstance(get_provider('chapa'), ChapaProvider)
    with pytest.raises(UnsupportedProvider):
        get_provider('stripe')


# --- PayPal ---

@patch('payments.providers.paypal.requests.request')
@patch('payments.providers.paypal.requests.post', return_value=TOKEN)
def test_paypal_initialize_returns_approval_link(mock_post, mock_request):
    mock_request.return_value = http_response({
        'id': 'PP-ORDER-1',
        'links': [{'rel': 'self', 'href': 'https://self'}, {'rel': 'approve', 'href': 'https://approve'}],
    }, status=201)

    result = paypal().initialize_payment('360', 'usd', REF, 'https://shop.test/return')

    assert result.checkout_url == 'https://approve'
    assert result.provider_order_id == 'PP-ORDER-1'
    method, url = mock_request.call_args[0]
    payload = mock_request.call_args[1]['json']
    assert (method, url.endswith('/v2/checkout/orders')) == ('POST', True)
    assert payload['purchase_units'][0]['reference_id'] == REF
    assert payload['purchase_units'][0]['amount'] == {'currency_code': 'USD', 'value': '360.00'}
    assert payload['application_context']['return_url'] == 'https://shop.test/return?provider=paypal'


def test_paypal_initialize_rejects_bad_amount():
    with pytest.raises(PaymentInitializationError):
        paypal().initialize_payment('0', 'USD', REF, None)
    with pytest.raises(PaymentInitializationError):
        paypal().initialize_payment('10', 'dollars', REF, None)


@patch('payments.providers.paypal.requests.request')
@patch('payments.providers.paypal.requests.post', return_value=TOKEN)
def test_paypal_verify_captures_approved_order(mock_post, mock_request):
    mock_request.side_effect = [
        http_response(paypal_order('APPROVED')),
        http_response(capture_body('COMPLETED', 'COMPLETED'), status=201),
    ]

    result = paypal().verify_payment('PP-ORDER-1')

    assert result.status == SUCCESS
    assert result.reference == 'PP-ORDER-1'
    assert result.original_reference == REF
    assert result.customer_email == 'payer@paypal.test'
    assert result.customer_name == 'Pay Er'
    assert mock_request.call_args_list[1][0][1].endswith('/v2/checkout/orders/PP-ORDER-1/capture')
    # token is fetched once per instance
    assert mock_post.call_count == 1


@patch('payments.providers.paypal.requests.request')
@patch('payments.providers.paypal.requests.post', return_value=TOKEN)
def test_paypal_verify_declined_capture_raises(mock_post, mock_request):
    mock_request.side_effect = [
        http_response(paypal_order('APPROVED')),
        http_response(capture_body('COMPLETED', 'DECLINED', reason='DECLINED_BY_RISK_FRAUD_FILTERS'), status=201),
    ]

    with pytest.raises(CaptureFailed) as exc:
        paypal().verify_payment('PP-ORDER-1')

    assert 'DECLINED_BY_RISK_FRAUD_FILTERS' in str(exc.value)
    assert exc.value.provider == 'paypal'


@patch('payments.providers.paypal.requests.request')
@patch('payments.providers.paypal.requests.post', return_value=TOKEN)
def test_paypal_capture_http_error_raises(mock_post, mock_request):
    mock_request.side_effect = [
        http_response(paypal_order('APPROVED')),
        http_response({'name': 'UNPROCESSABLE_ENTITY', 'message': 'Instrument declined'}, status=422),
    ]

    with pytest.raises(CaptureFailed):
        paypal().verify_payment('PP-ORDER-1')


@patch('payments.providers.paypal.requests.request')
@patch('payments.providers.paypal.requests.post', return_value=TOKEN)
def test_paypal_approved_without_capture_is_pending(mock_post, mock_request):
    mock_request.return_value = http_response(paypal_order('APPROVED'))

    result = paypal(auto_capture=False).verify_payment('PP-ORDER-1')

    assert result.status == PENDING
    assert mock_request.call_count == 1


@pytest.mark.parametrize('status, expected', [
    ('COMPLETED', SUCCESS),
    ('CREATED', PENDING),
    ('PAYER_ACTION_REQUIRED', PENDING),
    ('VOIDED', FAILED),
])
@patch('payments.providers.paypal.requests.request')
@patch('payments.providers.paypal.requests.post', return_value=TOKEN)
def test_paypal_verify_status_mapping(mock_post, mock_request, status, expected):
    mock_request.return_value = http_response(paypal_order(status))
    assert paypal().verify_payment('PP-ORDER-1').status == expected


@patch('payments.providers.paypal.requests.post')
def test_paypal_bad_credentials(mock_post):
    mock_post.return_value = http_response({'error': 'invalid_client'}, status=401)

    with pytest.raises(PaymentVerificationError) as exc:
        paypal().verify_payment('PP-ORDER-1')

    assert 'CLIENT_ID' in str(exc.value)


@patch('payments.providers.paypal.requests.request')
@patch('payments.providers.paypal.requests.post', return_value=TOKEN)
def test_paypal_payout_success(mock_post, mock_request):
    mock_request.return_value = http_response(
        {'batch_header': {'payout_batch_id': 'BATCH-9', 'batch_status': 'PENDING'}}, status=201
    )

    result = paypal().process_payout('artist@example.com', Decimal('80.00'), 'USD')

    assert result.payout_batch_id == 'BATCH-9'
    assert result.batch_status == 'PENDING'
    item = mock_request.call_args[1]['json']['items'][0]
    assert item['receiver'] == 'artist@example.com'
    assert item['amount'] == {'value': '80.00', 'currency': 'USD'}


@patch('payments.providers.paypal.requests.request')
@patch('payments.providers.paypal.requests.post', return_value=TOKEN)
def test_paypal_payout_insufficient_funds(mock_post, mock_request):
    mock_request.return_value = http_response(
        {'name': 'INSUFFICIENT_FUNDS', 'message': 'Sender does not have sufficient funds.'}, status=422
    )

    with pytest.raises(InsufficientFunds) as exc:
        paypal().process_payout('artist@example.com', Decimal('80.00'), 'USD')

    assert exc.value.code == 'INSUFFICIENT_FUNDS'


@patch('payments.providers.paypal.requests.request')
@patch('payments.providers.paypal.requests.post', return_value=TOKEN)
def test_paypal_payout_unregistered_receiver(mock_post, mock_request):
    mock_request.return_value = http_response(
        {'name': 'VALIDATION_ERROR', 'details': [{'issue': 'RECEIVER_UNREGISTERED'}]}, status=400
    )

    with pytest.raises(InvalidDestination):
        paypal().process_payout('artist@example.com', Decimal('80.00'), 'USD')


@patch('payments.providers.paypal.requests.request')
def test_paypal_payout_invalid_email_skips_api(mock_request):
    with pytest.raises(InvalidDestination):
        paypal().process_payout('not-an-email', Decimal('10.00'), 'USD')
    mock_request.assert_not_called()


@pytest.mark.parametrize('strict, expected', [(False, True), (True, False)])
def test_paypal_webhook_without_webhook_id(strict, expected):
    with override_settings(PAYMENT_WEBHOOK_VERIFY_STRICT=strict):
        assert paypal().verify_webhook_signature(b'{}', {}) is expected


@pytest.mark.parametrize('verification, expected', [('SUCCESS', True), ('FAILURE', False)])
@patch('payments.providers.paypal.requests.request')
@patch('payments.providers.paypal.requests.post', return_value=TOKEN)
def test_paypal_webhook_signature_api(mock_post, mock_request, verification, expected):
    mock_request.return_value = http_response({'verification_status': verification})
    headers = {'PAYPAL-TRANSMISSION-ID': 't-1', 'PAYPAL-AUTH-ALGO': 'SHA256withRSA'}

    assert paypal(webhook_id='WH-1').verify_webhook_signature(b'{"id": "WH-EVT"}', headers) is expected

    payload = mock_request.call_args[1]['json']
    assert payload['webhook_id'] == 'WH-1'
    assert payload['transmission_id'] == 't-1'
    assert payload['webhook_event'] == {'id': 'WH-EVT'}


def test_paypal_webhook_events():
    provider = paypal()

    batch = provider.handle_webhook({
        'event_type': 'PAYMENT.PAYOUTSBATCH.SUCCESS',
        'resource': {'batch_header': {'payout_batch_id': 'B1', 'batch_status': 'SUCCESS'}},
    })
    assert (batch.event_type, batch.payout_batch_id, batch.batch_status) == (PAYOUT_BATCH, 'B1', 'SUCCESS')

    item = provider.handle_webhook({
        'event_type': 'PAYMENT.PAYOUTS-ITEM.UNCLAIMED',
        'resource': {'payout_batch_id': 'B1', 'transaction_id': 'T1', 'transaction_status': 'UNCLAIMED'},
    })
    assert (item.event_type, item.transaction_id, item.transaction_status) == (PAYOUT_ITEM, 'T1', 'UNCLAIMED')

    capture = provider.handle_webhook({
        'event_type': 'PAYMENT.CAPTURE.COMPLETED',
        'resource': {'id': 'CAP-1', 'status': 'COMPLETED',
                     'supplementary_data': {'related_ids': {'order_id': 'PP-ORDER-1'}}},
    })
    assert (capture.event_type, capture.reference) == (PAYMENT, 'PP-ORDER-1')

    assert provider.handle_webhook({'event_type': 'CUSTOMER.DISPUTE.CREATED'}).event_type == UNKNOWN


# --- Chapa ---

def chapa(**kwargs):
    options = dict(secret_key='CHASECK_TEST', webhook_secret='', base_url='https://chapa.test/v1')
    options.update(kwargs)
    return ChapaProvider(**options)


@patch('payments.providers.chapa.requests.post')
def test_chapa_initialize_aliases_long_reference(mock_post):
    mock_post.return_value = http_response({'status': 'success', 'data': {'checkout_url': 'https://checkout'}})

    result = chapa().initialize_payment('360', 'ETB', REF, None, customer={'email': 'buyer@example.com'})

    sent = mock_post.call_args[1]['json']
    assert len(REF) > 50
    assert result.reference_alias.startswith('ch-')
    assert sent['tx_ref'] == result.reference_alias
    assert len(sent['tx_ref']) <= 50
    assert result.reference == REF
    assert result.checkout_url == 'https://checkout'
    assert mock_post.call_args[1]['headers']['Authorization'] == 'Bearer CHASECK_TEST'


@patch('payments.providers.chapa.requests.post')
def test_chapa_initialize_keeps_short_reference(mock_post):
    mock_post.return_value = http_response({'status': 'success', 'data': {'checkout_url': 'https://checkout'}})

    result = chapa().initialize_payment('10', 'ETB', 'TX-short-1', None)

    assert result.reference_alias is None
    assert mock_post.call_args[1]['json']['tx_ref'] == 'TX-short-1'


@pytest.mark.parametrize('amount', ['NaN', Decimal('NaN'), 'Infinity', '-Infinity', 'abc', '0', '-5'])
@patch('payments.providers.chapa.requests.post')
def test_chapa_initialize_rejects_bad_amount(mock_post, amount):
    with pytest.raises(PaymentInitializationError):
        chapa().initialize_payment(amount, 'ETB', 'TX-short-1', None)
    mock_post.assert_not_called()


@patch('payments.providers.chapa.requests.post')
def test_chapa_initialize_error_message(mock_post):
    mock_post.return_value = http_response({'message': {'email': ['The email must be valid.']}}, status=400)

    with pytest.raises(PaymentInitializationError) as exc:
        chapa().initialize_payment('10', 'ETB', 'TX-short-1', None)

    assert 'email: The email must be valid.' in str(exc.value)


@patch('payments.providers.chapa.requests.get')
def test_chapa_verify_by_alias(mock_get):
    mock_get.return_value = http_response({'status': 'success', 'data': {
        'status': 'success', 'amount': 360, 'currency': 'ETB', 'tx_ref': 'ch-abc',
        'reference': 'APx1', 'email': 'buyer@example.com', 'first_name': 'Buyer', 'last_name': 'One',
    }})

    result = chapa().verify_payment(REF, alias='ch-abc')

    assert mock_get.call_args[0][0] == 'https://chapa.test/v1/transaction/verify/ch-abc'
    assert result.status == SUCCESS
    assert result.reference == 'ch-abc'
    assert result.original_reference == REF
    assert result.provider_transaction_id == 'APx1'
    assert result.customer_name == 'Buyer One'


@pytest.mark.parametrize('status, expected', [('pending', PENDING), ('failed', FAILED), ('reversed', FAILED)])
@patch('payments.providers.chapa.requests.get')
def test_chapa_verify_status_mapping(mock_get, status, expected):
    mock_get.return_value = http_response({'status': 'success', 'data': {'status': status, 'tx_ref': 'TX-short-1'}})
    assert chapa().verify_payment('TX-short-1').status == expected


@patch('payments.providers.chapa.requests.get')
def test_chapa_verify_http_error(mock_get):
    mock_get.return_value = http_response({'message': 'Invalid transaction'}, status=404)

    with pytest.raises(PaymentVerificationError):
        chapa().verify_payment('TX-short-1')


def test_chapa_payout_requires_bank_destination():
    with pytest.raises(InvalidDestination):
        chapa().process_payout('artist@example.com', Decimal('10.00'), 'ETB')


@patch('payments.providers.chapa.requests.post')
def test_chapa_payout(mock_post):
    mock_post.return_value = http_response({'status': 'success', 'message': 'Transfer queued'})

    result = chapa().process_payout('044:1000123456', Decimal('160.00'), 'ETB')

    sent = mock_post.call_args[1]['json']
    assert sent['bank_code'] == '044'
    assert sent['account_number'] == '1000123456'
    assert result.payout_batch_id == sent['reference']


@patch('payments.providers.chapa.requests.post')
def test_chapa_payout_insufficient_balance(mock_post):
    mock_post.return_value = http_response({'message': 'Insufficient Balance'}, status=400)

    with pytest.raises(InsufficientFunds):
        chapa().process_payout('044:1000123456', Decimal('160.00'), 'ETB')


def test_chapa_webhook_signature():
    body = json.dumps({'event': 'charge.success'}).encode()
    signature = hmac.new(b'whsec', body, hashlib.sha256).hexdigest()
    provider = chapa(webhook_secret='whsec')

    assert provider.verify_webhook_signature(body, {'Chapa-Signature': signature}) is True
    assert provider.verify_webhook_signature(body, {'x-chapa-signature': signature}) is True
    assert provider.verify_webhook_signature(body, {'Chapa-Signature': 'bad'}) is False
    assert provider.verify_webhook_signature(body, {}) is False


@override_settings(PAYMENT_WEBHOOK_VERIFY_STRICT=True)
def test_chapa_webhook_without_secret_in_strict_mode():
    assert chapa().verify_webhook_signature(b'{}', {}) is False


def test_chapa_webhook_events():
    provider = chapa()

    transfer = provider.handle_webhook({'event': 'transfer.success', 'status': 'success', 'reference': 'ch-1'})
    assert (transfer.event_type, transfer.payout_batch_id, transfer.transaction_status) == \
        (PAYOUT_ITEM, 'ch-1', 'SUCCESS')

    charge = provider.handle_webhook({'event': 'charge.success', 'status': 'success', 'tx_ref': 'ch-2'})
    assert (charge.event_type, charge.reference, charge.transaction_status) == (PAYMENT, 'ch-2', 'SUCCESS')

    assert provider.handle_webhook({'event': 'customer.created'}).event_type == UNKNOWN


@patch('payments.providers.paypal.requests.request')
@patch('payments.providers.paypal.requests.post', return_value=TOKEN)
def test_paypal_payout_status(mock_post, mock_request):
    mock_request.return_value = http_response({'batch_header': {'payout_batch_id': 'B1', 'batch_status': 'SUCCESS'}})

    status = paypal().get_payout_status('B1')

    assert status['batch_header']['batch_status'] == 'SUCCESS'
    assert mock_request.call_args[0] == ('GET', 'https://api-m.sandbox.paypal.com/v1/payments/payouts/B1')
