import json
import logging
import re
import time
import uuid

import requests
from django.conf import settings

from .base import (
    FAILED, PAYMENT, PAYOUT_BATCH, PAYOUT_ITEM, PENDING, SUCCESS, UNKNOWN,
    CaptureFailed, InitializeResult, InsufficientFunds, InvalidDestination, PaymentInitializationError,
    PaymentProvider, PaymentProviderError, PaymentVerificationError, PayoutError, PayoutResult, VerifyResult,
    WebhookEvent, header,
)

logger = logging.getLogger('payments')

LIVE_URL = 'https://api-m.paypal.com'
SANDBOX_URL = 'https://api-m.sandbox.paypal.com'

EMAIL_RE = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')

# order statuses that still wait for the buyer or for capture
WAITING_STATUSES = {'CREATED', 'SAVED', 'PAYER_ACTION_REQUIRED'}

INSUFFICIENT_FUNDS_ERRORS = {'INSUFFICIENT_FUNDS', 'SENDER_INSUFFICIENT_FUNDS'}
INVALID_DESTINATION_ERRORS = {'RECEIVER_UNREGISTERED', 'RECEIVER_INVALID', 'INVALID_EMAIL',
                              'RECEIVER_ACCOUNT_LOCKED', 'RECEIVER_UNCONFIRMED'}


def _error_body(response):
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _error_message(response):
    body = _error_body(response)
    details = body.get('details') or [{}]
    return (body.get('message') or body.get('error_description') or body.get('error')
            or details[0].get('description') or details[0].get('issue') or f"HTTP {response.status_code}")


class PayPalProvider(PaymentProvider):
    name = 'paypal'

    def __init__(self, client_id=None, client_secret=None, mode=None, webhook_id=None,
                 auto_capture=None, timeout=None):
        self.client_id = client_id if client_id is not None else settings.PAYPAL_CLIENT_ID
        self.client_secret = client_secret if client_secret is not None else settings.PAYPAL_CLIENT_SECRET
        self.webhook_id = webhook_id if webhook_id is not None else settings.PAYPAL_WEBHOOK_ID
        self.auto_capture = settings.PAYPAL_AUTO_CAPTURE if auto_capture is None else auto_capture
        self.timeout = timeout or settings.PAYMENT_HTTP_TIMEOUT
        mode = mode or settings.PAYPAL_MODE
        self.base_url = LIVE_URL if mode == 'live' else SANDBOX_URL
        self._token = None
        self._token_expires = 0
        if not self.client_id or not self.client_secret:
            logger.warning("PayPal credentials not configured")

    def _access_token(self, error_cls=PaymentProviderError):
        if self._token and time.monotonic() < self._token_expires:
            return self._token
        try:
            response = requests.post(
                f"{self.base_url}/v1/oauth2/token",
                data={'grant_type': 'client_credentials'},
                auth=(self.client_id, self.client_secret),
                headers={'Accept': 'application/json'},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise error_cls(f"PayPal authentication failed: {e}", self.name) from e
        if not response.ok:
            raise error_cls(
                f"PayPal authentication failed: {_error_message(response)}. Check your CLIENT_ID and CLIENT_SECRET.",
                self.name,
            )
        body = response.json()
        self._token = body['access_token']
        # refresh a minute early
        self._token_expires = time.monotonic() + max(int(body.get('expires_in', 0)) - 60, 0)
        return self._token

    def _call(self, method, path, error_cls, payload=None):
        token = self._access_token(error_cls)
        try:
            response = requests.request(
                method, f"{self.base_url}{path}", json=payload,
                headers={'Authorization': f'Bearer {token}', 'Content-Type': 'application/json'},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise error_cls(f"PayPal request failed: {e}", self.name) from e
        return response

    def initialize_payment(self, amount, currency, reference, return_url, cancel_url=None, customer=None):
        amount, currency = self._check_amount(amount, currency)
        customer = customer or {}
        base_return = return_url or f"{settings.FRONTEND_URL}/payment/success"
        separator = '&' if '?' in base_return else '?'
        payload = {
            'intent': 'CAPTURE',
            'purchase_units': [{
                'reference_id': reference,
                'description': f"{settings.SITE_NAME} order {customer.get('order_id') or reference}",
                'amount': {'currency_code': currency, 'value': f"{amount:.2f}"},
            }],
            'application_context': {
                'brand_name': settings.SITE_NAME,
                'landing_page': 'BILLING',
                'user_action': 'PAY_NOW',
                'return_url': f"{base_return}{separator}provider=paypal",
                'cancel_url': cancel_url or f"{settings.FRONTEND_URL}/payment/cancel",
            },
        }
        logger.info("Initializing PayPal payment: %s", reference)
        response = self._call('POST', '/v2/checkout/orders', PaymentInitializationError, payload)
        if not response.ok:
            raise PaymentInitializationError(f"PayPal payment failed: {_error_message(response)}", self.name)

        body = response.json()
        approval_url = next((link.get('href') for link in body.get('links', []) if link.get('rel') == 'approve'), None)
        if not approval_url:
            raise PaymentInitializationError("PayPal approval URL not found", self.name)
        return InitializeResult(checkout_url=approval_url, reference=reference, provider_order_id=body.get('id'))

    def capture_payment(self, paypal_order_id) -> dict:
        logger.info("Capturing PayPal payment: %s", paypal_order_id)
        response = self._call('POST', f'/v2/checkout/orders/{paypal_order_id}/capture', CaptureFailed, {})
        if not response.ok:
            raise CaptureFailed(f"PayPal payment capture failed: {_error_message(response)}", self.name)
        return response.json()

    def verify_payment(self, reference, alias=None):
        paypal_order_id = alias or reference
        logger.info("Verifying PayPal payment: %s", paypal_order_id)
        response = self._call('GET', f'/v2/checkout/orders/{paypal_order_id}', PaymentVerificationError)
        if not response.ok:
            raise PaymentVerificationError(f"PayPal verification failed: {_error_message(response)}", self.name)

        order = response.json()
        status = order.get('status', '')
        purchase_unit = (order.get('purchase_units') or [{}])[0]

        if status == 'APPROVED' and self.auto_capture:
            captured = self.capture_payment(paypal_order_id)
            capture = (((captured.get('purchase_units') or [{}])[0].get('payments') or {}).get('captures') or [{}])[0]
            if captured.get('status') != 'COMPLETED' or capture.get('status') != 'COMPLETED':
                reason = (capture.get('status_details') or {}).get('reason') or 'payment declined'
                logger.error("PayPal capture for %s ended with %s/%s", paypal_order_id,
                             captured.get('status'), capture.get('status'))
                raise CaptureFailed(f"PayPal payment capture failed: {reason}", self.name)
            status = 'COMPLETED'
            logger.info("PayPal order captured: %s", paypal_order_id)

        if status == 'COMPLETED':
            normalized = SUCCESS
        elif status == 'APPROVED' or status in WAITING_STATUSES:
            # authorized is not paid
            normalized = PENDING
        else:
            normalized = FAILED

        payer = order.get('payer') or {}
        payer_name = payer.get('name') or {}
        name = ' '.join(p for p in (payer_name.get('given_name'), payer_name.get('surname')) if p)
        amount = purchase_unit.get('amount') or {}
        return VerifyResult(
            status=normalized,
            amount=amount.get('value'),
            currency=amount.get('currency_code'),
            reference=paypal_order_id,
            original_reference=purchase_unit.get('reference_id'),
            provider_transaction_id=paypal_order_id,
            customer_email=payer.get('email_address'),
            customer_name=name or None,
            raw={'status': order.get('status'), 'id': order.get('id')},
        )

    def process_payout(self, destination, amount, currency, note=None):
        if not destination or not EMAIL_RE.match(destination):
            raise InvalidDestination(f"Invalid PayPal email address: {destination!r}", self.name)
        stamp = int(time.time() * 1000)
        message = note or f"You have received a payout of {currency} {amount:.2f} from {settings.SITE_NAME}."
        payload = {
            'sender_batch_header': {
                'sender_batch_id': f"PAYOUT-{stamp}-{uuid.uuid4().hex[:6]}",
                'email_subject': f"You have received a payout from {settings.SITE_NAME}",
                'email_message': message,
            },
            'items': [{
                'recipient_type': 'EMAIL',
                'amount': {'value': f"{amount:.2f}", 'currency': currency},
                'receiver': destination,
                'note': message,
                'sender_item_id': f"PAYOUT-ITEM-{stamp}",
            }],
        }
        logger.info("Processing PayPal payout: %s %s to %s", currency, amount, destination)
        response = self._call('POST', '/v1/payments/payouts', PayoutError, payload)
        if not response.ok:
            body = _error_body(response)
            issue = (body.get('details') or [{}])[0].get('issue')
            codes = {body.get('name'), issue}
            message = _error_message(response)
            if codes & INSUFFICIENT_FUNDS_ERRORS:
                raise InsufficientFunds(message, self.name)
            if codes & INVALID_DESTINATION_ERRORS:
                raise InvalidDestination(message, self.name)
            raise PayoutError(f"PayPal payout failed: {message}", self.name)

        body = response.json()
        batch_header = body.get('batch_header') or {}
        batch_id = batch_header.get('payout_batch_id')
        if not batch_id:
            raise PayoutError("PayPal payout response has no batch id", self.name)
        logger.info("PayPal payout accepted: batch=%s status=%s", batch_id, batch_header.get('batch_status'))
        return PayoutResult(payout_batch_id=batch_id, batch_status=batch_header.get('batch_status'), raw=body)

    def get_payout_status(self, payout_batch_id) -> dict:
        response = self._call('GET', f'/v1/payments/payouts/{payout_batch_id}', PayoutError)
        if not response.ok:
            raise PayoutError(f"Failed to get payout status: {_error_message(response)}", self.name)
        return response.json()

    def verify_webhook_signature(self, raw_body, headers):
        """
        Asks PayPal to verify the transmission signature.
        Without PAYPAL_WEBHOOK_ID, non-strict deployments accept the webhook (sandbox only).
        """
        strict = settings.PAYMENT_WEBHOOK_VERIFY_STRICT
        if not self.webhook_id:
            if strict:
                logger.warning("PayPal webhook rejected: PAYPAL_WEBHOOK_ID not configured")
                return False
            return True
        try:
            event = json.loads(raw_body)
        except (TypeError, ValueError):
            return False
        payload = {
            'auth_algo': header(headers, 'paypal-auth-algo'),
            'cert_url': header(headers, 'paypal-cert-url'),
            'transmission_id': header(headers, 'paypal-transmission-id'),
            'transmission_sig': header(headers, 'paypal-transmission-sig'),
            'transmission_time': header(headers, 'paypal-transmission-time'),
            'webhook_id': self.webhook_id,
            'webhook_event': event,
        }
        try:
            response = self._call('POST', '/v1/notifications/verify-webhook-signature', PaymentProviderError, payload)
        except PaymentProviderError as e:
            logger.error("PayPal webhook verification call failed: %s", e)
            return not strict
        if not response.ok:
            logger.error("PayPal webhook verification call failed: %s", _error_message(response))
            return not strict
        verification = response.json().get('verification_status')
        if verification != 'SUCCESS':
            logger.warning("PayPal webhook signature verification failed: %s", verification)
            return False
        return True

    def handle_webhook(self, payload, headers=None):
        event_type = str(payload.get('event_type') or '')
        resource = payload.get('resource') or {}
        if 'PAYOUTSBATCH' in event_type:
            batch_header = resource.get('batch_header') or {}
            return WebhookEvent(
                event_type=PAYOUT_BATCH,
                provider_event=event_type,
                payout_batch_id=batch_header.get('payout_batch_id'),
                batch_status=batch_header.get('batch_status'),
                payload=payload,
            )
        if 'PAYOUTS-ITEM' in event_type or ('PAYOUTS' in event_type and 'ITEM' in event_type):
            return WebhookEvent(
                event_type=PAYOUT_ITEM,
                provider_event=event_type,
                payout_batch_id=resource.get('payout_batch_id'),
                transaction_id=resource.get('transaction_id'),
                transaction_status=resource.get('transaction_status'),
                payload=payload,
            )
        if event_type.startswith('PAYMENT.'):
            # capture events point back at the checkout order
            related = (resource.get('supplementary_data') or {}).get('related_ids') or {}
            return WebhookEvent(
                event_type=PAYMENT,
                provider_event=event_type,
                reference=related.get('order_id'),
                transaction_id=resource.get('id'),
                transaction_status=resource.get('status'),
                payload=payload,
            )
        return WebhookEvent(event_type=UNKNOWN, provider_event=event_type, payload=payload)
