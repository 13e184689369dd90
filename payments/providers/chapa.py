import hashlib
import hmac
import logging
import uuid

import requests
from django.conf import settings

from .base import (
    FAILED, PAYMENT, PAYOUT_ITEM, PENDING, SUCCESS, UNKNOWN,
    InitializeResult, InsufficientFunds, InvalidDestination, PaymentInitializationError, PaymentProvider,
    PaymentVerificationError, PayoutError, PayoutResult, VerifyResult, WebhookEvent, header,
)

logger = logging.getLogger('payments')

# Chapa rejects tx_ref values longer than this
MAX_TX_REF_LENGTH = 50

STATUS_MAP = {
    'success': SUCCESS,
    'pending': PENDING,
}


def _error_message(response):
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    message = body.get('message') if isinstance(body, dict) else None
    if isinstance(message, dict):
        # validation errors come back as {field: [messages]}
        message = '; '.join(f"{k}: {', '.join(v) if isinstance(v, list) else v}" for k, v in message.items())
    return message or f"HTTP {response.status_code}"


def mint_alias() -> str:
    return f"ch-{uuid.uuid4().hex}"


class ChapaProvider(PaymentProvider):
    name = 'chapa'

    def __init__(self, secret_key=None, webhook_secret=None, base_url=None, timeout=None):
        self.secret_key = secret_key if secret_key is not None else settings.CHAPA_SECRET_KEY
        self.webhook_secret = webhook_secret if webhook_secret is not None else settings.CHAPA_WEBHOOK_SECRET
        self.base_url = (base_url or settings.CHAPA_BASE_URL).rstrip('/')
        self.timeout = timeout or settings.PAYMENT_HTTP_TIMEOUT
        if not self.secret_key:
            logger.warning("CHAPA_SECRET_KEY not configured")

    def _headers(self):
        return {'Authorization': f'Bearer {self.secret_key}', 'Content-Type': 'application/json'}

    def initialize_payment(self, amount, currency, reference, return_url, cancel_url=None, customer=None):
        amount, currency = self._check_amount(amount, currency)
        customer = customer or {}
        tx_ref = reference
        alias = None
        if len(reference) > MAX_TX_REF_LENGTH:
            alias = tx_ref = mint_alias()
            logger.info("Chapa reference %s too long, using alias %s", reference, alias)

        payload = {
            'amount': str(amount),
            'currency': currency,
            'email': customer.get('email') or '',
            'first_name': customer.get('first_name') or '',
            'last_name': customer.get('last_name') or '',
            'tx_ref': tx_ref,
            'callback_url': cancel_url or f"{settings.SERVER_BASE_URL}/payment/chapa/callback",
            'return_url': return_url or f"{settings.FRONTEND_URL}/payment/success",
            'customization': {
                'title': settings.SITE_NAME[:16],
                'description': f"Payment for order {customer.get('order_id') or reference}",
            },
        }
        logger.info("Initializing Chapa payment: %s", tx_ref)
        try:
            response = requests.post(f"{self.base_url}/transaction/initialize", json=payload,
                                     headers=self._headers(), timeout=self.timeout)
        except requests.RequestException as e:
            raise PaymentInitializationError(f"Chapa payment failed: {e}", self.name) from e
        if not response.ok:
            raise PaymentInitializationError(f"Chapa payment failed: {_error_message(response)}", self.name)

        body = response.json()
        checkout_url = (body.get('data') or {}).get('checkout_url')
        if body.get('status') != 'success' or not checkout_url:
            raise PaymentInitializationError(
                f"Chapa payment failed: {body.get('message') or 'no checkout url'}", self.name
            )
        return InitializeResult(checkout_url=checkout_url, reference=reference, reference_alias=alias)

    def verify_payment(self, reference, alias=None):
        lookup = alias or reference
        logger.info("Verifying Chapa payment: %s", lookup)
        try:
            response = requests.get(f"{self.base_url}/transaction/verify/{lookup}",
                                    headers=self._headers(), timeout=self.timeout)
        except requests.RequestException as e:
            raise PaymentVerificationError(f"Chapa verification failed: {e}", self.name) from e
        if not response.ok:
            raise PaymentVerificationError(f"Chapa verification failed: {_error_message(response)}", self.name)

        body = response.json()
        data = body.get('data') or {}
        if body.get('status') != 'success' or not data:
            return VerifyResult(status=FAILED, reference=lookup, raw=body)

        name = ' '.join(p for p in (data.get('first_name'), data.get('last_name')) if p)
        return VerifyResult(
            status=STATUS_MAP.get(str(data.get('status', '')).lower(), FAILED),
            amount=data.get('amount'),
            currency=data.get('currency'),
            reference=data.get('tx_ref') or lookup,
            original_reference=reference if alias else None,
            provider_transaction_id=data.get('reference'),
            customer_email=data.get('email'),
            customer_name=name or None,
            raw=body,
        )

    def process_payout(self, destination, amount, currency, note=None):
        bank_code, sep, account_number = (destination or '').partition(':')
        if not sep or not bank_code.strip() or not account_number.strip():
            raise InvalidDestination(f"Chapa payout destination must be bank_code:account_number, got {destination!r}",
                                     self.name)
        reference = mint_alias()
        payload = {
            'account_name': (note or settings.SITE_NAME)[:100],
            'account_number': account_number.strip(),
            'amount': str(amount),
            'currency': currency,
            'reference': reference,
            'bank_code': bank_code.strip(),
        }
        logger.info("Processing Chapa transfer: %s %s to bank %s", currency, amount, bank_code)
        try:
            response = requests.post(f"{self.base_url}/transfers", json=payload,
                                     headers=self._headers(), timeout=self.timeout)
        except requests.RequestException as e:
            raise PayoutError(f"Chapa transfer failed: {e}", self.name) from e
        if not response.ok:
            message = _error_message(response)
            lowered = message.lower()
            if 'insufficient' in lowered or 'balance' in lowered:
                raise InsufficientFunds(message, self.name)
            if 'account' in lowered or 'bank' in lowered:
                raise InvalidDestination(message, self.name)
            raise PayoutError(f"Chapa transfer failed: {message}", self.name)

        body = response.json()
        # the transfer reference is what payout webhooks report back
        return PayoutResult(payout_batch_id=reference, batch_status='PENDING', item_status='PENDING', raw=body)

    def verify_webhook_signature(self, raw_body, headers):
        """
        HMAC-SHA256 of the raw body with CHAPA_WEBHOOK_SECRET.
        Without a configured secret, non-strict deployments accept the webhook (sandbox only).
        """
        if not self.webhook_secret:
            if settings.PAYMENT_WEBHOOK_VERIFY_STRICT:
                logger.warning("Chapa webhook rejected: CHAPA_WEBHOOK_SECRET not configured")
                return False
            return True
        signature = header(headers, 'Chapa-Signature', 'x-chapa-signature')
        if not signature:
            return False
        if isinstance(raw_body, str):
            raw_body = raw_body.encode('utf-8')
        expected = hmac.new(self.webhook_secret.encode('utf-8'), raw_body, hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected, signature)

    def handle_webhook(self, payload, headers=None):
        event = str(payload.get('event') or payload.get('type') or '')
        status = str(payload.get('status') or '').upper() or None
        if event.startswith(('payout.', 'transfer.')):
            reference = payload.get('reference') or payload.get('tx_ref')
            return WebhookEvent(
                event_type=PAYOUT_ITEM,
                provider_event=event,
                payout_batch_id=reference,
                transaction_id=payload.get('chapa_reference') or payload.get('reference'),
                transaction_status=status,
                payload=payload,
            )
        if event.startswith('charge.'):
            return WebhookEvent(
                event_type=PAYMENT,
                provider_event=event,
                reference=payload.get('tx_ref'),
                transaction_status=status,
                payload=payload,
            )
        return WebhookEvent(event_type=UNKNOWN, provider_event=event, payload=payload)
