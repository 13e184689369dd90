from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional


class PaymentProviderError(Exception):
    def __init__(self, message, provider=None):
        super().__init__(message)
        self.provider = provider


class PaymentInitializationError(PaymentProviderError):
    pass


class PaymentVerificationError(PaymentProviderError):
    pass


class CaptureFailed(PaymentVerificationError):
    pass


class PayoutError(PaymentProviderError):
    code = 'PAYOUT_ERROR'


class InsufficientFunds(PayoutError):
    code = 'INSUFFICIENT_FUNDS'


class InvalidDestination(PayoutError):
    code = 'INVALID_DESTINATION'


class UnsupportedProvider(PaymentProviderError):
    pass


# normalized verification statuses
SUCCESS = 'success'
PENDING = 'pending'
FAILED = 'failed'

# normalized webhook event types
PAYOUT_BATCH = 'PAYOUT_BATCH'
PAYOUT_ITEM = 'PAYOUT_ITEM'
PAYMENT = 'PAYMENT'
UNKNOWN = 'UNKNOWN'


@dataclass
class InitializeResult:
    checkout_url: str
    reference: str
    # set when the provider could not take our reference and we minted another one
    reference_alias: Optional[str] = None
    provider_order_id: Optional[str] = None


@dataclass
class VerifyResult:
    status: str
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    reference: Optional[str] = None
    original_reference: Optional[str] = None
    provider_transaction_id: Optional[str] = None
    customer_email: Optional[str] = None
    customer_name: Optional[str] = None
    raw: dict = field(default_factory=dict)

    @property
    def is_success(self):
        return self.status == SUCCESS


@dataclass
class PayoutResult:
    payout_batch_id: str
    batch_status: Optional[str] = None
    item_status: Optional[str] = None
    raw: dict = field(default_factory=dict)


@dataclass
class WebhookEvent:
    event_type: str
    provider_event: str = ''
    payout_batch_id: Optional[str] = None
    transaction_id: Optional[str] = None
    transaction_status: Optional[str] = None
    batch_status: Optional[str] = None
    reference: Optional[str] = None
    payload: dict = field(default_factory=dict)


class PaymentProvider(ABC):
    name = ''

    @abstractmethod
    def initialize_payment(self, amount, currency, reference, return_url, cancel_url=None,
                           customer=None) -> InitializeResult:
        ...

    @abstractmethod
    def verify_payment(self, reference, alias=None) -> VerifyResult:
        ...

    @abstractmethod
    def process_payout(self, destination, amount, currency, note=None) -> PayoutResult:
        ...

    @abstractmethod
    def verify_webhook_signature(self, raw_body: bytes, headers) -> bool:
        ...

    @abstractmethod
    def handle_webhook(self, payload: dict, headers=None) -> WebhookEvent:
        ...

    # shared validation for initialize_payment
    def _check_amount(self, amount, currency):
        try:
            amount = Decimal(str(amount))
        except ArithmeticError:
            raise PaymentInitializationError(f"Invalid amount: {amount}", self.name)
        if not amount.is_finite():
            raise PaymentInitializationError(f"Invalid amount: {amount}", self.name)
        if amount <= 0:
            raise PaymentInitializationError("Amount must be greater than zero", self.name)
        if not isinstance(currency, str) or len(currency) != 3 or not currency.isalpha():
            raise PaymentInitializationError(f"Invalid currency code: {currency}", self.name)
        return amount, currency.upper()


def header(headers, *names):
    """Case-insensitive header lookup over a plain dict or Django's request.headers."""
    if not headers:
        return None
    lowered = {str(k).lower(): v for k, v in dict(headers).items()}
    for name in names:
        value = lowered.get(name.lower())
        if value:
            return value
    return None
