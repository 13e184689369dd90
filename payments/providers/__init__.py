from .base import (
    CaptureFailed, InsufficientFunds, InvalidDestination, PaymentInitializationError, PaymentProvider,
    PaymentProviderError, PaymentVerificationError, PayoutError, UnsupportedProvider,
)
from .chapa import ChapaProvider
from .paypal import PayPalProvider

_registry = {
    ChapaProvider.name: ChapaProvider,
    PayPalProvider.name: PayPalProvider,
}


def register_provider(name, factory):
    """Registers a callable returning a PaymentProvider; replaces any existing one."""
    _registry[name.lower()] = factory


def get_provider(name) -> PaymentProvider:
    factory = _registry.get(str(name or '').lower())
    if factory is None:
        raise UnsupportedProvider(f"Unsupported payment provider: {name}", name)
    return factory()


def available_providers():
    return sorted(_registry)


__all__ = [
    'CaptureFailed', 'ChapaProvider', 'InsufficientFunds', 'InvalidDestination', 'PayPalProvider',
    'PaymentInitializationError', 'PaymentProvider', 'PaymentProviderError', 'PaymentVerificationError',
    'PayoutError', 'UnsupportedProvider', 'available_providers', 'get_provider', 'register_provider',
]
