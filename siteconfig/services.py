import logging
from decimal import Decimal, InvalidOperation

from django.conf import settings
from django.db import DatabaseError

from .models import Setting

logger = logging.getLogger('orders')

DEFAULTS = {
    Setting.Key.PLATFORM: {
        'platformCommissionRate': 10,
    },
    Setting.Key.PAYMENT: {
        'minWithdrawalAmount': 10,
        'maxWithdrawalAmount': 0,  # 0 = unlimited
        'payoutCurrency': 'USD',
    },
    Setting.Key.ORDER: {
        'orderExpirationHours': 24,
        'autoCancelPendingOrdersDays': 7,
    },
}


def get_setting(key, default=None):
    row = Setting.objects.filter(key=key).first()
    if row is None:
        return default
    return row.value


def set_setting(key, value, category=''):
    row, _ = Setting.objects.update_or_create(
        key=key,
        defaults={'value': value, 'category': category or key},
    )
    return row


def ensure_default_settings():
    """Creates missing default rows; existing rows are left untouched. Returns the created keys."""
    created = []
    for key, value in DEFAULTS.items():
        _, was_created = Setting.objects.get_or_create(
            key=key, defaults={'value': dict(value), 'category': key}
        )
        if was_created:
            created.append(str(key))
    return created


def _merged(key, fallbacks):
    stored = get_setting(key) or {}
    return {**fallbacks, **{k: v for k, v in stored.items() if v is not None}}


def _to_decimal(value, default):
    try:
        return Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        return Decimal(str(default))


def get_platform_commission_rate() -> Decimal:
    """
    Platform commission as a fraction (10 -> Decimal('0.1')).
    Stored values are percentages. Never raises: on store errors the configured fallback is used.
    """
    fallback = _to_decimal(settings.PLATFORM_COMMISSION_RATE, 10)
    try:
        value = (get_setting(Setting.Key.PLATFORM) or {}).get('platformCommissionRate')
    except DatabaseError:
        logger.exception("Commission rate lookup failed, using fallback %s%%", fallback)
        value = None
    percent = fallback if value is None else _to_decimal(value, fallback)
    if percent < 0 or percent > 100:
        logger.warning("Commission rate %s%% out of range, using fallback %s%%", percent, fallback)
        percent = fallback
    return percent / Decimal('100')


def get_order_settings_values() -> dict:
    values = _merged(Setting.Key.ORDER, {
        'orderExpirationHours': settings.ORDER_EXPIRATION_HOURS,
        'autoCancelPendingOrdersDays': settings.AUTO_CANCEL_PENDING_ORDERS_DAYS,
    })
    return {
        'orderExpirationHours': int(values['orderExpirationHours']),
        'autoCancelPendingOrdersDays': int(values['autoCancelPendingOrdersDays']),
    }


def get_payment_settings_values() -> dict:
    values = _merged(Setting.Key.PAYMENT, {
        'minWithdrawalAmount': settings.MIN_WITHDRAWAL_AMOUNT,
        'maxWithdrawalAmount': 0,
        'payoutCurrency': DEFAULTS[Setting.Key.PAYMENT]['payoutCurrency'],
    })
    return {
        'minWithdrawalAmount': _to_decimal(values['minWithdrawalAmount'], settings.MIN_WITHDRAWAL_AMOUNT),
        'maxWithdrawalAmount': _to_decimal(values['maxWithdrawalAmount'], 0),
        'payoutCurrency': str(values['payoutCurrency']).upper(),
    }
