from decimal import Decimal
from io import StringIO

import pytest
from django.core.management import call_command
from django.test import override_settings

from siteconfig.models import Setting
from siteconfig.services import (
    ensure_default_settings, get_order_settings_values, get_payment_settings_values, get_platform_commission_rate,
    set_setting,
)

pytestmark = pytest.mark.django_db


def test_commission_rate_is_a_fraction():
    set_setting('platform', {'platformCommissionRate': 15}, 'platform')
    assert get_platform_commission_rate() == Decimal('0.15')


@override_settings(PLATFORM_COMMISSION_RATE='12')
def test_commission_rate_falls_back_to_settings():
    assert get_platform_commission_rate() == Decimal('0.12')

    set_setting('platform', {'platformCommissionRate': 140}, 'platform')
    assert get_platform_commission_rate() == Decimal('0.12')

    set_setting('platform', {'platformCommissionRate': 'abc'}, 'platform')
    assert get_platform_commission_rate() == Decimal('0.12')


def test_order_and_payment_values_merge_defaults():
    set_setting('order', {'orderExpirationHours': '48'}, 'order')
    set_setting('payment', {'payoutCurrency': 'etb', 'minWithdrawalAmount': None}, 'payment')

    assert get_order_settings_values() == {'orderExpirationHours': 48, 'autoCancelPendingOrdersDays': 7}
    payment = get_payment_settings_values()
    assert payment['payoutCurrency'] == 'ETB'
    assert payment['minWithdrawalAmount'] == Decimal('10')


def test_ensure_defaults_keeps_existing_rows():
    set_setting('platform', {'platformCommissionRate': 25}, 'platform')

    created = ensure_default_settings()

    assert sorted(created) == ['order', 'payment']
    assert Setting.objects.get(key='platform').value == {'platformCommissionRate': 25}
    assert ensure_default_settings() == []


def test_seed_settings_command():
    out = StringIO()
    call_command('seed_settings', stdout=out)
    assert 'Created settings' in out.getvalue()
    assert Setting.objects.count() == 3
