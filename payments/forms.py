from decimal import Decimal

from django import forms

from .models import Withdrawal
from .providers import available_providers


class ProviderField(forms.ChoiceField):
    def __init__(self, **kwargs):
        super().__init__(choices=[], **kwargs)

    def valid_value(self, value):
        # providers can be registered at runtime
        return str(value).lower() in available_providers()

    def to_python(self, value):
        return super().to_python(value).lower()


class InitializePaymentForm(forms.Form):
    provider = ProviderField()
    amount = forms.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal('0.01'))
    currency = forms.RegexField(regex=r'^[A-Za-z]{3}$', required=False)
    txRef = forms.CharField(max_length=128)
    orderId = forms.UUIDField(required=False)
    returnUrl = forms.URLField(required=False, max_length=500)
    callbackUrl = forms.URLField(required=False, max_length=500)
    email = forms.EmailField(required=False)
    firstName = forms.CharField(required=False, max_length=100)
    lastName = forms.CharField(required=False, max_length=100)

    def clean_currency(self):
        return (self.cleaned_data.get('currency') or 'USD').upper()


class VerifyPaymentForm(forms.Form):
    provider = ProviderField()
    txRef = forms.CharField(max_length=128)


class WithdrawalRequestForm(forms.Form):
    amount = forms.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal('0.01'))
    payoutAccount = forms.CharField(required=False, max_length=255)


class WithdrawalStatusForm(forms.Form):
    status = forms.ChoiceField(choices=Withdrawal.Status.choices)
    reason = forms.CharField(required=False, max_length=500)


class DispatchPayoutForm(forms.Form):
    provider = ProviderField(required=False)
