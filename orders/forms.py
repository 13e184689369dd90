from django import forms


class ShippingAddressForm(forms.Form):
    fullName = forms.CharField(max_length=200)
    phone = forms.CharField(max_length=32)
    address = forms.CharField(max_length=500)
    city = forms.CharField(max_length=100)
    state = forms.CharField(max_length=100)
    zipCode = forms.CharField(max_length=20)
    country = forms.CharField(max_length=100, required=False)


class CreateOrderForm(forms.Form):
    PAYMENT_METHODS = [('chapa', 'Chapa'), ('paypal', 'PayPal'), ('card', 'Card')]

    items = forms.JSONField()
    shippingAddress = forms.JSONField()
    paymentMethod = forms.ChoiceField(choices=PAYMENT_METHODS)
    buyerEmail = forms.EmailField(required=False)

    def clean_items(self):
        items = self.cleaned_data['items']
        if not isinstance(items, list) or not items:
            raise forms.ValidationError("Provide a non-empty list of items.")
        for item in items:
            if not isinstance(item, dict) or not item.get('artworkId'):
                raise forms.ValidationError("Every item needs an artworkId.")
            quantity = item.get('quantity', 1)
            if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
                raise forms.ValidationError("Quantity must be a positive integer.")
        return items

    def clean_shippingAddress(self):
        address = self.cleaned_data['shippingAddress']
        if not isinstance(address, dict):
            raise forms.ValidationError("Shipping address must be an object.")
        nested = ShippingAddressForm(address)
        if not nested.is_valid():
            raise forms.ValidationError(
                [f"{field}: {' '.join(errors)}" for field, errors in nested.errors.items()]
            )
        return {k: v for k, v in nested.cleaned_data.items() if v}


class CompleteOrderForm(forms.Form):
    txRef = forms.CharField(max_length=128)
    paymentProvider = forms.CharField(max_length=32)
