# shop/forms.py
import re

from django import forms

from .models import Product, Variant


def _parse_vnd(raw: str) -> int:
    """
    Accepts '150000', '150.000', '150,000', '150.000 ₫', 'VND 150000' and returns an int.
    VND has no minor unit, so both '.' and ',' are treated as thousands separators.
    """
    s = (raw or "").strip()
    if not s:
        return 0
    s = re.sub(r"(?i)vnd|₫|đ", "", s).replace(" ", "")
    s = s.replace(".", "").replace(",", "")
    if not s.isdigit():
        raise forms.ValidationError("Invalid amount. Use something like 150.000.")
    return int(s)


class ProductAdminForm(forms.ModelForm):
    """
    Shows 'Price (VND)' as free text (150.000, 150,000 ₫, ...) and stores it in `price`.
    """
    price_vnd = forms.CharField(
        label="Price (VND)",
        required=False,
        help_text="E.g.: 150.000",
    )

    class Meta:
        model = Product
        fields = ["name", "slug", "description", "category", "image", "is_active", "price"]

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields["price_vnd"].initial = f"{int(self.instance.price or 0):,}".replace(",", ".")
        self.fields["price"].widget = forms.HiddenInput()
        self.fields["price"].required = False
        self.fields["slug"].required = False
        self.fields["slug"].help_text = "Leave empty to derive it from the name."

    def clean_price_vnd(self):
        return _parse_vnd(self.cleaned_data.get("price_vnd") or "")

    def clean(self):
        cleaned = super().clean()
        cleaned["price"] = cleaned.get("price_vnd", 0) or 0
        return cleaned

    def save(self, commit=True):
        instance = super().save(commit=False)
        instance.price = self.cleaned_data.get("price_vnd", 0) or 0
        if commit:
            instance.save()
            self.save_m2m()
        return instance


class VariantAdminForm(forms.ModelForm):
    class Meta:
        model = Variant
        fields = ["product", "name", "price", "duration", "stock"]

    def clean_price(self):
        price = self.cleaned_data.get("price")
        if price is None or price < 1:
            raise forms.ValidationError("Price must be greater than 0")
        return price


class AddAccountsForm(forms.Form):
    accounts = forms.CharField(
        widget=forms.Textarea,
        help_text='One account per line: "email:password"',
    )

    def clean_accounts(self):
        text = (self.cleaned_data.get("accounts") or "").strip()
        if not text:
            raise forms.ValidationError("No valid credentials provided")
        return text
