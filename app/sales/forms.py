from django import forms

from core.normalization import normalize_cin, normalize_client_name, parse_amount

from .confirmation import ConfirmationRequest
from .models import Client, ContractWriter


class AmountField(forms.CharField):
    """Monto escrito a mano: acepta separadores de miles y dígitos árabes."""

    def to_python(self, value):
        value = super().to_python(value)
        if value in self.empty_values:
            return None
        amount = parse_amount(value)
        if amount is None:
            raise forms.ValidationError("Monto inválido.")
        return amount


class ConfirmationForm(forms.Form):
    installment_start_date = forms.DateField(required=False)
    payment_amount = AmountField(required=False)
    company_fee = AmountField(required=False)
    contract_writer = forms.ModelChoiceField(queryset=ContractWriter.objects.all(), required=False)
    notes = forms.CharField(required=False, max_length=2000)

    def clean_company_fee(self):
        value = self.cleaned_data.get("company_fee")
        if value is not None and value < 0:
            raise forms.ValidationError("La comisión no puede ser negativa.")
        return value

    def to_request(self, user=None):
        data = self.cleaned_data
        writer = data.get("contract_writer")
        return ConfirmationRequest(
            installment_start_date=data.get("installment_start_date"),
            payment_amount=data.get("payment_amount"),
            company_fee=data.get("company_fee"),
            contract_writer_id=writer.pk if writer else None,
            notes=data.get("notes") or "",
            confirmed_by=user,
        )


class ClientForm(forms.ModelForm):
    class Meta:
        model = Client
        fields = ["name", "cin", "phone", "email", "address", "client_type", "notes"]

    def clean_cin(self):
        value = normalize_cin(self.cleaned_data.get("cin") or "")
        if not value:
            raise forms.ValidationError("El documento es obligatorio.")
        return value

    def clean_name(self):
        value = normalize_client_name(self.cleaned_data.get("name") or "")
        if not value:
            raise forms.ValidationError("El nombre es obligatorio.")
        return value
