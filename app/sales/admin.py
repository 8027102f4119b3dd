from django.contrib import admin

from .forms import ClientForm
from .models import Client, ContractWriter, InstallmentPayment, Sale, SaleLog


@admin.register(Client)
class ClientAdmin(admin.ModelAdmin):
    form = ClientForm
    list_display = ("name", "cin", "phone", "email", "client_type")
    list_filter = ("client_type",)
    search_fields = ("name", "cin", "phone", "email")


@admin.register(ContractWriter)
class ContractWriterAdmin(admin.ModelAdmin):
    list_display = ("name", "writer_type", "place")
    list_filter = ("writer_type",)
    search_fields = ("name", "place")


class InstallmentPaymentInline(admin.TabularInline):
    model = InstallmentPayment
    extra = 0
    ordering = ("installment_number",)
    readonly_fields = ("installment_number", "amount_due", "due_date")


class SaleLogInline(admin.TabularInline):
    model = SaleLog
    extra = 0
    can_delete = False
    readonly_fields = ("action", "message", "metadata", "created_by", "created_at")


@admin.register(Sale)
class SaleAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "client",
        "land_piece",
        "payment_method",
        "status",
        "sale_price",
        "deposit_amount",
        "partial_payment_amount",
        "created_at",
    )
    list_filter = ("status", "payment_method", "batch")
    search_fields = ("id", "client__name", "client__cin", "land_piece__piece_number")
    ordering = ("-created_at",)
    readonly_fields = ("transaction_group", "confirmed_at", "confirmation_amount", "offer_snapshot")
    inlines = [InstallmentPaymentInline, SaleLogInline]


@admin.register(InstallmentPayment)
class InstallmentPaymentAdmin(admin.ModelAdmin):
    list_display = ("sale", "installment_number", "amount_due", "amount_paid", "due_date", "status")
    list_filter = ("status",)
    search_fields = ("sale__id", "sale__client__name")


@admin.register(SaleLog)
class SaleLogAdmin(admin.ModelAdmin):
    list_display = ("sale", "action", "message", "created_by", "created_at")
    list_filter = ("action",)
    search_fields = ("sale__id", "message")
