from django.contrib import admin

from .models import LandBatch, LandPiece, PaymentOffer


class LandPieceInline(admin.TabularInline):
    model = LandPiece
    extra = 0
    fields = ("piece_number", "surface_m2", "direct_price", "status")


class PaymentOfferInline(admin.TabularInline):
    model = PaymentOffer
    fk_name = "batch"
    extra = 0
    fields = ("name", "price_per_m2_installment", "advance_mode", "advance_value", "calc_mode", "monthly_amount", "months", "is_default")


@admin.register(LandBatch)
class LandBatchAdmin(admin.ModelAdmin):
    list_display = ("name", "location", "total_surface", "price_per_m2_cash", "date_acquired")
    search_fields = ("name", "location")
    inlines = [LandPieceInline, PaymentOfferInline]


@admin.register(LandPiece)
class LandPieceAdmin(admin.ModelAdmin):
    list_display = ("piece_number", "batch", "surface_m2", "direct_price", "status")
    list_filter = ("status", "batch")
    search_fields = ("piece_number", "batch__name")


@admin.register(PaymentOffer)
class PaymentOfferAdmin(admin.ModelAdmin):
    list_display = ("name", "batch", "piece", "price_per_m2_installment", "advance_mode", "calc_mode", "months", "is_default")
    list_filter = ("advance_mode", "calc_mode", "is_default", "batch")
    search_fields = ("name", "batch__name", "piece__piece_number")
