from django.db import models

from .pricing import (
    ADVANCE_FIXED,
    ADVANCE_PERCENT,
    CALC_MONTHLY_AMOUNT,
    CALC_MONTHS,
    OfferTerms,
    calculate_piece_price,
)


class LandBatch(models.Model):
    """
    Lote de terreno comprado de una vez y dividido en parcelas.
    """
    name = models.CharField("Nombre del lote", max_length=255)
    location = models.CharField("Ubicación", max_length=255, blank=True)
    total_surface = models.DecimalField("Superficie total (m²)", max_digits=15, decimal_places=2, default=0)
    price_per_m2_cash = models.DecimalField(
        "Precio por m² (contado)",
        max_digits=14,
        decimal_places=2,
        blank=True,
        null=True,
    )
    date_acquired = models.DateField("Fecha de compra", blank=True, null=True)
    notes = models.TextField("Notas", blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return self.name


class LandPiece(models.Model):
    batch = models.ForeignKey(LandBatch, on_delete=models.CASCADE, related_name="pieces")
    piece_number = models.CharField("Número de parcela", max_length=50)
    surface_m2 = models.DecimalField("Superficie (m²)", max_digits=12, decimal_places=2)
    direct_price = models.DecimalField(
        "Precio directo",
        max_digits=14,
        decimal_places=2,
        blank=True,
        null=True,
        help_text="Si se define, reemplaza el precio por m² del lote.",
    )

    class Status(models.TextChoices):
        AVAILABLE = 'Available', 'Disponible'
        RESERVED = 'Reserved', 'Reservada'
        SOLD = 'Sold', 'Vendida'

    status = models.CharField(max_length=10, choices=Status.choices, default=Status.AVAILABLE, db_index=True)
    notes = models.TextField("Notas", blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["batch__name", "piece_number"]
        constraints = [
            models.UniqueConstraint(
                fields=["batch", "piece_number"],
                name="unique_piece_number_per_batch",
            ),
            models.CheckConstraint(
                condition=models.Q(surface_m2__gt=0),
                name="piece_surface_positive",
            ),
        ]

    def __str__(self):
        return f"#{self.piece_number} ({self.batch.name})"

    def price(self, deposit=0, installment_price_per_m2=None):
        return calculate_piece_price(
            self.surface_m2,
            batch_price_per_m2=self.batch.price_per_m2_cash,
            direct_price=self.direct_price,
            deposit=deposit,
            installment_price_per_m2=installment_price_per_m2,
        )


class PaymentOffer(models.Model):
    """
    Plantilla de precio a plazos: precio por m², anticipo y plan mensual.
    Pertenece a un lote o, en la variante específica, a una sola parcela.
    """
    batch = models.ForeignKey(
        LandBatch,
        on_delete=models.CASCADE,
        related_name="payment_offers",
        blank=True,
        null=True,
    )
    piece = models.ForeignKey(
        LandPiece,
        on_delete=models.CASCADE,
        related_name="payment_offers",
        blank=True,
        null=True,
    )
    name = models.CharField("Nombre de la oferta", max_length=255, blank=True)
    price_per_m2_installment = models.DecimalField("Precio por m² (plazos)", max_digits=14, decimal_places=2)

    class AdvanceMode(models.TextChoices):
        FIXED = ADVANCE_FIXED, 'Monto fijo'
        PERCENT = ADVANCE_PERCENT, 'Porcentaje'

    class CalcMode(models.TextChoices):
        MONTHLY_AMOUNT = CALC_MONTHLY_AMOUNT, 'Cuota mensual fija'
        MONTHS = CALC_MONTHS, 'Número de meses'

    advance_mode = models.CharField(max_length=10, choices=AdvanceMode.choices, default=AdvanceMode.FIXED)
    advance_value = models.DecimalField("Anticipo", max_digits=14, decimal_places=2, default=0)
    calc_mode = models.CharField(max_length=15, choices=CalcMode.choices, default=CalcMode.MONTHS)
    monthly_amount = models.DecimalField("Cuota mensual", max_digits=14, decimal_places=2, blank=True, null=True)
    months = models.PositiveIntegerField("Meses", blank=True, null=True)
    company_fee_percentage = models.DecimalField("Comisión (%)", max_digits=5, decimal_places=2, default=0)
    is_default = models.BooleanField("Oferta por defecto", default=False)
    notes = models.TextField("Notas", blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]
        constraints = [
            models.CheckConstraint(
                condition=(
                    models.Q(batch__isnull=False, piece__isnull=True)
                    | models.Q(batch__isnull=True, piece__isnull=False)
                ),
                name="payment_offer_batch_xor_piece",
            ),
        ]

    def __str__(self):
        return self.name or f"Oferta {self.pk}"

    def as_terms(self) -> OfferTerms:
        return OfferTerms(
            price_per_m2_installment=self.price_per_m2_installment,
            advance_mode=self.advance_mode,
            advance_value=self.advance_value,
            calc_mode=self.calc_mode,
            monthly_amount=self.monthly_amount,
            months=self.months,
            offer_id=self.pk,
            name=self.name,
        )
