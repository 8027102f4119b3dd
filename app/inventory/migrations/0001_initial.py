import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="LandBatch",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=255, verbose_name="Nombre del lote")),
                ("location", models.CharField(blank=True, max_length=255, verbose_name="Ubicación")),
                ("total_surface", models.DecimalField(decimal_places=2, default=0, max_digits=15, verbose_name="Superficie total (m²)")),
                ("price_per_m2_cash", models.DecimalField(blank=True, decimal_places=2, max_digits=14, null=True, verbose_name="Precio por m² (contado)")),
                ("date_acquired", models.DateField(blank=True, null=True, verbose_name="Fecha de compra")),
                ("notes", models.TextField(blank=True, verbose_name="Notas")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "ordering": ["name"],
            },
        ),
        migrations.CreateModel(
            name="LandPiece",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("piece_number", models.CharField(max_length=50, verbose_name="Número de parcela")),
                ("surface_m2", models.DecimalField(decimal_places=2, max_digits=12, verbose_name="Superficie (m²)")),
                ("direct_price", models.DecimalField(blank=True, decimal_places=2, help_text="Si se define, reemplaza el precio por m² del lote.", max_digits=14, null=True, verbose_name="Precio directo")),
                ("status", models.CharField(choices=[("Available", "Disponible"), ("Reserved", "Reservada"), ("Sold", "Vendida")], db_index=True, default="Available", max_length=10)),
                ("notes", models.TextField(blank=True, verbose_name="Notas")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("batch", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="pieces", to="inventory.landbatch")),
            ],
            options={
                "ordering": ["batch__name", "piece_number"],
                "constraints": [
                    models.UniqueConstraint(fields=("batch", "piece_number"), name="unique_piece_number_per_batch"),
                    models.CheckConstraint(condition=models.Q(("surface_m2__gt", 0)), name="piece_surface_positive"),
                ],
            },
        ),
        migrations.CreateModel(
            name="PaymentOffer",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(blank=True, max_length=255, verbose_name="Nombre de la oferta")),
                ("price_per_m2_installment", models.DecimalField(decimal_places=2, max_digits=14, verbose_name="Precio por m² (plazos)")),
                ("advance_mode", models.CharField(choices=[("fixed", "Monto fijo"), ("percent", "Porcentaje")], default="fixed", max_length=10)),
                ("advance_value", models.DecimalField(decimal_places=2, default=0, max_digits=14, verbose_name="Anticipo")),
                ("calc_mode", models.CharField(choices=[("monthlyAmount", "Cuota mensual fija"), ("months", "Número de meses")], default="months", max_length=15)),
                ("monthly_amount", models.DecimalField(blank=True, decimal_places=2, max_digits=14, null=True, verbose_name="Cuota mensual")),
                ("months", models.PositiveIntegerField(blank=True, null=True, verbose_name="Meses")),
                ("company_fee_percentage", models.DecimalField(decimal_places=2, default=0, max_digits=5, verbose_name="Comisión (%)")),
                ("is_default", models.BooleanField(default=False, verbose_name="Oferta por defecto")),
                ("notes", models.TextField(blank=True, verbose_name="Notas")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("batch", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.CASCADE, related_name="payment_offers", to="inventory.landbatch")),
                ("piece", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.CASCADE, related_name="payment_offers", to="inventory.landpiece")),
            ],
            options={
                "ordering": ["name"],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(
                            models.Q(("batch__isnull", False), ("piece__isnull", True)),
                            models.Q(("batch__isnull", True), ("piece__isnull", False)),
                            _connector="OR",
                        ),
                        name="payment_offer_batch_xor_piece",
                    ),
                ],
            },
        ),
    ]
