import uuid

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("inventory", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Client",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=200, verbose_name="Nombre completo")),
                ("cin", models.CharField(blank=True, db_index=True, max_length=50, verbose_name="Documento de identidad")),
                ("phone", models.CharField(blank=True, max_length=30, verbose_name="Teléfono")),
                ("email", models.EmailField(blank=True, max_length=254, verbose_name="Email")),
                ("address", models.CharField(blank=True, max_length=255, verbose_name="Domicilio")),
                ("client_type", models.CharField(choices=[("person", "Persona"), ("company", "Empresa")], default="person", max_length=10)),
                ("notes", models.TextField(blank=True, verbose_name="Notas")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "ordering": ["name"],
            },
        ),
        migrations.CreateModel(
            name="ContractWriter",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=200, verbose_name="Nombre")),
                ("writer_type", models.CharField(choices=[("notary", "Notario"), ("lawyer", "Abogado"), ("other", "Otro")], default="notary", max_length=10, verbose_name="Tipo")),
                ("place", models.CharField(blank=True, max_length=200, verbose_name="Lugar")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "ordering": ["name"],
            },
        ),
        migrations.CreateModel(
            name="Sale",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("transaction_group", models.UUIDField(db_index=True, default=uuid.uuid4, verbose_name="Grupo de transacción")),
                ("sale_price", models.DecimalField(decimal_places=2, max_digits=14, verbose_name="Precio de venta")),
                ("deposit_amount", models.DecimalField(decimal_places=2, default=0, max_digits=14, verbose_name="Arras")),
                ("payment_method", models.CharField(blank=True, choices=[("full", "Contado"), ("installment", "A plazos"), ("promise", "Promesa de venta")], max_length=12, null=True, verbose_name="Forma de pago")),
                ("partial_payment_amount", models.DecimalField(decimal_places=2, default=0, max_digits=14, verbose_name="Pagos parciales")),
                ("remaining_payment_amount", models.DecimalField(blank=True, decimal_places=2, max_digits=14, null=True, verbose_name="Saldo pendiente")),
                ("company_fee_amount", models.DecimalField(blank=True, decimal_places=2, max_digits=14, null=True, verbose_name="Comisión")),
                ("status", models.CharField(choices=[("pending", "Pendiente"), ("completed", "Completada"), ("cancelled", "Cancelada")], db_index=True, default="pending", max_length=10)),
                ("deadline_date", models.DateField(blank=True, null=True, verbose_name="Fecha límite")),
                ("appointment_date", models.DateTimeField(blank=True, null=True, verbose_name="Cita de firma")),
                ("notes", models.TextField(blank=True, verbose_name="Notas")),
                ("confirmed_at", models.DateTimeField(blank=True, null=True, verbose_name="Fecha de confirmación")),
                ("confirmation_amount", models.DecimalField(blank=True, decimal_places=2, max_digits=14, null=True, verbose_name="Monto cobrado al confirmar")),
                ("installment_start_date", models.DateField(blank=True, null=True, verbose_name="Inicio de cuotas")),
                ("offer_snapshot", models.JSONField(blank=True, default=dict, verbose_name="Oferta aplicada")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("batch", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="sales", to="inventory.landbatch")),
                ("client", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="sales", to="sales.client")),
                ("confirmed_by", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="sales_confirmed", to=settings.AUTH_USER_MODEL)),
                ("contract_writer", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="sales", to="sales.contractwriter")),
                ("land_piece", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="sales", to="inventory.landpiece")),
                ("payment_offer", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="sales", to="inventory.paymentoffer")),
                ("sold_by", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="sales_sold", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "ordering": ["-created_at"],
                "constraints": [
                    models.CheckConstraint(condition=models.Q(("sale_price__gte", 0)), name="sale_price_not_negative"),
                    models.CheckConstraint(condition=models.Q(("deposit_amount__gte", 0)), name="sale_deposit_not_negative"),
                    models.UniqueConstraint(condition=models.Q(("status", "completed")), fields=("land_piece",), name="unique_completed_sale_per_piece"),
                ],
            },
        ),
        migrations.CreateModel(
            name="InstallmentPayment",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("installment_number", models.PositiveIntegerField(verbose_name="Número de cuota")),
                ("amount_due", models.DecimalField(decimal_places=2, max_digits=14, verbose_name="Valor de la cuota")),
                ("amount_paid", models.DecimalField(decimal_places=2, default=0, max_digits=14, verbose_name="Pagado")),
                ("due_date", models.DateField(verbose_name="Vencimiento")),
                ("paid_date", models.DateField(blank=True, null=True, verbose_name="Fecha de pago")),
                ("status", models.CharField(choices=[("pending", "Pendiente"), ("paid", "Pagada")], default="pending", max_length=10)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("sale", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="installments", to="sales.sale")),
            ],
            options={
                "ordering": ["sale", "installment_number"],
                "constraints": [
                    models.UniqueConstraint(fields=("sale", "installment_number"), name="unique_installment_number_per_sale"),
                    models.CheckConstraint(condition=models.Q(("amount_paid__lte", models.F("amount_due"))), name="installment_paid_not_above_due"),
                ],
            },
        ),
        migrations.CreateModel(
            name="SaleLog",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("action", models.CharField(choices=[("CREATED", "Creación"), ("PARTIAL_PAYMENT", "Pago parcial"), ("CONFIRMED", "Confirmada"), ("CANCELLED", "Cancelada"), ("APPOINTMENT", "Cita de firma"), ("INSTALLMENT_PAID", "Pago de cuota")], max_length=20)),
                ("message", models.CharField(blank=True, max_length=255)),
                ("metadata", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("created_by", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="sale_logs", to=settings.AUTH_USER_MODEL)),
                ("sale", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="logs", to="sales.sale")),
            ],
            options={
                "ordering": ["-created_at"],
            },
        ),
    ]
