import uuid
from decimal import Decimal

from django.db import models
from django.utils import timezone

from core.normalization import normalize_cin, normalize_client_name, normalize_phone


class Client(models.Model):
    name = models.CharField("Nombre completo", max_length=200)
    cin = models.CharField("Documento de identidad", max_length=50, blank=True, db_index=True)
    phone = models.CharField("Teléfono", max_length=30, blank=True)
    email = models.EmailField("Email", blank=True)
    address = models.CharField("Domicilio", max_length=255, blank=True)

    class ClientType(models.TextChoices):
        PERSON = "person", "Persona"
        COMPANY = "company", "Empresa"

    client_type = models.CharField(max_length=10, choices=ClientType.choices, default=ClientType.PERSON)
    notes = models.TextField("Notas", blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return self.name

    def save(self, *args, **kwargs):
        self.name = normalize_client_name(self.name)
        self.cin = normalize_cin(self.cin)
        self.phone = normalize_phone(self.phone)
        super().save(*args, **kwargs)


class ContractWriter(models.Model):
    name = models.CharField("Nombre", max_length=200)

    class WriterType(models.TextChoices):
        NOTARY = "notary", "Notario"
        LAWYER = "lawyer", "Abogado"
        OTHER = "other", "Otro"

    writer_type = models.CharField("Tipo", max_length=10, choices=WriterType.choices, default=WriterType.NOTARY)
    place = models.CharField("Lugar", max_length=200, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return self.name


class Sale(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    client = models.ForeignKey(Client, on_delete=models.PROTECT, related_name="sales")
    land_piece = models.ForeignKey("inventory.LandPiece", on_delete=models.PROTECT, related_name="sales")
    batch = models.ForeignKey("inventory.LandBatch", on_delete=models.PROTECT, related_name="sales")
    payment_offer = models.ForeignKey(
        "inventory.PaymentOffer",
        on_delete=models.SET_NULL,
        related_name="sales",
        blank=True,
        null=True,
    )
    # Ventas creadas en una misma operación de varias parcelas
    transaction_group = models.UUIDField("Grupo de transacción", default=uuid.uuid4, db_index=True)

    sale_price = models.DecimalField("Precio de venta", max_digits=14, decimal_places=2)
    deposit_amount = models.DecimalField("Arras", max_digits=14, decimal_places=2, default=0)

    class PaymentMethod(models.TextChoices):
        FULL = "full", "Contado"
        INSTALLMENT = "installment", "A plazos"
        PROMISE = "promise", "Promesa de venta"

    payment_method = models.CharField(
        "Forma de pago",
        max_length=12,
        choices=PaymentMethod.choices,
        blank=True,
        null=True,
    )
    partial_payment_amount = models.DecimalField("Pagos parciales", max_digits=14, decimal_places=2, default=0)
    remaining_payment_amount = models.DecimalField(
        "Saldo pendiente", max_digits=14, decimal_places=2, blank=True, null=True
    )
    company_fee_amount = models.DecimalField("Comisión", max_digits=14, decimal_places=2, blank=True, null=True)

    class State(models.TextChoices):
        PENDING = "pending", "Pendiente"
        COMPLETED = "completed", "Completada"
        CANCELLED = "cancelled", "Cancelada"

    status = models.CharField(max_length=10, choices=State.choices, default=State.PENDING, db_index=True)
    deadline_date = models.DateField("Fecha límite", blank=True, null=True)
    appointment_date = models.DateTimeField("Cita de firma", blank=True, null=True)
    notes = models.TextField("Notas", blank=True)

    contract_writer = models.ForeignKey(
        ContractWriter,
        on_delete=models.SET_NULL,
        related_name="sales",
        blank=True,
        null=True,
    )
    sold_by = models.ForeignKey(
        "users.User",
        on_delete=models.SET_NULL,
        related_name="sales_sold",
        blank=True,
        null=True,
    )
    confirmed_by = models.ForeignKey(
        "users.User",
        on_delete=models.SET_NULL,
        related_name="sales_confirmed",
        blank=True,
        null=True,
    )
    confirmed_at = models.DateTimeField("Fecha de confirmación", blank=True, null=True)
    confirmation_amount = models.DecimalField(
        "Monto cobrado al confirmar", max_digits=14, decimal_places=2, blank=True, null=True
    )
    installment_start_date = models.DateField("Inicio de cuotas", blank=True, null=True)
    offer_snapshot = models.JSONField("Oferta aplicada", default=dict, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(sale_price__gte=0),
                name="sale_price_not_negative",
            ),
            models.CheckConstraint(
                condition=models.Q(deposit_amount__gte=0),
                name="sale_deposit_not_negative",
            ),
            models.UniqueConstraint(
                fields=["land_piece"],
                condition=models.Q(status="completed"),
                name="unique_completed_sale_per_piece",
            ),
        ]

    def __str__(self):
        return f"Venta {self.id}"

    @property
    def is_partially_paid(self):
        return (
            self.status == self.State.PENDING
            and self.payment_method == self.PaymentMethod.PROMISE
            and (self.partial_payment_amount or 0) > 0
        )

    @property
    def outstanding_amount(self):
        """Lo que falta cobrar: antes de confirmar, o en cuotas si ya se confirmó."""
        if self.status == self.State.CANCELLED:
            return Decimal("0")
        if self.status == self.State.COMPLETED:
            return sum(
                (item.amount_due - item.amount_paid for item in self.installments.all()),
                Decimal("0"),
            )
        if self.remaining_payment_amount is not None:
            return self.remaining_payment_amount
        due = self.sale_price - (self.deposit_amount or 0) - (self.partial_payment_amount or 0)
        return max(due, Decimal("0"))


class InstallmentPayment(models.Model):
    sale = models.ForeignKey(Sale, on_delete=models.CASCADE, related_name="installments")
    installment_number = models.PositiveIntegerField("Número de cuota")
    amount_due = models.DecimalField("Valor de la cuota", max_digits=14, decimal_places=2)
    amount_paid = models.DecimalField("Pagado", max_digits=14, decimal_places=2, default=0)
    due_date = models.DateField("Vencimiento")
    paid_date = models.DateField("Fecha de pago", blank=True, null=True)

    class Status(models.TextChoices):
        PENDING = "pending", "Pendiente"
        PAID = "paid", "Pagada"

    status = models.CharField(max_length=10, choices=Status.choices, default=Status.PENDING)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["sale", "installment_number"]
        constraints = [
            models.UniqueConstraint(
                fields=["sale", "installment_number"],
                name="unique_installment_number_per_sale",
            ),
            models.CheckConstraint(
                condition=models.Q(amount_paid__lte=models.F("amount_due")),
                name="installment_paid_not_above_due",
            ),
        ]

    def __str__(self):
        return f"Cuota {self.installment_number} de {self.sale_id}"

    @property
    def pending_amount(self):
        return self.amount_due - self.amount_paid

    def display_status(self, today=None):
        today = today or timezone.localdate()
        if self.status == self.Status.PENDING and self.due_date < today:
            return "overdue"
        return self.status


class SaleLog(models.Model):
    class Action(models.TextChoices):
        CREATED = "CREATED", "Creación"
        PARTIAL_PAYMENT = "PARTIAL_PAYMENT", "Pago parcial"
        CONFIRMED = "CONFIRMED", "Confirmada"
        CANCELLED = "CANCELLED", "Cancelada"
        APPOINTMENT = "APPOINTMENT", "Cita de firma"
        INSTALLMENT_PAID = "INSTALLMENT_PAID", "Pago de cuota"

    sale = models.ForeignKey(Sale, on_delete=models.CASCADE, related_name="logs")
    action = models.CharField(max_length=20, choices=Action.choices)
    message = models.CharField(max_length=255, blank=True)
    metadata = models.JSONField(default=dict, blank=True)
    created_by = models.ForeignKey(
        "users.User",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="sale_logs",
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return f"{self.get_action_display()} · {self.sale_id}"
