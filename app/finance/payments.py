import logging

from django.db import transaction
from django.utils import timezone

from core.db import persistence_errors
from core.exceptions import ConcurrencyConflict, NotFound, ValidationError
from core.money import quantize_money, to_decimal
from sales.models import InstallmentPayment, SaleLog

logger = logging.getLogger(__name__)


def record_installment_payment(installment_id, amount, paid_date=None, user=None):
    """
    Abona ``amount`` a una cuota. El pagado solo crece y nunca supera el
    valor de la cuota; al cubrirla por completo pasa a pagada.
    """
    amount = quantize_money(to_decimal(amount))
    if amount <= 0:
        raise ValidationError("El monto del pago debe ser mayor que cero.")
    paid_date = paid_date or timezone.localdate()

    with persistence_errors("pago de cuota"):
        try:
            installment = InstallmentPayment.objects.select_related("sale").get(pk=installment_id)
        except InstallmentPayment.DoesNotExist:
            raise NotFound("Cuota no encontrada.", installment_id=installment_id)

        pending = installment.amount_due - installment.amount_paid
        if amount > pending:
            raise ValidationError(
                "El pago supera el saldo de la cuota.",
                amount=str(amount),
                pending=str(pending),
            )

        new_paid = installment.amount_paid + amount
        updates = {"amount_paid": new_paid}
        if new_paid >= installment.amount_due:
            updates["status"] = InstallmentPayment.Status.PAID
            updates["paid_date"] = paid_date

        with transaction.atomic():
            updated = InstallmentPayment.objects.filter(
                pk=installment.pk,
                amount_paid=installment.amount_paid,
            ).update(**updates)
            if updated == 0:
                logger.warning("Conflicto al registrar pago de la cuota %s", installment.pk)
                raise ConcurrencyConflict("La cuota cambió mientras se registraba el pago.", installment_id=installment.pk)
            SaleLog.objects.create(
                sale_id=installment.sale_id,
                action=SaleLog.Action.INSTALLMENT_PAID,
                message=f"Pago de {amount} a la cuota {installment.installment_number}",
                metadata={
                    "installment_id": installment.pk,
                    "installment_number": installment.installment_number,
                    "amount": str(amount),
                    "amount_paid": str(new_paid),
                },
                created_by=user,
            )
        installment.refresh_from_db()

    logger.info(
        "Pago de %s registrado en la cuota %s de la venta %s",
        amount,
        installment.installment_number,
        installment.sale_id,
    )
    return installment


def overdue_installments(today=None):
    today = today or timezone.localdate()
    return (
        InstallmentPayment.objects.select_related("sale", "sale__client")
        .filter(status=InstallmentPayment.Status.PENDING, due_date__lt=today)
        .order_by("due_date", "installment_number")
    )
