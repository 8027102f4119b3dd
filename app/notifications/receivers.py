import logging

from django.dispatch import receiver

from sales.signals import sale_confirmed, sale_group_confirmed, sale_partially_paid
from users.models import RoleCode, User

from .models import Notification
from .services import notify

logger = logging.getLogger(__name__)


def _recipients(user):
    recipients = list(User.objects.filter(role=RoleCode.OWNER, is_active=True))
    if user is not None:
        recipients.append(user)
    return recipients


@receiver(sale_confirmed, dispatch_uid="notifications.sale_confirmed")
def notify_sale_confirmed(sender, sale, result, user=None, **kwargs):
    notify(
        _recipients(user),
        Notification.Type.SALE_CONFIRMED,
        "Venta confirmada",
        f"La venta de la parcela {sale.land_piece} fue confirmada. Cobrado: {result.amount_received}.",
        entity=sale,
        metadata={
            "amount_received": str(result.amount_received),
            "installments_created": result.installments_created,
        },
    )


@receiver(sale_partially_paid, dispatch_uid="notifications.sale_partially_paid")
def notify_partial_payment(sender, sale, result, user=None, **kwargs):
    notify(
        _recipients(user),
        Notification.Type.PARTIAL_PAYMENT,
        "Pago parcial registrado",
        f"Pago de {result.amount_received} en la venta de la parcela {sale.land_piece}. Saldo: {result.remaining}.",
        entity=sale,
        metadata={"amount_received": str(result.amount_received), "remaining": str(result.remaining)},
    )


@receiver(sale_group_confirmed, dispatch_uid="notifications.sale_group_confirmed")
def notify_group_confirmed(sender, sales, result, user=None, **kwargs):
    if not sales:
        return
    logger.debug("Notificando confirmación agrupada de %s ventas", len(sales))
    notify(
        _recipients(user),
        Notification.Type.GROUP_CONFIRMED,
        "Ventas agrupadas confirmadas" if result.outcome == "completed" else "Pago parcial de grupo",
        f"{len(sales)} ventas procesadas ({result.outcome}). Cobrado: {result.amount_received}.",
        entity=sales[0],
        metadata={
            "sale_ids": [str(sale.pk) for sale in sales],
            "outcome": result.outcome,
            "amount_received": str(result.amount_received),
        },
    )
