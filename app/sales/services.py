"""
Alta, cancelación y cita de firma de ventas.
"""
import logging
import uuid

from django.db import transaction
from django.utils import timezone

from core.db import persistence_errors
from core.exceptions import ConcurrencyConflict, NotFound, ValidationError
from core.money import ZERO, quantize_money, split_amount, to_decimal
from inventory.models import LandPiece

from .confirmation import read_sale
from .models import Sale, SaleLog

logger = logging.getLogger(__name__)


def _load_pieces(pieces):
    ids = [piece.pk if isinstance(piece, LandPiece) else piece for piece in pieces]
    ids = list(dict.fromkeys(ids))
    found = {piece.pk: piece for piece in LandPiece.objects.select_related("batch").filter(pk__in=ids)}
    missing = [pk for pk in ids if pk not in found]
    if missing:
        raise NotFound("Parcela no encontrada.", land_piece_ids=missing)
    return [found[pk] for pk in ids]


def create_sales(
    client,
    pieces,
    payment_method,
    *,
    offer=None,
    deposit_total=0,
    sold_by=None,
    deadline_date=None,
    notes="",
):
    """
    Crea una venta por parcela, todas con el mismo ``transaction_group``.
    Cada parcela pasa de disponible a reservada; si alguna ya no está
    disponible no se crea ninguna venta.
    """
    if not pieces:
        raise ValidationError("Debe seleccionar al menos una parcela.")
    if payment_method not in Sale.PaymentMethod.values:
        raise ValidationError("Forma de pago desconocida.", payment_method=payment_method)
    if payment_method == Sale.PaymentMethod.INSTALLMENT and offer is None:
        raise ValidationError("La venta a plazos requiere una oferta de pago.")
    deposit_total = quantize_money(to_decimal(deposit_total))
    if deposit_total < 0:
        raise ValidationError("Las arras no pueden ser negativas.")

    with persistence_errors("creación de ventas"):
        pieces = _load_pieces(pieces)
        installment_rate = offer.price_per_m2_installment if payment_method == Sale.PaymentMethod.INSTALLMENT else None
        prices = []
        for piece in pieces:
            price = piece.price(installment_price_per_m2=installment_rate)
            if not price.is_priced:
                raise ValidationError("La parcela no tiene precio definido.", land_piece_id=piece.pk)
            prices.append(quantize_money(price.total_price))
        if deposit_total > sum(prices, ZERO):
            raise ValidationError("Las arras superan el precio total.")
        deposits = split_amount(deposit_total, prices)

        group = uuid.uuid4()
        sales = []
        with transaction.atomic():
            for piece, price, deposit in zip(pieces, prices, deposits):
                reserved = LandPiece.objects.filter(pk=piece.pk, status=LandPiece.Status.AVAILABLE).update(
                    status=LandPiece.Status.RESERVED,
                    updated_at=timezone.now(),
                )
                if reserved == 0:
                    logger.warning("Parcela %s no disponible al crear la venta", piece.pk)
                    raise ConcurrencyConflict("La parcela ya no está disponible.", land_piece_id=piece.pk)
                sale = Sale.objects.create(
                    client=client,
                    land_piece=piece,
                    batch_id=piece.batch_id,
                    payment_offer=offer if payment_method == Sale.PaymentMethod.INSTALLMENT else None,
                    transaction_group=group,
                    sale_price=price,
                    deposit_amount=deposit,
                    payment_method=payment_method,
                    partial_payment_amount=ZERO,
                    sold_by=sold_by,
                    deadline_date=deadline_date,
                    notes=notes,
                )
                SaleLog.objects.create(
                    sale=sale,
                    action=SaleLog.Action.CREATED,
                    message=f"Venta creada para la parcela {piece.piece_number}",
                    metadata={"transaction_group": str(group), "deposit": str(deposit)},
                    created_by=sold_by,
                )
                sales.append(sale)

    logger.info("Creadas %s ventas (grupo %s) para el cliente %s", len(sales), group, client.pk)
    return sales


def cancel_sale(sale_id, user=None, reason=""):
    with persistence_errors("cancelación de venta"):
        sale = read_sale(sale_id)
        with transaction.atomic():
            updated = Sale.objects.filter(pk=sale.pk, status=Sale.State.PENDING).update(
                status=Sale.State.CANCELLED,
                updated_at=timezone.now(),
            )
            if updated == 0:
                raise ConcurrencyConflict("Solo se pueden cancelar ventas pendientes.", sale_id=str(sale.pk))
            # Solo se libera una parcela reservada; una vendida no se toca
            LandPiece.objects.filter(pk=sale.land_piece_id, status=LandPiece.Status.RESERVED).update(
                status=LandPiece.Status.AVAILABLE,
                updated_at=timezone.now(),
            )
            SaleLog.objects.create(
                sale_id=sale.pk,
                action=SaleLog.Action.CANCELLED,
                message=reason[:255] if reason else "Venta cancelada",
                metadata={"reason": reason},
                created_by=user,
            )
        sale.refresh_from_db()
    logger.info("Venta %s cancelada", sale.pk)
    return sale


def schedule_appointment(sale_id, when, user=None):
    if when is None:
        raise ValidationError("La fecha de la cita es obligatoria.")
    with persistence_errors("cita de firma"):
        sale = read_sale(sale_id)
        with transaction.atomic():
            updated = Sale.objects.filter(pk=sale.pk, status=Sale.State.PENDING).update(
                appointment_date=when,
                updated_at=timezone.now(),
            )
            if updated == 0:
                raise ConcurrencyConflict("La venta ya no está pendiente.", sale_id=str(sale.pk))
            SaleLog.objects.create(
                sale_id=sale.pk,
                action=SaleLog.Action.APPOINTMENT,
                message="Cita de firma programada",
                metadata={"appointment_date": when.isoformat()},
                created_by=user,
            )
        sale.refresh_from_db()
    return sale
