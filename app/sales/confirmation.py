"""
Confirmación de ventas: simple y agrupada.

Cada confirmación cobra lo que corresponde según la forma de pago:
  - full:        precio − arras.
  - installment: anticipo − arras; el saldo queda en cuotas mensuales.
  - promise:     el saldo pendiente, en uno o varios pagos parciales.

Las escrituras son condicionales (id + estado pendiente + valores leídos), de
modo que dos sesiones concurrentes nunca confirman la misma venta dos veces.
"""
import dataclasses
import datetime
import logging
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from django.utils import timezone

from core.db import persistence_errors
from core.exceptions import (
    ConcurrencyConflict,
    GroupConfirmationError,
    NotFound,
    PermissionDenied,
    SaleError,
    ValidationError,
)
from core.money import ZERO, quantize_money, split_amount, to_decimal
from inventory.models import LandPiece

from .installments import InstallmentBreakdown, build_schedule, calculate_installment, split_schedule
from .models import ContractWriter, InstallmentPayment, Sale, SaleLog
from .signals import sale_confirmed, sale_group_confirmed, sale_partially_paid, send_after_commit

logger = logging.getLogger(__name__)

COMPLETED = "completed"
PARTIAL = "partial"


@dataclass
class ConfirmationRequest:
    installment_start_date: Optional[datetime.date] = None
    payment_amount: Optional[Decimal] = None
    company_fee: Optional[Decimal] = None
    contract_writer_id: Optional[int] = None
    notes: str = ""
    confirmed_by: object = None


@dataclass(frozen=True)
class ConfirmationPreview:
    payment_method: str
    total_price: Decimal
    deposit_amount: Decimal
    partial_payment_amount: Decimal
    confirmation_amount: Decimal
    remaining_for_installments: Decimal
    breakdown: Optional[InstallmentBreakdown] = None
    schedule: list = field(default_factory=list)


@dataclass(frozen=True)
class GroupConfirmationPreview:
    payment_method: str
    sale_count: int
    total_price: Decimal
    total_deposit: Decimal
    total_partial_paid: Decimal
    total_outstanding: Decimal
    total_surface: Decimal
    confirmation_amount: Decimal
    remaining_for_installments: Decimal
    breakdown: Optional[InstallmentBreakdown] = None
    schedule: list = field(default_factory=list)


@dataclass(frozen=True)
class ConfirmationResult:
    sale: Sale
    outcome: str
    amount_received: Decimal
    remaining: Decimal
    installments_created: int = 0


@dataclass(frozen=True)
class GroupConfirmationResult:
    sales: list
    outcome: str
    amount_received: Decimal
    remaining: Decimal
    installments_created: int = 0


# ---------------------------------------------------------------------------
# Cálculo
# ---------------------------------------------------------------------------

def _epsilon():
    return getattr(settings, "SALES_PAYMENT_EPSILON", Decimal("0.01"))


def _check_payment_method(method):
    if method not in Sale.PaymentMethod.values:
        raise ValidationError("La venta no tiene una forma de pago válida.", payment_method=method)


def _offer_terms(sale):
    if sale.payment_offer_id is None:
        raise ValidationError("La venta a plazos no tiene oferta de pago asignada.")
    return sale.payment_offer.as_terms()


def _reconciled(breakdown):
    """
    Ajusta el saldo en cuotas para que precio = arras + anticipo cobrado +
    cuotas, con el anticipo ya redondeado a centavos.
    """
    if breakdown.remaining_for_installments <= 0:
        return breakdown
    advance_due = quantize_money(breakdown.advance_after_deposit)
    remaining = quantize_money(breakdown.base_price - breakdown.deposit_amount) - advance_due
    return dataclasses.replace(breakdown, remaining_for_installments=remaining)


def _installment_breakdown(terms, *, surface_m2, base_price, deposit):
    return _reconciled(
        calculate_installment(terms, surface_m2=surface_m2, base_price=base_price, deposit=deposit)
    )


def _sale_breakdown(sale):
    return _installment_breakdown(
        _offer_terms(sale),
        surface_m2=sale.land_piece.surface_m2,
        base_price=sale.sale_price,
        deposit=sale.deposit_amount,
    )


def confirmation_amount(sale):
    """Monto a cobrar al confirmar, sin redondear."""
    method = sale.payment_method
    _check_payment_method(method)
    deposit = sale.deposit_amount or ZERO
    if method == Sale.PaymentMethod.FULL:
        return max(sale.sale_price - deposit, ZERO)
    if method == Sale.PaymentMethod.INSTALLMENT:
        return _sale_breakdown(sale).advance_after_deposit
    if sale.remaining_payment_amount is not None:
        return sale.remaining_payment_amount
    return max(sale.sale_price - deposit - (sale.partial_payment_amount or ZERO), ZERO)


def _start_date(value):
    if value in (None, ""):
        return None
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    try:
        return datetime.date.fromisoformat(str(value))
    except ValueError:
        raise ValidationError("Fecha de inicio de cuotas inválida.", installment_start_date=str(value))


def _money_input(value, label):
    if value in (None, ""):
        return None
    amount = to_decimal(value, default=None)
    if amount is None:
        raise ValidationError(f"{label} inválido.")
    return quantize_money(amount)


def preview_confirmation(sale, request=None):
    """Lo que cobraría la confirmación, sin escribir nada."""
    _check_payment_method(sale.payment_method)
    breakdown = None
    schedule = []
    remaining = ZERO
    if sale.payment_method == Sale.PaymentMethod.INSTALLMENT:
        breakdown = _sale_breakdown(sale)
        amount = breakdown.advance_after_deposit
        remaining = max(breakdown.remaining_for_installments, ZERO)
        start = _start_date(request.installment_start_date) if request else None
        if start:
            schedule = build_schedule(breakdown, start)
    else:
        amount = confirmation_amount(sale)

    return ConfirmationPreview(
        payment_method=sale.payment_method,
        total_price=sale.sale_price,
        deposit_amount=sale.deposit_amount or ZERO,
        partial_payment_amount=sale.partial_payment_amount or ZERO,
        confirmation_amount=quantize_money(amount),
        remaining_for_installments=remaining,
        breakdown=breakdown,
        schedule=schedule,
    )


# ---------------------------------------------------------------------------
# Persistencia
# ---------------------------------------------------------------------------

def read_sale(sale_id):
    try:
        return Sale.objects.select_related("land_piece", "payment_offer").get(pk=sale_id)
    except (Sale.DoesNotExist, DjangoValidationError, ValueError):
        raise NotFound("Venta no encontrada.", sale_id=str(sale_id))


def _ensure_pending(sale):
    if sale.status != Sale.State.PENDING:
        logger.warning("Venta %s ya no está pendiente (%s)", sale.pk, sale.status)
        raise ConcurrencyConflict("La venta ya no está pendiente.", sale_id=str(sale.pk))


def _check_commission(fee):
    if fee is not None and fee < 0:
        raise ValidationError("La comisión no puede ser negativa.")


def _check_contract_writer(contract_writer_id):
    if contract_writer_id in (None, ""):
        return None
    if not ContractWriter.objects.filter(pk=contract_writer_id).exists():
        raise ValidationError("Redactor de contrato no encontrado.", contract_writer_id=contract_writer_id)
    return contract_writer_id


def _apply_commission(sale, fee, updates, lookup):
    """La comisión se escribe una sola vez: solo si la guardada es nula o cero."""
    if fee is None or sale.company_fee_amount:
        return
    updates["company_fee_amount"] = fee
    if sale.company_fee_amount is None:
        lookup["company_fee_amount__isnull"] = True
    else:
        lookup["company_fee_amount"] = sale.company_fee_amount


def _verify_written(sale_id, sale_price, status):
    persisted = Sale.objects.filter(pk=sale_id).values("sale_price", "status").first()
    if persisted is None or persisted["sale_price"] != sale_price or persisted["status"] != status:
        logger.warning("Relectura de la venta %s no coincide con lo escrito: %s", sale_id, persisted)
        raise PermissionDenied("La escritura de la venta no tuvo efecto.", sale_id=str(sale_id))


def _write_partial(sale, payment, remaining, fee, user, extra=None):
    """Pago parcial de una promesa: la venta sigue pendiente y la parcela no cambia."""
    updates = {
        "partial_payment_amount": quantize_money((sale.partial_payment_amount or ZERO) + payment),
        "remaining_payment_amount": max(quantize_money(remaining), ZERO),
        "updated_at": timezone.now(),
    }
    lookup = {
        "pk": sale.pk,
        "status": Sale.State.PENDING,
        "partial_payment_amount": sale.partial_payment_amount,
        "remaining_payment_amount": sale.remaining_payment_amount,
    }
    _apply_commission(sale, fee, updates, lookup)

    if Sale.objects.filter(**lookup).update(**updates) == 0:
        logger.warning("Conflicto al registrar pago parcial de la venta %s", sale.pk)
        raise ConcurrencyConflict("La venta ya no está pendiente.", sale_id=str(sale.pk))
    _verify_written(sale.pk, sale.sale_price, Sale.State.PENDING)

    SaleLog.objects.create(
        sale_id=sale.pk,
        action=SaleLog.Action.PARTIAL_PAYMENT,
        message=f"Pago parcial de {payment}",
        metadata={"amount": str(payment), "remaining": str(updates["remaining_payment_amount"]), **(extra or {})},
        created_by=user,
    )


def _write_final(sale, amount_received, fee, request, *, contract_writer_id, terms=None, schedule=(), extra=None):
    """
    Completa la venta, marca la parcela como vendida y crea las cuotas.
    Debe ejecutarse dentro de ``transaction.atomic``.
    """
    now = timezone.now()
    updates = {
        "status": Sale.State.COMPLETED,
        "confirmed_by": request.confirmed_by,
        "confirmed_at": now,
        "confirmation_amount": amount_received,
        "updated_at": now,
    }
    if contract_writer_id is not None:
        updates["contract_writer_id"] = contract_writer_id
    if request.notes:
        updates["notes"] = request.notes
    lookup = {"pk": sale.pk, "status": Sale.State.PENDING}

    if sale.payment_method == Sale.PaymentMethod.PROMISE:
        updates["partial_payment_amount"] = quantize_money((sale.partial_payment_amount or ZERO) + amount_received)
        updates["remaining_payment_amount"] = ZERO
        lookup["partial_payment_amount"] = sale.partial_payment_amount
        lookup["remaining_payment_amount"] = sale.remaining_payment_amount
    if sale.payment_method == Sale.PaymentMethod.INSTALLMENT:
        updates["offer_snapshot"] = terms.as_json()
        updates["installment_start_date"] = request.installment_start_date
    _apply_commission(sale, fee, updates, lookup)

    if Sale.objects.filter(**lookup).update(**updates) == 0:
        logger.warning("Conflicto al confirmar la venta %s", sale.pk)
        raise ConcurrencyConflict("La venta ya no está pendiente.", sale_id=str(sale.pk))
    _verify_written(sale.pk, sale.sale_price, Sale.State.COMPLETED)

    sold = (
        LandPiece.objects.filter(pk=sale.land_piece_id)
        .exclude(status=LandPiece.Status.SOLD)
        .update(status=LandPiece.Status.SOLD, updated_at=now)
    )
    if sold == 0:
        logger.warning("La parcela %s de la venta %s ya estaba vendida", sale.land_piece_id, sale.pk)
        raise ConcurrencyConflict("La parcela ya fue vendida.", land_piece_id=sale.land_piece_id)

    InstallmentPayment.objects.bulk_create(
        [
            InstallmentPayment(
                sale_id=sale.pk,
                installment_number=item.installment_number,
                amount_due=item.amount_due,
                due_date=item.due_date,
            )
            for item in schedule
        ]
    )

    SaleLog.objects.create(
        sale_id=sale.pk,
        action=SaleLog.Action.CONFIRMED,
        message=f"Venta confirmada ({sale.get_payment_method_display()})",
        metadata={
            "amount": str(amount_received),
            "payment_method": sale.payment_method,
            "installments": len(schedule),
            **(extra or {}),
        },
        created_by=request.confirmed_by,
    )
    return len(schedule)


# ---------------------------------------------------------------------------
# Venta simple
# ---------------------------------------------------------------------------

def confirm_sale(sale_id, request=None):
    """
    Confirma una venta pendiente. Para promesas, un pago menor al saldo
    (más allá de ``SALES_PAYMENT_EPSILON``) queda registrado como parcial.
    """
    request = request or ConfirmationRequest()
    with persistence_errors("confirmación de venta"):
        sale = read_sale(sale_id)
        _ensure_pending(sale)
        method = sale.payment_method
        _check_payment_method(method)

        fee = _money_input(request.company_fee, "Comisión")
        _check_commission(fee)
        contract_writer_id = _check_contract_writer(request.contract_writer_id)

        terms = None
        schedule = []
        payment = None
        if method == Sale.PaymentMethod.INSTALLMENT:
            terms = _offer_terms(sale)
            start = _start_date(request.installment_start_date)
            if start is None:
                raise ValidationError("La venta a plazos requiere fecha de inicio de cuotas.")
            request = dataclasses.replace(request, installment_start_date=start)
            breakdown = _installment_breakdown(
                terms,
                surface_m2=sale.land_piece.surface_m2,
                base_price=sale.sale_price,
                deposit=sale.deposit_amount,
            )
            amount_due = quantize_money(breakdown.advance_after_deposit)
            schedule = build_schedule(breakdown, start)
        else:
            amount_due = quantize_money(confirmation_amount(sale))

        if method == Sale.PaymentMethod.PROMISE:
            payment = _money_input(request.payment_amount, "Monto del pago")
            if payment is None or payment <= 0:
                raise ValidationError("El pago debe ser mayor que cero.")
            if payment > amount_due:
                raise ValidationError(
                    "El pago supera el saldo pendiente.",
                    payment_amount=str(payment),
                    outstanding=str(amount_due),
                )

        with transaction.atomic():
            if payment is not None and amount_due - payment > _epsilon():
                remaining = amount_due - payment
                _write_partial(sale, payment, remaining, fee, request.confirmed_by)
                sale.refresh_from_db()
                result = ConfirmationResult(
                    sale=sale,
                    outcome=PARTIAL,
                    amount_received=payment,
                    remaining=sale.remaining_payment_amount,
                )
                send_after_commit(sale_partially_paid, Sale, sale=sale, result=result, user=request.confirmed_by)
            else:
                received = payment if payment is not None else amount_due
                created = _write_final(
                    sale,
                    received,
                    fee,
                    request,
                    contract_writer_id=contract_writer_id,
                    terms=terms,
                    schedule=schedule,
                )
                sale.refresh_from_db()
                result = ConfirmationResult(
                    sale=sale,
                    outcome=COMPLETED,
                    amount_received=received,
                    remaining=sum((item.amount_due for item in schedule), ZERO),
                    installments_created=created,
                )
                send_after_commit(sale_confirmed, Sale, sale=sale, result=result, user=request.confirmed_by)

    if result.outcome == PARTIAL:
        logger.info("Pago parcial de %s registrado en la venta %s; saldo %s", payment, sale.pk, result.remaining)
    else:
        logger.info("Venta %s confirmada (%s); cobrado %s", sale.pk, method, result.amount_received)
    return result


# ---------------------------------------------------------------------------
# Venta agrupada
# ---------------------------------------------------------------------------

def _check_group(sales):
    if not sales:
        raise ValidationError("No hay ventas para confirmar.")
    first = sales[0]
    if any(sale.client_id != first.client_id for sale in sales):
        raise ValidationError("Todas las ventas del grupo deben ser del mismo cliente.")
    if any(sale.payment_method != first.payment_method for sale in sales):
        raise ValidationError("Todas las ventas del grupo deben tener la misma forma de pago.")
    _check_payment_method(first.payment_method)
    if first.payment_method == Sale.PaymentMethod.INSTALLMENT:
        if any(sale.payment_offer_id != first.payment_offer_id for sale in sales):
            raise ValidationError("Todas las ventas a plazos del grupo deben usar la misma oferta.")


def _group_totals(sales):
    return {
        "total_price": sum((sale.sale_price for sale in sales), ZERO),
        "total_deposit": sum((sale.deposit_amount or ZERO for sale in sales), ZERO),
        "total_partial_paid": sum((sale.partial_payment_amount or ZERO for sale in sales), ZERO),
        "total_surface": sum((sale.land_piece.surface_m2 for sale in sales), ZERO),
    }


def _group_breakdown(sales, totals):
    return _installment_breakdown(
        _offer_terms(sales[0]),
        surface_m2=totals["total_surface"],
        base_price=totals["total_price"],
        deposit=totals["total_deposit"],
    )


def preview_group_confirmation(sales, request=None):
    sales = list(sales)
    _check_group(sales)
    totals = _group_totals(sales)
    method = sales[0].payment_method
    breakdown = None
    schedule = []
    remaining = ZERO
    if method == Sale.PaymentMethod.INSTALLMENT:
        breakdown = _group_breakdown(sales, totals)
        amount = quantize_money(breakdown.advance_after_deposit)
        remaining = max(breakdown.remaining_for_installments, ZERO)
        start = _start_date(request.installment_start_date) if request else None
        if start:
            schedule = build_schedule(breakdown, start)
    elif method == Sale.PaymentMethod.FULL:
        amount = quantize_money(max(totals["total_price"] - totals["total_deposit"], ZERO))
    else:
        amount = sum((quantize_money(confirmation_amount(sale)) for sale in sales), ZERO)

    return GroupConfirmationPreview(
        payment_method=method,
        sale_count=len(sales),
        total_outstanding=sum((sale.outstanding_amount for sale in sales), ZERO),
        confirmation_amount=amount,
        remaining_for_installments=remaining,
        breakdown=breakdown,
        schedule=schedule,
        **totals,
    )


def _group_sale_id(sale_id):
    try:
        return uuid.UUID(str(sale_id))
    except ValueError:
        raise NotFound("Alguna de las ventas no existe.", sale_ids=[str(sale_id)])


def _read_group(sale_ids):
    unique_ids = list(dict.fromkeys(_group_sale_id(sale_id) for sale_id in sale_ids))
    if not unique_ids:
        raise ValidationError("No hay ventas para confirmar.")
    found = {
        sale.pk: sale
        for sale in Sale.objects.select_related("land_piece", "payment_offer").filter(pk__in=unique_ids)
    }
    missing = [str(sale_id) for sale_id in unique_ids if sale_id not in found]
    if missing:
        raise NotFound("Alguna de las ventas no existe.", sale_ids=missing)
    return [found[sale_id] for sale_id in unique_ids]


def confirm_sale_group(sale_ids, request=None):
    """
    Confirma varias ventas del mismo cliente en una sola transacción.
    Si una venta falla, nada del grupo queda escrito.
    """
    request = request or ConfirmationRequest()
    with persistence_errors("confirmación agrupada"):
        sales = _read_group(sale_ids)
        _check_group(sales)
        for sale in sales:
            if sale.status != Sale.State.PENDING:
                raise GroupConfirmationError(
                    "Una de las ventas del grupo ya no está pendiente.",
                    failed_sale_id=sale.pk,
                    cause=ConcurrencyConflict("La venta ya no está pendiente."),
                )

        method = sales[0].payment_method
        fee = _money_input(request.company_fee, "Comisión")
        _check_commission(fee)
        contract_writer_id = _check_contract_writer(request.contract_writer_id)
        fees = split_amount(fee, [1] * len(sales)) if fee is not None else [None] * len(sales)
        surfaces = [sale.land_piece.surface_m2 for sale in sales]
        totals = _group_totals(sales)

        terms = None
        schedules = [[] for _ in sales]
        payment = None
        if method == Sale.PaymentMethod.INSTALLMENT:
            terms = _offer_terms(sales[0])
            start = _start_date(request.installment_start_date)
            if start is None:
                raise ValidationError("La venta a plazos requiere fecha de inicio de cuotas.")
            request = dataclasses.replace(request, installment_start_date=start)
            breakdown = _group_breakdown(sales, totals)
            amount_due = quantize_money(breakdown.advance_after_deposit)
            shares = split_amount(amount_due, surfaces)
            schedules = split_schedule(build_schedule(breakdown, start), surfaces)
        elif method == Sale.PaymentMethod.FULL:
            shares = [quantize_money(confirmation_amount(sale)) for sale in sales]
            amount_due = sum(shares, ZERO)
        else:
            outstanding = [quantize_money(confirmation_amount(sale)) for sale in sales]
            amount_due = sum(outstanding, ZERO)
            payment = _money_input(request.payment_amount, "Monto del pago")
            if payment is None or payment <= 0:
                raise ValidationError("El pago debe ser mayor que cero.")
            if payment > amount_due:
                raise ValidationError(
                    "El pago supera el saldo pendiente del grupo.",
                    payment_amount=str(payment),
                    outstanding=str(amount_due),
                )
            shares = split_amount(payment, outstanding)

        partial = payment is not None and amount_due - payment > _epsilon()
        group_meta = {"group_size": len(sales), "transaction_group": str(sales[0].transaction_group)}
        created = 0
        with transaction.atomic():
            for index, sale in enumerate(sales):
                try:
                    with persistence_errors("confirmación agrupada"):
                        if partial:
                            _write_partial(
                                sale,
                                shares[index],
                                outstanding[index] - shares[index],
                                fees[index],
                                request.confirmed_by,
                                extra=group_meta,
                            )
                        else:
                            created += _write_final(
                                sale,
                                shares[index],
                                fees[index],
                                request,
                                contract_writer_id=contract_writer_id,
                                terms=terms,
                                schedule=schedules[index],
                                extra=group_meta,
                            )
                except SaleError as exc:
                    logger.warning("Confirmación agrupada abortada en la venta %s: %s", sale.pk, exc)
                    raise GroupConfirmationError(
                        "La confirmación del grupo falló y se revirtió por completo.",
                        failed_sale_id=sale.pk,
                        cause=exc,
                    ) from exc

            for sale in sales:
                sale.refresh_from_db()
            received = payment if payment is not None else amount_due
            result = GroupConfirmationResult(
                sales=sales,
                outcome=PARTIAL if partial else COMPLETED,
                amount_received=received,
                remaining=(
                    amount_due - payment
                    if partial
                    else sum((item.amount_due for rows in schedules for item in rows), ZERO)
                ),
                installments_created=created,
            )
            send_after_commit(sale_group_confirmed, Sale, sales=sales, result=result, user=request.confirmed_by)

    logger.info(
        "Grupo de %s ventas confirmado (%s, %s); cobrado %s",
        len(sales),
        method,
        result.outcome,
        result.amount_received,
    )
    return result
