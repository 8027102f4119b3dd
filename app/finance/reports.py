from decimal import ROUND_HALF_UP, Decimal

from django.db.models import Count, F, Sum
from django.utils import timezone

from sales.models import InstallmentPayment, Sale


def _q(value):
    return Decimal(value or 0).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def _percent(part, whole):
    if not whole:
        return Decimal("0.00")
    return min(_q(Decimal(part) * 100 / Decimal(whole)), Decimal("100.00"))


def sale_payment_stats(sale, today=None):
    today = today or timezone.localdate()
    installments = InstallmentPayment.objects.filter(sale=sale)
    totals = installments.aggregate(due=Sum("amount_due"), paid=Sum("amount_paid"), count=Count("id"))
    overdue = installments.filter(status=InstallmentPayment.Status.PENDING, due_date__lt=today).aggregate(
        pending=Sum(F("amount_due") - F("amount_paid")),
        count=Count("id"),
    )
    paid_count = installments.filter(status=InstallmentPayment.Status.PAID).count()

    deposit = _q(sale.deposit_amount)
    if sale.status == Sale.State.COMPLETED:
        if sale.payment_method == Sale.PaymentMethod.PROMISE:
            at_confirmation = _q(sale.partial_payment_amount)
        else:
            at_confirmation = _q(sale.confirmation_amount)
    else:
        at_confirmation = _q(sale.partial_payment_amount)
    installments_paid = _q(totals["paid"])
    collected = deposit + at_confirmation + installments_paid

    return {
        "sale_price": _q(sale.sale_price),
        "deposit": deposit,
        "collected_at_confirmation": at_confirmation,
        "installments_total": _q(totals["due"]),
        "installments_paid": installments_paid,
        "installments_count": totals["count"] or 0,
        "installments_paid_count": paid_count,
        "overdue_amount": _q(overdue["pending"]),
        "overdue_count": overdue["count"] or 0,
        "total_collected": collected,
        "outstanding": max(_q(sale.sale_price) - collected, Decimal("0.00")),
        "progress_percent": _percent(collected, sale.sale_price),
    }


def financial_summary(start=None, end=None, today=None):
    """
    Totales de ventas creadas entre ``start`` y ``end`` (fechas inclusivas).
    Las ventas canceladas solo cuentan en ``cancelled_count``.
    """
    today = today or timezone.localdate()
    sales = Sale.objects.all()
    if start:
        sales = sales.filter(created_at__date__gte=start)
    if end:
        sales = sales.filter(created_at__date__lte=end)

    cancelled_count = sales.filter(status=Sale.State.CANCELLED).count()
    active = sales.exclude(status=Sale.State.CANCELLED)
    totals = active.aggregate(
        count=Count("id"),
        value=Sum("sale_price"),
        deposits=Sum("deposit_amount"),
        fees=Sum("company_fee_amount"),
    )
    completed = active.filter(status=Sale.State.COMPLETED)
    completed_count = completed.count()
    confirmation_total = completed.exclude(payment_method=Sale.PaymentMethod.PROMISE).aggregate(
        t=Sum("confirmation_amount")
    )["t"]
    # En promesas lo cobrado es la suma de pagos parciales, confirmadas o no
    promise_total = active.filter(payment_method=Sale.PaymentMethod.PROMISE).aggregate(
        t=Sum("partial_payment_amount")
    )["t"]

    installments = InstallmentPayment.objects.filter(sale__in=active)
    installments_paid = installments.aggregate(t=Sum("amount_paid"))["t"]
    overdue = installments.filter(status=InstallmentPayment.Status.PENDING, due_date__lt=today).aggregate(
        pending=Sum(F("amount_due") - F("amount_paid")),
        count=Count("id"),
    )

    collected = _q(totals["deposits"]) + _q(confirmation_total) + _q(promise_total) + _q(installments_paid)
    return {
        "sales_count": totals["count"] or 0,
        "completed_count": completed_count,
        "pending_count": (totals["count"] or 0) - completed_count,
        "cancelled_count": cancelled_count,
        "total_sales_value": _q(totals["value"]),
        "total_deposits": _q(totals["deposits"]),
        "total_confirmation_amounts": _q(confirmation_total),
        "total_promise_payments": _q(promise_total),
        "total_installments_paid": _q(installments_paid),
        "total_company_fees": _q(totals["fees"]),
        "total_collected": collected,
        "overdue_amount": _q(overdue["pending"]),
        "overdue_count": overdue["count"] or 0,
        "completion_percent": _percent(completed_count, totals["count"]),
        "collection_percent": _percent(collected, totals["value"]),
    }
