"""
Cálculo de venta a plazos y generación del cronograma de cuotas.

Flujo de cobro de una venta a plazos:
  1. Venta: el cliente deja el arras (deposit).
  2. Confirmación: paga el anticipo menos el arras ya entregado.
  3. Cuotas: el saldo restante se divide en cuotas mensuales.

Todo es puro y determinista; los montos intermedios conservan la precisión
completa de Decimal y solo el cronograma se redondea a centavos.
"""
import datetime
import logging
from dataclasses import dataclass
from decimal import ROUND_CEILING, ROUND_DOWN, Decimal

from dateutil.relativedelta import relativedelta

from core.money import CENT, ZERO, quantize_money, split_amount, to_decimal
from inventory.pricing import ADVANCE_PERCENT, CALC_MONTHLY_AMOUNT, CALC_MONTHS

logger = logging.getLogger(__name__)

ONE = Decimal("1")


@dataclass(frozen=True)
class InstallmentBreakdown:
    base_price: Decimal
    advance_amount: Decimal
    deposit_amount: Decimal
    advance_after_deposit: Decimal
    remaining_for_installments: Decimal
    monthly_payment: Decimal
    number_of_months: int


@dataclass(frozen=True)
class ScheduleItem:
    installment_number: int
    amount_due: Decimal
    due_date: datetime.date


def _guard_positive(value, label):
    if value <= 0:
        logger.warning("%s no positivo (%s); se usa 1", label, value)
        return ONE
    return value


def calculate_installment(offer, *, surface_m2=None, base_price=None, deposit=0) -> InstallmentBreakdown:
    """
    ``offer`` es un ``OfferTerms``. Si se pasa ``base_price`` ese total manda
    sobre superficie × precio por m².
    """
    if base_price is not None:
        base = _guard_positive(to_decimal(base_price), "Precio base")
    else:
        surface = _guard_positive(to_decimal(surface_m2), "Superficie")
        base = surface * to_decimal(offer.price_per_m2_installment)

    advance_value = to_decimal(offer.advance_value)
    if offer.advance_mode == ADVANCE_PERCENT:
        advance = base * advance_value / Decimal("100")
    else:
        advance = advance_value

    deposit_value = max(to_decimal(deposit), ZERO)
    advance_after_deposit = max(ZERO, advance - deposit_value)
    # Si el arras supera el anticipo, el excedente también reduce el saldo
    remaining = base - max(advance, deposit_value)

    monthly = ZERO
    months = 0
    if remaining > 0:
        if offer.calc_mode == CALC_MONTHS:
            months = int(offer.months or 0)
            monthly = remaining / months if months > 0 else ZERO
        elif offer.calc_mode == CALC_MONTHLY_AMOUNT:
            monthly = to_decimal(offer.monthly_amount)
            if monthly > 0:
                if offer.months and offer.months > 0:
                    months = int(offer.months)
                    if monthly * months > remaining + CENT:
                        monthly = remaining / months
                else:
                    months = int((remaining / monthly).to_integral_value(rounding=ROUND_CEILING))
            else:
                monthly = ZERO

    return InstallmentBreakdown(
        base_price=base,
        advance_amount=advance,
        deposit_amount=deposit_value,
        advance_after_deposit=advance_after_deposit,
        remaining_for_installments=remaining,
        monthly_payment=monthly,
        number_of_months=months,
    )


def add_months(start, months):
    """Suma meses calendario; el día se recorta al último día del mes."""
    return start + relativedelta(months=months)


def build_schedule(breakdown: InstallmentBreakdown, start_date):
    months = breakdown.number_of_months
    if months <= 0 or breakdown.monthly_payment <= 0:
        return []
    if isinstance(start_date, datetime.datetime):
        start_date = start_date.date()

    total = quantize_money(breakdown.remaining_for_installments)
    monthly = quantize_money(breakdown.monthly_payment)
    if monthly * (months - 1) > total:
        # La última cuota nunca queda negativa.
        monthly = (total / months).quantize(CENT, rounding=ROUND_DOWN)
    schedule = []
    for number in range(1, months + 1):
        if number == months:
            amount = total - monthly * (months - 1)
        else:
            amount = monthly
        schedule.append(
            ScheduleItem(
                installment_number=number,
                amount_due=amount,
                due_date=add_months(start_date, number),
            )
        )
    return schedule


def generate_schedule(offer, start_date, *, surface_m2=None, base_price=None, deposit=0):
    """
    Primera cuota un mes después de ``start_date``; la última absorbe el
    residuo de redondeo para que el total cuadre al centavo.
    """
    breakdown = calculate_installment(
        offer, surface_m2=surface_m2, base_price=base_price, deposit=deposit
    )
    return build_schedule(breakdown, start_date)


def split_schedule(schedule, weights):
    """
    Reparte cada cuota de un cronograma agregado entre varias ventas según
    ``weights`` (superficie de cada parcela). Devuelve una lista de
    cronogramas, uno por peso, con las mismas fechas y numeración.
    """
    per_weight = [[] for _ in weights]
    for item in schedule:
        shares = split_amount(item.amount_due, weights)
        for index, share in enumerate(shares):
            per_weight[index].append(
                ScheduleItem(
                    installment_number=item.installment_number,
                    amount_due=share,
                    due_date=item.due_date,
                )
            )
    return per_weight


def schedule_summary(schedule):
    if not schedule:
        return {"count": 0, "first_due_date": None, "last_due_date": None, "total": ZERO}
    return {
        "count": len(schedule),
        "first_due_date": schedule[0].due_date,
        "last_due_date": schedule[-1].due_date,
        "total": sum((item.amount_due for item in schedule), ZERO),
    }
