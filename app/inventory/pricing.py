"""
Cálculo de precio de una parcela y términos inmutables de una oferta de pago.

Funciones puras: no tocan la base de datos ni levantan errores numéricos.
Un precio desconocido se representa con 0.
"""
import logging
from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import Optional

from core.money import ZERO, to_decimal

logger = logging.getLogger(__name__)


ADVANCE_FIXED = "fixed"
ADVANCE_PERCENT = "percent"
CALC_MONTHLY_AMOUNT = "monthlyAmount"
CALC_MONTHS = "months"


@dataclass(frozen=True)
class OfferTerms:
    """Copia de los valores de una oferta en el momento de usarla."""

    price_per_m2_installment: Decimal
    advance_mode: str
    advance_value: Decimal
    calc_mode: str
    monthly_amount: Optional[Decimal] = None
    months: Optional[int] = None
    offer_id: Optional[int] = None
    name: str = ""

    @classmethod
    def from_dict(cls, data):
        months = data.get("months")
        return cls(
            price_per_m2_installment=to_decimal(data.get("price_per_m2_installment")),
            advance_mode=data.get("advance_mode") or ADVANCE_FIXED,
            advance_value=to_decimal(data.get("advance_value")),
            calc_mode=data.get("calc_mode") or CALC_MONTHS,
            monthly_amount=(
                to_decimal(data["monthly_amount"])
                if data.get("monthly_amount") not in (None, "")
                else None
            ),
            months=int(months) if months not in (None, "") else None,
            offer_id=data.get("offer_id"),
            name=data.get("name") or "",
        )

    def as_json(self):
        payload = asdict(self)
        for key in ("price_per_m2_installment", "advance_value", "monthly_amount"):
            if payload[key] is not None:
                payload[key] = str(payload[key])
        return payload


@dataclass(frozen=True)
class PiecePrice:
    base_price: Decimal
    total_price: Decimal
    deposit: Decimal
    remaining_after_deposit: Decimal
    price_source: str

    @property
    def is_priced(self):
        return self.price_source != "unpriced"


def calculate_piece_price(
    surface_m2,
    batch_price_per_m2=None,
    direct_price=None,
    deposit=0,
    installment_price_per_m2=None,
) -> PiecePrice:
    """
    Prioridad: precio por m² a plazos > precio directo de la parcela > precio
    por m² del lote. Sin ninguno el precio es 0 ("unpriced").
    """
    surface = max(to_decimal(surface_m2), ZERO)
    installment_rate = to_decimal(installment_price_per_m2)
    direct = to_decimal(direct_price)
    batch_rate = to_decimal(batch_price_per_m2)

    if installment_rate > 0:
        base_price = installment_rate * surface
        source = "installment"
    elif direct > 0:
        base_price = direct
        source = "piece"
    elif batch_rate > 0:
        base_price = batch_rate * surface
        source = "batch"
    else:
        base_price = ZERO
        source = "unpriced"

    deposit_value = max(to_decimal(deposit), ZERO)
    if source == "unpriced":
        logger.debug("Parcela sin precio (superficie=%s)", surface)

    return PiecePrice(
        base_price=base_price,
        total_price=base_price,
        deposit=deposit_value,
        remaining_after_deposit=max(base_price - deposit_value, ZERO),
        price_source=source,
    )
