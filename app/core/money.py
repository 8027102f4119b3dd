from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

CENT = Decimal("0.01")
ZERO = Decimal("0")


def to_decimal(value, default=ZERO):
    """Convierte a Decimal; valores vacíos o inválidos devuelven ``default``."""
    if value is None or value == "":
        return default
    if isinstance(value, Decimal):
        return value if value.is_finite() else default
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return default
    return result if result.is_finite() else default


def quantize_money(value):
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def split_amount(total, weights):
    """
    Reparte ``total`` en centavos proporcionalmente a ``weights``.
    El último peso absorbe el residuo de redondeo, de modo que la suma
    de las partes es exactamente ``total``.
    """
    total = quantize_money(total)
    weights = [max(to_decimal(w), ZERO) for w in weights]
    if not weights:
        return []
    weight_sum = sum(weights, ZERO)
    if weight_sum <= 0:
        weights = [Decimal("1")] * len(weights)
        weight_sum = Decimal(len(weights))

    parts = []
    allocated = ZERO
    for weight in weights[:-1]:
        part = min(quantize_money(total * weight / weight_sum), max(total - allocated, ZERO))
        parts.append(part)
        allocated += part
    parts.append(total - allocated)
    return parts
