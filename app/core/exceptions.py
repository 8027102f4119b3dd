"""
Errores de negocio del motor de ventas.

Todas las operaciones con efectos (confirmación, creación, cancelación,
registro de pagos) levantan subclases de ``SaleError``; las calculadoras puras
nunca levantan errores numéricos.
"""


class SaleError(Exception):
    code = "sale_error"
    retryable = False

    def __init__(self, message="", **extra):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def as_dict(self):
        payload = {"error": self.message, "code": self.code}
        if self.retryable:
            payload["retryable"] = True
        payload.update(self.extra)
        return payload


class ValidationError(SaleError):
    """Entrada inválida. No se persiste nada."""

    code = "validation_error"


class NotFound(SaleError):
    code = "not_found"


class ConcurrencyConflict(SaleError):
    """Otra sesión ya procesó la venta o la parcela."""

    code = "concurrency_conflict"


class PermissionDenied(SaleError):
    """La escritura no tuvo efecto según la relectura posterior."""

    code = "permission_denied"


class UpstreamUnavailable(SaleError):
    code = "upstream_unavailable"
    retryable = True


class ConstraintViolation(SaleError):
    code = "constraint_violation"

    def __init__(self, message="", constraint=None, **extra):
        super().__init__(message, constraint=constraint, **extra)
        self.constraint = constraint


class GroupConfirmationError(SaleError):
    """
    La confirmación agrupada se abortó en una de las ventas.
    Toda la transacción del grupo se revierte.
    """

    code = "group_confirmation_failed"

    def __init__(self, message="", failed_sale_id=None, cause=None):
        super().__init__(
            message,
            failed_sale_id=str(failed_sale_id) if failed_sale_id else None,
            cause_code=getattr(cause, "code", None),
        )
        self.failed_sale_id = failed_sale_id
        self.cause = cause
        # Reintentable solo cuando la causa lo es
        self.retryable = isinstance(cause, ConcurrencyConflict) or bool(getattr(cause, "retryable", False))
