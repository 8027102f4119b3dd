import logging
from contextlib import contextmanager

from django.db import DatabaseError, IntegrityError

from .exceptions import ConstraintViolation, UpstreamUnavailable

logger = logging.getLogger(__name__)


def constraint_name(exc):
    """Nombre de la restricción violada según los diagnósticos del driver."""
    current = exc
    while current is not None:
        diag = getattr(current, "diag", None)
        name = getattr(diag, "constraint_name", None)
        if name:
            return name
        current = current.__cause__
    return None


@contextmanager
def persistence_errors(operation):
    """
    Traduce errores de base de datos a la taxonomía de ``core.exceptions``.
    Los ``SaleError`` levantados dentro del bloque pasan sin cambios.
    """
    try:
        yield
    except IntegrityError as exc:
        name = constraint_name(exc)
        logger.warning("Restricción violada en %s: %s", operation, name or exc)
        raise ConstraintViolation(
            f"La operación viola una restricción de datos ({name or 'desconocida'}).",
            constraint=name,
        ) from exc
    except DatabaseError as exc:
        logger.exception("Fallo de base de datos en %s", operation)
        raise UpstreamUnavailable("La base de datos no está disponible. Intente de nuevo.") from exc
