"""
Señales emitidas después del commit de una confirmación.

Argumentos enviados:
  sale_confirmed:       sale, result, user
  sale_partially_paid:  sale, result, user
  sale_group_confirmed: sales, result, user
"""
import logging

from django.db import transaction
from django.dispatch import Signal

logger = logging.getLogger(__name__)

sale_confirmed = Signal()
sale_partially_paid = Signal()
sale_group_confirmed = Signal()


def send_after_commit(signal, sender, **kwargs):
    """
    Programa el envío para después del commit. Un receptor que falla se
    registra en el log y no afecta el resultado de la operación.
    """

    def _send():
        for receiver, response in signal.send_robust(sender=sender, **kwargs):
            if isinstance(response, Exception):
                logger.error(
                    "Receptor %s falló: %s",
                    getattr(receiver, "__qualname__", receiver),
                    response,
                    exc_info=response,
                )

    transaction.on_commit(_send)
