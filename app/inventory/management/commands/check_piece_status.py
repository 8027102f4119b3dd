"""
Verifica que el estado de cada parcela coincida con sus ventas.

Uso:
    python manage.py check_piece_status
    python manage.py check_piece_status --fix
"""

from django.core.management.base import BaseCommand
from django.db import transaction
from django.db.models import Count, Q

from inventory.models import LandPiece


def expected_status(pending_count, completed_count):
    if completed_count:
        return LandPiece.Status.SOLD
    if pending_count:
        return LandPiece.Status.RESERVED
    return LandPiece.Status.AVAILABLE


class Command(BaseCommand):
    help = (
        "Compara el estado de cada parcela con sus ventas: disponible con venta "
        "pendiente, reservada sin venta pendiente, vendida sin venta completada "
        "o con más de una venta completada."
    )

    def add_arguments(self, parser):
        parser.add_argument(
            "--fix",
            action="store_true",
            help="Corrige el estado de las parcelas inconsistentes.",
        )

    def handle(self, *args, **options):
        fix = options["fix"]
        pieces = LandPiece.objects.select_related("batch").annotate(
            pending_count=Count("sales", filter=Q(sales__status="pending")),
            completed_count=Count("sales", filter=Q(sales__status="completed")),
        )

        mismatched = 0
        duplicated = 0
        fixed = 0
        for piece in pieces:
            if piece.completed_count > 1:
                duplicated += 1
                self.stdout.write(
                    self.style.ERROR(
                        f"Parcela {piece}: {piece.completed_count} ventas completadas (revisar a mano)."
                    )
                )
            expected = expected_status(piece.pending_count, piece.completed_count)
            if piece.status == expected:
                continue
            mismatched += 1
            self.stdout.write(
                self.style.WARNING(f"Parcela {piece}: estado {piece.status}, se esperaba {expected}.")
            )
            if fix:
                with transaction.atomic():
                    fixed += LandPiece.objects.filter(pk=piece.pk, status=piece.status).update(status=expected)

        if not mismatched and not duplicated:
            self.stdout.write(self.style.SUCCESS("Todas las parcelas son consistentes."))
            return
        summary = f"Inconsistentes: {mismatched}. Con ventas duplicadas: {duplicated}."
        if fix:
            summary += f" Corregidas: {fixed}."
        self.stdout.write(self.style.SUCCESS(summary) if fix else summary)
