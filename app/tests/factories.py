from decimal import Decimal
from itertools import count

from inventory.models import LandBatch, LandPiece, PaymentOffer
from sales.models import Client, ContractWriter, Sale
from users.models import RoleCode, User


class Factory:
    _seq = count(1)

    @classmethod
    def _n(cls):
        return next(cls._seq)

    @classmethod
    def user(cls, *, role=RoleCode.WORKER, password="pass1234", **kwargs):
        n = cls._n()
        defaults = {
            "username": f"user{n}",
            "email": f"user{n}@example.com",
            "is_active": True,
            "role": role,
        }
        defaults.update(kwargs)
        return User.objects.create_user(password=password, **defaults)

    @classmethod
    def batch(cls, **kwargs):
        n = cls._n()
        defaults = {
            "name": f"Lote {n}",
            "location": "Tétouan",
            "total_surface": Decimal("10000.00"),
            "price_per_m2_cash": Decimal("40.00"),
        }
        defaults.update(kwargs)
        return LandBatch.objects.create(**defaults)

    @classmethod
    def piece(cls, *, batch=None, **kwargs):
        n = cls._n()
        defaults = {
            "batch": batch or cls.batch(),
            "piece_number": f"P-{n}",
            "surface_m2": Decimal("100.00"),
        }
        defaults.update(kwargs)
        return LandPiece.objects.create(**defaults)

    @classmethod
    def offer(cls, *, batch, **kwargs):
        n = cls._n()
        defaults = {
            "batch": batch,
            "name": f"Oferta {n}",
            "price_per_m2_installment": Decimal("50.00"),
            "advance_mode": PaymentOffer.AdvanceMode.FIXED,
            "advance_value": Decimal("1000.00"),
            "calc_mode": PaymentOffer.CalcMode.MONTHS,
            "months": 24,
        }
        defaults.update(kwargs)
        return PaymentOffer.objects.create(**defaults)

    @classmethod
    def client(cls, **kwargs):
        n = cls._n()
        defaults = {
            "name": f"Cliente {n}",
            "cin": f"AB{n:06d}",
            "phone": "0612345678",
        }
        defaults.update(kwargs)
        return Client.objects.create(**defaults)

    @classmethod
    def contract_writer(cls, **kwargs):
        n = cls._n()
        defaults = {"name": f"Notario {n}", "place": "Tánger"}
        defaults.update(kwargs)
        return ContractWriter.objects.create(**defaults)

    @classmethod
    def sale(cls, *, piece=None, client=None, status=Sale.State.PENDING, **kwargs):
        piece = piece or cls.piece()
        if status == Sale.State.PENDING and piece.status == LandPiece.Status.AVAILABLE:
            piece.status = LandPiece.Status.RESERVED
            piece.save(update_fields=["status"])
        defaults = {
            "client": client or cls.client(),
            "land_piece": piece,
            "batch": piece.batch,
            "sale_price": Decimal("20000.00"),
            "deposit_amount": Decimal("5000.00"),
            "payment_method": Sale.PaymentMethod.FULL,
            "status": status,
        }
        defaults.update(kwargs)
        return Sale.objects.create(**defaults)
