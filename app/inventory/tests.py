from decimal import Decimal
from io import StringIO

from django.core.management import call_command
from django.db import IntegrityError, transaction
from django.test import SimpleTestCase

from inventory.models import LandPiece, PaymentOffer
from inventory.pricing import OfferTerms, calculate_piece_price
from sales.models import Sale
from tests.base import BaseAppTestCase
from tests.factories import Factory


class PriceCalculatorTests(SimpleTestCase):
    def test_direct_price_wins_over_batch_price(self):
        price = calculate_piece_price(Decimal("100"), batch_price_per_m2=Decimal("40"), direct_price=Decimal("5000"))
        self.assertEqual(price.total_price, Decimal("5000"))
        self.assertEqual(price.price_source, "piece")

    def test_batch_price_per_m2_times_surface(self):
        price = calculate_piece_price(Decimal("100"), batch_price_per_m2=Decimal("40"))
        self.assertEqual(price.total_price, Decimal("4000"))
        self.assertEqual(price.price_source, "batch")

    def test_installment_price_per_m2_takes_priority(self):
        price = calculate_piece_price(
            Decimal("100"),
            batch_price_per_m2=Decimal("40"),
            direct_price=Decimal("5000"),
            installment_price_per_m2=Decimal("50"),
        )
        self.assertEqual(price.total_price, Decimal("5000"))
        self.assertEqual(price.price_source, "installment")

    def test_unpriced_piece_is_zero(self):
        price = calculate_piece_price(Decimal("100"))
        self.assertEqual(price.total_price, Decimal("0"))
        self.assertFalse(price.is_priced)

    def test_remaining_after_deposit_never_negative(self):
        price = calculate_piece_price(Decimal("100"), batch_price_per_m2=Decimal("40"), deposit=Decimal("6000"))
        self.assertEqual(price.remaining_after_deposit, Decimal("0"))

        price = calculate_piece_price(Decimal("100"), batch_price_per_m2=Decimal("40"), deposit=Decimal("1000"))
        self.assertEqual(price.remaining_after_deposit, Decimal("3000"))

    def test_invalid_numbers_count_as_zero(self):
        price = calculate_piece_price("abc", batch_price_per_m2="40", deposit="-10")
        self.assertEqual(price.total_price, Decimal("0"))
        self.assertEqual(price.deposit, Decimal("0"))

    def test_offer_terms_json_roundtrip_keeps_decimals(self):
        terms = OfferTerms(
            price_per_m2_installment=Decimal("50.00"),
            advance_mode="percent",
            advance_value=Decimal("10"),
            calc_mode="monthlyAmount",
            monthly_amount=Decimal("250.00"),
            months=None,
            offer_id=7,
            name="Oferta verano",
        )
        payload = terms.as_json()
        self.assertEqual(payload["price_per_m2_installment"], "50.00")
        self.assertEqual(OfferTerms.from_dict(payload), terms)


class InventoryModelTests(BaseAppTestCase):
    def test_piece_price_uses_batch_and_direct_price(self):
        batch = Factory.batch(price_per_m2_cash=Decimal("40.00"))
        piece = Factory.piece(batch=batch, surface_m2=Decimal("150.00"))
        self.assertEqual(piece.price().total_price, Decimal("6000.00"))

        piece.direct_price = Decimal("7500.00")
        self.assertEqual(piece.price(deposit=Decimal("500")).remaining_after_deposit, Decimal("7000.00"))

    def test_offer_requires_exactly_one_owner(self):
        batch = Factory.batch()
        piece = Factory.piece(batch=batch)
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                PaymentOffer.objects.create(
                    batch=batch,
                    piece=piece,
                    price_per_m2_installment=Decimal("50.00"),
                )

    def test_offer_as_terms_copies_values(self):
        batch = Factory.batch()
        offer = Factory.offer(batch=batch, months=12)
        terms = offer.as_terms()
        self.assertEqual(terms.offer_id, offer.pk)
        self.assertEqual(terms.months, 12)
        self.assertEqual(terms.price_per_m2_installment, Decimal("50.00"))


class CheckPieceStatusCommandTests(BaseAppTestCase):
    def _run(self, *args):
        out = StringIO()
        call_command("check_piece_status", *args, stdout=out)
        return out.getvalue()

    def test_reports_consistent_inventory(self):
        Factory.piece()
        Factory.sale()
        output = self._run()
        self.assertIn("consistentes", output)

    def test_available_piece_with_pending_sale_is_reported_and_fixed(self):
        sale = Factory.sale()
        LandPiece.objects.filter(pk=sale.land_piece_id).update(status=LandPiece.Status.AVAILABLE)

        output = self._run()
        self.assertIn("se esperaba Reserved", output)
        self.assertEqual(LandPiece.objects.get(pk=sale.land_piece_id).status, LandPiece.Status.AVAILABLE)

        self._run("--fix")
        self.assertEqual(LandPiece.objects.get(pk=sale.land_piece_id).status, LandPiece.Status.RESERVED)

    def test_sold_piece_without_completed_sale_goes_back_to_available(self):
        piece = Factory.piece(status=LandPiece.Status.SOLD)
        Factory.sale(piece=piece, status=Sale.State.CANCELLED)

        self._run("--fix")
        piece.refresh_from_db()
        self.assertEqual(piece.status, LandPiece.Status.AVAILABLE)

    def test_completed_sale_marks_piece_sold(self):
        piece = Factory.piece(status=LandPiece.Status.RESERVED)
        Factory.sale(piece=piece, status=Sale.State.COMPLETED)

        output = self._run("--fix")
        self.assertIn("Corregidas: 1", output)
        piece.refresh_from_db()
        self.assertEqual(piece.status, LandPiece.Status.SOLD)
