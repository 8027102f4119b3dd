import json
from datetime import date, datetime
from decimal import Decimal
from unittest.mock import patch

from django.db import OperationalError
from django.test import SimpleTestCase, override_settings
from django.urls import reverse
from django.utils import timezone

from core.exceptions import (
    ConcurrencyConflict,
    ConstraintViolation,
    GroupConfirmationError,
    NotFound,
    PermissionDenied,
    UpstreamUnavailable,
    ValidationError,
)
from inventory.models import LandPiece, PaymentOffer
from inventory.pricing import OfferTerms
from notifications.models import Notification
from notifications.services import mark_all_read, unread_count
from sales.confirmation import (
    ConfirmationRequest,
    confirm_sale,
    confirm_sale_group,
    confirmation_amount,
    preview_confirmation,
    preview_group_confirmation,
)
from sales.installments import (
    add_months,
    calculate_installment,
    generate_schedule,
    schedule_summary,
    split_schedule,
)
from sales.models import InstallmentPayment, Sale, SaleLog
from sales.services import cancel_sale, create_sales, schedule_appointment
from sales.signals import sale_confirmed
from tests.base import BaseAppTestCase
from tests.factories import Factory
from users.models import RoleCode


def _terms(**kwargs):
    values = {
        "price_per_m2_installment": Decimal("50"),
        "advance_mode": "fixed",
        "advance_value": Decimal("1000"),
        "calc_mode": "months",
        "months": 24,
    }
    values.update(kwargs)
    return OfferTerms(**values)


class InstallmentCalculatorTests(SimpleTestCase):
    def test_reference_example(self):
        breakdown = calculate_installment(_terms(), surface_m2=Decimal("100"), deposit=Decimal("300"))
        self.assertEqual(breakdown.base_price, Decimal("5000"))
        self.assertEqual(breakdown.advance_amount, Decimal("1000"))
        self.assertEqual(breakdown.advance_after_deposit, Decimal("700"))
        self.assertEqual(breakdown.remaining_for_installments, Decimal("4000"))
        self.assertEqual(breakdown.number_of_months, 24)
        self.assertEqual(breakdown.monthly_payment.quantize(Decimal("0.01")), Decimal("166.67"))

        schedule = generate_schedule(_terms(), date(2026, 1, 15), surface_m2=Decimal("100"), deposit=Decimal("300"))
        self.assertEqual(len(schedule), 24)
        self.assertEqual(sum(item.amount_due for item in schedule), Decimal("4000.00"))
        self.assertEqual(schedule[0].amount_due, Decimal("166.67"))
        self.assertEqual(schedule[-1].amount_due, Decimal("166.59"))

    def test_percent_advance(self):
        breakdown = calculate_installment(
            _terms(advance_mode="percent", advance_value=Decimal("10")),
            surface_m2=Decimal("100"),
        )
        self.assertEqual(breakdown.advance_amount, Decimal("500"))
        self.assertEqual(breakdown.remaining_for_installments, Decimal("4500"))

    def test_base_price_override_wins_over_surface(self):
        breakdown = calculate_installment(_terms(), surface_m2=Decimal("100"), base_price=Decimal("6000"))
        self.assertEqual(breakdown.base_price, Decimal("6000"))
        self.assertEqual(breakdown.remaining_for_installments, Decimal("5000"))

    def test_monthly_amount_mode_rounds_months_up(self):
        breakdown = calculate_installment(
            _terms(calc_mode="monthlyAmount", monthly_amount=Decimal("300"), months=None),
            surface_m2=Decimal("100"),
        )
        self.assertEqual(breakdown.number_of_months, 14)
        self.assertEqual(breakdown.monthly_payment, Decimal("300"))

        schedule = generate_schedule(
            _terms(calc_mode="monthlyAmount", monthly_amount=Decimal("300"), months=None),
            date(2026, 1, 1),
            surface_m2=Decimal("100"),
        )
        self.assertEqual(schedule[-1].amount_due, Decimal("100.00"))
        self.assertEqual(sum(item.amount_due for item in schedule), Decimal("4000.00"))

    def test_monthly_amount_with_months_shrinks_monthly(self):
        breakdown = calculate_installment(
            _terms(calc_mode="monthlyAmount", monthly_amount=Decimal("500"), months=10),
            surface_m2=Decimal("100"),
        )
        self.assertEqual(breakdown.number_of_months, 10)
        self.assertEqual(breakdown.monthly_payment, Decimal("400"))

    def test_deposit_above_advance_reduces_remaining(self):
        breakdown = calculate_installment(_terms(), surface_m2=Decimal("100"), deposit=Decimal("1500"))
        self.assertEqual(breakdown.advance_after_deposit, Decimal("0"))
        self.assertEqual(breakdown.remaining_for_installments, Decimal("3500"))

    def test_negative_deposit_counts_as_zero(self):
        breakdown = calculate_installment(_terms(), surface_m2=Decimal("100"), deposit=Decimal("-50"))
        self.assertEqual(breakdown.deposit_amount, Decimal("0"))
        self.assertEqual(breakdown.advance_after_deposit, Decimal("1000"))

    def test_nothing_left_to_finance(self):
        breakdown = calculate_installment(_terms(advance_value=Decimal("6000")), surface_m2=Decimal("100"))
        self.assertEqual(breakdown.number_of_months, 0)
        self.assertEqual(breakdown.monthly_payment, Decimal("0"))
        self.assertEqual(generate_schedule(_terms(advance_value=Decimal("6000")), date(2026, 1, 1), surface_m2=100), [])

    def test_non_positive_surface_is_coerced_to_one(self):
        with self.assertLogs("sales.installments", level="WARNING"):
            breakdown = calculate_installment(_terms(advance_value=Decimal("0")), surface_m2=Decimal("0"))
        self.assertEqual(breakdown.base_price, Decimal("50"))

    def test_calculator_is_deterministic(self):
        first = calculate_installment(_terms(), surface_m2=Decimal("123.45"), deposit=Decimal("10"))
        second = calculate_installment(_terms(), surface_m2=Decimal("123.45"), deposit=Decimal("10"))
        self.assertEqual(first, second)

    def test_due_dates_clamp_to_month_end_without_drift(self):
        schedule = generate_schedule(_terms(months=4), date(2024, 1, 31), surface_m2=Decimal("100"))
        self.assertEqual(
            [item.due_date for item in schedule],
            [date(2024, 2, 29), date(2024, 3, 31), date(2024, 4, 30), date(2024, 5, 31)],
        )
        self.assertEqual(add_months(date(2025, 11, 30), 3), date(2026, 2, 28))

    def test_small_balance_over_many_months_has_no_negative_rows(self):
        terms = _terms(advance_value=Decimal("0"), months=500)
        schedule = generate_schedule(terms, date(2026, 1, 1), base_price=Decimal("3.00"))
        self.assertEqual(len(schedule), 500)
        self.assertTrue(all(item.amount_due >= 0 for item in schedule))
        self.assertEqual(sum(item.amount_due for item in schedule), Decimal("3.00"))

    def test_schedule_always_adds_up_to_remaining(self):
        plans = [_terms(months=months) for months in (1, 7, 24, 120, 360)]
        plans += [_terms(advance_mode="percent", advance_value=Decimal("15"), months=months) for months in (11, 48)]
        plans += [
            _terms(calc_mode="monthlyAmount", monthly_amount=amount, months=None)
            for amount in (Decimal("37"), Decimal("300"), Decimal("4999"))
        ]
        plans.append(_terms(calc_mode="monthlyAmount", monthly_amount=Decimal("500"), months=9))

        for terms in plans:
            for surface in (Decimal("0.5"), Decimal("100"), Decimal("123.45")):
                for deposit in (Decimal("0"), Decimal("300"), Decimal("1500")):
                    with self.subTest(terms=terms, surface=surface, deposit=deposit):
                        breakdown = calculate_installment(terms, surface_m2=surface, deposit=deposit)
                        schedule = generate_schedule(terms, date(2026, 3, 31), surface_m2=surface, deposit=deposit)
                        if breakdown.remaining_for_installments <= 0:
                            self.assertEqual(schedule, [])
                            continue
                        self.assertEqual(len(schedule), breakdown.number_of_months)
                        self.assertTrue(all(item.amount_due >= 0 for item in schedule))
                        total = sum(item.amount_due for item in schedule)
                        self.assertLessEqual(abs(total - breakdown.remaining_for_installments), Decimal("0.01"))

    def test_split_schedule_never_yields_negative_parts(self):
        schedule = generate_schedule(
            _terms(advance_value=Decimal("0"), months=3), date(2026, 1, 1), base_price=Decimal("0.06")
        )
        parts = split_schedule(schedule, [1, 1, 1, 1])
        for rows in parts:
            self.assertTrue(all(item.amount_due >= 0 for item in rows))
        self.assertEqual(sum(item.amount_due for rows in parts for item in rows), Decimal("0.06"))

    def test_split_schedule_keeps_every_row_total(self):
        schedule = generate_schedule(_terms(months=3), date(2026, 1, 10), surface_m2=Decimal("100"))
        parts = split_schedule(schedule, [Decimal("100"), Decimal("200")])
        self.assertEqual(len(parts), 2)
        for index, item in enumerate(schedule):
            self.assertEqual(parts[0][index].amount_due + parts[1][index].amount_due, item.amount_due)
            self.assertEqual(parts[1][index].due_date, item.due_date)
        total = sum(item.amount_due for rows in parts for item in rows)
        self.assertEqual(total, Decimal("4000.00"))

    def test_schedule_summary(self):
        schedule = generate_schedule(_terms(months=2), date(2026, 1, 10), surface_m2=Decimal("100"))
        summary = schedule_summary(schedule)
        self.assertEqual(summary["count"], 2)
        self.assertEqual(summary["first_due_date"], date(2026, 2, 10))
        self.assertEqual(summary["last_due_date"], date(2026, 3, 10))
        self.assertEqual(summary["total"], Decimal("4000.00"))
        self.assertEqual(schedule_summary([])["count"], 0)


class SaleConfirmationTests(BaseAppTestCase):
    def setUp(self):
        self.user = self.make_user(username="vendedor")
        self.batch = Factory.batch(price_per_m2_cash=Decimal("40.00"))
        self.offer = Factory.offer(batch=self.batch)
        self.client_record = Factory.client(name="Fatima Zahra")

    def _piece(self, surface="100.00"):
        return Factory.piece(batch=self.batch, surface_m2=Decimal(surface))

    def _full_sale(self, **kwargs):
        return Factory.sale(piece=kwargs.pop("piece", None) or self._piece(), client=self.client_record, **kwargs)

    def _installment_sale(self):
        return Factory.sale(
            piece=self._piece(),
            client=self.client_record,
            payment_method=Sale.PaymentMethod.INSTALLMENT,
            payment_offer=self.offer,
            sale_price=Decimal("5000.00"),
            deposit_amount=Decimal("300.00"),
        )

    def _promise_sale(self):
        return Factory.sale(
            piece=self._piece(),
            client=self.client_record,
            payment_method=Sale.PaymentMethod.PROMISE,
            sale_price=Decimal("10000.00"),
            deposit_amount=Decimal("1000.00"),
        )

    def test_full_sale_confirmation_completes_sale_and_sells_piece(self):
        sale = self._full_sale()
        self.assertEqual(confirmation_amount(sale), Decimal("15000.00"))

        result = confirm_sale(sale.pk, ConfirmationRequest(confirmed_by=self.user, notes="Firma en notaría"))

        self.assertEqual(result.outcome, "completed")
        self.assertEqual(result.amount_received, Decimal("15000.00"))
        sale.refresh_from_db()
        self.assertEqual(sale.status, Sale.State.COMPLETED)
        self.assertEqual(sale.confirmation_amount, Decimal("15000.00"))
        self.assertEqual(sale.confirmed_by, self.user)
        self.assertIsNotNone(sale.confirmed_at)
        self.assertEqual(sale.notes, "Firma en notaría")
        self.assertEqual(sale.land_piece.status, LandPiece.Status.SOLD)
        self.assertTrue(SaleLog.objects.filter(sale=sale, action=SaleLog.Action.CONFIRMED).exists())

    def test_installment_confirmation_creates_schedule(self):
        sale = self._installment_sale()
        writer = Factory.contract_writer()

        result = confirm_sale(
            sale.pk,
            ConfirmationRequest(
                installment_start_date=date(2026, 1, 15),
                company_fee=Decimal("250"),
                contract_writer_id=writer.pk,
                confirmed_by=self.user,
            ),
        )

        self.assertEqual(result.installments_created, 24)
        self.assertEqual(result.amount_received, Decimal("700.00"))
        sale.refresh_from_db()
        installments = list(sale.installments.order_by("installment_number"))
        self.assertEqual(len(installments), 24)
        self.assertEqual(installments[0].due_date, date(2026, 2, 15))
        self.assertEqual(installments[-1].due_date, date(2028, 1, 15))
        total = sum(item.amount_due for item in installments)
        self.assertEqual(total, Decimal("4000.00"))
        self.assertEqual(sale.sale_price, sale.deposit_amount + sale.confirmation_amount + total)
        self.assertEqual(sale.company_fee_amount, Decimal("250.00"))
        self.assertEqual(sale.contract_writer, writer)
        self.assertEqual(sale.installment_start_date, date(2026, 1, 15))
        self.assertEqual(sale.offer_snapshot["offer_id"], self.offer.pk)
        self.assertEqual(sale.offer_snapshot["price_per_m2_installment"], "50.00")

    def test_installment_sale_requires_start_date(self):
        sale = self._installment_sale()
        with self.assertRaises(ValidationError):
            confirm_sale(sale.pk, ConfirmationRequest())
        sale.refresh_from_db()
        self.assertEqual(sale.status, Sale.State.PENDING)
        self.assertFalse(sale.installments.exists())

    def test_installment_sale_requires_offer(self):
        sale = self._installment_sale()
        Sale.objects.filter(pk=sale.pk).update(payment_offer=None)
        with self.assertRaises(ValidationError):
            confirm_sale(sale.pk, ConfirmationRequest(installment_start_date=date(2026, 1, 15)))

    def test_unknown_payment_method_is_rejected(self):
        sale = self._full_sale(payment_method=None)
        with self.assertRaises(ValidationError):
            confirm_sale(sale.pk, ConfirmationRequest())

    def test_negative_commission_is_rejected(self):
        sale = self._full_sale()
        with self.assertRaises(ValidationError):
            confirm_sale(sale.pk, ConfirmationRequest(company_fee=Decimal("-1")))

    def test_unknown_sale_raises_not_found(self):
        with self.assertRaises(NotFound):
            confirm_sale("9b2f4c1e-0000-4000-8000-000000000000", ConfirmationRequest())
        with self.assertRaises(NotFound):
            confirm_sale("not-a-uuid", ConfirmationRequest())

    def test_promise_partial_payments_converge_to_completed(self):
        sale = self._promise_sale()

        first = confirm_sale(sale.pk, ConfirmationRequest(payment_amount=Decimal("4000"), company_fee=Decimal("300")))
        self.assertEqual(first.outcome, "partial")
        sale.refresh_from_db()
        self.assertEqual(sale.status, Sale.State.PENDING)
        self.assertEqual(sale.partial_payment_amount, Decimal("4000.00"))
        self.assertEqual(sale.remaining_payment_amount, Decimal("5000.00"))
        self.assertEqual(sale.company_fee_amount, Decimal("300.00"))
        self.assertTrue(sale.is_partially_paid)
        self.assertEqual(sale.land_piece.status, LandPiece.Status.RESERVED)

        confirm_sale(sale.pk, ConfirmationRequest(payment_amount=Decimal("2000"), company_fee=Decimal("999")))
        sale.refresh_from_db()
        self.assertEqual(sale.partial_payment_amount + sale.remaining_payment_amount, Decimal("9000.00"))
        self.assertEqual(sale.company_fee_amount, Decimal("300.00"))

        last = confirm_sale(sale.pk, ConfirmationRequest(payment_amount=Decimal("3000")))
        self.assertEqual(last.outcome, "completed")
        sale.refresh_from_db()
        self.assertEqual(sale.status, Sale.State.COMPLETED)
        self.assertEqual(sale.partial_payment_amount, Decimal("9000.00"))
        self.assertEqual(sale.remaining_payment_amount, Decimal("0.00"))
        self.assertEqual(sale.company_fee_amount, Decimal("300.00"))
        self.assertEqual(sale.land_piece.status, LandPiece.Status.SOLD)
        self.assertEqual(sale.logs.filter(action=SaleLog.Action.PARTIAL_PAYMENT).count(), 2)

    def test_zero_commission_does_not_block_a_later_commission(self):
        sale = self._promise_sale()

        confirm_sale(sale.pk, ConfirmationRequest(payment_amount=Decimal("1000"), company_fee=Decimal("0")))
        sale.refresh_from_db()
        self.assertEqual(sale.company_fee_amount, Decimal("0.00"))

        confirm_sale(sale.pk, ConfirmationRequest(payment_amount=Decimal("1000"), company_fee=Decimal("300")))
        sale.refresh_from_db()
        self.assertEqual(sale.company_fee_amount, Decimal("300.00"))

        confirm_sale(sale.pk, ConfirmationRequest(payment_amount=Decimal("1000"), company_fee=Decimal("500")))
        sale.refresh_from_db()
        self.assertEqual(sale.company_fee_amount, Decimal("300.00"))

    def test_promise_payment_bounds(self):
        sale = self._promise_sale()
        with self.assertRaises(ValidationError):
            confirm_sale(sale.pk, ConfirmationRequest(payment_amount=Decimal("0")))
        with self.assertRaises(ValidationError):
            confirm_sale(sale.pk, ConfirmationRequest(payment_amount=Decimal("9000.01")))
        with self.assertRaises(ValidationError):
            confirm_sale(sale.pk, ConfirmationRequest())

    def test_second_confirmation_conflicts(self):
        sale = self._full_sale()
        confirm_sale(sale.pk, ConfirmationRequest())
        with self.assertRaises(ConcurrencyConflict):
            confirm_sale(sale.pk, ConfirmationRequest())

    def test_stale_read_loses_the_race(self):
        sale = self._full_sale()
        stale = Sale.objects.select_related("land_piece", "payment_offer").get(pk=sale.pk)
        confirm_sale(sale.pk, ConfirmationRequest())

        with patch("sales.confirmation.read_sale", return_value=stale):
            with self.assertRaises(ConcurrencyConflict):
                confirm_sale(sale.pk, ConfirmationRequest())
        self.assertEqual(SaleLog.objects.filter(sale=sale, action=SaleLog.Action.CONFIRMED).count(), 1)

    def test_stale_partial_payment_conflicts(self):
        sale = self._promise_sale()
        stale = Sale.objects.select_related("land_piece", "payment_offer").get(pk=sale.pk)
        confirm_sale(sale.pk, ConfirmationRequest(payment_amount=Decimal("1000")))

        with patch("sales.confirmation.read_sale", return_value=stale):
            with self.assertRaises(ConcurrencyConflict):
                confirm_sale(sale.pk, ConfirmationRequest(payment_amount=Decimal("1000")))
        sale.refresh_from_db()
        self.assertEqual(sale.partial_payment_amount, Decimal("1000.00"))

    def test_already_sold_piece_rolls_back_confirmation(self):
        sale = self._full_sale()
        LandPiece.objects.filter(pk=sale.land_piece_id).update(status=LandPiece.Status.SOLD)

        with self.assertRaises(ConcurrencyConflict):
            confirm_sale(sale.pk, ConfirmationRequest())
        sale.refresh_from_db()
        self.assertEqual(sale.status, Sale.State.PENDING)
        self.assertIsNone(sale.confirmed_at)
        self.assertFalse(sale.logs.exists())

    def test_write_without_effect_raises_permission_denied(self):
        sale = self._full_sale()
        with patch("django.db.models.query.QuerySet.update", return_value=1):
            with self.assertRaises(PermissionDenied):
                confirm_sale(sale.pk, ConfirmationRequest())
        sale.refresh_from_db()
        self.assertEqual(sale.status, Sale.State.PENDING)

    def test_database_failure_raises_upstream_unavailable(self):
        sale = self._full_sale()
        with patch.object(
            SaleLog.objects,
            "create",
            side_effect=OperationalError("canceling statement due to statement timeout"),
        ):
            with self.assertLogs("core.db", level="ERROR"):
                with self.assertRaises(UpstreamUnavailable) as ctx:
                    confirm_sale(sale.pk, ConfirmationRequest())
        self.assertTrue(ctx.exception.retryable)
        sale.refresh_from_db()
        self.assertEqual(sale.status, Sale.State.PENDING)
        self.assertEqual(sale.land_piece.status, LandPiece.Status.RESERVED)

    def test_integrity_error_raises_constraint_violation(self):
        sale = self._installment_sale()
        InstallmentPayment.objects.create(
            sale=sale,
            installment_number=1,
            amount_due=Decimal("10.00"),
            due_date=date(2026, 1, 1),
        )
        with self.assertRaises(ConstraintViolation):
            confirm_sale(sale.pk, ConfirmationRequest(installment_start_date=date(2026, 1, 15)))
        sale.refresh_from_db()
        self.assertEqual(sale.status, Sale.State.PENDING)
        self.assertEqual(sale.installments.count(), 1)

    def test_preview_does_not_write(self):
        sale = self._installment_sale()
        preview = preview_confirmation(sale, ConfirmationRequest(installment_start_date=date(2026, 3, 31)))
        self.assertEqual(preview.confirmation_amount, Decimal("700.00"))
        self.assertEqual(preview.remaining_for_installments, Decimal("4000.00"))
        self.assertEqual(len(preview.schedule), 24)
        self.assertEqual(preview.schedule[0].due_date, date(2026, 4, 30))
        self.assertEqual(preview.breakdown.number_of_months, 24)
        self.assertFalse(InstallmentPayment.objects.exists())

        full_preview = preview_confirmation(self._full_sale())
        self.assertEqual(full_preview.confirmation_amount, Decimal("15000.00"))
        self.assertIsNone(full_preview.breakdown)

    def test_confirmation_notifies_owners_after_commit(self):
        owner = self.make_user(role=RoleCode.OWNER, username="propietario")
        sale = self._full_sale()

        with self.captureOnCommitCallbacks(execute=True):
            confirm_sale(sale.pk, ConfirmationRequest(confirmed_by=self.user))

        self.assertEqual(Notification.objects.filter(notification_type=Notification.Type.SALE_CONFIRMED).count(), 2)
        self.assertEqual(unread_count(owner), 1)
        self.assertEqual(mark_all_read(owner), 1)
        self.assertEqual(unread_count(owner), 0)

    def test_partial_payment_notifies(self):
        self.make_user(role=RoleCode.OWNER)
        sale = self._promise_sale()
        with self.captureOnCommitCallbacks(execute=True):
            confirm_sale(sale.pk, ConfirmationRequest(payment_amount=Decimal("100")))
        notification = Notification.objects.get(notification_type=Notification.Type.PARTIAL_PAYMENT)
        self.assertEqual(notification.entity_id, str(sale.pk))
        self.assertEqual(notification.metadata["remaining"], "8900.00")

    def test_failing_receiver_does_not_change_outcome(self):
        def broken_receiver(sender, **kwargs):
            raise RuntimeError("smtp caído")

        sale_confirmed.connect(broken_receiver, dispatch_uid="tests.broken_receiver")
        self.addCleanup(sale_confirmed.disconnect, dispatch_uid="tests.broken_receiver")
        sale = self._full_sale()

        with self.assertLogs("sales.signals", level="ERROR"):
            with self.captureOnCommitCallbacks(execute=True):
                result = confirm_sale(sale.pk, ConfirmationRequest(confirmed_by=self.user))

        self.assertEqual(result.outcome, "completed")
        sale.refresh_from_db()
        self.assertEqual(sale.status, Sale.State.COMPLETED)


class GroupConfirmationTests(BaseAppTestCase):
    def setUp(self):
        self.user = self.make_user(username="gerente", role=RoleCode.MANAGER)
        self.batch = Factory.batch()
        self.client_record = Factory.client()

    def _sale(self, surface="100.00", **kwargs):
        piece = kwargs.pop("piece", None) or Factory.piece(batch=self.batch, surface_m2=Decimal(surface))
        kwargs.setdefault("client", self.client_record)
        return Factory.sale(piece=piece, **kwargs)

    def test_full_group_confirms_every_sale(self):
        first = self._sale(sale_price=Decimal("20000.00"), deposit_amount=Decimal("5000.00"))
        second = self._sale(sale_price=Decimal("10000.00"), deposit_amount=Decimal("2000.00"))

        preview = preview_group_confirmation([first, second])
        self.assertEqual(preview.confirmation_amount, Decimal("23000.00"))
        self.assertEqual(preview.total_surface, Decimal("200.00"))

        result = confirm_sale_group([first.pk, second.pk], ConfirmationRequest(confirmed_by=self.user))
        self.assertEqual(result.outcome, "completed")
        self.assertEqual(result.amount_received, Decimal("23000.00"))
        first.refresh_from_db()
        second.refresh_from_db()
        self.assertEqual(first.confirmation_amount, Decimal("15000.00"))
        self.assertEqual(second.confirmation_amount, Decimal("8000.00"))
        self.assertEqual(first.land_piece.status, LandPiece.Status.SOLD)
        self.assertEqual(second.land_piece.status, LandPiece.Status.SOLD)

    def test_installment_group_splits_by_surface(self):
        offer = Factory.offer(
            batch=self.batch,
            advance_mode=PaymentOffer.AdvanceMode.PERCENT,
            advance_value=Decimal("20"),
        )
        common = {"payment_method": Sale.PaymentMethod.INSTALLMENT, "payment_offer": offer}
        small = self._sale("100.00", sale_price=Decimal("5000.00"), deposit_amount=Decimal("300.00"), **common)
        large = self._sale("300.00", sale_price=Decimal("15000.00"), deposit_amount=Decimal("700.00"), **common)

        result = confirm_sale_group(
            [small.pk, large.pk],
            ConfirmationRequest(installment_start_date=date(2026, 5, 1), company_fee=Decimal("101")),
        )

        self.assertEqual(result.installments_created, 48)
        self.assertEqual(result.amount_received, Decimal("3000.00"))
        small.refresh_from_db()
        large.refresh_from_db()
        self.assertEqual(small.confirmation_amount, Decimal("750.00"))
        self.assertEqual(large.confirmation_amount, Decimal("2250.00"))
        self.assertEqual(small.company_fee_amount + large.company_fee_amount, Decimal("101.00"))
        rows = InstallmentPayment.objects.filter(sale__in=[small, large])
        total = sum(row.amount_due for row in rows)
        self.assertEqual(total, Decimal("16000.00"))
        self.assertEqual(
            Decimal("20000.00"),
            Decimal("1000.00") + small.confirmation_amount + large.confirmation_amount + total,
        )
        self.assertEqual(small.installments.first().due_date, date(2026, 6, 1))

    def test_promise_group_partial_then_final(self):
        common = {"payment_method": Sale.PaymentMethod.PROMISE}
        first = self._sale(sale_price=Decimal("10000.00"), deposit_amount=Decimal("1000.00"), **common)
        second = self._sale(sale_price=Decimal("5000.00"), deposit_amount=Decimal("500.00"), **common)

        partial = confirm_sale_group(
            [first.pk, second.pk],
            ConfirmationRequest(payment_amount=Decimal("4500"), company_fee=Decimal("100")),
        )
        self.assertEqual(partial.outcome, "partial")
        first.refresh_from_db()
        second.refresh_from_db()
        self.assertEqual(first.partial_payment_amount, Decimal("3000.00"))
        self.assertEqual(first.remaining_payment_amount, Decimal("6000.00"))
        self.assertEqual(second.partial_payment_amount, Decimal("1500.00"))
        self.assertEqual(second.remaining_payment_amount, Decimal("3000.00"))
        self.assertEqual(first.company_fee_amount, Decimal("50.00"))

        final = confirm_sale_group([first.pk, second.pk], ConfirmationRequest(payment_amount=Decimal("9000")))
        self.assertEqual(final.outcome, "completed")
        first.refresh_from_db()
        second.refresh_from_db()
        self.assertEqual(first.status, Sale.State.COMPLETED)
        self.assertEqual(first.partial_payment_amount, Decimal("9000.00"))
        self.assertEqual(second.partial_payment_amount, Decimal("4500.00"))
        self.assertEqual(second.remaining_payment_amount, Decimal("0.00"))
        self.assertEqual(first.company_fee_amount, Decimal("50.00"))

    def test_group_validation(self):
        first = self._sale()
        other_client = self._sale(client=Factory.client())
        with self.assertRaises(ValidationError):
            confirm_sale_group([first.pk, other_client.pk], ConfirmationRequest())

        promise = self._sale(payment_method=Sale.PaymentMethod.PROMISE)
        with self.assertRaises(ValidationError):
            confirm_sale_group([first.pk, promise.pk], ConfirmationRequest())

        with self.assertRaises(ValidationError):
            confirm_sale_group([], ConfirmationRequest())

        with self.assertRaises(NotFound):
            confirm_sale_group([first.pk, "9b2f4c1e-0000-4000-8000-000000000000"], ConfirmationRequest())
        with self.assertRaises(NotFound):
            confirm_sale_group([first.pk, "not-a-uuid"], ConfirmationRequest())

    def test_group_accepts_any_uuid_spelling(self):
        first = self._sale(sale_price=Decimal("20000.00"), deposit_amount=Decimal("5000.00"))
        second = self._sale(sale_price=Decimal("10000.00"), deposit_amount=Decimal("2000.00"))

        result = confirm_sale_group(
            [str(first.pk).upper(), second.pk.hex, str(first.pk)],
            ConfirmationRequest(confirmed_by=self.user),
        )
        self.assertEqual(len(result.sales), 2)
        self.assertEqual(result.amount_received, Decimal("23000.00"))
        first.refresh_from_db()
        second.refresh_from_db()
        self.assertEqual(first.status, Sale.State.COMPLETED)
        self.assertEqual(second.status, Sale.State.COMPLETED)

    def test_failure_rolls_back_whole_group(self):
        first = self._sale()
        sold_piece = Factory.piece(batch=self.batch, status=LandPiece.Status.SOLD)
        second = self._sale(piece=sold_piece)

        with self.assertRaises(GroupConfirmationError) as ctx:
            confirm_sale_group([first.pk, second.pk], ConfirmationRequest())

        self.assertEqual(ctx.exception.failed_sale_id, second.pk)
        self.assertIsInstance(ctx.exception.cause, ConcurrencyConflict)
        first.refresh_from_db()
        self.assertEqual(first.status, Sale.State.PENDING)
        self.assertEqual(first.land_piece.status, LandPiece.Status.RESERVED)
        self.assertFalse(SaleLog.objects.filter(action=SaleLog.Action.CONFIRMED).exists())

    def test_non_pending_sale_aborts_group(self):
        first = self._sale()
        done = self._sale(status=Sale.State.COMPLETED)
        with self.assertRaises(GroupConfirmationError) as ctx:
            confirm_sale_group([first.pk, done.pk], ConfirmationRequest())
        self.assertEqual(ctx.exception.failed_sale_id, done.pk)
        first.refresh_from_db()
        self.assertEqual(first.status, Sale.State.PENDING)

    def test_group_sends_single_notification_per_recipient(self):
        self.make_user(role=RoleCode.OWNER)
        first = self._sale()
        second = self._sale()
        with self.captureOnCommitCallbacks(execute=True):
            confirm_sale_group([first.pk, second.pk], ConfirmationRequest(confirmed_by=self.user))
        notifications = Notification.objects.filter(notification_type=Notification.Type.GROUP_CONFIRMED)
        self.assertEqual(notifications.count(), 2)
        self.assertEqual(len(notifications.first().metadata["sale_ids"]), 2)


class SaleServicesTests(BaseAppTestCase):
    def setUp(self):
        self.user = self.make_user()
        self.batch = Factory.batch(price_per_m2_cash=Decimal("40.00"))
        self.client_record = Factory.client()

    def test_create_sales_shares_transaction_group_and_reserves_pieces(self):
        pieces = [
            Factory.piece(batch=self.batch, surface_m2=Decimal("100.00")),
            Factory.piece(batch=self.batch, surface_m2=Decimal("50.00")),
        ]
        sales = create_sales(
            self.client_record,
            pieces,
            Sale.PaymentMethod.PROMISE,
            deposit_total=Decimal("3000"),
            sold_by=self.user,
        )
        self.assertEqual(len(sales), 2)
        self.assertEqual(sales[0].transaction_group, sales[1].transaction_group)
        self.assertEqual([s.sale_price for s in sales], [Decimal("4000.00"), Decimal("2000.00")])
        self.assertEqual([s.deposit_amount for s in sales], [Decimal("2000.00"), Decimal("1000.00")])
        self.assertIsNone(sales[0].remaining_payment_amount)
        for piece in pieces:
            piece.refresh_from_db()
            self.assertEqual(piece.status, LandPiece.Status.RESERVED)
        self.assertEqual(SaleLog.objects.filter(action=SaleLog.Action.CREATED).count(), 2)

    def test_installment_sale_uses_offer_price(self):
        offer = Factory.offer(batch=self.batch, price_per_m2_installment=Decimal("55.00"))
        piece = Factory.piece(batch=self.batch, surface_m2=Decimal("100.00"))
        (sale,) = create_sales(self.client_record, [piece], Sale.PaymentMethod.INSTALLMENT, offer=offer)
        self.assertEqual(sale.sale_price, Decimal("5500.00"))
        self.assertEqual(sale.payment_offer, offer)

        with self.assertRaises(ValidationError):
            create_sales(self.client_record, [Factory.piece(batch=self.batch)], Sale.PaymentMethod.INSTALLMENT)

    def test_unavailable_piece_creates_nothing(self):
        free = Factory.piece(batch=self.batch)
        taken = Factory.piece(batch=self.batch, status=LandPiece.Status.RESERVED)
        with self.assertRaises(ConcurrencyConflict):
            create_sales(self.client_record, [free, taken], Sale.PaymentMethod.FULL)
        free.refresh_from_db()
        self.assertEqual(free.status, LandPiece.Status.AVAILABLE)
        self.assertFalse(Sale.objects.exists())

    def test_cancel_sale_releases_reserved_piece(self):
        sale = Factory.sale(piece=Factory.piece(batch=self.batch), client=self.client_record)
        cancelled = cancel_sale(sale.pk, user=self.user, reason="Cliente desistió")
        self.assertEqual(cancelled.status, Sale.State.CANCELLED)
        self.assertEqual(cancelled.land_piece.status, LandPiece.Status.AVAILABLE)
        self.assertTrue(sale.logs.filter(action=SaleLog.Action.CANCELLED).exists())
        with self.assertRaises(ConcurrencyConflict):
            cancel_sale(sale.pk)

    def test_schedule_appointment_only_for_pending_sales(self):
        sale = Factory.sale(piece=Factory.piece(batch=self.batch), client=self.client_record)
        when = timezone.make_aware(datetime(2026, 3, 2, 10, 30))
        updated = schedule_appointment(sale.pk, when, user=self.user)
        self.assertEqual(updated.appointment_date, when)
        self.assertTrue(sale.logs.filter(action=SaleLog.Action.APPOINTMENT).exists())

        confirm_sale(sale.pk, ConfirmationRequest())
        with self.assertRaises(ConcurrencyConflict):
            schedule_appointment(sale.pk, when)


class SalesApiTests(BaseAppTestCase):
    def setUp(self):
        self.user = self.make_user(username="api_user")
        self.login_as(self.user)
        self.batch = Factory.batch()
        self.client_record = Factory.client()

    def _sale(self, **kwargs):
        return Factory.sale(piece=Factory.piece(batch=self.batch), client=self.client_record, **kwargs)

    def _post(self, url, payload, **extra):
        return self.client.post(url, data=json.dumps(payload), content_type="application/json", **extra)

    def test_preview_returns_amounts(self):
        sale = self._sale()
        response = self.client.get(reverse("sales_api:confirmation_preview", kwargs={"sale_id": sale.pk}))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["confirmation_amount"], "15000.00")
        self.assertEqual(response.json()["schedule"], [])

    def test_preview_with_installment_schedule(self):
        offer = Factory.offer(batch=self.batch)
        sale = self._sale(
            payment_method=Sale.PaymentMethod.INSTALLMENT,
            payment_offer=offer,
            sale_price=Decimal("5000.00"),
            deposit_amount=Decimal("300.00"),
        )
        response = self.client.get(
            reverse("sales_api:confirmation_preview", kwargs={"sale_id": sale.pk}),
            {"installment_start_date": "2026-01-31"},
        )
        body = response.json()
        self.assertEqual(body["breakdown"]["number_of_months"], 24)
        self.assertEqual(body["schedule"][0]["due_date"], "2026-02-28")

    def test_confirm_and_conflict(self):
        sale = self._sale()
        url = reverse("sales_api:confirm", kwargs={"sale_id": sale.pk})
        response = self._post(url, {"notes": "ok"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["outcome"], "completed")
        sale.refresh_from_db()
        self.assertEqual(sale.confirmed_by, self.user)

        response = self._post(url, {})
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["code"], "concurrency_conflict")

    def test_confirm_parses_typed_amounts(self):
        sale = self._sale(payment_method=Sale.PaymentMethod.PROMISE)
        response = self._post(
            reverse("sales_api:confirm", kwargs={"sale_id": sale.pk}),
            {"payment_amount": "4,000.00 MAD"},
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["outcome"], "partial")
        self.assertEqual(response.json()["sale"]["remaining_payment_amount"], "11000.00")

    def test_confirm_errors(self):
        offer = Factory.offer(batch=self.batch)
        sale = self._sale(payment_method=Sale.PaymentMethod.INSTALLMENT, payment_offer=offer)
        response = self._post(reverse("sales_api:confirm", kwargs={"sale_id": sale.pk}), {})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "validation_error")

        response = self._post(reverse("sales_api:confirm", kwargs={"sale_id": "nope"}), {})
        self.assertEqual(response.status_code, 404)

        response = self._post(reverse("sales_api:confirm", kwargs={"sale_id": sale.pk}), {"company_fee": "abc"})
        self.assertEqual(response.status_code, 400)
        self.assertIn("company_fee", response.json()["fields"])

        response = self.client.post(
            reverse("sales_api:confirm", kwargs={"sale_id": sale.pk}),
            data="{",
            content_type="application/json",
        )
        self.assertEqual(response.json()["code"], "invalid_json")

        response = self.client.get(reverse("sales_api:confirm", kwargs={"sale_id": sale.pk}))
        self.assertEqual(response.status_code, 405)

    @override_settings(SALES_API_TOKEN="secreto")
    def test_token_is_required_when_configured(self):
        sale = self._sale()
        url = reverse("sales_api:confirm", kwargs={"sale_id": sale.pk})
        response = self._post(url, {})
        self.assertEqual(response.status_code, 401)

        response = self._post(url, {}, HTTP_AUTHORIZATION="Bearer secreto")
        self.assertEqual(response.status_code, 200)

    def test_group_confirm(self):
        first = self._sale()
        second = self._sale()
        url = reverse("sales_api:group_confirm")

        response = self._post(url, {})
        self.assertEqual(response.json()["code"], "missing_sale_ids")

        response = self._post(url, {"sale_ids": [str(first.pk), str(second.pk)]})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.json()["sales"]), 2)
        self.assertEqual(response.json()["amount_received"], "30000.00")

        response = self._post(url, {"sale_ids": [str(first.pk)]})
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["code"], "group_confirmation_failed")
        self.assertEqual(response.json()["failed_sale_id"], str(first.pk))
