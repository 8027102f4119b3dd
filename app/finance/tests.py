from datetime import date, timedelta
from decimal import Decimal
from unittest.mock import patch

from django.utils import timezone

from core.exceptions import ConcurrencyConflict, NotFound, ValidationError
from finance.payments import overdue_installments, record_installment_payment
from finance.reports import financial_summary, sale_payment_stats
from sales.confirmation import ConfirmationRequest, confirm_sale
from sales.models import InstallmentPayment, Sale, SaleLog
from tests.base import BaseAppTestCase
from tests.factories import Factory

TODAY = date(2026, 6, 20)


class FinanceBaseTests(BaseAppTestCase):
    def setUp(self):
        self.user = self.make_user(username="caja")
        self.batch = Factory.batch()
        self.offer = Factory.offer(batch=self.batch)
        self.client_record = Factory.client()
        self.sale = Factory.sale(
            piece=Factory.piece(batch=self.batch),
            client=self.client_record,
            payment_method=Sale.PaymentMethod.INSTALLMENT,
            payment_offer=self.offer,
            sale_price=Decimal("5000.00"),
            deposit_amount=Decimal("300.00"),
        )
        confirm_sale(self.sale.pk, ConfirmationRequest(installment_start_date=date(2026, 1, 15)))
        self.first = self.sale.installments.get(installment_number=1)


class InstallmentPaymentTests(FinanceBaseTests):
    def test_partial_then_full_payment(self):
        installment = record_installment_payment(self.first.pk, Decimal("100"), user=self.user)
        self.assertEqual(installment.amount_paid, Decimal("100.00"))
        self.assertEqual(installment.status, InstallmentPayment.Status.PENDING)

        installment = record_installment_payment(self.first.pk, "66.67", paid_date=date(2026, 2, 14))
        self.assertEqual(installment.amount_paid, Decimal("166.67"))
        self.assertEqual(installment.status, InstallmentPayment.Status.PAID)
        self.assertEqual(installment.paid_date, date(2026, 2, 14))
        self.assertEqual(
            SaleLog.objects.filter(sale=self.sale, action=SaleLog.Action.INSTALLMENT_PAID).count(),
            2,
        )

    def test_payment_cannot_exceed_installment(self):
        with self.assertRaises(ValidationError):
            record_installment_payment(self.first.pk, Decimal("166.68"))
        with self.assertRaises(ValidationError):
            record_installment_payment(self.first.pk, Decimal("0"))
        self.first.refresh_from_db()
        self.assertEqual(self.first.amount_paid, Decimal("0.00"))

    def test_unknown_installment(self):
        with self.assertRaises(NotFound):
            record_installment_payment(999999, Decimal("10"))

    def test_concurrent_payment_conflicts(self):
        with patch("django.db.models.query.QuerySet.update", return_value=0):
            with self.assertRaises(ConcurrencyConflict):
                record_installment_payment(self.first.pk, Decimal("10"))
        self.assertFalse(SaleLog.objects.filter(action=SaleLog.Action.INSTALLMENT_PAID).exists())

    def test_overdue_installments_and_display_status(self):
        self.assertEqual(overdue_installments(today=TODAY).count(), 5)
        record_installment_payment(self.first.pk, Decimal("166.67"))
        self.assertEqual(overdue_installments(today=TODAY).count(), 4)

        self.first.refresh_from_db()
        second = self.sale.installments.get(installment_number=2)
        last = self.sale.installments.get(installment_number=24)
        self.assertEqual(self.first.display_status(TODAY), "paid")
        self.assertEqual(second.display_status(TODAY), "overdue")
        self.assertEqual(last.display_status(TODAY), "pending")


class FinanceReportTests(FinanceBaseTests):
    def test_sale_payment_stats(self):
        record_installment_payment(self.first.pk, Decimal("166.67"))
        self.sale.refresh_from_db()

        stats = sale_payment_stats(self.sale, today=TODAY)
        self.assertEqual(stats["deposit"], Decimal("300.00"))
        self.assertEqual(stats["collected_at_confirmation"], Decimal("700.00"))
        self.assertEqual(stats["installments_total"], Decimal("4000.00"))
        self.assertEqual(stats["installments_paid"], Decimal("166.67"))
        self.assertEqual(stats["installments_count"], 24)
        self.assertEqual(stats["installments_paid_count"], 1)
        self.assertEqual(stats["overdue_count"], 4)
        self.assertEqual(stats["overdue_amount"], Decimal("666.68"))
        self.assertEqual(stats["total_collected"], Decimal("1166.67"))
        self.assertEqual(stats["outstanding"], Decimal("3833.33"))
        self.assertEqual(stats["progress_percent"], Decimal("23.33"))
        self.assertEqual(self.sale.outstanding_amount, Decimal("3833.33"))

    def test_financial_summary(self):
        record_installment_payment(self.first.pk, Decimal("166.67"))
        promise = Factory.sale(
            piece=Factory.piece(batch=self.batch),
            client=self.client_record,
            payment_method=Sale.PaymentMethod.PROMISE,
            sale_price=Decimal("10000.00"),
            deposit_amount=Decimal("1000.00"),
            company_fee_amount=Decimal("150.00"),
        )
        confirm_sale(promise.pk, ConfirmationRequest(payment_amount=Decimal("2000")))
        Factory.sale(piece=Factory.piece(batch=self.batch), status=Sale.State.CANCELLED)

        summary = financial_summary(today=TODAY)
        self.assertEqual(summary["sales_count"], 2)
        self.assertEqual(summary["completed_count"], 1)
        self.assertEqual(summary["pending_count"], 1)
        self.assertEqual(summary["cancelled_count"], 1)
        self.assertEqual(summary["total_sales_value"], Decimal("15000.00"))
        self.assertEqual(summary["total_deposits"], Decimal("1300.00"))
        self.assertEqual(summary["total_confirmation_amounts"], Decimal("700.00"))
        self.assertEqual(summary["total_promise_payments"], Decimal("2000.00"))
        self.assertEqual(summary["total_installments_paid"], Decimal("166.67"))
        self.assertEqual(summary["total_company_fees"], Decimal("150.00"))
        self.assertEqual(summary["total_collected"], Decimal("4166.67"))
        self.assertEqual(summary["overdue_count"], 4)
        self.assertEqual(summary["overdue_amount"], Decimal("666.68"))
        self.assertEqual(summary["completion_percent"], Decimal("50.00"))
        self.assertEqual(summary["collection_percent"], Decimal("27.78"))

    def test_financial_summary_date_range(self):
        tomorrow = timezone.localdate() + timedelta(days=1)
        summary = financial_summary(start=tomorrow, today=TODAY)
        self.assertEqual(summary["sales_count"], 0)
        self.assertEqual(summary["total_collected"], Decimal("0.00"))
        self.assertEqual(summary["completion_percent"], Decimal("0.00"))
