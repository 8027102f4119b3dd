from notifications.models import Notification
from notifications.services import mark_all_read, notify, unread_count
from tests.base import BaseAppTestCase
from tests.factories import Factory
from users.models import RoleCode


class NotificationServiceTests(BaseAppTestCase):
    def test_notify_skips_duplicates_and_missing_users(self):
        owner = self.make_user(role=RoleCode.OWNER)
        sale = Factory.sale()

        created = notify(
            [owner, None, owner],
            Notification.Type.SALE_CONFIRMED,
            "Venta confirmada",
            entity=sale,
        )

        self.assertEqual(len(created), 1)
        notification = Notification.objects.get(recipient=owner)
        self.assertEqual(notification.entity_type, "sale")
        self.assertEqual(notification.entity_id, str(sale.pk))

    def test_unread_count_and_mark_all_read(self):
        worker = self.make_user()
        other = self.make_user()
        notify([worker, other], Notification.Type.PARTIAL_PAYMENT, "Pago parcial")
        notify([worker], Notification.Type.PARTIAL_PAYMENT, "Pago parcial")

        self.assertEqual(unread_count(worker), 2)
        self.assertEqual(mark_all_read(worker), 2)
        self.assertEqual(unread_count(worker), 0)
        self.assertEqual(unread_count(other), 1)
