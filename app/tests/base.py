from django.test import TestCase

from users.models import RoleCode

from .factories import Factory


class BaseAppTestCase(TestCase):
    default_password = "pass1234"

    def make_user(self, *, role=RoleCode.WORKER, **kwargs):
        return Factory.user(role=role, password=self.default_password, **kwargs)

    def login_as(self, user):
        self.client.force_login(user)
        return user
