from django.contrib.auth.models import AbstractUser
from django.db import models


class RoleCode(models.TextChoices):
    OWNER = 'OWNER', 'Propietario'
    MANAGER = 'MANAGER', 'Gerente'
    WORKER = 'WORKER', 'Vendedor'


class User(AbstractUser):
    """
    Usuario del back office (propietarios, gerentes y vendedores).
    Los propietarios reciben las notificaciones de confirmación de ventas.
    """
    Role = RoleCode

    role = models.CharField(max_length=20, choices=RoleCode.choices, default=RoleCode.WORKER)
    phone = models.CharField("Teléfono", max_length=20, blank=True)
    place = models.CharField(
        "Sede",
        max_length=100,
        blank=True,
        help_text="Oficina desde la que trabaja el usuario.",
    )

    def __str__(self):
        return f"{self.get_full_name() or self.username} ({self.role})"

    @property
    def display_name(self):
        name = self.get_full_name() or self.username
        return f"{name} ({self.place})" if self.place else name

    @property
    def is_owner(self):
        return self.role == self.Role.OWNER

    def has_role(self, code: str) -> bool:
        return self.role == code
