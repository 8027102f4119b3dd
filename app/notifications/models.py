from django.db import models


class Notification(models.Model):
    class Type(models.TextChoices):
        SALE_CONFIRMED = "sale_confirmed", "Venta confirmada"
        PARTIAL_PAYMENT = "partial_payment", "Pago parcial"
        GROUP_CONFIRMED = "group_confirmed", "Grupo confirmado"

    recipient = models.ForeignKey("users.User", on_delete=models.CASCADE, related_name="notifications")
    notification_type = models.CharField("Tipo", max_length=20, choices=Type.choices)
    title = models.CharField("Título", max_length=200)
    message = models.TextField("Mensaje", blank=True)
    entity_type = models.CharField(max_length=50, blank=True)
    entity_id = models.CharField(max_length=64, blank=True)
    metadata = models.JSONField(default=dict, blank=True)
    is_read = models.BooleanField("Leída", default=False, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return self.title
