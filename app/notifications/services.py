from .models import Notification


def notify(recipients, notification_type, title, message="", *, entity=None, metadata=None):
    """Crea una notificación por destinatario, sin duplicar usuarios."""
    unique = {user.pk: user for user in recipients if user is not None}
    entity_type = entity._meta.model_name if entity is not None else ""
    entity_id = str(entity.pk) if entity is not None else ""
    return Notification.objects.bulk_create(
        [
            Notification(
                recipient=user,
                notification_type=notification_type,
                title=title,
                message=message,
                entity_type=entity_type,
                entity_id=entity_id,
                metadata=metadata or {},
            )
            for user in unique.values()
        ]
    )


def unread_count(user):
    return Notification.objects.filter(recipient=user, is_read=False).count()


def mark_all_read(user):
    return Notification.objects.filter(recipient=user, is_read=False).update(is_read=True)
