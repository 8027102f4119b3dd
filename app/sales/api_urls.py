from django.urls import path

from . import api_views


app_name = "sales_api"

urlpatterns = [
    path(
        "group/confirm",
        api_views.api_confirm_sale_group,
        name="group_confirm",
    ),
    path(
        "<str:sale_id>/confirmation-preview",
        api_views.api_confirmation_preview,
        name="confirmation_preview",
    ),
    path(
        "<str:sale_id>/confirm",
        api_views.api_confirm_sale,
        name="confirm",
    ),
]
