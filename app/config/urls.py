"""
URL configuration for config project - Land Sales
"""
from django.contrib import admin
from django.urls import path, include

urlpatterns = [
    # Admin
    path('admin/', admin.site.urls),

    # API JSON de confirmación de ventas
    path(
        "api/sales/",
        include(("sales.api_urls", "sales_api"), namespace="sales_api"),
    ),
]
