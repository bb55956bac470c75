"""
URL configuration for Delivery Scout.

Django admin is the only web surface.
"""

from django.contrib import admin
from django.urls import path

urlpatterns = [
    path("admin/", admin.site.urls),
]
