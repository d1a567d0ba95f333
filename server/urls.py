"""URL configuration.

Only the operator admin is routed here; the file hosting core is
consumed through ``server.apps.*.logic`` and management commands.
"""

from django.contrib import admin
from django.urls import path

urlpatterns = [
    path('admin/', admin.site.urls),
]
