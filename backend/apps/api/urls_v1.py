# apps/api/urls_v1.py

from django.urls import path, include

urlpatterns = [
    path("", include("apps.candidates.urls")),
    path("", include("apps.runs.urls")),
    path("", include("apps.connections.urls")),
]
