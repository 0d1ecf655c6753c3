# apps/connections/urls.py

from rest_framework.routers import DefaultRouter
from .views import ConnectionEndpointViewSet

router = DefaultRouter()
router.register(r"endpoints", ConnectionEndpointViewSet, basename="endpoint")

urlpatterns = router.urls
