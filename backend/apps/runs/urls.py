# apps/runs/urls.py

from rest_framework.routers import DefaultRouter
from .views import AcquisitionRunViewSet

router = DefaultRouter()
router.register(r"runs", AcquisitionRunViewSet, basename="run")

urlpatterns = router.urls
