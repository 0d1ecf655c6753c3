# apps/candidates/urls.py

from rest_framework.routers import DefaultRouter
from .views import CandidateViewSet, ProspectViewSet, ApplicationViewSet

router = DefaultRouter()
router.register(r"candidates", CandidateViewSet, basename="candidate")
router.register(r"prospects", ProspectViewSet, basename="prospect")
router.register(r"applications", ApplicationViewSet, basename="application")

urlpatterns = router.urls
