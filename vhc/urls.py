from rest_framework.routers import DefaultRouter

from vhc.views import VHCResponseViewSet, VHCTemplateViewSet

router = DefaultRouter()
router.register(r"responses", VHCResponseViewSet, basename="vhc-response")
router.register(r"templates", VHCTemplateViewSet, basename="vhc-template")

urlpatterns = router.urls
